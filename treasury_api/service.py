"""Operator-facing treasury operations."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from common.errors import ConfigMissing
from treasury_ledger import TreasuryTransaction, TxStatus, TxType
from treasury_observability.metrics import cash_buffer_usdc, yield_position_usdc

if TYPE_CHECKING:  # pragma: no cover
    from .runtime import TreasuryRuntime

__all__ = ["ActionCode", "ActionOutcome", "TreasuryService"]

_LOG = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class ActionCode(str, Enum):
    OK = "OK"
    DEPOSIT_FAILED = "DEPOSIT_FAILED"
    WITHDRAW_FAILED = "WITHDRAW_FAILED"
    CONFIG_MISSING = "CONFIG_MISSING"


@dataclass
class ActionOutcome:
    code: ActionCode
    transaction: Optional[TreasuryTransaction] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.code == ActionCode.OK

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": self.ok, "code": self.code.value}
        if self.transaction is not None:
            body["transaction"] = self.transaction.to_dict()
        if self.detail:
            body["detail"] = self.detail
        return body


class TreasuryService:
    def __init__(self, runtime: "TreasuryRuntime"):
        self._rt = runtime

    async def deposit(self, amount_usdc: Decimal, *, actor: Optional[str] = None) -> ActionOutcome:
        return await self._move(TxType.DEPOSIT, amount_usdc, actor)

    async def withdraw(self, amount_usdc: Decimal, *, actor: Optional[str] = None) -> ActionOutcome:
        return await self._move(TxType.WITHDRAW, amount_usdc, actor)

    async def _move(self, tx_type: TxType, amount_usdc: Decimal, actor: Optional[str]) -> ActionOutcome:
        try:
            adapter = self._rt.get_adapter()
        except ConfigMissing as exc:
            _LOG.error("%s refused: %s", tx_type.value, exc)
            return ActionOutcome(ActionCode.CONFIG_MISSING, detail=str(exc))

        wallet = self._rt.settings.merchant_address
        if tx_type == TxType.DEPOSIT:
            from_address, to_address = wallet, adapter.name
        else:
            from_address, to_address = adapter.name, wallet

        record = await self._rt.executor.run(
            tx_type,
            Decimal(amount_usdc),
            adapter,
            source="operator",
            actor=actor,
            from_address=from_address,
            to_address=to_address,
        )
        if record.status == TxStatus.SUCCESS.value:
            return ActionOutcome(ActionCode.OK, record)
        failed = ActionCode.DEPOSIT_FAILED if tx_type == TxType.DEPOSIT else ActionCode.WITHDRAW_FAILED
        return ActionOutcome(failed, record, detail=(record.meta or {}).get("error"))

    async def get_apy(self) -> Dict[str, Any]:
        adapter = self._rt.get_adapter()
        return {"apyPercent": await adapter.get_apy(), "protocol": adapter.name}

    async def get_balances(self) -> Dict[str, Any]:
        adapter = self._rt.get_adapter()
        cash = await self._rt.read_cash()
        position = await adapter.get_position()
        apy = await adapter.get_apy()
        cash_buffer_usdc.set(float(cash))
        yield_position_usdc.labels(protocol=adapter.name).set(float(position))
        return {
            "cashBufferUsdc": float(cash),
            "inYieldUsdc": float(position),
            "estimatedApyPercent": apy,
        }

    def list_transactions(self, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        items, total = self._rt.ledger.list_page(page, limit)
        return {
            "items": [row.to_dict() for row in items],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit) if total else 0,
            },
        }
