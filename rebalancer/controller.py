"""Rebalance decision loop.

Every trigger (periodic tick, newly admitted settlement, operator request)
goes through :meth:`RebalanceController.trigger`. The lock covers only the
decision: the cooldown compare and the in-flight reservation. Balance reads
and the deposit itself run outside it, while the reservation turns every
concurrent trigger into a skip.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from common.datetime import utcnow
from common.errors import TreasuryError
from treasury_ledger import TransactionLedger, TxStatus, TxType
from treasury_ledger.executor import LedgeredExecutor
from treasury_observability.metrics import (cash_buffer_usdc,
                                            rebalance_decisions_total)
from yield_adapters.base import YieldAdapter

from .policy import RebalanceConfig, compute_excess

__all__ = ["RebalanceController", "RebalanceOutcome", "RebalanceResult"]

_LOG = logging.getLogger(__name__)

SOURCE = "rebalancer"


class RebalanceOutcome(str, Enum):
    DEPOSITED = "deposited"
    DEPOSIT_FAILED = "deposit_failed"
    SKIPPED_COOLDOWN = "skipped_cooldown"
    SKIPPED_THRESHOLD = "skipped_threshold"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    ERROR = "error"


@dataclass
class RebalanceResult:
    outcome: RebalanceOutcome
    reason: str
    cash_usdc: Optional[Decimal] = None
    excess_usdc: Optional[Decimal] = None
    transaction: Optional[Dict[str, Any]] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "cashUsdc": float(self.cash_usdc) if self.cash_usdc is not None else None,
            "excessUsdc": float(self.excess_usdc) if self.excess_usdc is not None else None,
            "transaction": self.transaction,
            "detail": self.detail,
        }


class RebalanceController:
    def __init__(
        self,
        ledger: TransactionLedger,
        adapter_provider: Callable[[], YieldAdapter],
        read_cash: Callable[[], Awaitable[Decimal]],
        *,
        config: Optional[RebalanceConfig] = None,
        executor: Optional[LedgeredExecutor] = None,
        merchant_address: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._ledger = ledger
        self._adapter_provider = adapter_provider
        self._read_cash = read_cash
        self._executor = executor or LedgeredExecutor(ledger)
        self._merchant_address = merchant_address
        self._clock = clock
        self._config = config or RebalanceConfig()

        self._lock = asyncio.Lock()
        self._in_flight = False
        self._last_deposit_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    @property
    def config(self) -> RebalanceConfig:
        return self._config

    @property
    def last_deposit_at(self) -> Optional[datetime]:
        return self._last_deposit_at

    def update_config(self, config: RebalanceConfig) -> None:
        _LOG.info("rebalancer config updated: %s", config.to_dict())
        self._config = config

    def seed_from_ledger(self) -> Optional[datetime]:
        """Restore the cooldown clock from the newest successful sweep."""
        last = self._ledger.last_successful(TxType.DEPOSIT, source=SOURCE)
        if last is not None:
            self._last_deposit_at = last
            _LOG.info("cooldown seeded from ledger: last deposit at %s", last.isoformat())
        return last

    def seconds_since_last_deposit(self, now: datetime) -> Optional[float]:
        if self._last_deposit_at is None:
            return None
        return (now - self._last_deposit_at).total_seconds()

    # ------------------------------------------------------------------
    async def trigger(self, reason: str = "periodic") -> RebalanceResult:
        async with self._lock:
            if self._in_flight:
                return self._finish(RebalanceResult(RebalanceOutcome.SKIPPED_IN_FLIGHT, reason))
            config = self._config
            elapsed = self.seconds_since_last_deposit(self._clock())
            if elapsed is not None and elapsed < config.cooldown_sec:
                return self._finish(
                    RebalanceResult(
                        RebalanceOutcome.SKIPPED_COOLDOWN,
                        reason,
                        detail=f"{config.cooldown_sec - elapsed:.0f}s of cooldown left",
                    )
                )
            self._in_flight = True

        try:
            result = await self._sweep(reason, config)
        finally:
            async with self._lock:
                self._in_flight = False
        return self._finish(result)

    async def _sweep(self, reason: str, config: RebalanceConfig) -> RebalanceResult:
        try:
            cash = await self._read_cash()
        except (TreasuryError, httpx.HTTPError) as exc:
            _LOG.error("could not read idle cash: %s", exc, extra={"reason": reason})
            return RebalanceResult(RebalanceOutcome.ERROR, reason, detail=str(exc))
        cash_buffer_usdc.set(float(cash))

        excess = compute_excess(cash, config.min_buffer_usdc)
        if excess < config.min_deposit_usdc or excess <= 0:
            return RebalanceResult(
                RebalanceOutcome.SKIPPED_THRESHOLD, reason, cash_usdc=cash, excess_usdc=excess
            )

        try:
            adapter = self._adapter_provider()
        except TreasuryError as exc:
            _LOG.error("yield adapter unavailable: %s", exc, extra={"reason": reason})
            return RebalanceResult(
                RebalanceOutcome.ERROR, reason, cash_usdc=cash, excess_usdc=excess, detail=str(exc)
            )

        _LOG.info(
            "sweeping %s USDC (cash %s, buffer %s)",
            excess,
            cash,
            config.min_buffer_usdc,
            extra={"reason": reason, "protocol": adapter.name},
        )
        record = await self._executor.run(
            TxType.DEPOSIT,
            excess,
            adapter,
            source=SOURCE,
            actor=SOURCE,
            from_address=self._merchant_address,
            to_address=adapter.name,
            metadata={"trigger": reason},
        )
        if record.status != TxStatus.SUCCESS.value:
            return RebalanceResult(
                RebalanceOutcome.DEPOSIT_FAILED,
                reason,
                cash_usdc=cash,
                excess_usdc=excess,
                transaction=record.to_dict(),
                detail=(record.meta or {}).get("error"),
            )

        async with self._lock:
            self._last_deposit_at = self._clock()
        return RebalanceResult(
            RebalanceOutcome.DEPOSITED,
            reason,
            cash_usdc=cash,
            excess_usdc=excess,
            transaction=record.to_dict(),
        )

    @staticmethod
    def _finish(result: RebalanceResult) -> RebalanceResult:
        rebalance_decisions_total.labels(
            trigger=result.reason, outcome=result.outcome.value
        ).inc()
        _LOG.info(
            "rebalance %s: %s%s",
            result.reason,
            result.outcome.value,
            f" ({result.detail})" if result.detail else "",
            extra={"reason": result.reason},
        )
        return result
