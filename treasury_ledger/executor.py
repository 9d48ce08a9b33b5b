"""Run one adapter money movement under ledger control.

The pending record is written before the adapter is called, so a crash
mid-flight leaves a ``pending`` row rather than nothing. Whatever the adapter
does afterwards ends in exactly one terminal transition.
"""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from common.audit import log_event
from common.errors import AdapterError
from treasury_observability.metrics import (adapter_latency_seconds,
                                            treasury_actions_total)
from yield_adapters.base import YieldAdapter

from .ledger import TransactionLedger
from .models import TreasuryTransaction, TxType

__all__ = ["LedgeredExecutor"]

_LOG = logging.getLogger(__name__)


def _failure_metadata(exc: BaseException) -> Dict[str, Any]:
    if isinstance(exc, AdapterError):
        return {
            "completedSteps": exc.completed_steps,
            "failedStep": exc.failed_step,
            "cause": repr(exc.cause),
        }
    return {"cause": repr(exc)}


class LedgeredExecutor:
    def __init__(self, ledger: TransactionLedger, *, audit_engine: Optional[Engine] = None):
        self.ledger = ledger
        self._audit_engine = audit_engine

    async def run(
        self,
        tx_type: TxType,
        amount_usdc: Decimal,
        adapter: YieldAdapter,
        *,
        source: str,
        actor: Optional[str] = None,
        from_address: Optional[str] = None,
        to_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TreasuryTransaction:
        """Create the pending record, call the adapter, record the outcome.

        Adapter failures are recorded on the ledger and returned as a
        ``failed`` record, never raised.
        """
        record = self.ledger.create_pending(
            tx_type,
            amount_usdc,
            protocol=adapter.name,
            from_address=from_address,
            to_address=to_address,
            metadata={**(metadata or {}), "source": source},
        )

        def on_step(index: int, total: int, signature: str) -> None:
            self.ledger.record_step(record.id, index, total, signature)

        call = adapter.deposit if tx_type == TxType.DEPOSIT else adapter.withdraw
        t0 = time.perf_counter()
        try:
            signature = await call(Decimal(amount_usdc), on_step=on_step)
        except Exception as exc:
            _LOG.error(
                "%s of %s USDC failed: %s",
                tx_type.value,
                amount_usdc,
                exc,
                extra={"tx_id": record.id, "protocol": adapter.name},
            )
            record = self.ledger.mark_failed(record.id, str(exc), _failure_metadata(exc))
            outcome = "failed"
        else:
            record = self.ledger.mark_success(record.id, signature)
            outcome = "success"
        finally:
            adapter_latency_seconds.labels(
                action=tx_type.value, protocol=adapter.name
            ).observe(time.perf_counter() - t0)

        treasury_actions_total.labels(
            action=tx_type.value, outcome=outcome, protocol=adapter.name
        ).inc()
        self._audit(record, source=source, actor=actor)
        return record

    def _audit(self, record: TreasuryTransaction, *, source: str, actor: Optional[str]) -> None:
        if self._audit_engine is None:
            return
        with Session(self._audit_engine) as session:
            log_event(
                session=session,
                service=source,
                action=f"TREASURY_{record.tx_type.upper()}",
                actor=actor,
                details={
                    "txId": record.id,
                    "status": record.status,
                    "amountUsdc": str(record.amount_usdc),
                    "protocol": record.protocol,
                    "txSignature": record.tx_signature,
                },
            )
