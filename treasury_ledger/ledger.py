"""Transaction ledger state machine.

``pending --(adapter succeeded)--> success`` and
``pending --(adapter raised)--> failed`` are the only transitions. Both are
compare-and-swap updates guarded by ``status = 'pending'`` so a record can
leave ``pending`` exactly once, even with several writers.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from common.datetime import ensure_utc, parse_iso8601, utcnow
from common.errors import InvalidTransition

from .models import TreasuryTransaction, TxStatus, TxType

__all__ = ["TransactionLedger"]

_LOG = logging.getLogger(__name__)


class TransactionLedger:
    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = utcnow):
        self._engine = engine
        self._clock = clock

    # ------------------------------------------------------------------
    def create_pending(
        self,
        tx_type: TxType | str,
        amount_usdc: Decimal,
        *,
        protocol: str,
        from_address: Optional[str] = None,
        to_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TreasuryTransaction:
        """Persist a ``pending`` record before any side effect is attempted."""
        amount = Decimal(amount_usdc)
        if amount <= 0:
            raise ValueError(f"amount must be > 0, got {amount}")
        now = self._clock()
        row = TreasuryTransaction(
            tx_type=TxType(tx_type).value,
            amount_usdc=amount,
            status=TxStatus.PENDING.value,
            protocol=protocol,
            from_address=from_address,
            to_address=to_address,
            meta={**(metadata or {}), "requestedAt": now.isoformat()},
            created_at=now,
        )
        with Session(self._engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
        _LOG.info(
            "ledger %s %s %s USDC pending",
            row.id,
            row.tx_type,
            amount,
            extra={"tx_id": row.id, "protocol": protocol},
        )
        return row

    def record_step(self, tx_id: str, index: int, total: int, signature: str) -> None:
        """Note a confirmed step of a multi-step submission on a pending record."""

        def merge(meta: Dict[str, Any]) -> Dict[str, Any]:
            steps = list(meta.get("steps", []))
            steps.append({"index": index, "signature": signature})
            return {**meta, "steps": steps, "lastCompletedStep": index, "totalSteps": total}

        with Session(self._engine) as session:
            row = session.get(TreasuryTransaction, tx_id)
            if row is None or row.is_terminal:
                raise InvalidTransition(tx_id, row.status if row else None, "pending")
            self._compare_and_swap(session, row, TxStatus.PENDING, meta=merge(row.meta or {}))

    def mark_success(
        self, tx_id: str, signature: str, metadata: Optional[Dict[str, Any]] = None
    ) -> TreasuryTransaction:
        if not signature:
            raise ValueError("success requires a transaction signature")
        extra = {**(metadata or {}), "completedAt": self._clock().isoformat()}
        return self._transition(tx_id, TxStatus.SUCCESS, signature=signature, extra=extra)

    def mark_failed(
        self, tx_id: str, error: str, metadata: Optional[Dict[str, Any]] = None
    ) -> TreasuryTransaction:
        extra = {**(metadata or {}), "error": error, "failedAt": self._clock().isoformat()}
        return self._transition(tx_id, TxStatus.FAILED, signature=None, extra=extra)

    # ------------------------------------------------------------------
    def _transition(
        self,
        tx_id: str,
        target: TxStatus,
        *,
        signature: Optional[str],
        extra: Dict[str, Any],
    ) -> TreasuryTransaction:
        with Session(self._engine) as session:
            row = session.get(TreasuryTransaction, tx_id)
            if row is None:
                raise InvalidTransition(tx_id, None, target.value)
            if row.is_terminal:
                raise InvalidTransition(tx_id, row.status, target.value)
            # request metadata is kept; transition details are layered on top
            merged = {**(row.meta or {}), **extra}
            self._compare_and_swap(
                session, row, target, meta=merged, tx_signature=signature
            )
            session.refresh(row)
        _LOG.info(
            "ledger %s -> %s",
            tx_id,
            target.value,
            extra={"tx_id": tx_id, "signature": signature},
        )
        return row

    def _compare_and_swap(
        self,
        session: Session,
        row: TreasuryTransaction,
        target: TxStatus,
        **values: Any,
    ) -> None:
        stmt = (
            update(TreasuryTransaction)
            .where(
                TreasuryTransaction.id == row.id,
                TreasuryTransaction.status == TxStatus.PENDING.value,
            )
            .values(
                {
                    TreasuryTransaction.status: target.value,
                    **{getattr(TreasuryTransaction, k): v for k, v in values.items()},
                }
            )
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)
        if result.rowcount != 1:
            session.rollback()
            session.refresh(row)
            raise InvalidTransition(row.id, row.status, target.value)
        session.commit()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, tx_id: str) -> Optional[TreasuryTransaction]:
        with Session(self._engine) as session:
            return session.get(TreasuryTransaction, tx_id)

    def list_page(self, page: int = 1, limit: int = 10) -> Tuple[List[TreasuryTransaction], int]:
        """Newest-first page of records plus the total count."""
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        with Session(self._engine) as session:
            total = session.exec(select(func.count()).select_from(TreasuryTransaction)).one()
            items = session.exec(
                select(TreasuryTransaction)
                .order_by(TreasuryTransaction.created_at.desc(), TreasuryTransaction.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
        return list(items), int(total)

    def last_successful(
        self, tx_type: TxType | str, *, source: Optional[str] = None
    ) -> Optional[datetime]:
        """Completion time of the newest successful record of *tx_type*.

        With *source*, only records whose metadata names that initiator count.
        """
        stmt = (
            select(TreasuryTransaction)
            .where(
                TreasuryTransaction.tx_type == TxType(tx_type).value,
                TreasuryTransaction.status == TxStatus.SUCCESS.value,
            )
            .order_by(TreasuryTransaction.created_at.desc())
        )
        with Session(self._engine) as session:
            for row in session.exec(stmt):
                meta = row.meta or {}
                if source is not None and meta.get("source") != source:
                    continue
                completed = meta.get("completedAt")
                if completed:
                    return parse_iso8601(completed)
                return ensure_utc(row.created_at)
        return None
