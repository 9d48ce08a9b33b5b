"""Admit each settlement signature exactly once.

``admit`` is the only check-and-set. ``is_processed`` is a read used for the
cheap early duplicate answer; it never decides admission on its own.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol, Set, runtime_checkable

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from .models import SettlementRecord
from .schemas import SettlementClaim

__all__ = ["IdempotencyGuard", "SqlIdempotencyGuard", "InMemoryIdempotencyGuard"]

_LOG = logging.getLogger(__name__)


@runtime_checkable
class IdempotencyGuard(Protocol):
    def admit(self, signature: str, claim: Optional[SettlementClaim] = None) -> bool:
        """True the first time *signature* is admitted, False afterwards."""
        ...

    def is_processed(self, signature: str) -> bool:
        ...


class SqlIdempotencyGuard:
    """Durable guard backed by the ``settlement_records`` primary key.

    Concurrent admits of the same signature race on the INSERT; the database
    lets exactly one commit and the others see an integrity error.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    def admit(self, signature: str, claim: Optional[SettlementClaim] = None) -> bool:
        record = SettlementRecord(signature=signature)
        if claim is not None:
            record.network = claim.network
            record.mint = claim.mint
            record.pay_to = claim.pay_to
            record.payer = claim.payer
            record.resource = claim.resource
            record.amount = claim.amount
        with Session(self._engine) as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                _LOG.info("duplicate settlement", extra={"signature": signature})
                return False
        return True

    def is_processed(self, signature: str) -> bool:
        with Session(self._engine) as session:
            return session.get(SettlementRecord, signature) is not None


class InMemoryIdempotencyGuard:
    """Process-local guard. Restarting the process forgets every signature."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()
        self._lock = threading.Lock()

    def admit(self, signature: str, claim: Optional[SettlementClaim] = None) -> bool:
        with self._lock:
            if signature in self._seen:
                return False
            self._seen.add(signature)
            return True

    def is_processed(self, signature: str) -> bool:
        with self._lock:
            return signature in self._seen
