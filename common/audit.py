from __future__ import annotations

"""Append-only audit journal.

Every money movement and every credited settlement appends one immutable row
to ``audit_journal`` in the treasury database, so an operator can reconstruct
what the autopilot did without reading logs.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, String
from sqlmodel import Field, Session, SQLModel

__all__ = [
    "AuditJournal",
    "log_event",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditJournal(SQLModel, table=True):
    """Immutable audit record."""

    __tablename__ = "audit_journal"

    id: Optional[int] = Field(default=None, primary_key=True)

    ts: datetime = Field(default_factory=_utcnow, index=True)

    # Emitting component e.g. "rebalancer", "settlement"
    service: str = Field(sa_column=Column(String, nullable=False, index=True))

    # "rebalancer", "operator:<sub>", payer address, ...
    actor: Optional[str] = None

    # Action verb e.g. "TREASURY_DEPOSIT", "SETTLEMENT_CREDITED"
    action: str = Field(sa_column=Column(String, nullable=False))

    details: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False, default={})
    )


def log_event(
    *,
    session: Session,
    service: str,
    action: str,
    actor: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditJournal:
    """Insert a new audit record and commit immediately.

    Parameters
    ----------
    session: open session on the treasury database. The commit only covers
        the audit row; callers should not have pending work on it.
    service: name of the emitting component.
    action: action verb.
    actor: who or what initiated the action.
    details: JSON-serialisable dictionary with extra context.
    """

    entry = AuditJournal(
        service=service,
        action=action,
        actor=actor,
        details=details or {},
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry
