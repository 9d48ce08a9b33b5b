from __future__ import annotations

"""Durable set of settlement signatures that have already been credited."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SettlementRecord(SQLModel, table=True):
    __tablename__ = "settlement_records"

    # the primary key is the uniqueness constraint admission relies on
    signature: str = Field(sa_column=Column(String(128), primary_key=True))
    network: Optional[str] = None
    mint: Optional[str] = None
    pay_to: Optional[str] = None
    payer: Optional[str] = None
    resource: Optional[str] = None
    amount: Optional[str] = None
    processed_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
