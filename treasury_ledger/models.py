from __future__ import annotations

"""SQLModel table for treasury money movements.

One row per attempted deposit / withdraw. Column names are explicit
snake_case; the API serialises them in camelCase via ``to_dict``.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import (JSON, CheckConstraint, Column, DateTime, Index,
                        Numeric, String)
from sqlmodel import Field, SQLModel

from common.datetime import ensure_utc, utcnow


class TxType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class TxStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TxStatus.SUCCESS.value, TxStatus.FAILED.value})


class TreasuryTransaction(SQLModel, table=True):
    """A deposit or withdraw attempt and its lifecycle status."""

    __tablename__ = "treasury_transactions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tx_type: str = Field(sa_column=Column("type", String(16), nullable=False))
    amount_usdc: Decimal = Field(
        sa_column=Column("amount_usdc", Numeric(20, 6), nullable=False)
    )
    status: str = Field(
        default=TxStatus.PENDING.value,
        sa_column=Column("status", String(16), nullable=False, index=True),
    )
    protocol: str = Field(sa_column=Column("protocol", String(32), nullable=False))
    from_address: Optional[str] = Field(default=None, sa_column=Column("from_address", String))
    to_address: Optional[str] = Field(default=None, sa_column=Column("to_address", String))
    tx_signature: Optional[str] = Field(default=None, sa_column=Column("tx_signature", String))

    # "metadata" is reserved on declarative classes, hence the attribute name
    meta: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False, default={})
    )

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("created_at", DateTime(timezone=True), nullable=False),
    )

    __table_args__ = (
        Index("ix_treasury_tx_created", "created_at"),
        Index("ix_treasury_tx_type_status", "type", "status"),
        CheckConstraint("amount_usdc > 0", name="ck_treasury_tx_amount_positive"),
        CheckConstraint(
            "(status = 'success' AND tx_signature IS NOT NULL)"
            " OR (status <> 'success' AND tx_signature IS NULL)",
            name="ck_treasury_tx_signature_iff_success",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.tx_type,
            "amountUsdc": float(self.amount_usdc),
            "status": self.status,
            "protocol": self.protocol,
            "fromAddress": self.from_address,
            "toAddress": self.to_address,
            "txSignature": self.tx_signature,
            "metadata": dict(self.meta or {}),
            "createdAt": ensure_utc(self.created_at).isoformat(),
        }
