"""Settlement webhook payload and outcome codes."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from common.datetime import parse_iso8601
from integrations.solana import MIN_SIGNATURE_LENGTH


class SettlementCode(str, Enum):
    OK = "OK"
    OK_DUPLICATE = "OK_DUPLICATE"
    REJECTED_INVALID_PAYLOAD = "REJECTED_INVALID_PAYLOAD"
    REJECTED_NETWORK_MISMATCH = "REJECTED_NETWORK_MISMATCH"
    REJECTED_MINT_MISMATCH = "REJECTED_MINT_MISMATCH"
    REJECTED_RECIPIENT_MISMATCH = "REJECTED_RECIPIENT_MISMATCH"
    REJECTED_ONCHAIN_VERIFICATION_FAILED = "REJECTED_ONCHAIN_VERIFICATION_FAILED"
    CONFIG_MISSING = "CONFIG_MISSING"


class SettlementClaim(BaseModel):
    """Claimed x402 settlement as posted by the facilitator."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    tx_signature: str = Field(..., alias="txSignature", min_length=MIN_SIGNATURE_LENGTH)
    network: Literal["devnet", "testnet", "mainnet"]
    # minimum expected credit in base units, as an integer string
    amount: str = Field(..., pattern=r"^[0-9]+$")
    mint: str = Field(..., min_length=1)
    pay_to: str = Field(..., alias="payTo", min_length=1)
    payer: Optional[str] = None
    resource: Optional[str] = None
    settled_at: Optional[datetime] = Field(default=None, alias="settledAt")

    @field_validator("settled_at", mode="before")
    @classmethod
    def _parse_settled_at(cls, value):
        if value is None:
            return value
        if not isinstance(value, (str, datetime)):
            raise ValueError("settledAt must be an ISO-8601 string")
        return parse_iso8601(value)

    @property
    def amount_base_units(self) -> int:
        return int(self.amount)
