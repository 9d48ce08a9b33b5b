"""Pure rebalance arithmetic."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict

from common.settings import Settings

# Deposits are sized in whole cents so dust never triggers a sweep.
EXCESS_QUANTUM = Decimal("0.01")


def compute_excess(cash_usdc: Decimal, min_buffer_usdc: Decimal) -> Decimal:
    """``max(0, cash - buffer)`` rounded down to the cent."""
    excess = Decimal(cash_usdc) - Decimal(min_buffer_usdc)
    if excess <= 0:
        return Decimal("0.00")
    return excess.quantize(EXCESS_QUANTUM, rounding=ROUND_DOWN)


@dataclass(frozen=True)
class RebalanceConfig:
    min_buffer_usdc: Decimal = Decimal("10")
    min_deposit_usdc: Decimal = Decimal("1")
    cooldown_sec: int = 180

    def __post_init__(self):
        if self.min_buffer_usdc < 0 or self.min_deposit_usdc < 0 or self.cooldown_sec < 0:
            raise ValueError("rebalancer thresholds must be non-negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RebalanceConfig":
        return cls(
            min_buffer_usdc=settings.min_buffer_usdc,
            min_deposit_usdc=settings.min_deposit_usdc,
            cooldown_sec=settings.cooldown_sec,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minBufferUsdc": float(self.min_buffer_usdc),
            "minDepositUsdc": float(self.min_deposit_usdc),
            "cooldownSec": self.cooldown_sec,
        }
