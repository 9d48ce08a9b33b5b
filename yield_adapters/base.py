"""Yield adapter interface.

Every adapter implements :class:`YieldAdapter` so the concrete protocol is
chosen once at start-up from configuration (see :func:`yield_adapters.build_adapter`).
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Callable, Optional, Protocol, runtime_checkable

__all__ = ["StepCallback", "YieldAdapter", "to_base_units", "from_base_units"]

# (step index, total steps, confirmed signature)
StepCallback = Callable[[int, int, str], None]


@runtime_checkable
class YieldAdapter(Protocol):
    """Deposit / withdraw / APY / position against one yield protocol."""

    name: str

    async def deposit(
        self, amount_usdc: Decimal, *, on_step: Optional[StepCallback] = None
    ) -> str:
        """Move *amount_usdc* into the protocol; return the last confirmed signature."""
        ...

    async def withdraw(
        self, amount_usdc: Decimal, *, on_step: Optional[StepCallback] = None
    ) -> str:
        ...

    async def get_apy(self) -> float:
        """Current supply APY in percent (4.84 == 4.84 %); 0.0 when unreadable."""
        ...

    async def get_position(self) -> Decimal:
        """Merchant's deposited value in USDC; 0 when no position exists."""
        ...


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Human amount -> integer base units, truncating sub-unit dust."""
    return int((Decimal(amount).scaleb(decimals)).to_integral_value(rounding=ROUND_DOWN))


def from_base_units(raw: int | Decimal, decimals: int) -> Decimal:
    quantum = Decimal(1).scaleb(-decimals)
    return Decimal(raw).scaleb(-decimals).quantize(quantum, rounding=ROUND_DOWN)
