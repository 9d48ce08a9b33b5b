"""In-memory yield adapter.

Simulates protocol calls without any network access. Failures can be
injected via ``MOCK_ADAPTER_FAIL`` (one of: "deposit", "withdraw") and
latency via ``MOCK_ADAPTER_LATENCY`` (seconds).
"""

from __future__ import annotations

import asyncio
import logging
import os
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from common.errors import DepositFailed, WithdrawFailed

from .base import StepCallback, YieldAdapter

_LOG = logging.getLogger(__name__)


class MockYieldAdapter(YieldAdapter):
    name = "mock"

    def __init__(
        self,
        *,
        apy_percent: float = 5.0,
        position: Decimal = Decimal("0"),
        fail: Optional[str] = None,
        latency: Optional[float] = None,
    ):
        self.apy_percent = apy_percent
        self.position = Decimal(position)
        self.fail = fail if fail is not None else os.getenv("MOCK_ADAPTER_FAIL", "")
        self.latency = (
            latency if latency is not None else float(os.getenv("MOCK_ADAPTER_LATENCY", "0"))
        )
        self.calls: list[tuple[str, Decimal]] = []

    async def _settle(self, action: str, amount: Decimal) -> None:
        self.calls.append((action, amount))
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.fail == action:
            raise RuntimeError(f"mock adapter forced failure for {action}")

    async def deposit(self, amount_usdc: Decimal, *, on_step: Optional[StepCallback] = None) -> str:
        try:
            await self._settle("deposit", amount_usdc)
        except RuntimeError as exc:
            raise DepositFailed(exc) from exc
        self.position += Decimal(amount_usdc)
        receipt = f"mock-{uuid4()}"
        if on_step is not None:
            on_step(0, 1, receipt)
        _LOG.info("mock deposit %s USDC receipt=%s", amount_usdc, receipt)
        return receipt

    async def withdraw(self, amount_usdc: Decimal, *, on_step: Optional[StepCallback] = None) -> str:
        try:
            await self._settle("withdraw", amount_usdc)
        except RuntimeError as exc:
            raise WithdrawFailed(exc) from exc
        if Decimal(amount_usdc) > self.position:
            raise WithdrawFailed(f"position {self.position} < requested {amount_usdc}")
        self.position -= Decimal(amount_usdc)
        receipt = f"mock-{uuid4()}"
        if on_step is not None:
            on_step(0, 1, receipt)
        return receipt

    async def get_apy(self) -> float:
        return self.apy_percent

    async def get_position(self) -> Decimal:
        return self.position
