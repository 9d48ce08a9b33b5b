"""Exception hierarchy shared by the treasury services."""
from __future__ import annotations

from typing import Iterable, List, Optional


class TreasuryError(Exception):
    """Base exception for treasury autopilot errors."""


class ConfigMissing(TreasuryError):
    """Required runtime configuration is absent for the requested operation."""

    def __init__(self, names: Iterable[str]):
        self.names = sorted(set(names))
        super().__init__(f"missing configuration: {', '.join(self.names)}")


class ConfigInvalid(ConfigMissing):
    """Configuration is present but unusable (e.g. malformed secret key)."""

    def __init__(self, name: str, detail: str):
        super().__init__([name])
        self.args = (f"invalid configuration {name}: {detail}",)


class RPCError(TreasuryError):
    """JSON-RPC call returned an error object or an unexpected HTTP status."""

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        self.method = method
        self.code = code
        super().__init__(f"{method} failed: {message}")


class RateLimited(RPCError):
    """A single rate-limited response (HTTP 429 / JSON-RPC 429)."""


class RateLimitExhausted(TreasuryError):
    """Rate-limit retries used up."""

    def __init__(self, method: str, attempts: int):
        self.method = method
        self.attempts = attempts
        super().__init__(f"{method} still rate limited after {attempts} attempts")


class ConfirmationTimeout(TreasuryError):
    """Submitted transaction did not reach the target commitment in time."""

    def __init__(self, signature: str, timeout: float):
        self.signature = signature
        self.timeout = timeout
        super().__init__(f"transaction {signature} not confirmed within {timeout:.0f}s")


class AdapterError(TreasuryError):
    """Yield adapter failed to execute an operation.

    ``completed_steps`` holds the signatures of every step that was confirmed
    before the failure; multi-step sequences are never rolled back.
    """

    action = "operation"

    def __init__(
        self,
        cause: BaseException | str,
        *,
        completed_steps: Optional[List[str]] = None,
        failed_step: Optional[int] = None,
    ):
        self.cause = cause
        self.completed_steps = list(completed_steps or [])
        self.failed_step = failed_step
        super().__init__(f"{self.action} failed: {cause}")


class DepositFailed(AdapterError):
    action = "deposit"


class WithdrawFailed(AdapterError):
    action = "withdraw"


class InvalidTransition(TreasuryError):
    """Ledger record is not in a state that allows the requested transition."""

    def __init__(self, tx_id: str, current: Optional[str], target: str):
        self.tx_id = tx_id
        self.current = current
        self.target = target
        super().__init__(f"transaction {tx_id}: cannot move {current} -> {target}")
