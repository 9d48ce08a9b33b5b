"""Rate-limit retry policy for chain reads.

The policy is a pure function of ``(attempt, error)`` so it can be tested
without any network access; :func:`retry_rate_limited` is the thin async loop
that applies it around a call.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from common.errors import RateLimited, RateLimitExhausted

__all__ = [
    "BackoffPolicy",
    "RetryDecision",
    "is_rate_limited",
    "next_retry",
    "retry_rate_limited",
]

_LOG = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """Capped exponential backoff.

    ``delay(attempt) = min(2**attempt * base_delay + jitter, max_delay)`` with
    ``jitter`` drawn from ``[0, min(max_jitter, base_delay))``. Keeping the
    jitter below one base unit makes successive delays non-decreasing.
    """

    max_attempts: int = 6
    base_delay: float = 1.0
    max_delay: float = 32.0
    max_jitter: float = 1.0

    def delay(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        jitter = min(self.max_jitter, self.base_delay) * rand()
        return min((2 ** attempt) * self.base_delay + jitter, self.max_delay)


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0


def is_rate_limited(error: BaseException) -> bool:
    if isinstance(error, RateLimited):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 429
    text = str(error)
    return "429" in text or "Too Many Requests" in text


def next_retry(
    policy: BackoffPolicy,
    attempt: int,
    error: BaseException,
    rand: Callable[[], float] = random.random,
) -> RetryDecision:
    """Decide what to do after failed attempt number *attempt* (0-based)."""
    if not is_rate_limited(error):
        return RetryDecision(retry=False)
    if attempt + 1 >= policy.max_attempts:
        return RetryDecision(retry=False)
    return RetryDecision(retry=True, delay=policy.delay(attempt, rand))


async def retry_rate_limited(
    fn: Callable[[], Awaitable[T]],
    *,
    label: str,
    policy: Optional[BackoffPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, float], None]] = None,
) -> T:
    """Await ``fn()``; retry only rate-limit failures according to *policy*.

    Non rate-limit errors propagate on the first occurrence. When the budget
    is spent :class:`RateLimitExhausted` is raised with the attempt count.
    """
    policy = policy or BackoffPolicy()
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_rate_limited(exc):
                raise
            decision = next_retry(policy, attempt, exc)
            if not decision.retry:
                _LOG.error("%s rate limited, giving up after %d attempts", label, attempt + 1)
                raise RateLimitExhausted(label, attempt + 1) from exc
            attempt += 1
            _LOG.warning(
                "%s rate limited, retrying in %.2fs (attempt %d/%d)",
                label,
                decision.delay,
                attempt,
                policy.max_attempts - 1,
            )
            if on_retry is not None:
                on_retry(attempt, decision.delay)
            await sleep(decision.delay)
