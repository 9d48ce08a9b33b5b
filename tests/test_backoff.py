import httpx
import pytest

from common.errors import RateLimited, RateLimitExhausted, RPCError
from integrations.solana.backoff import (BackoffPolicy, is_rate_limited,
                                         next_retry, retry_rate_limited)


def _rate_limited() -> RateLimited:
    return RateLimited("getAccountInfo", "Too Many Requests", 429)


def test_delays_are_non_decreasing_and_capped():
    policy = BackoffPolicy(max_attempts=10, base_delay=1.0, max_delay=32.0)
    for rand in (lambda: 0.0, lambda: 0.5, lambda: 0.999):
        delays = [next_retry(policy, a, _rate_limited(), rand).delay for a in range(9)]
        assert delays == sorted(delays)
        assert max(delays) == 32.0
        assert delays[0] >= 1.0


def test_delay_formula_without_jitter():
    policy = BackoffPolicy(base_delay=0.5, max_delay=3.0)
    assert [policy.delay(a, lambda: 0.0) for a in range(4)] == [0.5, 1.0, 2.0, 3.0]


def test_gives_up_on_last_attempt():
    policy = BackoffPolicy(max_attempts=3)
    assert next_retry(policy, 0, _rate_limited()).retry
    assert next_retry(policy, 1, _rate_limited()).retry
    assert not next_retry(policy, 2, _rate_limited()).retry


def test_other_errors_are_not_retried():
    decision = next_retry(BackoffPolicy(), 0, RPCError("getBalance", "invalid param", -32602))
    assert decision.retry is False


@pytest.mark.parametrize(
    "error,expected",
    [
        (RateLimited("m", "slow down", 429), True),
        (ValueError("HTTP 429 Too Many Requests"), True),
        (
            httpx.HTTPStatusError(
                "429",
                request=httpx.Request("POST", "http://rpc"),
                response=httpx.Response(429),
            ),
            True,
        ),
        (RPCError("m", "blockhash not found", -32002), False),
        (TimeoutError("timed out"), False),
    ],
)
def test_is_rate_limited(error, expected):
    assert is_rate_limited(error) is expected


@pytest.mark.anyio
async def test_retry_terminates_after_max_attempts():
    calls = 0
    sleeps = []

    async def always_limited():
        nonlocal calls
        calls += 1
        raise _rate_limited()

    async def fake_sleep(delay):
        sleeps.append(delay)

    policy = BackoffPolicy(max_attempts=4, base_delay=0.1, max_delay=1.0)
    with pytest.raises(RateLimitExhausted) as info:
        await retry_rate_limited(always_limited, label="getAccountInfo", policy=policy, sleep=fake_sleep)

    assert info.value.attempts == 4
    assert "4 attempts" in str(info.value)
    assert calls == 4
    assert len(sleeps) == 3
    assert sleeps == sorted(sleeps)


@pytest.mark.anyio
async def test_retry_recovers_and_propagates_other_errors():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise _rate_limited()
        return "ok"

    async def no_sleep(_):
        return None

    assert await retry_rate_limited(flaky, label="x", sleep=no_sleep) == "ok"
    assert len(attempts) == 3

    async def broken():
        raise RPCError("getTransaction", "invalid signature")

    with pytest.raises(RPCError):
        await retry_rate_limited(broken, label="x", sleep=no_sleep)
