import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from common import secrets as secrets_module
from common.settings import Settings
from integrations.solana.reader import TokenHolding
from treasury_ledger import TransactionLedger
from treasury_ledger.db import init_db, make_engine

USDC_MINT = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"
MERCHANT = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"
PAYER = "HN7cABqLq46Es1jh92dQQisAq662SmxELLLsHHe4YWrH"
SIGNATURE = "5" * 88


def pytest_configure(config):
    """If pytest-socket is installed, disable sockets and allow localhost if supported."""
    try:
        import pytest_socket

        pytest_socket.disable_socket()
        if hasattr(pytest_socket, "allow_hosts"):
            pytest_socket.allow_hosts("127.0.0.1", "localhost")
    except ImportError:
        pass


@pytest.fixture()
def anyio_backend() -> str:
    """The code under test is built on asyncio primitives."""
    return "asyncio"


# ---------------------------------------------------------------------------
# Default auth token for API tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _secrets(monkeypatch) -> None:
    """Provide default secrets for tests via the secrets manager."""

    monkeypatch.delenv("MOCK_ADAPTER_FAIL", raising=False)
    monkeypatch.delenv("MOCK_ADAPTER_LATENCY", raising=False)
    secrets_module.secrets.set_override(
        {"API_TOKENS": {"tester": "testtoken"}, "JWT_SECRET": "testsecret"}
    )
    yield
    secrets_module.secrets.set_override({})


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    """Isolated in-memory treasury database."""
    eng = make_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 8, 27, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def ledger(engine, clock) -> TransactionLedger:
    return TransactionLedger(engine, clock=clock)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        network="devnet",
        usdc_mint=USDC_MINT,
        merchant_address=MERCHANT,
        min_buffer_usdc=Decimal("10"),
        min_deposit_usdc=Decimal("1"),
        cooldown_sec=180,
        rebalancer_enabled=False,
        yield_adapter="mock",
        database_url="sqlite://",
    )


# ---------------------------------------------------------------------------
# Chain fakes
# ---------------------------------------------------------------------------


def token_balance(index: int, mint: str, owner: str, amount: int, decimals: int = 6) -> Dict[str, Any]:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {
            "amount": str(amount),
            "decimals": decimals,
            "uiAmountString": str(Decimal(amount).scaleb(-decimals)),
        },
    }


def transfer_tx(
    pre: List[Dict[str, Any]], post: List[Dict[str, Any]], err: Any = None
) -> Dict[str, Any]:
    """Minimal jsonParsed ``getTransaction`` result."""
    return {
        "slot": 1,
        "blockTime": 1756296000,
        "meta": {"err": err, "preTokenBalances": pre, "postTokenBalances": post},
        "transaction": {"signatures": [SIGNATURE]},
    }


class FakeChainReader:
    """Stands in for :class:`ChainReader` with canned transactions and balances."""

    def __init__(self, *, cash_usdc: Decimal = Decimal("0")):
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.cash_usdc = Decimal(cash_usdc)
        self.lookups: List[str] = []

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        self.lookups.append(signature)
        await asyncio.sleep(0)  # yield like a real round-trip would
        return self.transactions.get(signature)

    async def get_token_holding(self, owner: str, mint: str) -> TokenHolding:
        raw = int(self.cash_usdc.scaleb(6))
        return TokenHolding(owner=owner, mint=mint, raw_amount=raw, decimals=6, accounts=1)


@pytest.fixture()
def reader() -> FakeChainReader:
    return FakeChainReader()
