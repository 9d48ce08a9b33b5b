import base64
import json
from decimal import Decimal
from typing import Dict, List, Optional

import base58
import httpx
import pytest
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from common.errors import (ConfigInvalid, ConfigMissing, DepositFailed,
                           RPCError, WithdrawFailed)
from common.settings import Settings
from integrations.solana import SOLEND_PROGRAM_IDS
from integrations.solana.keys import load_keypair
from integrations.solana.layouts import decode_reserve, obligation_address
from yield_adapters import (MockYieldAdapter, SolendAdapter, YieldAdapter,
                            build_adapter)
from yield_adapters.base import from_base_units, to_base_units
from yield_adapters.tx_builder import HttpTransactionBuilder

from conftest import USDC_MINT
from solend_accounts import pack_obligation, pack_reserve

PROGRAM = SOLEND_PROGRAM_IDS["devnet"]
MARKET = str(Keypair().pubkey())
RESERVE = str(Keypair().pubkey())
CMINT = str(Keypair().pubkey())


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class _FakeRPC:
    def __init__(self, fail_on: Optional[int] = None):
        self.sent: List[VersionedTransaction] = []
        self.fail_on = fail_on

    async def send_transaction(self, raw_tx: str, *, skip_preflight: bool = False) -> str:
        tx = VersionedTransaction.from_bytes(base64.b64decode(raw_tx))
        if self.fail_on is not None and len(self.sent) == self.fail_on:
            raise RPCError("sendTransaction", "Transaction simulation failed")
        self.sent.append(tx)
        return str(tx.signatures[0])


class _FakeReader:
    def __init__(self, accounts: Dict[str, bytes], rpc: Optional[_FakeRPC] = None):
        self.accounts = accounts
        self.rpc = rpc or _FakeRPC()
        self.confirmed: List[str] = []
        self.searches = 0

    async def get_account_data(self, address: str) -> Optional[bytes]:
        return self.accounts.get(address)

    async def find_program_accounts(self, program_id, filters):
        self.searches += 1
        assert program_id == PROGRAM
        assert {"dataSize": 619} in filters
        return [RESERVE]

    async def get_latest_blockhash(self) -> str:
        return str(Hash.default())

    async def wait_for_confirmation(self, signature: str, *, timeout: float = 60.0, **_):
        self.confirmed.append(signature)
        return {"confirmationStatus": "confirmed", "err": None}


class _FakeBuilder:
    def __init__(self, payer: Keypair, steps: int = 2):
        self.payer = payer
        self.steps = steps
        self.requests = []

    async def build(self, action, *, reserve, program_id, owner, amount_base_units, blockhash):
        self.requests.append((action, amount_base_units, reserve.address, owner))
        return [self._unsigned(i) for i in range(self.steps)]

    def _unsigned(self, index: int) -> str:
        ix = Instruction(Keypair().pubkey(), bytes([index]), [])
        msg = MessageV0.try_compile(self.payer.pubkey(), [ix], [], Hash.default())
        tx = VersionedTransaction.populate(msg, [Signature.default()])
        return base64.b64encode(bytes(tx)).decode()


def _adapter(keypair: Keypair, accounts=None, *, rpc=None, steps=2, reserve_address=RESERVE):
    if accounts is None:
        accounts = {
            RESERVE: pack_reserve(lending_market=MARKET, mint=USDC_MINT, collateral_mint=CMINT)
        }
    reader = _FakeReader(accounts, rpc)
    builder = _FakeBuilder(keypair, steps)
    adapter = SolendAdapter(
        reader,
        keypair,
        builder,
        usdc_mint=USDC_MINT,
        program_id=PROGRAM,
        lending_market=MARKET,
        reserve_address=reserve_address,
    )
    return adapter, reader, builder


# ---------------------------------------------------------------------------
# Unit conversion
# ---------------------------------------------------------------------------


def test_base_unit_conversion_uses_decimals():
    assert to_base_units(Decimal("15.00"), 6) == 15_000_000
    assert to_base_units(Decimal("0.0000019"), 6) == 1
    assert from_base_units(1_250_000, 6) == Decimal("1.250000")
    assert to_base_units(Decimal("1.5"), 9) == 1_500_000_000


# ---------------------------------------------------------------------------
# Mock adapter
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_mock_adapter_tracks_position():
    adapter = MockYieldAdapter(apy_percent=4.84)
    assert isinstance(adapter, YieldAdapter)
    steps = []
    receipt = await adapter.deposit(Decimal("15"), on_step=lambda *a: steps.append(a))
    assert receipt.startswith("mock-")
    assert steps == [(0, 1, receipt)]
    await adapter.withdraw(Decimal("5"))
    assert await adapter.get_position() == Decimal("10")
    assert await adapter.get_apy() == 4.84


@pytest.mark.anyio
async def test_mock_adapter_failure_injection(monkeypatch):
    monkeypatch.setenv("MOCK_ADAPTER_FAIL", "deposit")
    adapter = MockYieldAdapter()
    with pytest.raises(DepositFailed):
        await adapter.deposit(Decimal("1"))
    with pytest.raises(WithdrawFailed):
        await adapter.withdraw(Decimal("1"))  # nothing deposited


# ---------------------------------------------------------------------------
# Solend adapter
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_solend_apy_is_percent():
    adapter, _, _ = _adapter(Keypair())
    assert await adapter.get_apy() == pytest.approx(1.61287, rel=1e-4)


@pytest.mark.anyio
async def test_solend_apy_falls_back_to_zero():
    adapter, _, _ = _adapter(Keypair(), accounts={})
    assert await adapter.get_apy() == 0.0


@pytest.mark.anyio
async def test_solend_position_zero_without_obligation():
    adapter, _, _ = _adapter(Keypair())
    assert await adapter.get_position() == 0


@pytest.mark.anyio
async def test_solend_position_converts_ctokens_via_exchange_rate():
    kp = Keypair()
    owner = str(kp.pubkey())
    accounts = {
        RESERVE: pack_reserve(lending_market=MARKET, mint=USDC_MINT, collateral_mint=CMINT),
        obligation_address(owner, MARKET, PROGRAM): pack_obligation(
            lending_market=MARKET, owner=owner, deposits=[(RESERVE, 8_000_000)]
        ),
    }
    adapter, _, _ = _adapter(kp, accounts)
    # 8 cUSDC at 1.25 USDC each
    assert await adapter.get_position() == Decimal("10.000000")


@pytest.mark.anyio
async def test_solend_deposit_signs_and_confirms_each_step_in_order():
    kp = Keypair()
    adapter, reader, builder = _adapter(kp, steps=2)
    seen = []

    signature = await adapter.deposit(Decimal("15.00"), on_step=lambda i, n, s: seen.append((i, n, s)))

    assert builder.requests == [("deposit", 15_000_000, RESERVE, str(kp.pubkey()))]
    assert len(reader.rpc.sent) == 2
    for tx in reader.rpc.sent:
        assert tx.signatures[0] != Signature.default()
    assert reader.confirmed == [str(tx.signatures[0]) for tx in reader.rpc.sent]
    assert [s[0] for s in seen] == [0, 1]
    assert signature == reader.confirmed[-1]


@pytest.mark.anyio
async def test_solend_partial_failure_reports_completed_steps():
    kp = Keypair()
    adapter, reader, _ = _adapter(kp, rpc=_FakeRPC(fail_on=1), steps=2)

    with pytest.raises(DepositFailed) as info:
        await adapter.deposit(Decimal("5"))

    assert info.value.failed_step == 1
    assert info.value.completed_steps == reader.confirmed
    assert len(info.value.completed_steps) == 1


@pytest.mark.anyio
async def test_solend_withdraw_wraps_preparation_errors():
    wrong_mint = str(Keypair().pubkey())
    accounts = {RESERVE: pack_reserve(lending_market=MARKET, mint=wrong_mint, collateral_mint=CMINT)}
    adapter, reader, builder = _adapter(Keypair(), accounts)

    with pytest.raises(WithdrawFailed):
        await adapter.withdraw(Decimal("1"))
    assert builder.requests == []
    assert reader.rpc.sent == []


@pytest.mark.anyio
async def test_solend_rejects_dust_amount():
    adapter, _, builder = _adapter(Keypair())
    with pytest.raises(DepositFailed):
        await adapter.deposit(Decimal("0.0000001"))
    assert builder.requests == []


@pytest.mark.anyio
async def test_solend_discovers_reserve_when_not_configured():
    adapter, reader, _ = _adapter(Keypair(), reserve_address=None)
    reserve = await adapter.load_reserve()
    assert reserve.address == RESERVE
    assert reader.searches == 1


# ---------------------------------------------------------------------------
# Keys and adapter selection
# ---------------------------------------------------------------------------


def test_load_keypair_accepts_json_array_and_base58():
    kp = Keypair()
    as_json = json.dumps(list(bytes(kp)))
    as_b58 = base58.b58encode(bytes(kp)).decode()
    assert load_keypair(as_json).pubkey() == kp.pubkey()
    assert load_keypair(as_b58).pubkey() == kp.pubkey()


def test_load_keypair_rejects_garbage():
    with pytest.raises(ConfigInvalid):
        load_keypair("not-a-key")


def test_build_adapter_selects_mock_by_default(settings):
    assert isinstance(build_adapter(settings, reader=None), MockYieldAdapter)


def test_build_adapter_solend_requires_config(settings):
    settings.yield_adapter = "solend"
    with pytest.raises(ConfigMissing) as info:
        build_adapter(settings, reader=None)
    assert "merchant_secret" in info.value.names
    assert "tx_builder_url" in info.value.names


def test_build_adapter_solend_checks_wallet_address():
    kp = Keypair()
    settings = Settings(
        yield_adapter="solend",
        usdc_mint=USDC_MINT,
        merchant_address=str(Keypair().pubkey()),
        merchant_secret=json.dumps(list(bytes(kp))),
        tx_builder_url="http://builder.test",
    )
    with pytest.raises(ConfigInvalid):
        build_adapter(settings, reader=None)

    settings.merchant_address = str(kp.pubkey())
    adapter = build_adapter(settings, reader=None)
    assert isinstance(adapter, SolendAdapter)
    assert adapter.program_id == PROGRAM


# ---------------------------------------------------------------------------
# Transaction builder client
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_builder_request_carries_reserve_oracles():
    pyth, switchboard = str(Keypair().pubkey()), str(Keypair().pubkey())
    reserve = decode_reserve(
        RESERVE,
        pack_reserve(
            lending_market=MARKET,
            mint=USDC_MINT,
            collateral_mint=CMINT,
            pyth_oracle=pyth,
            switchboard_oracle=switchboard,
        ),
    )
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"transactions": ["tx-a", "tx-b"]})

    builder = HttpTransactionBuilder(
        "http://builder.test", network="devnet", transport=httpx.MockTransport(handler)
    )
    owner = str(Keypair().pubkey())
    txs = await builder.build(
        "deposit",
        reserve=reserve,
        program_id=PROGRAM,
        owner=owner,
        amount_base_units=15_000_000,
        blockhash=str(Hash.default()),
    )
    await builder.aclose()

    assert txs == ["tx-a", "tx-b"]
    path, body = seen[0]
    assert path == "/solend/deposit"
    assert body["pythOracle"] == pyth
    assert body["switchboardOracle"] == switchboard
    assert body["reserve"] == RESERVE
    assert body["amount"] == "15000000"
