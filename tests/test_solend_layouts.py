from decimal import Decimal

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from integrations.solana import SOLEND_PROGRAM_IDS
from integrations.solana.layouts import (RESERVE_LAYOUT, decode_obligation,
                                         decode_reserve, obligation_address)

from conftest import MERCHANT, USDC_MINT
from solend_accounts import pack_obligation, pack_reserve

MARKET = str(Keypair().pubkey())
RESERVE = str(Keypair().pubkey())
CMINT = str(Keypair().pubkey())


def test_reserve_layout_covers_known_offsets():
    # lending market at 10, liquidity mint at 42 (used by getProgramAccounts filters)
    assert RESERVE_LAYOUT.size == 389
    data = pack_reserve(lending_market=MARKET, mint=USDC_MINT, collateral_mint=CMINT)
    assert data[10:42] == bytes(Pubkey.from_string(MARKET))
    assert data[42:74] == bytes(Pubkey.from_string(USDC_MINT))


def test_decode_reserve_rates_and_exchange_rate():
    reserve = decode_reserve(
        RESERVE, pack_reserve(lending_market=MARKET, mint=USDC_MINT, collateral_mint=CMINT)
    )
    assert reserve.lending_market == MARKET
    assert reserve.liquidity_mint == USDC_MINT
    assert reserve.collateral_mint == CMINT
    assert reserve.decimals == 6
    assert reserve.total_supply == Decimal(1_000_000_000_000)
    assert reserve.utilization == Decimal("0.4")
    # util 0.4 below optimal 0.8: 0% + (0.4 / 0.8) * 8%
    assert reserve.borrow_apr == Decimal("0.04")
    assert reserve.supply_apr == Decimal("0.016")
    # per-slot compounding of 1.6 % APR
    assert float(reserve.supply_interest) == pytest.approx(0.0161287, rel=1e-4)
    assert reserve.exchange_rate == Decimal("1.25")


def test_borrow_curve_above_optimal_and_take_rate():
    reserve = decode_reserve(
        RESERVE,
        pack_reserve(
            lending_market=MARKET,
            mint=USDC_MINT,
            collateral_mint=CMINT,
            available=100,
            borrowed=900,
            take_rate=10,
        ),
    )
    assert reserve.utilization == Decimal("0.9")
    # 8% + ((0.9 - 0.8) / 0.2) * (100% - 8%)
    assert reserve.borrow_apr == Decimal("0.54")
    assert reserve.supply_apr == Decimal("0.9") * Decimal("0.54") * Decimal("0.9")


def test_empty_reserve_has_unit_exchange_rate():
    reserve = decode_reserve(
        RESERVE,
        pack_reserve(
            lending_market=MARKET,
            mint=USDC_MINT,
            collateral_mint=CMINT,
            available=0,
            borrowed=0,
            collateral_supply=0,
        ),
    )
    assert reserve.utilization == 0
    assert reserve.exchange_rate == 1
    assert reserve.supply_interest == 0


def test_decode_reserve_rejects_short_data():
    with pytest.raises(ValueError):
        decode_reserve(RESERVE, b"\x01" * 100)


def test_decode_obligation_sums_deposits_per_reserve():
    other = str(Keypair().pubkey())
    data = pack_obligation(
        lending_market=MARKET,
        owner=MERCHANT,
        deposits=[(RESERVE, 1_000_000), (other, 5), (RESERVE, 250_000)],
    )
    obligation = decode_obligation("obl", data)
    assert obligation.owner == MERCHANT
    assert obligation.lending_market == MARKET
    assert obligation.deposits == {RESERVE: 1_250_000, other: 5}


def test_obligation_address_is_seed_derived():
    program = SOLEND_PROGRAM_IDS["devnet"]
    expected = Pubkey.create_with_seed(
        Pubkey.from_string(MERCHANT), MARKET[:32], Pubkey.from_string(program)
    )
    assert obligation_address(MERCHANT, MARKET, program) == str(expected)
