"""Binary layouts of the Solend accounts the treasury reads.

Only the leading fields needed for rates, exchange rate and the merchant's
deposit are decoded; trailing padding and later-version fields are ignored.
All integers are little-endian; ``u128`` values are WAD-scaled (1e18).
"""
from __future__ import annotations

import struct
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from typing import Dict

from solders.pubkey import Pubkey

__all__ = [
    "WAD",
    "SLOTS_PER_YEAR",
    "RESERVE_LAYOUT",
    "OBLIGATION_HEADER",
    "OBLIGATION_COLLATERAL",
    "ReserveSnapshot",
    "ObligationSnapshot",
    "decode_reserve",
    "decode_obligation",
    "obligation_address",
]

WAD = 10 ** 18
SLOTS_PER_YEAR = 63_072_000

# version, last_update(slot, stale), lending_market,
# liquidity(mint, decimals, supply, pyth, switchboard, available, borrowed_wads,
#           cumulative_borrow_rate_wads, market_price),
# collateral(mint, mint_total_supply, supply),
# config(optimal_util, ltv, liq_bonus, liq_threshold, min_rate, optimal_rate,
#        max_rate, borrow_fee_wad, flash_fee_wad, host_fee_pct, deposit_limit,
#        borrow_limit, fee_receiver, protocol_liquidation_fee, protocol_take_rate),
# accumulated_protocol_fees_wads
RESERVE_LAYOUT = struct.Struct(
    "<B QB 32s"
    "32s B 32s 32s 32s Q 16s 16s 16s"
    "32s Q 32s"
    "BBBBBBB QQ B QQ 32s BB"
    "16s"
)

# version, last_update, lending_market, owner, deposited_value,
# borrowed_value, allowed_borrow_value, unhealthy_borrow_value, padding,
# deposits_len, borrows_len
OBLIGATION_HEADER = struct.Struct("<B QB 32s 32s 16s 16s 16s 16s 64s B B")

# deposit_reserve, deposited_amount, market_value, padding
OBLIGATION_COLLATERAL = struct.Struct("<32s Q 16s 32s")


def _u128(raw: bytes) -> int:
    return int.from_bytes(raw, "little")


def _key(raw: bytes) -> str:
    return str(Pubkey.from_bytes(raw))


@dataclass(frozen=True)
class ReserveSnapshot:
    """Point-in-time view of a lending reserve. Never cached across operations."""

    address: str
    lending_market: str
    liquidity_mint: str
    decimals: int
    available_amount: int
    borrowed_amount_wads: int
    collateral_mint: str
    collateral_mint_supply: int
    optimal_utilization_rate: int
    min_borrow_rate: int
    optimal_borrow_rate: int
    max_borrow_rate: int
    protocol_take_rate: int
    accumulated_protocol_fees_wads: int
    pyth_oracle: str = ""
    switchboard_oracle: str = ""

    @property
    def total_borrow(self) -> Decimal:
        return Decimal(self.borrowed_amount_wads) / WAD

    @property
    def total_supply(self) -> Decimal:
        """Underlying liquidity owned by depositors, in base units."""
        fees = Decimal(self.accumulated_protocol_fees_wads) / WAD
        return Decimal(self.available_amount) + self.total_borrow - fees

    @property
    def utilization(self) -> Decimal:
        supply = self.total_supply
        if supply <= 0:
            return Decimal(0)
        return self.total_borrow / supply

    @property
    def borrow_apr(self) -> Decimal:
        util = self.utilization
        optimal = Decimal(self.optimal_utilization_rate) / 100
        min_rate = Decimal(self.min_borrow_rate) / 100
        optimal_rate = Decimal(self.optimal_borrow_rate) / 100
        max_rate = Decimal(self.max_borrow_rate) / 100
        if optimal == 1 or util <= optimal:
            if optimal == 0:
                return min_rate
            return min_rate + (util / optimal) * (optimal_rate - min_rate)
        return optimal_rate + ((util - optimal) / (1 - optimal)) * (max_rate - optimal_rate)

    @property
    def supply_apr(self) -> Decimal:
        take = Decimal(self.protocol_take_rate) / 100
        return self.utilization * self.borrow_apr * (1 - take)

    @property
    def supply_interest(self) -> Decimal:
        """Supply APY as a fraction (0.0484 == 4.84 %), compounded per slot."""
        with localcontext() as ctx:
            ctx.prec = 40
            per_slot = self.supply_apr / SLOTS_PER_YEAR
            return (1 + per_slot) ** SLOTS_PER_YEAR - 1

    @property
    def exchange_rate(self) -> Decimal:
        """Underlying base units redeemable per collateral (cToken) base unit."""
        if self.collateral_mint_supply == 0:
            return Decimal(1)
        return self.total_supply / Decimal(self.collateral_mint_supply)


@dataclass(frozen=True)
class ObligationSnapshot:
    address: str
    lending_market: str
    owner: str
    # reserve address -> deposited collateral (cToken base units)
    deposits: Dict[str, int] = field(default_factory=dict)


def decode_reserve(address: str, data: bytes) -> ReserveSnapshot:
    if len(data) < RESERVE_LAYOUT.size:
        raise ValueError(f"reserve {address}: {len(data)} bytes, need {RESERVE_LAYOUT.size}")
    (
        _version, _slot, _stale, lending_market,
        liq_mint, decimals, _liq_supply, pyth, switchboard, available,
        borrowed_wads, _cumulative_rate, _market_price,
        col_mint, col_supply, _col_supply_key,
        optimal_util, _ltv, _liq_bonus, _liq_threshold, min_rate, optimal_rate,
        max_rate, _borrow_fee, _flash_fee, _host_fee, _deposit_limit,
        _borrow_limit, _fee_receiver, _protocol_liq_fee, take_rate,
        accumulated_fees,
    ) = RESERVE_LAYOUT.unpack_from(data)
    return ReserveSnapshot(
        address=address,
        lending_market=_key(lending_market),
        liquidity_mint=_key(liq_mint),
        decimals=decimals,
        available_amount=available,
        borrowed_amount_wads=_u128(borrowed_wads),
        collateral_mint=_key(col_mint),
        collateral_mint_supply=col_supply,
        optimal_utilization_rate=optimal_util,
        min_borrow_rate=min_rate,
        optimal_borrow_rate=optimal_rate,
        max_borrow_rate=max_rate,
        protocol_take_rate=take_rate,
        accumulated_protocol_fees_wads=_u128(accumulated_fees),
        pyth_oracle=_key(pyth),
        switchboard_oracle=_key(switchboard),
    )


def decode_obligation(address: str, data: bytes) -> ObligationSnapshot:
    if len(data) < OBLIGATION_HEADER.size:
        raise ValueError(f"obligation {address}: {len(data)} bytes, need {OBLIGATION_HEADER.size}")
    (
        _version, _slot, _stale, lending_market, owner,
        _deposited_value, _borrowed_value, _allowed, _unhealthy, _padding,
        deposits_len, _borrows_len,
    ) = OBLIGATION_HEADER.unpack_from(data)

    deposits: Dict[str, int] = {}
    offset = OBLIGATION_HEADER.size
    for _ in range(deposits_len):
        reserve, amount, _value, _pad = OBLIGATION_COLLATERAL.unpack_from(data, offset)
        key = _key(reserve)
        deposits[key] = deposits.get(key, 0) + amount
        offset += OBLIGATION_COLLATERAL.size
    return ObligationSnapshot(
        address=address,
        lending_market=_key(lending_market),
        owner=_key(owner),
        deposits=deposits,
    )


def obligation_address(owner: str, lending_market: str, program_id: str) -> str:
    """Solend derives the default obligation with seed = first 32 chars of the market."""
    return str(
        Pubkey.create_with_seed(
            Pubkey.from_string(owner),
            lending_market[:32],
            Pubkey.from_string(program_id),
        )
    )
