"""Byte builders for Solend reserve / obligation accounts used in tests."""
from typing import Optional

from solders.pubkey import Pubkey

from integrations.solana.layouts import (OBLIGATION_COLLATERAL,
                                         OBLIGATION_HEADER, RESERVE_LAYOUT,
                                         WAD)

RESERVE_ACCOUNT_SIZE = 619


def _pk(address: str) -> bytes:
    return bytes(Pubkey.from_string(address))


def _u128(value: int) -> bytes:
    return value.to_bytes(16, "little")


def pack_reserve(
    *,
    lending_market: str,
    mint: str,
    collateral_mint: str,
    decimals: int = 6,
    available: int = 600_000_000_000,
    borrowed: int = 400_000_000_000,
    collateral_supply: int = 800_000_000_000,
    optimal_util: int = 80,
    min_rate: int = 0,
    optimal_rate: int = 8,
    max_rate: int = 100,
    take_rate: int = 0,
    pyth_oracle: Optional[str] = None,
    switchboard_oracle: Optional[str] = None,
) -> bytes:
    blank = bytes(32)
    pyth = _pk(pyth_oracle) if pyth_oracle else blank
    switchboard = _pk(switchboard_oracle) if switchboard_oracle else blank
    data = RESERVE_LAYOUT.pack(
        1, 0, 0, _pk(lending_market),
        _pk(mint), decimals, blank, pyth, switchboard, available,
        _u128(borrowed * WAD), _u128(WAD), _u128(WAD),
        _pk(collateral_mint), collateral_supply, blank,
        optimal_util, 75, 5, 80, min_rate, optimal_rate, max_rate,
        0, 0, 20, 0, 0, blank, 0, take_rate,
        _u128(0),
    )
    return data + bytes(RESERVE_ACCOUNT_SIZE - len(data))


def pack_obligation(*, lending_market: str, owner: str, deposits) -> bytes:
    """*deposits* is a list of ``(reserve address, ctoken amount)``."""
    header = OBLIGATION_HEADER.pack(
        1, 0, 0, _pk(lending_market), _pk(owner),
        bytes(16), bytes(16), bytes(16), bytes(16), bytes(64),
        len(deposits), 0,
    )
    body = b"".join(
        OBLIGATION_COLLATERAL.pack(_pk(reserve), amount, bytes(16), bytes(32))
        for reserve, amount in deposits
    )
    return header + body + bytes(1300 - len(header) - len(body))
