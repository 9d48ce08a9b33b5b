"""Solana chain access: JSON-RPC transport, reads, account layouts."""
from typing import Dict, Final

# Solend lending program and main pool per network. Overridable through
# SOLEND_PROGRAM_ID / SOLEND_LENDING_MARKET / SOLEND_RESERVE_ADDRESS.
SOLEND_PROGRAM_IDS: Final[Dict[str, str]] = {
    "mainnet": "So1endDq2YkqhipRh3WViPa8hdiSpxWy6z3Z6tMCpAo",
    "devnet": "ALend7Ketfx5bxh6ghsCDXAoDrhvEmsXT3cynB6aPLgx",
    "testnet": "ALend7Ketfx5bxh6ghsCDXAoDrhvEmsXT3cynB6aPLgx",
}

SOLEND_MAIN_POOLS: Final[Dict[str, str]] = {
    "mainnet": "4UpD2fh7xH3VP9QQaXtsS1YY3bxzWhtfpks7FatyKvdY",
    "devnet": "GvjoVKNjBvQcFaSKUW1gTE7DxhSpjHbE69umVR5nPuQp",
    "testnet": "GvjoVKNjBvQcFaSKUW1gTE7DxhSpjHbE69umVR5nPuQp",
}

# USDC reserve of the main pool.
SOLEND_USDC_RESERVES: Final[Dict[str, str]] = {
    "mainnet": "BgxfHJDzm44T7XG68MYKx7YisTjZu73tVovyZSjJMpmw",
}

# Solana signatures are 64 bytes, i.e. 87-88 base58 characters. Settlement
# payloads are only held to the looser 64-character floor.
MIN_SIGNATURE_LENGTH: Final[int] = 64
