"""Yield protocol adapters and start-up selection."""
from __future__ import annotations

from common.errors import ConfigInvalid
from common.settings import Settings
from integrations.solana import (SOLEND_MAIN_POOLS, SOLEND_PROGRAM_IDS,
                                 SOLEND_USDC_RESERVES)
from integrations.solana.keys import load_keypair
from integrations.solana.reader import ChainReader

from .base import YieldAdapter
from .mock import MockYieldAdapter
from .solend import SolendAdapter
from .tx_builder import HttpTransactionBuilder

__all__ = ["YieldAdapter", "MockYieldAdapter", "SolendAdapter", "build_adapter"]


def build_adapter(settings: Settings, reader: ChainReader) -> YieldAdapter:
    """Instantiate the adapter named by ``settings.yield_adapter``.

    Raises :class:`common.errors.ConfigMissing` when the chosen variant lacks
    required configuration.
    """
    if settings.yield_adapter == "mock":
        return MockYieldAdapter()

    settings.require("merchant_secret", "usdc_mint", "tx_builder_url")
    keypair = load_keypair(settings.merchant_secret)
    owner = str(keypair.pubkey())
    if settings.merchant_address and settings.merchant_address != owner:
        raise ConfigInvalid(
            "MERCHANT_WALLET_ADDRESS", f"does not match signing key public key {owner}"
        )
    builder = HttpTransactionBuilder(settings.tx_builder_url, network=settings.cluster)
    return SolendAdapter(
        reader,
        keypair,
        builder,
        usdc_mint=settings.usdc_mint,
        program_id=settings.solend_program_id or SOLEND_PROGRAM_IDS[settings.network],
        lending_market=settings.solend_lending_market or SOLEND_MAIN_POOLS[settings.network],
        reserve_address=settings.solend_reserve or SOLEND_USDC_RESERVES.get(settings.network),
        confirm_timeout=settings.confirm_timeout_sec,
    )
