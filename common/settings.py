"""Runtime configuration for the treasury autopilot.

Values come from the process environment (optionally seeded from a ``.env``
file) and, for credentials, from :mod:`common.secrets`. Nothing here fails at
import time: a missing value only surfaces as :class:`ConfigMissing` when an
operation that needs it calls :meth:`Settings.require`.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigMissing
from .secrets import get_secret

NETWORKS = ("devnet", "testnet", "mainnet")

# Cluster names as the RPC nodes and explorers know them.
CLUSTERS: Dict[str, str] = {
    "devnet": "devnet",
    "testnet": "testnet",
    "mainnet": "mainnet-beta",
}

DEFAULT_RPC_URLS: Dict[str, str] = {
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet": "https://api.mainnet-beta.solana.com",
}

ADAPTERS = ("mock", "solend")


def _decimal_env(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    network: str = "devnet"
    usdc_mint: Optional[str] = None
    merchant_address: Optional[str] = None
    merchant_secret: Optional[str] = field(default=None, repr=False)

    min_buffer_usdc: Decimal = Decimal("10")
    min_deposit_usdc: Decimal = Decimal("1")
    cooldown_sec: int = 180
    rebalance_interval_sec: int = 60
    rebalancer_enabled: bool = True

    yield_adapter: str = "mock"
    rpc_urls: Dict[str, str] = field(default_factory=dict)

    solend_program_id: Optional[str] = None
    solend_lending_market: Optional[str] = None
    solend_reserve: Optional[str] = None
    tx_builder_url: Optional[str] = None

    confirm_timeout_sec: float = 60.0
    database_url: str = "sqlite:///./treasury.db"

    # ------------------------------------------------------------------
    @property
    def cluster(self) -> str:
        return CLUSTERS[self.network]

    @property
    def rpc_url(self) -> str:
        return self.rpc_urls.get(self.network) or DEFAULT_RPC_URLS[self.network]

    def require(self, *names: str) -> None:
        """Raise :class:`ConfigMissing` naming every attribute in *names* that is unset."""
        missing = [n for n in names if getattr(self, n, None) in (None, "")]
        if missing:
            raise ConfigMissing(missing)


def load_settings(env_file: str | None = None) -> Settings:
    """Build :class:`Settings` from the environment."""

    load_dotenv(env_file or os.getenv("TREASURY_ENV_FILE", ".env"), override=False)

    network = os.getenv("SOLANA_NETWORK", "devnet").lower()
    if network == "mainnet-beta":
        network = "mainnet"
    if network not in NETWORKS:
        raise ValueError(f"SOLANA_NETWORK must be one of {NETWORKS}, got {network!r}")

    adapter = os.getenv("YIELD_ADAPTER", "mock").lower()
    if adapter not in ADAPTERS:
        raise ValueError(f"YIELD_ADAPTER must be one of {ADAPTERS}, got {adapter!r}")

    rpc_urls = {
        net: url
        for net in NETWORKS
        if (url := os.getenv(f"SOLANA_RPC_URL_{net.upper()}"))
    }

    return Settings(
        network=network,
        usdc_mint=os.getenv("USDC_MINT") or None,
        merchant_address=os.getenv("MERCHANT_WALLET_ADDRESS") or None,
        merchant_secret=get_secret("MERCHANT_WALLET_SECRET"),
        min_buffer_usdc=_decimal_env("REBALANCER_MIN_BUFFER_USDC", "10"),
        min_deposit_usdc=_decimal_env("REBALANCER_MIN_DEPOSIT_USDC", "1"),
        cooldown_sec=int(os.getenv("REBALANCER_COOLDOWN_SEC", "180")),
        rebalance_interval_sec=int(os.getenv("REBALANCER_INTERVAL_SEC", "60")),
        rebalancer_enabled=_bool_env("REBALANCER_ENABLED", True),
        yield_adapter=adapter,
        rpc_urls=rpc_urls,
        solend_program_id=os.getenv("SOLEND_PROGRAM_ID") or None,
        solend_lending_market=os.getenv("SOLEND_LENDING_MARKET") or None,
        solend_reserve=os.getenv("SOLEND_RESERVE_ADDRESS") or None,
        tx_builder_url=os.getenv("TX_BUILDER_URL") or None,
        confirm_timeout_sec=float(os.getenv("CONFIRM_TIMEOUT_SEC", "60")),
        database_url=os.getenv("TREASURY_DB_URL", "sqlite:///./treasury.db"),
    )
