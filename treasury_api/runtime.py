"""Object graph for one treasury process.

The yield adapter is built on first use: a process started without, say, a
merchant signing key still serves reads and settlements, and only the
operations that need the key report ``CONFIG_MISSING``.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

import httpx
from sqlalchemy.engine import Engine

from common.datetime import utcnow
from common.settings import Settings, load_settings
from integrations.solana.reader import ChainReader
from integrations.solana.rpc import SolanaRPC
from rebalancer import RebalanceConfig, RebalanceController, RebalanceScheduler
from settlement import SettlementService, SettlementVerifier, SqlIdempotencyGuard
from treasury_ledger import TransactionLedger
from treasury_ledger.db import init_db, make_engine
from treasury_ledger.executor import LedgeredExecutor
from yield_adapters import SolendAdapter, YieldAdapter, build_adapter

from .service import TreasuryService

__all__ = ["TreasuryRuntime"]

_LOG = logging.getLogger(__name__)


class TreasuryRuntime:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        engine: Optional[Engine] = None,
        reader: Optional[ChainReader] = None,
        adapter: Optional[YieldAdapter] = None,
        rpc_transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or load_settings()
        self.engine = engine or make_engine(self.settings.database_url)
        init_db(self.engine)

        self._rpc_transport = rpc_transport
        self._rpc: Optional[SolanaRPC] = None
        self._reader = reader
        self._adapter = adapter

        self.ledger = TransactionLedger(self.engine, clock=clock)
        self.executor = LedgeredExecutor(self.ledger, audit_engine=self.engine)
        self.controller = RebalanceController(
            self.ledger,
            self.get_adapter,
            self.read_cash,
            config=RebalanceConfig.from_settings(self.settings),
            executor=self.executor,
            merchant_address=self.settings.merchant_address,
            clock=clock,
        )
        self.scheduler = RebalanceScheduler(self.controller, self.settings.rebalance_interval_sec)
        self.settlements = SettlementService(
            self.settings,
            SettlementVerifier(self.reader),
            SqlIdempotencyGuard(self.engine),
            rebalancer=self.controller,
            audit_engine=self.engine,
        )
        self.treasury = TreasuryService(self)

    # ------------------------------------------------------------------
    @property
    def reader(self) -> ChainReader:
        if self._reader is None:
            self._rpc = SolanaRPC(self.settings.rpc_url, transport=self._rpc_transport)
            self._reader = ChainReader(self._rpc)
            _LOG.info("chain reader on %s (%s)", self.settings.network, self.settings.rpc_url)
        return self._reader

    def get_adapter(self) -> YieldAdapter:
        """Adapter chosen by configuration; raises ConfigMissing when it cannot be built."""
        if self._adapter is None:
            self._adapter = build_adapter(self.settings, self.reader)
            _LOG.info("yield adapter %s selected", self._adapter.name)
        return self._adapter

    async def read_cash(self) -> Decimal:
        """Idle USDC across every token account of the merchant wallet."""
        self.settings.require("merchant_address", "usdc_mint")
        holding = await self.reader.get_token_holding(
            self.settings.merchant_address, self.settings.usdc_mint
        )
        return holding.amount

    async def start(self) -> None:
        self.controller.seed_from_ledger()
        if self.settings.rebalancer_enabled:
            self.scheduler.start()

    async def aclose(self) -> None:
        await self.scheduler.stop()
        if isinstance(self._adapter, SolendAdapter):
            await self._adapter.aclose()
        if self._rpc is not None:
            await self._rpc.aclose()
