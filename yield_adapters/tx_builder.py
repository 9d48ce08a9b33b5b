"""Client for the transaction-building service.

Assembling Solend instructions (oracle refresh, reserve refresh, deposit /
redeem, ATA creation) is delegated to a builder service that returns
unsigned, serialized versioned transactions in submission order. The adapter
only signs, submits and confirms them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol

import httpx

from integrations.solana.backoff import BackoffPolicy, retry_rate_limited
from integrations.solana.layouts import ReserveSnapshot

__all__ = ["TransactionBuilder", "HttpTransactionBuilder"]

_LOG = logging.getLogger(__name__)


class TransactionBuilder(Protocol):
    async def build(
        self,
        action: str,
        *,
        reserve: ReserveSnapshot,
        program_id: str,
        owner: str,
        amount_base_units: int,
        blockhash: str,
    ) -> List[str]:
        """Return base64 unsigned transactions, oracle refreshes first."""
        ...


class HttpTransactionBuilder:
    def __init__(
        self,
        base_url: str,
        *,
        network: str,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._network = network
        self._policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        resp = await self._client.post(path, json=payload)
        resp.raise_for_status()
        return resp

    async def build(
        self,
        action: str,
        *,
        reserve: ReserveSnapshot,
        program_id: str,
        owner: str,
        amount_base_units: int,
        blockhash: str,
    ) -> List[str]:
        payload = {
            "network": self._network,
            "programId": program_id,
            "lendingMarket": reserve.lending_market,
            "reserve": reserve.address,
            "mint": reserve.liquidity_mint,
            "pythOracle": reserve.pyth_oracle,
            "switchboardOracle": reserve.switchboard_oracle,
            "owner": owner,
            # base units travel as a string so no JSON number precision is lost
            "amount": str(amount_base_units),
            "recentBlockhash": blockhash,
        }
        resp = await retry_rate_limited(
            lambda: self._post(f"/solend/{action}", payload),
            label=f"txbuilder.{action}",
            policy=self._policy,
            sleep=self._sleep,
        )
        txs = resp.json().get("transactions") or []
        _LOG.info("builder returned %d transaction(s) for %s", len(txs), action)
        return list(txs)

    async def aclose(self) -> None:
        await self._client.aclose()
