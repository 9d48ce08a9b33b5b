"""Async JSON-RPC transport for Solana nodes.

Uses ``httpx.AsyncClient`` with:
* One POST per call, ``{"jsonrpc": "2.0", ...}`` envelope
* Rate-limit detection on HTTP 429 and JSON-RPC error code 429
* Capped exponential back-off (see :mod:`integrations.solana.backoff`) for reads
* Prometheus counters + histogram (labels: method, status)

Tests patch the transport with ``httpx.MockTransport``; no network in CI.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from common.errors import RateLimited, RPCError
from treasury_observability.metrics import (rpc_latency_seconds,
                                            rpc_rate_limited_total,
                                            rpc_requests_total)

from .backoff import BackoffPolicy, retry_rate_limited

__all__ = ["SolanaRPC"]

_LOG = logging.getLogger(__name__)


class SolanaRPC:
    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self._policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _post(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        start = time.perf_counter()
        try:
            resp = await self._client.post(self.url, json=payload)
        finally:
            rpc_latency_seconds.labels(method).observe(time.perf_counter() - start)
        rpc_requests_total.labels(method, resp.status_code).inc()

        if resp.status_code == 429:
            raise RateLimited(method, "HTTP 429 Too Many Requests", 429)
        if resp.status_code >= 400:
            raise RPCError(method, f"HTTP {resp.status_code}", resp.status_code)

        try:
            body = resp.json()
        except ValueError as exc:
            # gateway / CDN pages come back as 200 text/html
            raise RPCError(
                method, f"invalid JSON-RPC body (HTTP {resp.status_code})", resp.status_code
            ) from exc
        if not isinstance(body, dict):
            raise RPCError(method, f"invalid JSON-RPC body (HTTP {resp.status_code})", resp.status_code)
        error = body.get("error")
        if error:
            code = error.get("code")
            message = error.get("message", "unknown error")
            if code == 429 or "Too Many Requests" in message:
                raise RateLimited(method, message, code)
            raise RPCError(method, message, code)
        return body.get("result")

    async def call(self, method: str, params: Optional[List[Any]] = None, *, retry: bool = True) -> Any:
        """Invoke *method*; rate-limited reads are retried with back-off.

        ``retry=False`` is used for submissions, which must surface the first
        failure to the caller.
        """
        params = params or []
        if not retry:
            return await self._post(method, params)
        return await retry_rate_limited(
            lambda: self._post(method, params),
            label=method,
            policy=self._policy,
            sleep=self._sleep,
            on_retry=lambda *_: rpc_rate_limited_total.labels(method).inc(),
        )

    async def send_transaction(self, raw_tx: str, *, skip_preflight: bool = False) -> str:
        """Submit a base64-encoded signed transaction and return its signature."""
        return await self.call(
            "sendTransaction",
            [raw_tx, {"encoding": "base64", "skipPreflight": skip_preflight}],
            retry=False,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # context-manager sugar
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
