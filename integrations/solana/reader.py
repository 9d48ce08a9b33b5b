"""Read-only chain queries used by the verifier, rebalancer and adapters."""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

from common.errors import ConfirmationTimeout, RPCError

from .rpc import SolanaRPC

__all__ = ["ChainReader", "TokenHolding"]

_LOG = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


@dataclass(frozen=True)
class TokenHolding:
    """Aggregate balance of one mint across every token account of an owner."""

    owner: str
    mint: str
    raw_amount: int
    decimals: int
    accounts: int

    @property
    def amount(self) -> Decimal:
        if self.accounts == 0:
            return Decimal(0)
        return Decimal(self.raw_amount).scaleb(-self.decimals)


class ChainReader:
    def __init__(
        self,
        rpc: SolanaRPC,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rpc = rpc
        self._sleep = sleep
        self._clock = clock

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Finalized transaction with parsed token balances, or ``None`` if unknown yet."""
        return await self.rpc.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": "finalized",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def get_token_holding(self, owner: str, mint: str) -> TokenHolding:
        result = await self.rpc.call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": "confirmed"}],
        )
        raw = 0
        decimals = 0
        count = 0
        for entry in (result or {}).get("value", []):
            info = entry["account"]["data"]["parsed"]["info"]
            token_amount = info["tokenAmount"]
            raw += int(token_amount["amount"])
            decimals = int(token_amount["decimals"])
            count += 1
        return TokenHolding(owner=owner, mint=mint, raw_amount=raw, decimals=decimals, accounts=count)

    async def get_account_data(self, address: str) -> Optional[bytes]:
        result = await self.rpc.call(
            "getAccountInfo", [address, {"encoding": "base64", "commitment": "confirmed"}]
        )
        value = (result or {}).get("value")
        if value is None:
            return None
        data, _encoding = value["data"]
        return base64.b64decode(data)

    async def get_latest_blockhash(self) -> str:
        result = await self.rpc.call("getLatestBlockhash", [{"commitment": "finalized"}])
        return result["value"]["blockhash"]

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        result = await self.rpc.call(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": False}]
        )
        statuses = (result or {}).get("value") or [None]
        return statuses[0]

    async def wait_for_confirmation(
        self,
        signature: str,
        *,
        timeout: float = 60.0,
        commitment: str = "confirmed",
        poll_interval: float = 1.0,
    ) -> Dict[str, Any]:
        """Poll until *signature* reaches *commitment*.

        Raises :class:`ConfirmationTimeout` after *timeout* seconds and
        :class:`RPCError` when the transaction landed with an execution error.
        """
        target = _COMMITMENT_RANK[commitment]
        deadline = self._clock() + timeout
        while True:
            status = await self.get_signature_status(signature)
            if status:
                if status.get("err"):
                    raise RPCError("confirmTransaction", f"{signature} failed: {status['err']}")
                reached = status.get("confirmationStatus") or "processed"
                if _COMMITMENT_RANK.get(reached, 0) >= target:
                    return status
            if self._clock() >= deadline:
                raise ConfirmationTimeout(signature, timeout)
            await self._sleep(poll_interval)

    async def find_program_accounts(self, program_id: str, filters: list) -> list[str]:
        """Addresses of accounts owned by *program_id* matching *filters* (no data)."""
        result = await self.rpc.call(
            "getProgramAccounts",
            [
                program_id,
                {"encoding": "base64", "dataSlice": {"offset": 0, "length": 0}, "filters": filters},
            ],
        )
        return [entry["pubkey"] for entry in result or []]
