"""Solend yield adapter.

Reserve and obligation state is read fresh from chain for every call (rates
and exchange rate move every slot). Deposits and withdrawals may need several
transactions (oracle refresh, then the lending instruction); each one is
signed with the merchant key, submitted, and confirmed before the next is
sent. Nothing is rolled back if a later step fails.
"""

from __future__ import annotations

import base64
import logging
from decimal import Decimal
from typing import List, Optional, Type

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from common.errors import AdapterError, DepositFailed, WithdrawFailed
from integrations.solana.layouts import (ReserveSnapshot, decode_obligation,
                                         decode_reserve,
                                         obligation_address)
from integrations.solana.reader import ChainReader

from .base import StepCallback, YieldAdapter, from_base_units, to_base_units
from .tx_builder import TransactionBuilder

__all__ = ["SolendAdapter"]

_LOG = logging.getLogger(__name__)

# Offsets of lending_market and liquidity mint inside a reserve account.
_RESERVE_MARKET_OFFSET = 10
_RESERVE_MINT_OFFSET = 42
_RESERVE_ACCOUNT_SIZE = 619


class SolendAdapter(YieldAdapter):
    name = "solend"

    def __init__(
        self,
        reader: ChainReader,
        keypair: Keypair,
        builder: TransactionBuilder,
        *,
        usdc_mint: str,
        program_id: str,
        lending_market: str,
        reserve_address: Optional[str] = None,
        confirm_timeout: float = 60.0,
    ):
        self._reader = reader
        self._keypair = keypair
        self._builder = builder
        self.usdc_mint = usdc_mint
        self.program_id = program_id
        self.lending_market = lending_market
        self.reserve_address = reserve_address
        self.confirm_timeout = confirm_timeout
        self.owner = str(keypair.pubkey())
        _LOG.info(
            "solend adapter ready market=%s program=%s owner=%s",
            lending_market,
            program_id,
            self.owner,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def _find_reserve_address(self) -> str:
        accounts = await self._reader.find_program_accounts(
            self.program_id,
            [
                {"dataSize": _RESERVE_ACCOUNT_SIZE},
                {"memcmp": {"offset": _RESERVE_MARKET_OFFSET, "bytes": self.lending_market}},
                {"memcmp": {"offset": _RESERVE_MINT_OFFSET, "bytes": self.usdc_mint}},
            ],
        )
        if not accounts:
            raise LookupError(
                f"no reserve for mint {self.usdc_mint} in pool {self.lending_market}"
            )
        return accounts[0]

    async def load_reserve(self) -> ReserveSnapshot:
        if self.reserve_address is None:
            self.reserve_address = await self._find_reserve_address()
            _LOG.info("resolved USDC reserve %s", self.reserve_address)
        data = await self._reader.get_account_data(self.reserve_address)
        if data is None:
            raise LookupError(f"reserve account {self.reserve_address} not found")
        reserve = decode_reserve(self.reserve_address, data)
        if reserve.liquidity_mint != self.usdc_mint:
            raise LookupError(
                f"reserve {reserve.address} holds {reserve.liquidity_mint}, expected {self.usdc_mint}"
            )
        return reserve

    async def get_apy(self) -> float:
        try:
            reserve = await self.load_reserve()
            apy = float(reserve.supply_interest * 100)
        except Exception:
            _LOG.exception("failed to read Solend supply APY; reporting 0")
            return 0.0
        _LOG.info("solend USDC supply APY %.2f%%", apy)
        return apy

    async def get_position(self) -> Decimal:
        reserve = await self.load_reserve()
        address = obligation_address(self.owner, self.lending_market, self.program_id)
        data = await self._reader.get_account_data(address)
        if data is None:
            return Decimal(0)
        obligation = decode_obligation(address, data)
        ctokens = obligation.deposits.get(reserve.address, 0)
        if ctokens == 0:
            return Decimal(0)
        return from_base_units(Decimal(ctokens) * reserve.exchange_rate, reserve.decimals)

    # ------------------------------------------------------------------
    # Money movement
    # ------------------------------------------------------------------
    async def deposit(self, amount_usdc: Decimal, *, on_step: Optional[StepCallback] = None) -> str:
        return await self._execute("deposit", amount_usdc, DepositFailed, on_step)

    async def withdraw(self, amount_usdc: Decimal, *, on_step: Optional[StepCallback] = None) -> str:
        return await self._execute("withdraw", amount_usdc, WithdrawFailed, on_step)

    async def _execute(
        self,
        action: str,
        amount_usdc: Decimal,
        failure: Type[AdapterError],
        on_step: Optional[StepCallback],
    ) -> str:
        try:
            reserve = await self.load_reserve()
            raw_amount = to_base_units(amount_usdc, reserve.decimals)
            if raw_amount <= 0:
                raise ValueError(f"{amount_usdc} USDC is below one base unit")
            _LOG.info(
                "building %s: %s USDC = %d base units, reserve=%s",
                action,
                amount_usdc,
                raw_amount,
                reserve.address,
            )
            blockhash = await self._reader.get_latest_blockhash()
            txs = await self._builder.build(
                action,
                reserve=reserve,
                program_id=self.program_id,
                owner=self.owner,
                amount_base_units=raw_amount,
                blockhash=blockhash,
            )
            if not txs:
                raise ValueError("transaction builder returned no transactions")
        except AdapterError:
            raise
        except Exception as exc:
            _LOG.error("%s preparation failed: %s", action, exc)
            raise failure(exc) from exc

        return await self._submit_all(txs, failure, on_step)

    async def _submit_all(
        self,
        txs: List[str],
        failure: Type[AdapterError],
        on_step: Optional[StepCallback],
    ) -> str:
        completed: List[str] = []
        total = len(txs)
        for index, encoded in enumerate(txs):
            try:
                unsigned = VersionedTransaction.from_bytes(base64.b64decode(encoded))
                signed = VersionedTransaction(unsigned.message, [self._keypair])
                signature = await self._reader.rpc.send_transaction(
                    base64.b64encode(bytes(signed)).decode()
                )
                await self._reader.wait_for_confirmation(signature, timeout=self.confirm_timeout)
            except Exception as exc:
                _LOG.error(
                    "step %d/%d failed after %d confirmed: %s",
                    index + 1,
                    total,
                    len(completed),
                    exc,
                )
                raise failure(exc, completed_steps=completed, failed_step=index) from exc
            completed.append(signature)
            _LOG.info("step %d/%d confirmed %s", index + 1, total, signature)
            if on_step is not None:
                on_step(index, total, signature)
        return completed[-1]

    async def aclose(self) -> None:
        close = getattr(self._builder, "aclose", None)
        if close is not None:
            await close()
