"""Verify a claimed settlement against finalized chain state.

The webhook body is untrusted. A claim is only accepted when the finalized
transaction it names actually credited ``payTo`` with at least ``amount``
base units of the expected mint.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from common.errors import TreasuryError
from integrations.solana import MIN_SIGNATURE_LENGTH
from integrations.solana.reader import ChainReader

from .schemas import SettlementClaim, SettlementCode

__all__ = ["SettlementVerifier", "VerificationResult", "credited_delta"]

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    code: SettlementCode
    delta: Optional[int] = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


def _raw_amount(entry: Dict[str, Any]) -> int:
    return int(entry["uiTokenAmount"]["amount"])


def credited_delta(meta: Dict[str, Any], mint: str, owner: str) -> int:
    """Net change in base units across every token account of *owner* for *mint*.

    Post-state entries select the accounts; the pre-state counterpart is
    found by ``accountIndex``. Accounts created by the transaction have no
    pre-state entry and start from zero.
    """
    pre_by_index = {
        entry["accountIndex"]: entry for entry in meta.get("preTokenBalances") or []
    }
    delta = 0
    for post in meta.get("postTokenBalances") or []:
        if post.get("mint") != mint or post.get("owner") != owner:
            continue
        pre = pre_by_index.get(post["accountIndex"])
        delta += _raw_amount(post) - (_raw_amount(pre) if pre is not None else 0)
    return delta


class SettlementVerifier:
    def __init__(self, reader: ChainReader):
        self._reader = reader

    @staticmethod
    def check_claim(
        claim: SettlementClaim,
        expected_network: str,
        expected_mint: str,
        expected_recipient: str,
    ) -> Optional[VerificationResult]:
        """Field-level checks that need no chain access. ``None`` means pass."""
        if len(claim.tx_signature) < MIN_SIGNATURE_LENGTH:
            return VerificationResult(
                False, SettlementCode.REJECTED_INVALID_PAYLOAD, reason="signature too short"
            )
        mismatches = (
            (claim.network, expected_network, SettlementCode.REJECTED_NETWORK_MISMATCH),
            (claim.mint, expected_mint, SettlementCode.REJECTED_MINT_MISMATCH),
            (claim.pay_to, expected_recipient, SettlementCode.REJECTED_RECIPIENT_MISMATCH),
        )
        for got, expected, code in mismatches:
            if got != expected:
                return VerificationResult(
                    False, code, reason=f"expected {expected}, got {got}"
                )
        return None

    async def verify(
        self,
        claim: SettlementClaim,
        expected_network: str,
        expected_mint: str,
        expected_recipient: str,
    ) -> VerificationResult:
        rejected = self.check_claim(claim, expected_network, expected_mint, expected_recipient)
        if rejected is not None:
            return rejected

        signature = claim.tx_signature
        try:
            tx = await self._reader.get_transaction(signature)
        except (TreasuryError, httpx.HTTPError) as exc:
            _LOG.warning(
                "could not fetch settlement transaction: %s",
                exc,
                extra={"signature": signature},
            )
            return self._failed(f"transaction lookup failed: {exc}")

        if not tx or not tx.get("meta"):
            _LOG.info("settlement transaction not found or not finalized", extra={"signature": signature})
            return self._failed("transaction not found or not finalized")

        meta = tx["meta"]
        if meta.get("err") is not None:
            return self._failed(f"transaction failed on chain: {meta['err']}")

        delta = credited_delta(meta, expected_mint, expected_recipient)
        claimed = claim.amount_base_units
        if delta < claimed:
            _LOG.warning(
                "settlement credited %d base units, claimed %d",
                delta,
                claimed,
                extra={"signature": signature},
            )
            return self._failed(f"credited {delta} < claimed {claimed}", delta=delta)

        _LOG.info("settlement verified delta=%d", delta, extra={"signature": signature})
        return VerificationResult(True, SettlementCode.OK, delta=delta)

    @staticmethod
    def _failed(reason: str, *, delta: Optional[int] = None) -> VerificationResult:
        return VerificationResult(
            False, SettlementCode.REJECTED_ONCHAIN_VERIFICATION_FAILED, delta=delta, reason=reason
        )
