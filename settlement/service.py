"""Settlement pipeline: validate, verify on chain, admit once, sweep.

Every path returns a :class:`SettlementOutcome`; nothing raises to the
caller. A duplicate is an answer (``OK_DUPLICATE``), not an error.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from common.audit import log_event
from common.errors import ConfigMissing
from common.settings import Settings
from rebalancer.controller import RebalanceController, RebalanceResult
from treasury_observability.metrics import settlements_total

from .idempotency import IdempotencyGuard
from .schemas import SettlementClaim, SettlementCode
from .verifier import SettlementVerifier

__all__ = ["SettlementOutcome", "SettlementService"]

_LOG = logging.getLogger(__name__)


@dataclass
class SettlementOutcome:
    code: SettlementCode
    signature: Optional[str] = None
    reason: Optional[str] = None
    delta: Optional[int] = None
    rebalance: Optional[RebalanceResult] = None

    @property
    def ok(self) -> bool:
        return self.code in (SettlementCode.OK, SettlementCode.OK_DUPLICATE)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "ok": self.ok,
            "code": self.code.value,
            "txSignature": self.signature,
        }
        if self.reason:
            body["reason"] = self.reason
        if self.delta is not None:
            body["creditedBaseUnits"] = str(self.delta)
        if self.rebalance is not None:
            body["rebalance"] = self.rebalance.to_dict()
        return body


class SettlementService:
    def __init__(
        self,
        settings: Settings,
        verifier: SettlementVerifier,
        guard: IdempotencyGuard,
        *,
        rebalancer: Optional[RebalanceController] = None,
        audit_engine: Optional[Engine] = None,
    ):
        self._settings = settings
        self._verifier = verifier
        self._guard = guard
        self._rebalancer = rebalancer
        self._audit_engine = audit_engine

    async def process(self, claim: SettlementClaim) -> SettlementOutcome:
        outcome = await self._process(claim)
        settlements_total.labels(outcome=outcome.code.value).inc()
        return outcome

    async def _process(self, claim: SettlementClaim) -> SettlementOutcome:
        signature = claim.tx_signature
        try:
            self._settings.require("usdc_mint", "merchant_address")
        except ConfigMissing as exc:
            _LOG.error("settlement cannot be verified: %s", exc, extra={"signature": signature})
            return SettlementOutcome(SettlementCode.CONFIG_MISSING, signature, reason=str(exc))

        expected = (self._settings.network, self._settings.usdc_mint, self._settings.merchant_address)
        rejected = self._verifier.check_claim(claim, *expected)
        if rejected is not None:
            _LOG.warning(
                "settlement rejected: %s %s",
                rejected.code.value,
                rejected.reason,
                extra={"signature": signature},
            )
            return SettlementOutcome(rejected.code, signature, reason=rejected.reason)

        # cheap early answer; admit() below is still the only decision point
        if self._guard.is_processed(signature):
            return SettlementOutcome(SettlementCode.OK_DUPLICATE, signature)

        result = await self._verifier.verify(claim, *expected)
        if not result:
            return SettlementOutcome(result.code, signature, reason=result.reason, delta=result.delta)

        if not self._guard.admit(signature, claim):
            return SettlementOutcome(SettlementCode.OK_DUPLICATE, signature, delta=result.delta)

        _LOG.info(
            "settlement credited %d base units",
            result.delta,
            extra={"signature": signature, "network": claim.network},
        )
        self._audit(claim, result.delta)

        rebalance = None
        if self._rebalancer is not None:
            rebalance = await self._rebalancer.trigger("settlement")
        return SettlementOutcome(SettlementCode.OK, signature, delta=result.delta, rebalance=rebalance)

    def _audit(self, claim: SettlementClaim, delta: int) -> None:
        if self._audit_engine is None:
            return
        with Session(self._audit_engine) as session:
            log_event(
                session=session,
                service="settlement",
                action="SETTLEMENT_CREDITED",
                actor=claim.payer,
                details={
                    "txSignature": claim.tx_signature,
                    "network": claim.network,
                    "mint": claim.mint,
                    "claimedBaseUnits": claim.amount,
                    "creditedBaseUnits": str(delta),
                    "resource": claim.resource,
                    "settledAt": claim.settled_at.isoformat() if claim.settled_at else None,
                },
            )
