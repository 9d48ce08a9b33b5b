"""x402 settlement webhook.

Unauthenticated. The facilitator posts here, and trust comes from on-chain
verification rather than from the caller.
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from treasury_observability.metrics import settlements_total

from .schemas import SettlementClaim, SettlementCode
from .service import SettlementService

router = APIRouter(tags=["settlement"])

_HTTP_STATUS = {
    SettlementCode.OK: 200,
    SettlementCode.OK_DUPLICATE: 200,
    SettlementCode.REJECTED_INVALID_PAYLOAD: 422,
    SettlementCode.REJECTED_NETWORK_MISMATCH: 400,
    SettlementCode.REJECTED_MINT_MISMATCH: 400,
    SettlementCode.REJECTED_RECIPIENT_MISMATCH: 400,
    SettlementCode.REJECTED_ONCHAIN_VERIFICATION_FAILED: 422,
    SettlementCode.CONFIG_MISSING: 503,
}


def get_settlement_service(request: Request) -> SettlementService:
    return request.app.state.runtime.settlements


@router.post("/x402/settled")
async def settlement_webhook(
    payload: Dict[str, Any] = Body(...),
    service: SettlementService = Depends(get_settlement_service),
):
    try:
        claim = SettlementClaim.model_validate(payload)
    except ValidationError as exc:
        code = SettlementCode.REJECTED_INVALID_PAYLOAD
        settlements_total.labels(outcome=code.value).inc()
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=_HTTP_STATUS[code],
            content={"ok": False, "code": code.value, "errors": errors},
        )

    outcome = await service.process(claim)
    return JSONResponse(status_code=_HTTP_STATUS[outcome.code], content=outcome.to_dict())
