"""FastAPI application for the treasury autopilot."""
from __future__ import annotations

import os
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field

from common.auth import require_operator
from common.errors import ConfigMissing, TreasuryError
from common.logging import configure_logging
from rebalancer import RebalanceConfig
from settlement.api import router as settlement_router

from .runtime import TreasuryRuntime
from .service import ActionCode, ActionOutcome, TreasuryService

# ---------------------------------------------------------------------------
# Dependency injection helpers
# ---------------------------------------------------------------------------


def get_runtime(request: Request) -> TreasuryRuntime:
    return request.app.state.runtime


def get_treasury(runtime: TreasuryRuntime = Depends(get_runtime)) -> TreasuryService:
    return runtime.treasury


def _actor(claims: Dict[str, Any]) -> str:
    return f"operator:{claims.get('sub', 'unknown')}"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class AmountRequest(BaseModel):
    amountUsdc: Decimal = Field(..., gt=0, max_digits=20, decimal_places=6)


class RebalancerConfigUpdate(BaseModel):
    minBufferUsdc: Optional[Decimal] = Field(default=None, ge=0)
    minDepositUsdc: Optional[Decimal] = Field(default=None, ge=0)
    cooldownSec: Optional[int] = Field(default=None, ge=0)


_ACTION_STATUS = {
    ActionCode.OK: status.HTTP_200_OK,
    ActionCode.DEPOSIT_FAILED: status.HTTP_502_BAD_GATEWAY,
    ActionCode.WITHDRAW_FAILED: status.HTTP_502_BAD_GATEWAY,
    ActionCode.CONFIG_MISSING: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _action_response(outcome: ActionOutcome) -> JSONResponse:
    return JSONResponse(status_code=_ACTION_STATUS[outcome.code], content=outcome.to_dict())


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

treasury_router = APIRouter(prefix="/treasury", tags=["treasury"])
rebalancer_router = APIRouter(prefix="/rebalancer", tags=["rebalancer"])


@treasury_router.get("/balances")
async def balances(treasury: TreasuryService = Depends(get_treasury)):
    return await treasury.get_balances()


@treasury_router.get("/apy")
async def apy(treasury: TreasuryService = Depends(get_treasury)):
    return await treasury.get_apy()


@treasury_router.post("/deposit")
async def deposit(
    req: AmountRequest,
    treasury: TreasuryService = Depends(get_treasury),
    claims: Dict[str, Any] = Depends(require_operator),
):
    return _action_response(await treasury.deposit(req.amountUsdc, actor=_actor(claims)))


@treasury_router.post("/withdraw")
async def withdraw(
    req: AmountRequest,
    treasury: TreasuryService = Depends(get_treasury),
    claims: Dict[str, Any] = Depends(require_operator),
):
    return _action_response(await treasury.withdraw(req.amountUsdc, actor=_actor(claims)))


@treasury_router.get("/transactions")
def transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    treasury: TreasuryService = Depends(get_treasury),
):
    return treasury.list_transactions(page, limit)


@rebalancer_router.get("/config")
def get_rebalancer_config(runtime: TreasuryRuntime = Depends(get_runtime)):
    controller = runtime.controller
    body = controller.config.to_dict()
    last = controller.last_deposit_at
    body["lastDepositAt"] = last.isoformat() if last else None
    return body


@rebalancer_router.post("/config")
def update_rebalancer_config(
    req: RebalancerConfigUpdate,
    runtime: TreasuryRuntime = Depends(get_runtime),
    _: Dict[str, Any] = Depends(require_operator),
):
    current = runtime.controller.config
    updated = RebalanceConfig(
        min_buffer_usdc=req.minBufferUsdc if req.minBufferUsdc is not None else current.min_buffer_usdc,
        min_deposit_usdc=req.minDepositUsdc if req.minDepositUsdc is not None else current.min_deposit_usdc,
        cooldown_sec=req.cooldownSec if req.cooldownSec is not None else current.cooldown_sec,
    )
    runtime.controller.update_config(updated)
    return updated.to_dict()


@rebalancer_router.post("/trigger")
async def trigger_rebalance(
    runtime: TreasuryRuntime = Depends(get_runtime),
    _: Dict[str, Any] = Depends(require_operator),
):
    result = await runtime.controller.trigger("manual")
    return result.to_dict()


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


async def _config_missing_handler(_request: Request, exc: ConfigMissing) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"ok": False, "code": "CONFIG_MISSING", "missing": exc.names, "detail": str(exc)},
    )


async def _treasury_error_handler(_request: Request, exc: TreasuryError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"ok": False, "code": "UPSTREAM_ERROR", "detail": str(exc)},
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(runtime: Optional[TreasuryRuntime] = None) -> FastAPI:
    """Factory used by tests and the ``serve`` CLI command."""
    configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="treasury_api")

    app = FastAPI(title="Treasury Autopilot")
    app.state.runtime = runtime or TreasuryRuntime()

    app.include_router(treasury_router)
    app.include_router(rebalancer_router)
    app.include_router(settlement_router)
    app.add_exception_handler(ConfigMissing, _config_missing_handler)
    app.add_exception_handler(TreasuryError, _treasury_error_handler)
    app.mount("/metrics", make_asgi_app())

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.on_event("startup")
    async def _start_runtime() -> None:
        await app.state.runtime.start()

    @app.on_event("shutdown")
    async def _stop_runtime() -> None:
        await app.state.runtime.aclose()

    return app
