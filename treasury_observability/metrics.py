# treasury_observability/metrics.py
"""
Prometheus metrics for the treasury autopilot.

This module does NOT start a standalone HTTP server. The API mounts the
ASGI exporter:

    from prometheus_client import make_asgi_app
    app.mount("/metrics", make_asgi_app())
"""

from typing import Any, Dict, Tuple, Type

from prometheus_client import Counter, Gauge, Histogram

# ----------------------------
# Registration helper (avoid duplicate collectors)
# ----------------------------
_METRICS: Dict[Tuple[Type[Any], str], Any] = {}


def get_metric(cls: Type[Any], name: str, *args, **kwargs):
    key = (cls, name)
    if key in _METRICS:
        return _METRICS[key]
    metric = cls(name, *args, **kwargs)
    _METRICS[key] = metric
    return metric


# ----------------------------
# Chain reads
# ----------------------------

rpc_requests_total = get_metric(
    Counter,
    "solana_rpc_requests_total",
    "JSON-RPC requests sent to the Solana node",
    ["method", "status"],
)

rpc_rate_limited_total = get_metric(
    Counter,
    "solana_rpc_rate_limited_total",
    "Rate-limited JSON-RPC responses (each retry counts)",
    ["method"],
)

rpc_latency_seconds = get_metric(
    Histogram,
    "solana_rpc_latency_seconds",
    "Latency of JSON-RPC requests in seconds",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

# ----------------------------
# Settlements
# ----------------------------

settlements_total = get_metric(
    Counter,
    "settlements_total",
    "Settlement webhook outcomes",
    ["outcome"],
)

# ----------------------------
# Treasury actions / rebalancer
# ----------------------------

treasury_actions_total = get_metric(
    Counter,
    "treasury_actions_total",
    "Deposit / withdraw attempts by outcome",
    ["action", "outcome", "protocol"],
)

adapter_latency_seconds = get_metric(
    Histogram,
    "yield_adapter_latency_seconds",
    "Latency of yield adapter deposit / withdraw calls",
    ["action", "protocol"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120),
)

rebalance_decisions_total = get_metric(
    Counter,
    "rebalance_decisions_total",
    "Rebalancer trigger outcomes",
    ["trigger", "outcome"],
)

cash_buffer_usdc = get_metric(
    Gauge,
    "treasury_cash_buffer_usdc",
    "Idle USDC held by the merchant wallet at the last read",
)

yield_position_usdc = get_metric(
    Gauge,
    "treasury_yield_position_usdc",
    "USDC value deposited in the yield protocol at the last read",
    ["protocol"],
)
