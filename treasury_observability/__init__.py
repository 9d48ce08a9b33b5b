"""Prometheus metrics for the treasury autopilot."""

from .metrics import (rebalance_decisions_total, settlements_total,
                      treasury_actions_total)

__all__ = [
    "settlements_total",
    "treasury_actions_total",
    "rebalance_decisions_total",
]
