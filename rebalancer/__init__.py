"""Sweep idle cash above the buffer into the yield protocol."""

from .controller import RebalanceController, RebalanceOutcome, RebalanceResult
from .policy import RebalanceConfig, compute_excess
from .scheduler import RebalanceScheduler

__all__ = [
    "RebalanceController",
    "RebalanceOutcome",
    "RebalanceResult",
    "RebalanceConfig",
    "compute_excess",
    "RebalanceScheduler",
]
