"""Settlement verification and idempotent crediting."""

from .idempotency import IdempotencyGuard, InMemoryIdempotencyGuard, SqlIdempotencyGuard
from .schemas import SettlementClaim, SettlementCode
from .service import SettlementOutcome, SettlementService
from .verifier import SettlementVerifier, VerificationResult

__all__ = [
    "IdempotencyGuard",
    "InMemoryIdempotencyGuard",
    "SqlIdempotencyGuard",
    "SettlementClaim",
    "SettlementCode",
    "SettlementOutcome",
    "SettlementService",
    "SettlementVerifier",
    "VerificationResult",
]
