"""Merchant signing key loading."""
from __future__ import annotations

import json

import base58
from solders.keypair import Keypair

from common.errors import ConfigInvalid

__all__ = ["load_keypair"]


def load_keypair(secret: str) -> Keypair:
    """Accept a JSON byte array (solana-keygen file format) or a base58 string."""
    secret = secret.strip()
    try:
        if secret.startswith("["):
            return Keypair.from_bytes(bytes(json.loads(secret)))
        return Keypair.from_bytes(base58.b58decode(secret))
    except Exception as exc:  # solders raises its own error types for bad key bytes
        raise ConfigInvalid(
            "MERCHANT_WALLET_SECRET", "provide a JSON byte array or base58 string"
        ) from exc
