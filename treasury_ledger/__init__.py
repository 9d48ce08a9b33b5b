"""Durable record of every deposit / withdraw attempt."""

from .ledger import TransactionLedger
from .models import TreasuryTransaction, TxStatus, TxType

__all__ = ["TransactionLedger", "TreasuryTransaction", "TxStatus", "TxType"]
