"""
PolicyOS Core Ledger — Public API
===================================
Idempotent double-entry posting collaborator for grant actions.
"""

from core.ledger.service import (
    ASSET_ACCOUNT_PREFIX,
    ASSET_GRANT_TXN_TYPE,
    CREDIT,
    DEBIT,
    EXPENSE_ACCOUNT,
    InMemoryLedgerService,
    LedgerEntry,
    LedgerError,
    LedgerReceipt,
    LedgerService,
    format_money,
    to_money,
)

__all__ = [
    "ASSET_ACCOUNT_PREFIX",
    "ASSET_GRANT_TXN_TYPE",
    "CREDIT",
    "DEBIT",
    "EXPENSE_ACCOUNT",
    "InMemoryLedgerService",
    "LedgerEntry",
    "LedgerError",
    "LedgerReceipt",
    "LedgerService",
    "format_money",
    "to_money",
]
