"""
PolicyOS Core Ledger — Ledger Service
=======================================
Posting collaborator used by the grant actions (wallet, voucher, fragment).

Doctrine:
- Every posting is a balanced double-entry transaction
  (total DEBIT == total CREDIT, amounts non-negative)
- record() is idempotent on idempotency_key: a repeated key returns the
  original receipt and posts nothing
- grant() is the wallet shorthand: marketing_expense DEBIT,
  user_wallet:<account> CREDIT, amount must be positive
- Amounts are money: rounded to cents
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from core.time.clock import Clock, SystemClock

logger = logging.getLogger("policyos.ledger")

GRANT_TXN_TYPE = "POLICYOS_GRANT"
ASSET_GRANT_TXN_TYPE = "POLICYOS_ASSET_GRANT"
EXPENSE_ACCOUNT = "marketing_expense"
WALLET_ACCOUNT_PREFIX = "user_wallet:"
ASSET_ACCOUNT_PREFIX = "user_asset:"

DEBIT = "DEBIT"
CREDIT = "CREDIT"


class LedgerError(Exception):
    """Ledger rejected the posting."""
    pass


def to_money(value: Any) -> float:
    try:
        return round(float(value), 2)
    except (TypeError, ValueError):
        return 0.0


def format_money(value: Any) -> str:
    """Plain decimal text of a money amount: 12 → '12', 1234567.5 → '1234567.5'."""
    return format(Decimal(str(to_money(value))).normalize(), "f")


# ══════════════════════════════════════════════════════════════
# LEDGER RECORDS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LedgerEntry:
    account: str
    direction: str  # DEBIT | CREDIT
    amount: float


@dataclass(frozen=True)
class LedgerReceipt:
    txn_id: str
    merchant_id: str
    user_id: str
    txn_type: str
    idempotency_key: str
    entries: Tuple[LedgerEntry, ...]
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "txn_id": self.txn_id,
            "merchant_id": self.merchant_id,
            "user_id": self.user_id,
            "type": self.txn_type,
            "idempotency_key": self.idempotency_key,
            "entries": [
                {"account": e.account, "direction": e.direction, "amount": e.amount}
                for e in self.entries
            ],
            "created_at": self.created_at.isoformat(),
            "metadata": copy.deepcopy(self.metadata),
        }


# ══════════════════════════════════════════════════════════════
# LEDGER SERVICE PROTOCOL
# ══════════════════════════════════════════════════════════════

class LedgerService(Protocol):

    def record(
        self,
        *,
        merchant_id: str,
        user_id: str,
        txn_type: str,
        entries: Sequence[LedgerEntry],
        idempotency_key: str = "",
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> LedgerReceipt:
        ...  # pragma: no cover

    def grant(
        self,
        *,
        merchant_id: str,
        user: Mapping[str, Any],
        account: str,
        amount: float,
        idempotency_key: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> LedgerReceipt:
        ...  # pragma: no cover


# ══════════════════════════════════════════════════════════════
# IN-MEMORY LEDGER
# ══════════════════════════════════════════════════════════════

class InMemoryLedgerService:
    """
    Append-only in-memory ledger with per-user account balances.

    Balances accumulate the CREDIT side of user_* accounts. Thread-safe.
    Production may back this with the merchant database.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()
        self._transactions: List[LedgerReceipt] = []
        self._by_idempotency_key: Dict[str, LedgerReceipt] = {}
        self._balances: Dict[Tuple[str, str, str], float] = {}
        self._sequence = 0
        self._lock = Lock()

    @staticmethod
    def _normalize_entries(entries: Sequence[LedgerEntry]) -> Tuple[LedgerEntry, ...]:
        if not entries:
            raise LedgerError("posting requires at least one entry.")
        normalized = []
        for entry in entries:
            if entry.direction not in (DEBIT, CREDIT):
                raise LedgerError(f"entry direction '{entry.direction}' not valid.")
            if not entry.account:
                raise LedgerError("entry account must be non-empty.")
            amount = to_money(entry.amount)
            if amount < 0:
                raise LedgerError("entry amounts must be non-negative.")
            normalized.append(LedgerEntry(entry.account, entry.direction, amount))

        debits = sum(e.amount for e in normalized if e.direction == DEBIT)
        credits = sum(e.amount for e in normalized if e.direction == CREDIT)
        if to_money(debits) != to_money(credits):
            raise LedgerError(
                f"posting is unbalanced: debit={debits} credit={credits}."
            )
        return tuple(normalized)

    def record(
        self,
        *,
        merchant_id: str,
        user_id: str,
        txn_type: str,
        entries: Sequence[LedgerEntry],
        idempotency_key: str = "",
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> LedgerReceipt:
        user_id = str(user_id or "").strip()
        if not user_id:
            raise LedgerError("posting requires a user id.")
        normalized = self._normalize_entries(entries)
        idem_key = str(idempotency_key or "").strip()

        with self._lock:
            if idem_key and idem_key in self._by_idempotency_key:
                logger.info(f"Ledger posting replayed: idempotency_key={idem_key}")
                return self._by_idempotency_key[idem_key]

            self._sequence += 1
            receipt = LedgerReceipt(
                txn_id=f"txn_{self._sequence:06d}",
                merchant_id=merchant_id,
                user_id=user_id,
                txn_type=txn_type,
                idempotency_key=idem_key,
                entries=normalized,
                created_at=self._clock.now_utc(),
                metadata=dict(metadata or {}),
            )
            self._transactions.append(receipt)
            if idem_key:
                self._by_idempotency_key[idem_key] = receipt
            for entry in normalized:
                if entry.direction != CREDIT or not entry.account.startswith("user_"):
                    continue
                balance_key = (merchant_id, user_id, entry.account)
                self._balances[balance_key] = to_money(
                    self._balances.get(balance_key, 0.0) + entry.amount
                )
            return receipt

    def grant(
        self,
        *,
        merchant_id: str,
        user: Mapping[str, Any],
        account: str = "bonus",
        amount: float,
        idempotency_key: str = "",
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> LedgerReceipt:
        normalized = to_money(amount)
        if normalized <= 0:
            raise LedgerError("grant amount must be positive.")
        user_id = str(user.get("uid") or "").strip()
        if not user_id:
            raise LedgerError("grant requires a user with uid.")
        return self.record(
            merchant_id=merchant_id,
            user_id=user_id,
            txn_type=GRANT_TXN_TYPE,
            entries=(
                LedgerEntry(EXPENSE_ACCOUNT, DEBIT, normalized),
                LedgerEntry(f"{WALLET_ACCOUNT_PREFIX}{account}", CREDIT, normalized),
            ),
            idempotency_key=idempotency_key,
            metadata=metadata,
        )

    def balance(self, merchant_id: str, user_id: str, account: str = "bonus") -> float:
        """Wallet balance for user_wallet:<account>."""
        return self.account_balance(
            merchant_id, user_id, f"{WALLET_ACCOUNT_PREFIX}{account}"
        )

    def account_balance(self, merchant_id: str, user_id: str, ledger_account: str) -> float:
        with self._lock:
            return self._balances.get((merchant_id, user_id, ledger_account), 0.0)

    def transactions(self, merchant_id: Optional[str] = None) -> Tuple[LedgerReceipt, ...]:
        with self._lock:
            return tuple(
                txn for txn in self._transactions
                if merchant_id is None or txn.merchant_id == merchant_id
            )
