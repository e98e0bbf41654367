"""
Tests for core.ledger — in-memory wallet grant ledger.
"""

from datetime import datetime, timezone

import pytest

from core.ledger.service import (
    ASSET_GRANT_TXN_TYPE,
    CREDIT,
    DEBIT,
    EXPENSE_ACCOUNT,
    InMemoryLedgerService,
    LedgerEntry,
    LedgerError,
    format_money,
    to_money,
)
from core.time.clock import FixedClock

USER = {"uid": "u1"}


def _ledger() -> InMemoryLedgerService:
    return InMemoryLedgerService(FixedClock(datetime(2026, 3, 1, tzinfo=timezone.utc)))


class TestToMoney:
    def test_rounds_to_cents(self):
        assert to_money(12.346) == 12.35
        assert to_money("3.1") == 3.1

    def test_non_numeric_is_zero(self):
        assert to_money("abc") == 0.0
        assert to_money(None) == 0.0


class TestLedgerGrant:
    def test_grant_posts_double_entry(self):
        ledger = _ledger()
        receipt = ledger.grant(
            merchant_id="m1", user=USER, account="bonus", amount=12,
            idempotency_key="k1",
        )
        assert receipt.txn_id == "txn_000001"
        assert receipt.user_id == "u1"
        directions = {entry.account: entry.direction for entry in receipt.entries}
        assert directions == {
            "marketing_expense": "DEBIT",
            "user_wallet:bonus": "CREDIT",
        }
        assert all(entry.amount == 12.0 for entry in receipt.entries)
        assert ledger.balance("m1", "u1", "bonus") == 12.0

    def test_repeated_key_returns_original_receipt(self):
        ledger = _ledger()
        first = ledger.grant(merchant_id="m1", user=USER, amount=5, idempotency_key="k1")
        second = ledger.grant(merchant_id="m1", user=USER, amount=5, idempotency_key="k1")
        assert second is first
        assert len(ledger.transactions()) == 1
        assert ledger.balance("m1", "u1") == 5.0

    def test_distinct_keys_accumulate(self):
        ledger = _ledger()
        ledger.grant(merchant_id="m1", user=USER, amount=5, idempotency_key="k1")
        ledger.grant(merchant_id="m1", user=USER, amount=2.5, idempotency_key="k2")
        assert ledger.balance("m1", "u1") == 7.5

    def test_rejects_non_positive_amount(self):
        with pytest.raises(LedgerError, match="positive"):
            _ledger().grant(merchant_id="m1", user=USER, amount=0)

    def test_rejects_user_without_uid(self):
        with pytest.raises(LedgerError, match="uid"):
            _ledger().grant(merchant_id="m1", user={}, amount=1)

    def test_transactions_filter_by_merchant(self):
        ledger = _ledger()
        ledger.grant(merchant_id="m1", user=USER, amount=1, idempotency_key="a")
        ledger.grant(merchant_id="m2", user=USER, amount=1, idempotency_key="b")
        assert [txn.merchant_id for txn in ledger.transactions("m2")] == ["m2"]

    def test_receipt_to_dict(self):
        receipt = _ledger().grant(
            merchant_id="m1", user=USER, amount=1, idempotency_key="a",
            metadata={"trace_id": "t1"},
        )
        data = receipt.to_dict()
        assert data["type"] == "POLICYOS_GRANT"
        assert data["metadata"] == {"trace_id": "t1"}
        assert data["created_at"].startswith("2026-03-01")


class TestFormatMoney:
    def test_keeps_every_digit(self):
        assert format_money(1234567) == "1234567"
        assert format_money(1234568) == "1234568"
        assert format_money(1234567.5) == "1234567.5"

    def test_drops_trailing_zeros(self):
        assert format_money(12.0) == "12"
        assert format_money(10) == "10"
        assert format_money("0.10") == "0.1"


class TestLedgerRecord:
    def _entries(self, amount, account="user_asset:voucher"):
        return (
            LedgerEntry(EXPENSE_ACCOUNT, DEBIT, amount),
            LedgerEntry(account, CREDIT, amount),
        )

    def test_record_posts_asset_grant(self):
        ledger = _ledger()
        receipt = ledger.record(
            merchant_id="m1", user_id="u1", txn_type=ASSET_GRANT_TXN_TYPE,
            entries=self._entries(8), idempotency_key="v1",
        )
        assert receipt.txn_type == "POLICYOS_ASSET_GRANT"
        assert ledger.account_balance("m1", "u1", "user_asset:voucher") == 8.0
        assert ledger.balance("m1", "u1") == 0.0

    def test_record_is_idempotent(self):
        ledger = _ledger()
        first = ledger.record(
            merchant_id="m1", user_id="u1", txn_type=ASSET_GRANT_TXN_TYPE,
            entries=self._entries(3), idempotency_key="v1",
        )
        second = ledger.record(
            merchant_id="m1", user_id="u1", txn_type=ASSET_GRANT_TXN_TYPE,
            entries=self._entries(3), idempotency_key="v1",
        )
        assert second is first
        assert ledger.account_balance("m1", "u1", "user_asset:voucher") == 3.0

    def test_record_allows_zero_value_posting(self):
        receipt = _ledger().record(
            merchant_id="m1", user_id="u1", txn_type=ASSET_GRANT_TXN_TYPE,
            entries=self._entries(0),
        )
        assert [entry.amount for entry in receipt.entries] == [0.0, 0.0]

    def test_record_rejects_unbalanced_posting(self):
        with pytest.raises(LedgerError, match="unbalanced"):
            _ledger().record(
                merchant_id="m1", user_id="u1", txn_type=ASSET_GRANT_TXN_TYPE,
                entries=(
                    LedgerEntry(EXPENSE_ACCOUNT, DEBIT, 5),
                    LedgerEntry("user_asset:voucher", CREDIT, 4),
                ),
            )

    def test_record_rejects_negative_amount(self):
        with pytest.raises(LedgerError, match="non-negative"):
            _ledger().record(
                merchant_id="m1", user_id="u1", txn_type=ASSET_GRANT_TXN_TYPE,
                entries=self._entries(-1),
            )

    def test_record_requires_user_and_entries(self):
        with pytest.raises(LedgerError, match="user id"):
            _ledger().record(
                merchant_id="m1", user_id="", txn_type=ASSET_GRANT_TXN_TYPE,
                entries=self._entries(1),
            )
        with pytest.raises(LedgerError, match="at least one entry"):
            _ledger().record(
                merchant_id="m1", user_id="u1", txn_type=ASSET_GRANT_TXN_TYPE,
                entries=(),
            )
