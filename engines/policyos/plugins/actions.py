"""
PolicyOS Plugins — Action Plugins
===================================
Side-effecting leaves executed from a compiled plan.

    wallet_grant_v1    → credits the user's wallet through the ledger
    voucher_grant_v1   → issues a voucher, posted as a user asset
    fragment_grant_v1  → grants collectible fragments, posted as a user asset
    story_inject_v1    → attaches the policy's story card
    noop_v1            → succeeds, costs nothing

An action reports an expected failure by returning "success": False with
reason codes (missing user, invalid amount). Only collaborator errors
(e.g. LedgerError) raise.

Every ledger posting carries an idempotency key rooted in
merchantId|eventId|policyId|pluginName, so redelivery of the same event
never grants twice.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import timedelta
from typing import Any, Dict

from core.ledger.service import (
    ASSET_ACCOUNT_PREFIX,
    ASSET_GRANT_TXN_TYPE,
    CREDIT,
    DEBIT,
    EXPENSE_ACCOUNT,
    LedgerEntry,
    LedgerService,
    format_money,
    to_money,
)
from core.time.clock import Clock
from engines.policyos.models import (
    ActionCommand,
    ActionSpec,
    CostEstimate,
    Policy,
    TriggerContext,
    to_number,
)
from engines.policyos.plugins.contracts import ActionPlugin

logger = logging.getLogger("policyos.plugins")

DEFAULT_VOUCHER_TTL_SEC = 7 * 24 * 60 * 60
MIN_VOUCHER_TTL_SEC = 60

_ID_UNSAFE = re.compile(r"[^a-zA-Z0-9_]")


def _idempotency_key(ctx: TriggerContext, plugin: str, *parts: str) -> str:
    return "|".join([ctx.merchant_id, ctx.event_id, ctx.policy_id, plugin, *parts])


def _as_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


# ══════════════════════════════════════════════════════════════
# WALLET GRANT
# ══════════════════════════════════════════════════════════════

class WalletGrantAction(ActionPlugin):
    """
    Params: amount (> 0), account (default "bonus"), cost (defaults to amount).

    Idempotency key: merchantId|eventId|policyId|pluginName|account|amount,
    with the amount written out in full.
    """

    def __init__(self, ledger: LedgerService):
        self._ledger = ledger

    def estimate_cost(self, action: ActionSpec, policy: Policy, ctx: TriggerContext) -> CostEstimate:
        amount = to_number(action.params.get("amount"), 0.0)
        cost = to_number(action.params.get("cost"), amount)
        return CostEstimate(cost=cost, budget_cost=cost)

    def execute(
        self,
        ctx: TriggerContext,
        policy: Policy,
        command: ActionCommand,
        trace_id: str,
    ) -> Dict[str, Any]:
        account = str(command.params.get("account") or "bonus")
        amount = to_money(to_number(command.params.get("amount"), 0.0))
        if not ctx.user_id or amount <= 0:
            return {"success": False, "reason_codes": ["action:wallet_grant_invalid"]}

        receipt = self._ledger.grant(
            merchant_id=ctx.merchant_id,
            user=ctx.user,
            account=account,
            amount=amount,
            idempotency_key=_idempotency_key(
                ctx, command.plugin, account, format_money(amount)
            ),
            metadata={
                "trace_id": trace_id,
                "policy_id": ctx.policy_id,
                "source": "policyos",
            },
        )
        logger.info(
            f"Wallet grant applied: policy={ctx.policy_id} "
            f"user={ctx.user_id} account={account} amount={amount} "
            f"txn={receipt.txn_id}"
        )
        return {
            "success": True,
            "ledger_txn_id": receipt.txn_id,
            "grants": [{"account": account, "amount": amount}],
            "reason_codes": ["action:wallet_grant_applied"],
        }


# ══════════════════════════════════════════════════════════════
# VOUCHER GRANT
# ══════════════════════════════════════════════════════════════

class VoucherGrantAction(ActionPlugin):
    """
    Params:
        voucher:        {id, type, name, value, min_spend, discount_rate}
        cost:           ledger amount (defaults to voucher.value)
        expires_in_sec: voucher lifetime (default 7 days, min 60s)

    Without voucher.id the id is derived from policy and event, so one
    event issues one voucher per policy. Zero-value vouchers (pure
    discount-rate vouchers) post a zero-amount transaction.
    """

    def __init__(self, ledger: LedgerService, clock: Clock):
        self._ledger = ledger
        self._clock = clock

    @staticmethod
    def _cost(params: Dict[str, Any]) -> float:
        voucher = _as_dict(params.get("voucher"))
        fallback = to_number(voucher.get("value"), 0.0)
        return max(0.0, to_number(params.get("cost"), fallback))

    def estimate_cost(self, action, policy, ctx) -> CostEstimate:
        cost = self._cost(action.params)
        return CostEstimate(cost=cost, budget_cost=cost)

    def execute(self, ctx, policy, command, trace_id) -> Dict[str, Any]:
        if not ctx.user_id:
            return {
                "success": False,
                "reason_codes": ["action:voucher_grant_missing_user"],
            }
        params = command.params
        voucher = _as_dict(params.get("voucher"))
        voucher_id = str(voucher.get("id") or "").strip() or (
            f"voucher_{_ID_UNSAFE.sub('_', ctx.policy_id or 'policy')}"
            f"_{_ID_UNSAFE.sub('_', ctx.event_id or 'event')}"
        )
        ttl_sec = max(
            MIN_VOUCHER_TTL_SEC,
            int(to_number(params.get("expires_in_sec"), DEFAULT_VOUCHER_TTL_SEC)),
        )
        amount = to_money(self._cost(params))

        receipt = self._ledger.record(
            merchant_id=ctx.merchant_id,
            user_id=ctx.user_id,
            txn_type=ASSET_GRANT_TXN_TYPE,
            entries=(
                LedgerEntry(EXPENSE_ACCOUNT, DEBIT, amount),
                LedgerEntry(f"{ASSET_ACCOUNT_PREFIX}voucher", CREDIT, amount),
            ),
            idempotency_key=_idempotency_key(ctx, command.plugin, voucher_id),
            metadata={
                "trace_id": trace_id,
                "policy_id": ctx.policy_id,
                "voucher_id": voucher_id,
                "source": "policyos",
            },
        )
        expires_at = self._clock.now_utc() + timedelta(seconds=ttl_sec)
        logger.info(
            f"Voucher granted: policy={ctx.policy_id} user={ctx.user_id} "
            f"voucher={voucher_id} txn={receipt.txn_id}"
        )
        return {
            "success": True,
            "ledger_txn_id": receipt.txn_id,
            "vouchers": [{
                "id": voucher_id,
                "type": str(voucher.get("type") or "NO_THRESHOLD_VOUCHER"),
                "name": str(voucher.get("name") or "Policy Voucher"),
                "value": max(0.0, to_number(voucher.get("value"), 0.0)),
                "min_spend": max(0.0, to_number(voucher.get("min_spend"), 0.0)),
                "discount_rate": to_number(voucher.get("discount_rate"), 0.0),
                "status": "ACTIVE",
                "expires_at": expires_at.isoformat(),
            }],
            "reason_codes": ["action:voucher_grant_applied"],
        }


# ══════════════════════════════════════════════════════════════
# FRAGMENT GRANT
# ══════════════════════════════════════════════════════════════

class FragmentGrantAction(ActionPlugin):
    """
    Params: type (default "general"), amount (whole fragments, > 0),
    cost (ledger amount, defaults to amount).
    """

    def __init__(self, ledger: LedgerService):
        self._ledger = ledger

    @staticmethod
    def _amount(params: Dict[str, Any]) -> int:
        return max(0, math.floor(to_number(params.get("amount"), 0.0)))

    def estimate_cost(self, action, policy, ctx) -> CostEstimate:
        amount = max(0.0, to_number(action.params.get("amount"), 0.0))
        cost = max(0.0, to_number(action.params.get("cost"), amount))
        return CostEstimate(cost=cost, budget_cost=cost)

    def execute(self, ctx, policy, command, trace_id) -> Dict[str, Any]:
        if not ctx.user_id:
            return {
                "success": False,
                "reason_codes": ["action:fragment_grant_missing_user"],
            }
        params = command.params
        fragment_type = str(params.get("type") or "").strip() or "general"
        amount = self._amount(params)
        if amount <= 0:
            return {
                "success": False,
                "reason_codes": ["action:fragment_grant_invalid_amount"],
            }
        cost = to_money(max(0.0, to_number(params.get("cost"), amount)))

        receipt = self._ledger.record(
            merchant_id=ctx.merchant_id,
            user_id=ctx.user_id,
            txn_type=ASSET_GRANT_TXN_TYPE,
            entries=(
                LedgerEntry(EXPENSE_ACCOUNT, DEBIT, cost),
                LedgerEntry(
                    f"{ASSET_ACCOUNT_PREFIX}fragment:{fragment_type}", CREDIT, cost
                ),
            ),
            idempotency_key=_idempotency_key(
                ctx, command.plugin, fragment_type, str(amount)
            ),
            metadata={
                "trace_id": trace_id,
                "policy_id": ctx.policy_id,
                "fragment_type": fragment_type,
                "amount": amount,
                "source": "policyos",
            },
        )
        return {
            "success": True,
            "ledger_txn_id": receipt.txn_id,
            "fragments": [{"type": fragment_type, "amount": amount}],
            "reason_codes": ["action:fragment_grant_applied"],
        }


# ══════════════════════════════════════════════════════════════
# STORY INJECTION
# ══════════════════════════════════════════════════════════════

class StoryInjectAction(ActionPlugin):

    def __init__(self, clock: Clock):
        self._clock = clock

    def estimate_cost(self, action, policy, ctx) -> CostEstimate:
        cost = to_number(action.params.get("cost"), 0.0)
        return CostEstimate(cost=cost, budget_cost=cost)

    def execute(self, ctx, policy, command, trace_id) -> Dict[str, Any]:
        cards = []
        if policy.story:
            cards.append({
                **policy.story,
                "generated_at": self._clock.now_utc().isoformat(),
            })
        return {
            "success": True,
            "story_cards": cards,
            "reason_codes": ["action:story_injected"],
        }


# ══════════════════════════════════════════════════════════════
# NO-OP
# ══════════════════════════════════════════════════════════════

class NoopAction(ActionPlugin):

    def execute(self, ctx, policy, command, trace_id) -> Dict[str, Any]:
        return {"success": True, "reason_codes": ["action:noop"]}
