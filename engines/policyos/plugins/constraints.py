"""
PolicyOS Plugins — Constraint Plugins
=======================================
Admission gates over shared resource state.

Contract (see ConstraintPlugin):
- check() reads state and never writes it
- reserve() commits what a passed check implied, without re-checking
- release() undoes exactly one reserve() given its token

Each stateful constraint owns one resource namespace:
    budget_guard_v1     → budget     (merchantId|policyId)
    inventory_lock_v1   → inventory  (merchantId|sku)
    frequency_cap_v1    → frequency  (merchantId|policyId|userId)

kill_switch_v1 and anti_fraud_hook_v1 are stateless gates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Optional, Tuple

from core.resources.models import (
    BudgetState,
    InventoryState,
    ReservationToken,
    ResourceKind,
    compose_key,
)
from core.resources.store import ResourceStore
from core.time.clock import Clock
from engines.policyos.models import (
    ConstraintResult,
    CostEstimate,
    PluginSpec,
    Policy,
    ReserveResult,
    TriggerContext,
    to_number,
)
from engines.policyos.plugins.contracts import ConstraintPlugin

logger = logging.getLogger("policyos.plugins")

MINUTE_MS = 60 * 1000
DEFAULT_MAX_RISK_SCORE = 0.8
DEFAULT_FREQUENCY_WINDOW_SEC = 86400
MIN_FREQUENCY_WINDOW_SEC = 60


def _passed(code: str) -> ConstraintResult:
    return ConstraintResult(ok=True, reason_codes=(code,))


def _blocked(code: str, flag: str) -> ConstraintResult:
    return ConstraintResult(ok=False, reason_codes=(code,), risk_flags=(flag,))


# ══════════════════════════════════════════════════════════════
# STATELESS GATES
# ══════════════════════════════════════════════════════════════

class _StatelessConstraint(ConstraintPlugin):
    """Gate with nothing to reserve: reserve/release are no-ops."""

    def reserve(self, policy, ctx, constraint, estimate) -> ReserveResult:
        return ReserveResult(ok=True)

    def release(self, reserved: ReservationToken) -> bool:
        return True


class KillSwitchConstraint(_StatelessConstraint):
    """Blocks every candidate while the merchant's kill switch is on."""

    def check(self, policy, ctx, constraint, estimate) -> ConstraintResult:
        if (ctx.merchant or {}).get("kill_switch_enabled"):
            return _blocked("constraint:kill_switch", "KILL_SWITCH_ENABLED")
        return _passed("constraint:kill_switch_pass")


class AntiFraudConstraint(_StatelessConstraint):
    """Blocks when ctx.risk_score exceeds params.max_risk_score (default 0.8)."""

    def check(self, policy, ctx, constraint, estimate) -> ConstraintResult:
        max_risk = to_number(
            constraint.params.get("max_risk_score"), DEFAULT_MAX_RISK_SCORE
        )
        if to_number(ctx.risk_score, 0.0) > max_risk:
            return _blocked("constraint:anti_fraud_blocked", "ANTI_FRAUD_BLOCK")
        return _passed("constraint:anti_fraud_pass")


# ══════════════════════════════════════════════════════════════
# BUDGET GUARD
# ══════════════════════════════════════════════════════════════

class BudgetGuardConstraint(ConstraintPlugin):
    """
    Budget cap plus per-minute pacing.

    Params:
        cap:           total budget for the policy (default unbounded)
        cost_per_hit:  cost charged per admission; when absent the
                       policy's action cost estimate is charged

    Pacing comes from policy.program.max_cost_per_minute. The minute
    window has a fixed origin: it restarts only once
    now - minute_window_start_ms >= 60000.
    """

    def __init__(self, store: ResourceStore, clock: Clock):
        self._store = store
        self._clock = clock

    @staticmethod
    def _key(policy: Policy) -> str:
        return compose_key(policy.merchant_id, policy.policy_id)

    def resource_scopes(self, policy, ctx, constraint):
        return ((ResourceKind.BUDGET, self._key(policy)),)

    @staticmethod
    def _cost(constraint: PluginSpec, estimate: CostEstimate) -> float:
        if constraint.params.get("cost_per_hit") is not None:
            return to_number(constraint.params.get("cost_per_hit"), 0.0)
        return to_number(estimate.budget_cost, 0.0)

    def _state(self, key: str, constraint: PluginSpec) -> BudgetState:
        state = self._store.get(ResourceKind.BUDGET, key)
        if state is None:
            state = BudgetState(
                cap=to_number(constraint.params.get("cap"), math.inf)
            )
        return state

    def _in_window(self, state: BudgetState, now_ms: int) -> bool:
        return now_ms - state.minute_window_start_ms < MINUTE_MS

    def check(self, policy, ctx, constraint, estimate) -> ConstraintResult:
        state = self._state(self._key(policy), constraint)
        cap = to_number(constraint.params.get("cap"), state.cap)
        cost = self._cost(constraint, estimate)
        max_per_minute = policy.program.max_cost_per_minute
        if max_per_minute is None:
            max_per_minute = math.inf
        minute_spent = (
            state.minute_spent if self._in_window(state, self._clock.now_ms()) else 0.0
        )

        if state.used + cost > cap:
            return _blocked("constraint:budget_cap_exceeded", "BUDGET_CAP_EXCEEDED")
        if minute_spent + cost > max_per_minute:
            return _blocked(
                "constraint:budget_pacing_exceeded", "BUDGET_PACING_EXCEEDED"
            )
        return _passed("constraint:budget_pass")

    def reserve(self, policy, ctx, constraint, estimate) -> ReserveResult:
        key = self._key(policy)
        cost = self._cost(constraint, estimate)
        with self._store.locked([(ResourceKind.BUDGET, key)]):
            current = self._state(key, constraint)
            now_ms = self._clock.now_ms()
            same_window = self._in_window(current, now_ms)
            window_start = current.minute_window_start_ms if same_window else now_ms
            self._store.put(ResourceKind.BUDGET, key, BudgetState(
                used=current.used + cost,
                cap=to_number(constraint.params.get("cap"), current.cap),
                minute_window_start_ms=window_start,
                minute_spent=(current.minute_spent if same_window else 0.0) + cost,
            ))
        return ReserveResult(
            ok=True,
            reserved=ReservationToken(
                kind=ResourceKind.BUDGET, key=key, amount=cost, marker=window_start
            ),
        )

    def release(self, reserved: ReservationToken) -> bool:
        if reserved is None or reserved.kind != ResourceKind.BUDGET:
            return True
        with self._store.locked([(ResourceKind.BUDGET, reserved.key)]):
            current = self._store.get(ResourceKind.BUDGET, reserved.key)
            if current is None:
                return True
            minute_spent = current.minute_spent
            # a cost counted in an earlier window is not part of this one
            if reserved.marker is None or reserved.marker == current.minute_window_start_ms:
                minute_spent = max(0.0, minute_spent - reserved.amount)
            self._store.put(ResourceKind.BUDGET, reserved.key, replace(
                current,
                used=max(0.0, current.used - reserved.amount),
                minute_spent=minute_spent,
            ))
        return True


# ══════════════════════════════════════════════════════════════
# INVENTORY LOCK
# ══════════════════════════════════════════════════════════════

class InventoryLockConstraint(ConstraintPlugin):
    """
    Hard unit cap per merchant SKU.

    Params: sku, max_units (hard cap), reserve_units (default 1, min 1).
    A constraint without sku always passes and reserves nothing.
    """

    def __init__(self, store: ResourceStore):
        self._store = store

    @staticmethod
    def _sku(constraint: PluginSpec) -> str:
        return str(constraint.params.get("sku") or "").strip()

    @staticmethod
    def _need(constraint: PluginSpec) -> int:
        return max(1, int(to_number(constraint.params.get("reserve_units"), 1)))

    def _key(self, policy: Policy, constraint: PluginSpec) -> Optional[str]:
        sku = self._sku(constraint)
        return compose_key(policy.merchant_id, sku) if sku else None

    def _state(self, key: str, constraint: PluginSpec) -> InventoryState:
        state = self._store.get(ResourceKind.INVENTORY, key)
        if state is None:
            state = InventoryState(
                hard_cap=to_number(constraint.params.get("max_units"), math.inf)
            )
        return state

    def resource_scopes(self, policy, ctx, constraint):
        key = self._key(policy, constraint)
        return ((ResourceKind.INVENTORY, key),) if key else ()

    def check(self, policy, ctx, constraint, estimate) -> ConstraintResult:
        key = self._key(policy, constraint)
        if key is None:
            return _passed("constraint:inventory_skip")
        state = self._state(key, constraint)
        if state.reserved + self._need(constraint) > state.hard_cap:
            return _blocked("constraint:inventory_exceeded", "INVENTORY_HARD_LOCK")
        return _passed("constraint:inventory_pass")

    def reserve(self, policy, ctx, constraint, estimate) -> ReserveResult:
        key = self._key(policy, constraint)
        if key is None:
            return ReserveResult(ok=True)
        need = self._need(constraint)
        with self._store.locked([(ResourceKind.INVENTORY, key)]):
            current = self._state(key, constraint)
            self._store.put(ResourceKind.INVENTORY, key, InventoryState(
                reserved=current.reserved + need,
                hard_cap=to_number(constraint.params.get("max_units"), current.hard_cap),
            ))
        return ReserveResult(
            ok=True,
            reserved=ReservationToken(
                kind=ResourceKind.INVENTORY, key=key, amount=need
            ),
        )

    def release(self, reserved: ReservationToken) -> bool:
        if reserved is None or reserved.kind != ResourceKind.INVENTORY:
            return True
        with self._store.locked([(ResourceKind.INVENTORY, reserved.key)]):
            current = self._store.get(ResourceKind.INVENTORY, reserved.key)
            if current is None:
                return True
            self._store.put(ResourceKind.INVENTORY, reserved.key, replace(
                current,
                reserved=max(0, current.reserved - int(reserved.amount)),
            ))
        return True


# ══════════════════════════════════════════════════════════════
# FREQUENCY CAP
# ══════════════════════════════════════════════════════════════

class FrequencyCapConstraint(ConstraintPlugin):
    """
    Per-user rolling window cap.

    Params: daily (default 1, min 1), window_sec (default 86400, min 60).
    State is a tuple of epoch-ms markers, one per admission. check()
    counts markers inside the window without pruning; reserve() prunes
    expired markers and appends a fresh one.
    """

    def __init__(self, store: ResourceStore, clock: Clock):
        self._store = store
        self._clock = clock

    @staticmethod
    def _key(policy: Policy, ctx: TriggerContext) -> Optional[str]:
        user_id = ctx.user_id
        if not user_id:
            return None
        return compose_key(policy.merchant_id, policy.policy_id, user_id)

    @staticmethod
    def _limits(constraint: PluginSpec) -> Tuple[int, int]:
        daily = max(1, int(to_number(constraint.params.get("daily"), 1)))
        window_sec = max(
            MIN_FREQUENCY_WINDOW_SEC,
            int(to_number(
                constraint.params.get("window_sec"), DEFAULT_FREQUENCY_WINDOW_SEC
            )),
        )
        return daily, window_sec

    def _recent(self, key: str, window_sec: int, now_ms: int) -> Tuple[int, ...]:
        markers = self._store.get(ResourceKind.FREQUENCY, key) or ()
        return tuple(ts for ts in markers if now_ms - ts < window_sec * 1000)

    def resource_scopes(self, policy, ctx, constraint):
        key = self._key(policy, ctx)
        return ((ResourceKind.FREQUENCY, key),) if key else ()

    def check(self, policy, ctx, constraint, estimate) -> ConstraintResult:
        key = self._key(policy, ctx)
        if key is None:
            return _blocked(
                "constraint:frequency_missing_user", "FREQUENCY_SCOPE_INVALID"
            )
        daily, window_sec = self._limits(constraint)
        if len(self._recent(key, window_sec, self._clock.now_ms())) >= daily:
            return _blocked("constraint:frequency_exceeded", "FREQUENCY_CAP")
        return _passed("constraint:frequency_pass")

    def reserve(self, policy, ctx, constraint, estimate) -> ReserveResult:
        key = self._key(policy, ctx)
        if key is None:
            return ReserveResult(ok=True)
        _, window_sec = self._limits(constraint)
        with self._store.locked([(ResourceKind.FREQUENCY, key)]):
            marker = self._clock.now_ms()
            recent = self._recent(key, window_sec, marker)
            self._store.put(ResourceKind.FREQUENCY, key, recent + (marker,))
        return ReserveResult(
            ok=True,
            reserved=ReservationToken(
                kind=ResourceKind.FREQUENCY, key=key, marker=marker
            ),
        )

    def release(self, reserved: ReservationToken) -> bool:
        if reserved is None or reserved.kind != ResourceKind.FREQUENCY:
            return True
        with self._store.locked([(ResourceKind.FREQUENCY, reserved.key)]):
            markers = list(self._store.get(ResourceKind.FREQUENCY, reserved.key) or ())
            if reserved.marker in markers:
                markers.remove(reserved.marker)
                self._store.put(ResourceKind.FREQUENCY, reserved.key, tuple(markers))
        return True
