"""
Concurrency tests: racing admissions never overrun shared caps.
"""

import threading
from datetime import datetime, timezone

from core.ledger.service import InMemoryLedgerService
from core.resources.models import ResourceKind
from core.resources.store import InMemoryResourceStore
from core.time.clock import FixedClock
from engines.policyos.models import EvaluationOutcome, Policy, TriggerContext
from engines.policyos.pipeline import PolicyEvaluationPipeline
from engines.policyos.plugins import PluginRegistry, register_default_plugins


def _pipeline():
    clock = FixedClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))
    store = InMemoryResourceStore()
    registry = PluginRegistry()
    register_default_plugins(
        registry, store=store, ledger=InMemoryLedgerService(clock), clock=clock
    )
    return PolicyEvaluationPipeline(registry, store), store


def _race(pipeline, policy, contexts):
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(contexts))

    def worker(ctx):
        barrier.wait()
        evaluation = pipeline.evaluate(policy, ctx, f"trace-{ctx.event_id}")
        with lock:
            results.append(evaluation)

    threads = [threading.Thread(target=worker, args=(ctx,)) for ctx in contexts]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results


def _ctx(index: int, uid: str = "") -> TriggerContext:
    return TriggerContext(
        merchant_id="m1",
        event="FLASH_SALE",
        event_id=f"evt_{index}",
        user={"uid": uid or f"u{index}"},
    )


class TestConcurrentAdmission:
    def test_inventory_hard_cap_holds(self):
        pipeline, store = _pipeline()
        policy = Policy.from_dict({
            "policy_id": "latte_drop@v1",
            "resource_scope": {"merchant_id": "m1"},
            "trigger_event": "FLASH_SALE",
            "constraints": [
                {"plugin": "inventory_lock_v1", "params": {"sku": "latte", "max_units": 5}},
            ],
            "actions": [{"plugin": "noop_v1"}],
        })
        results = _race(pipeline, policy, [_ctx(i) for i in range(20)])

        executed = [r for r in results if r.outcome == EvaluationOutcome.EXECUTED]
        assert len(executed) == 5
        assert store.get(ResourceKind.INVENTORY, "m1|latte").reserved == 5

    def test_budget_cap_holds(self):
        pipeline, store = _pipeline()
        policy = Policy.from_dict({
            "policy_id": "bonus@v1",
            "resource_scope": {"merchant_id": "m1"},
            "trigger_event": "FLASH_SALE",
            "constraints": [
                {"plugin": "budget_guard_v1", "params": {"cap": 50, "cost_per_hit": 10}},
            ],
            "actions": [{"plugin": "noop_v1"}],
        })
        results = _race(pipeline, policy, [_ctx(i) for i in range(16)])

        executed = [r for r in results if r.outcome == EvaluationOutcome.EXECUTED]
        assert len(executed) == 5
        assert store.get(ResourceKind.BUDGET, "m1|bonus@v1").used == 50

    def test_frequency_cap_per_user_holds(self):
        pipeline, _ = _pipeline()
        policy = Policy.from_dict({
            "policy_id": "welcome@v1",
            "resource_scope": {"merchant_id": "m1"},
            "trigger_event": "FLASH_SALE",
            "constraints": [{"plugin": "frequency_cap_v1", "params": {"daily": 2}}],
            "actions": [{"plugin": "noop_v1"}],
        })
        results = _race(pipeline, policy, [_ctx(i, uid="same") for i in range(10)])

        executed = [r for r in results if r.outcome == EvaluationOutcome.EXECUTED]
        assert len(executed) == 2
