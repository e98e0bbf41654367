"""
Tests for PolicyOS triggers, segments, scorer and actions.
"""

from datetime import datetime, timezone

import pytest

from core.ledger.service import InMemoryLedgerService
from core.time.clock import FixedClock
from engines.policyos.models import (
    ActionCommand,
    ActionSpec,
    PluginSpec,
    Policy,
    PolicyProgram,
    TriggerContext,
)
from engines.policyos.plugins import (
    AllUsersSegment,
    ConditionSegment,
    EventTrigger,
    ExpectedProfitScorer,
    FragmentGrantAction,
    NoopAction,
    StoryInjectAction,
    TagSegment,
    VoucherGrantAction,
    WalletGrantAction,
)


def _clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


def _policy(**overrides) -> Policy:
    data = dict(policy_id="p1", merchant_id="m1", trigger_event="WEATHER_CHANGE")
    data.update(overrides)
    return Policy(**data)


def _ctx(**overrides) -> TriggerContext:
    data = dict(
        merchant_id="m1",
        event="weather_change ",
        event_id="evt_1",
        payload={"weather": "RAIN"},
        user={"uid": "u1", "tags": ["vip", "regular"]},
        policy_id="p1",
    )
    data.update(overrides)
    return TriggerContext(**data)


# ── Triggers ─────────────────────────────────────────────────

class TestEventTrigger:
    def test_match_is_case_insensitive(self):
        assert EventTrigger().match(PluginSpec("event_trigger_v1"), _policy(), _ctx())

    def test_params_event_overrides_policy(self):
        spec = PluginSpec("event_trigger_v1", {"event": "ORDER_PAID"})
        assert not EventTrigger().match(spec, _policy(), _ctx())
        assert EventTrigger().match(spec, _policy(), _ctx(event="ORDER_PAID"))

    def test_expand_candidates_capped_by_program(self):
        policy = _policy(program=PolicyProgram(max_instances=2))
        spec = PluginSpec("event_trigger_v1", {"instances": 5})
        candidates = EventTrigger().expand_candidates(spec, policy, _ctx())
        assert [c.instance for c in candidates] == [1, 2]

    def test_expand_defaults_to_one(self):
        candidates = EventTrigger().expand_candidates(
            PluginSpec("event_trigger_v1"), _policy(), _ctx()
        )
        assert len(candidates) == 1
        assert candidates[0].policy.policy_id == "p1"


# ── Segments ─────────────────────────────────────────────────

class TestSegments:
    def test_all_users(self):
        result = AllUsersSegment().evaluate(PluginSpec("all_users_v1"), _policy(), _ctx())
        assert result.matched
        assert result.reason_codes == ("segment:all_users",)

    def test_tag_segment(self):
        spec = PluginSpec("tag_segment_v1", {"tags": ["vip"]})
        assert TagSegment().evaluate(spec, _policy(), _ctx()).matched
        missing = TagSegment().evaluate(spec, _policy(), _ctx(user={"uid": "u2"}))
        assert not missing.matched
        assert missing.reason_codes == ("segment:tag_mismatch",)

    def test_condition_segment(self):
        spec = PluginSpec("condition_segment_v1", {
            "conditions": [{"field": "weather", "op": "eq", "value": "SUN"}],
        })
        result = ConditionSegment().evaluate(spec, _policy(), _ctx())
        assert result.reason_codes == ("segment:conditions_mismatch",)

    def test_condition_segment_empty(self):
        result = ConditionSegment().evaluate(
            PluginSpec("condition_segment_v1"), _policy(), _ctx()
        )
        assert result.matched
        assert result.reason_codes == ("segment:conditions_empty",)


# ── Scorer ───────────────────────────────────────────────────

class TestExpectedProfitScorer:
    def test_defaults(self):
        score = ExpectedProfitScorer().score(_policy(), _ctx())
        assert score.utility == pytest.approx(0.5)
        assert score.uncertainty == pytest.approx(0.15)
        assert score.expected_range["min"] == pytest.approx(0.375)
        assert score.expected_range["max"] == pytest.approx(0.625)
        assert score.reason_codes == ("score:expected_profit_v1",)

    def test_uses_model_estimate(self):
        ctx = _ctx(model_estimate={
            "p": 0.2, "v": 50, "c": 4, "risk_penalty": 1, "fatigue_penalty": 1,
            "uncertainty": 3,
        })
        score = ExpectedProfitScorer().score(_policy(), ctx)
        assert score.utility == pytest.approx(4.0)
        assert score.uncertainty == 1.0
        assert score.estimate_cost == 4

    def test_minimum_spread(self):
        ctx = _ctx(model_estimate={"p": 0, "v": 0})
        score = ExpectedProfitScorer().score(_policy(), ctx)
        assert score.expected_range == {"min": -0.05, "max": 0.05}


# ── Actions ──────────────────────────────────────────────────

def _command(plugin: str, **params) -> ActionCommand:
    return ActionCommand(id="p1:action:1", plugin=plugin, channel="wallet", params=params)


class TestWalletGrantAction:
    def test_estimate_cost(self):
        plugin = WalletGrantAction(InMemoryLedgerService(_clock()))
        estimate = plugin.estimate_cost(
            ActionSpec("wallet_grant_v1", params={"amount": 12}), _policy(), _ctx()
        )
        assert estimate.budget_cost == 12
        explicit = plugin.estimate_cost(
            ActionSpec("wallet_grant_v1", params={"amount": 12, "cost": 3}), _policy(), _ctx()
        )
        assert explicit.cost == 3

    def test_grant_applied(self):
        ledger = InMemoryLedgerService(_clock())
        plugin = WalletGrantAction(ledger)
        response = plugin.execute(
            _ctx(), _policy(), _command("wallet_grant_v1", amount=12), "trace-1"
        )
        assert response["success"] is True
        assert response["ledger_txn_id"] == "txn_000001"
        assert response["grants"] == [{"account": "bonus", "amount": 12.0}]
        assert ledger.balance("m1", "u1", "bonus") == 12.0

    def test_grant_is_idempotent_per_event(self):
        ledger = InMemoryLedgerService(_clock())
        plugin = WalletGrantAction(ledger)
        command = _command("wallet_grant_v1", amount=5)
        first = plugin.execute(_ctx(), _policy(), command, "trace-1")
        second = plugin.execute(_ctx(), _policy(), command, "trace-2")
        assert first["ledger_txn_id"] == second["ledger_txn_id"]
        assert ledger.balance("m1", "u1") == 5.0
        plugin.execute(_ctx(event_id="evt_2"), _policy(), command, "trace-3")
        assert ledger.balance("m1", "u1") == 10.0

    def test_invalid_without_user_or_amount(self):
        plugin = WalletGrantAction(InMemoryLedgerService(_clock()))
        no_user = plugin.execute(
            _ctx(user=None), _policy(), _command("wallet_grant_v1", amount=5), "t"
        )
        assert no_user == {"success": False, "reason_codes": ["action:wallet_grant_invalid"]}
        no_amount = plugin.execute(_ctx(), _policy(), _command("wallet_grant_v1"), "t")
        assert no_amount["success"] is False

    def test_amounts_differing_past_six_digits_post_separately(self):
        ledger = InMemoryLedgerService(_clock())
        plugin = WalletGrantAction(ledger)
        first = plugin.execute(
            _ctx(), _policy(), _command("wallet_grant_v1", amount=1234567), "t"
        )
        second = plugin.execute(
            _ctx(), _policy(), _command("wallet_grant_v1", amount=1234568), "t"
        )
        assert first["ledger_txn_id"] != second["ledger_txn_id"]
        keys = [txn.idempotency_key for txn in ledger.transactions()]
        assert keys == [
            "m1|evt_1|p1|wallet_grant_v1|bonus|1234567",
            "m1|evt_1|p1|wallet_grant_v1|bonus|1234568",
        ]
        assert ledger.balance("m1", "u1") == 2469135.0

    def test_user_without_uid_is_invalid_not_raised(self):
        ledger = InMemoryLedgerService(_clock())
        response = WalletGrantAction(ledger).execute(
            _ctx(user={"tags": ["vip"]}), _policy(),
            _command("wallet_grant_v1", amount=5), "t",
        )
        assert response == {"success": False, "reason_codes": ["action:wallet_grant_invalid"]}
        assert ledger.transactions() == ()


class TestVoucherGrantAction:
    def _voucher(self, **overrides):
        voucher = {"id": "v_rain", "type": "CASH", "name": "Rain voucher", "value": 8}
        voucher.update(overrides)
        return voucher

    def test_estimate_cost_defaults_to_voucher_value(self):
        plugin = VoucherGrantAction(InMemoryLedgerService(_clock()), _clock())
        estimate = plugin.estimate_cost(
            ActionSpec("voucher_grant_v1", params={"voucher": self._voucher()}),
            _policy(), _ctx(),
        )
        assert estimate.cost == 8
        explicit = plugin.estimate_cost(
            ActionSpec("voucher_grant_v1", params={"voucher": self._voucher(), "cost": 2}),
            _policy(), _ctx(),
        )
        assert explicit.budget_cost == 2

    def test_voucher_issued_and_posted(self):
        ledger = InMemoryLedgerService(_clock())
        plugin = VoucherGrantAction(ledger, _clock())
        response = plugin.execute(
            _ctx(), _policy(),
            _command("voucher_grant_v1", voucher=self._voucher(), expires_in_sec=3600),
            "trace-1",
        )
        assert response["success"] is True
        assert response["reason_codes"] == ["action:voucher_grant_applied"]
        voucher = response["vouchers"][0]
        assert voucher["id"] == "v_rain"
        assert voucher["status"] == "ACTIVE"
        assert voucher["expires_at"] == "2026-03-01T13:00:00+00:00"
        assert ledger.account_balance("m1", "u1", "user_asset:voucher") == 8.0
        txn = ledger.transactions()[0]
        assert txn.txn_type == "POLICYOS_ASSET_GRANT"
        assert txn.idempotency_key == "m1|evt_1|p1|voucher_grant_v1|v_rain"

    def test_derived_id_and_minimum_lifetime(self):
        plugin = VoucherGrantAction(InMemoryLedgerService(_clock()), _clock())
        response = plugin.execute(
            _ctx(policy_id="rain@v1", event_id="evt-9"), _policy(),
            _command("voucher_grant_v1", voucher={"value": 1}, expires_in_sec=5),
            "t",
        )
        voucher = response["vouchers"][0]
        assert voucher["id"] == "voucher_rain_v1_evt_9"
        assert voucher["type"] == "NO_THRESHOLD_VOUCHER"
        assert voucher["expires_at"] == "2026-03-01T12:01:00+00:00"

    def test_redelivery_issues_once(self):
        ledger = InMemoryLedgerService(_clock())
        plugin = VoucherGrantAction(ledger, _clock())
        command = _command("voucher_grant_v1", voucher=self._voucher())
        first = plugin.execute(_ctx(), _policy(), command, "t1")
        second = plugin.execute(_ctx(), _policy(), command, "t2")
        assert first["ledger_txn_id"] == second["ledger_txn_id"]
        assert len(ledger.transactions()) == 1

    def test_missing_user(self):
        plugin = VoucherGrantAction(InMemoryLedgerService(_clock()), _clock())
        response = plugin.execute(
            _ctx(user=None), _policy(), _command("voucher_grant_v1", voucher=self._voucher()), "t"
        )
        assert response == {
            "success": False,
            "reason_codes": ["action:voucher_grant_missing_user"],
        }


class TestFragmentGrantAction:
    def test_fragments_granted_and_posted(self):
        ledger = InMemoryLedgerService(_clock())
        response = FragmentGrantAction(ledger).execute(
            _ctx(), _policy(), _command("fragment_grant_v1", type="tea", amount=3.7), "t"
        )
        assert response["success"] is True
        assert response["fragments"] == [{"type": "tea", "amount": 3}]
        assert ledger.account_balance("m1", "u1", "user_asset:fragment:tea") == 3.0
        txn = ledger.transactions()[0]
        assert txn.idempotency_key == "m1|evt_1|p1|fragment_grant_v1|tea|3"
        assert txn.metadata["amount"] == 3

    def test_cost_param_sets_ledger_amount(self):
        ledger = InMemoryLedgerService(_clock())
        plugin = FragmentGrantAction(ledger)
        estimate = plugin.estimate_cost(
            ActionSpec("fragment_grant_v1", params={"amount": 2, "cost": 0.5}), _policy(), _ctx()
        )
        assert estimate.cost == 0.5
        plugin.execute(_ctx(), _policy(), _command("fragment_grant_v1", amount=2, cost=0.5), "t")
        assert ledger.account_balance("m1", "u1", "user_asset:fragment:general") == 0.5

    def test_missing_user_and_invalid_amount(self):
        plugin = FragmentGrantAction(InMemoryLedgerService(_clock()))
        no_user = plugin.execute(
            _ctx(user={}), _policy(), _command("fragment_grant_v1", amount=1), "t"
        )
        assert no_user["reason_codes"] == ["action:fragment_grant_missing_user"]
        no_amount = plugin.execute(
            _ctx(), _policy(), _command("fragment_grant_v1", amount=0.4), "t"
        )
        assert no_amount == {
            "success": False,
            "reason_codes": ["action:fragment_grant_invalid_amount"],
        }


class TestStoryAndNoop:
    def test_story_card_from_policy(self):
        policy = _policy(story={"title": "Rainy day"})
        response = StoryInjectAction(_clock()).execute(
            _ctx(), policy, _command("story_inject_v1"), "t"
        )
        assert response["story_cards"] == [{
            "title": "Rainy day",
            "generated_at": "2026-03-01T12:00:00+00:00",
        }]

    def test_story_without_story_is_empty(self):
        response = StoryInjectAction(_clock()).execute(
            _ctx(), _policy(), _command("story_inject_v1"), "t"
        )
        assert response["success"] is True
        assert response["story_cards"] == []

    def test_noop(self):
        response = NoopAction().execute(_ctx(), _policy(), _command("noop_v1"), "t")
        assert response == {"success": True, "reason_codes": ["action:noop"]}
