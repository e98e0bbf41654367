"""
PolicyOS Plugins — Triggers and Segments
==========================================
Trigger plugins decide whether an event fires a policy and fan it out
into candidates. Segment plugins decide whether the event's user is in
the policy's audience.
"""

from __future__ import annotations

from typing import List

from engines.policyos.conditions import conditions_hold
from engines.policyos.models import (
    Candidate,
    PluginSpec,
    Policy,
    SegmentResult,
    TriggerContext,
    to_number,
)
from engines.policyos.plugins.contracts import SegmentPlugin, TriggerPlugin


def _normalize_event(value) -> str:
    return str(value or "").strip().upper()


# ══════════════════════════════════════════════════════════════
# TRIGGERS
# ══════════════════════════════════════════════════════════════

class EventTrigger(TriggerPlugin):
    """
    Matches on event name (trimmed, case-insensitive).

    Expected event: trigger.params.event, else policy.trigger_event.
    Candidates: min(params.instances, program.max_instances), both >= 1.
    """

    def match(self, trigger: PluginSpec, policy: Policy, ctx: TriggerContext) -> bool:
        expected = _normalize_event(trigger.params.get("event") or policy.trigger_event)
        actual = _normalize_event(ctx.event)
        return bool(expected and actual and expected == actual)

    def expand_candidates(
        self, trigger: PluginSpec, policy: Policy, ctx: TriggerContext
    ) -> List[Candidate]:
        requested = max(1, int(to_number(trigger.params.get("instances"), 1)))
        max_instances = max(1, policy.program.max_instances)
        return [
            Candidate(instance=index + 1, policy=policy, ctx=ctx)
            for index in range(min(requested, max_instances))
        ]


# ══════════════════════════════════════════════════════════════
# SEGMENTS
# ══════════════════════════════════════════════════════════════

class AllUsersSegment(SegmentPlugin):

    def evaluate(self, segment, policy, ctx) -> SegmentResult:
        return SegmentResult(matched=True, reason_codes=("segment:all_users",))


class TagSegment(SegmentPlugin):
    """User tags must include every tag in params.tags."""

    def evaluate(self, segment, policy, ctx) -> SegmentResult:
        required = segment.params.get("tags")
        required = required if isinstance(required, (list, tuple)) else []
        user_tags = (ctx.user or {}).get("tags")
        user_tags = user_tags if isinstance(user_tags, (list, tuple)) else []
        matched = all(tag in user_tags for tag in required)
        return SegmentResult(
            matched=matched,
            reason_codes=(
                ("segment:tag_match",) if matched else ("segment:tag_mismatch",)
            ),
        )


class ConditionSegment(SegmentPlugin):
    """
    Audience defined by field conditions.

    Params: conditions (list of {field, op, value}), logic AND|OR.
    No conditions → everyone matches.
    """

    def evaluate(self, segment, policy, ctx) -> SegmentResult:
        conditions = [
            item for item in (segment.params.get("conditions") or [])
            if isinstance(item, dict)
        ]
        if not conditions:
            return SegmentResult(
                matched=True, reason_codes=("segment:conditions_empty",)
            )
        matched = conditions_hold(conditions, ctx, segment.params.get("logic", "AND"))
        return SegmentResult(
            matched=matched,
            reason_codes=(
                ("segment:conditions_match",) if matched
                else ("segment:conditions_mismatch",)
            ),
        )
