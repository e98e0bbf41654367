"""
PolicyOS Engine — Candidate Ranking & Allocation
==================================================
Orders qualified candidates from every policy of one event and decides
which of them may proceed to admission.

Ranking (stable):
    1. lane:        EMERGENCY > GUARDED > NORMAL > BACKGROUND
    2. utility:     higher first
    3. tie_breaker: the left candidate's policy.tie_breaker
                    UTILITY_DESC   → utility (already equal, so keeps order)
                    EXPIRY_SOONER  → earlier policy.expires_at first
                    HIGHER_MARGIN  → higher event margin first
                    RANDOM_JITTER  → policy_id order (deterministic)

Allocation walks the ranked list once. Candidates compete inside a
conflict key (overlap.conflict_set | user id):
    HARD_EXCLUSIVE  → first candidate of the key wins, later ones skip
    SOFT_EXCLUSIVE  → up to overlap.max_winners candidates win
    PREEMPTIVE      → first wins; an EMERGENCY candidate always wins
    STACKABLE       → always wins

Skipped candidates carry an "allocation:*" reason code.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Dict, List, Sequence, Tuple

from engines.policyos.models import (
    Lane,
    OverlapMode,
    Policy,
    RankedCandidate,
    TieBreaker,
    to_number,
)

logger = logging.getLogger("policyos.allocation")

ANONYMOUS_USER = "anonymous"


class AllocationReason:
    HARD_EXCLUSIVE_CONFLICT = "allocation:hard_exclusive_conflict"
    SOFT_EXCLUSIVE_LIMIT = "allocation:soft_exclusive_limit"
    PREEMPTED_BY_EMERGENCY = "allocation:preempted_by_emergency"
    PREEMPTIVE_CONFLICT = "allocation:preemptive_conflict"


@dataclass(frozen=True)
class SkippedCandidate:
    candidate: RankedCandidate
    reason: str

    def to_dict(self) -> dict:
        return {
            "policy_id": self.candidate.policy.policy_id,
            "instance": self.candidate.instance,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class Allocation:
    winners: Tuple[RankedCandidate, ...] = ()
    skipped: Tuple[SkippedCandidate, ...] = ()

    def winner_counts(self) -> Dict[str, int]:
        """Winning candidates per policy_id."""
        counts: Dict[str, int] = {}
        for item in self.winners:
            counts[item.policy.policy_id] = counts.get(item.policy.policy_id, 0) + 1
        return counts

    def to_dict(self) -> dict:
        return {
            "winners": [
                {"policy_id": item.policy.policy_id, "instance": item.instance}
                for item in self.winners
            ],
            "skipped": [item.to_dict() for item in self.skipped],
        }


# ══════════════════════════════════════════════════════════════
# RANKING
# ══════════════════════════════════════════════════════════════

def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def _expiry_ms(policy: Policy) -> float:
    """Epoch ms of policy.expires_at; unparseable or absent → +inf."""
    raw = str(policy.expires_at or "").strip()
    if not raw:
        return math.inf
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return math.inf
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp() * 1000


def _tie_break(left: RankedCandidate, right: RankedCandidate) -> int:
    strategy = left.policy.tie_breaker
    if strategy == TieBreaker.EXPIRY_SOONER:
        left_ms, right_ms = _expiry_ms(left.policy), _expiry_ms(right.policy)
        if left_ms == right_ms:
            return 0
        return -1 if left_ms < right_ms else 1
    if strategy == TieBreaker.HIGHER_MARGIN:
        return _sign(
            to_number(right.ctx.payload.get("margin"), 0.0)
            - to_number(left.ctx.payload.get("margin"), 0.0)
        )
    if strategy == TieBreaker.RANDOM_JITTER:
        left_id, right_id = left.policy.policy_id, right.policy.policy_id
        return (left_id > right_id) - (left_id < right_id)
    return _sign(right.score.utility - left.score.utility)


def _compare(left: RankedCandidate, right: RankedCandidate) -> int:
    lane = Lane.RANK.get(right.policy.lane, 0) - Lane.RANK.get(left.policy.lane, 0)
    if lane:
        return lane
    utility = _sign(right.score.utility - left.score.utility)
    if utility:
        return utility
    return _tie_break(left, right)


def rank_candidates(candidates: Sequence[RankedCandidate]) -> List[RankedCandidate]:
    """Stable ranking; equal candidates keep their input order."""
    return sorted(candidates, key=cmp_to_key(_compare))


# ══════════════════════════════════════════════════════════════
# ALLOCATION
# ══════════════════════════════════════════════════════════════

@dataclass
class _ConflictState:
    count: int = 0
    emergency_won: bool = False


def _conflict_key(candidate: RankedCandidate) -> str:
    user_id = candidate.ctx.user_id or ANONYMOUS_USER
    return f"{candidate.policy.overlap.conflict_set}|{user_id}"


def _skip_reason(candidate: RankedCandidate, state: _ConflictState) -> str:
    """Reason code when the candidate loses its conflict key, else ''."""
    overlap = candidate.policy.overlap
    emergency = candidate.policy.lane == Lane.EMERGENCY
    if overlap.mode == OverlapMode.STACKABLE:
        return ""
    if overlap.mode == OverlapMode.SOFT_EXCLUSIVE:
        if state.count >= overlap.max_winners:
            return AllocationReason.SOFT_EXCLUSIVE_LIMIT
        return ""
    if overlap.mode == OverlapMode.PREEMPTIVE:
        if state.emergency_won and not emergency:
            return AllocationReason.PREEMPTED_BY_EMERGENCY
        if state.count > 0 and not emergency:
            return AllocationReason.PREEMPTIVE_CONFLICT
        return ""
    if state.count > 0:
        return AllocationReason.HARD_EXCLUSIVE_CONFLICT
    return ""


def allocate_candidates(ranked: Sequence[RankedCandidate]) -> Allocation:
    """Walk ranked candidates once; see module doc for the modes."""
    winners: List[RankedCandidate] = []
    skipped: List[SkippedCandidate] = []
    states: Dict[str, _ConflictState] = {}

    for candidate in ranked:
        state = states.setdefault(_conflict_key(candidate), _ConflictState())
        reason = _skip_reason(candidate, state)
        if reason:
            skipped.append(SkippedCandidate(candidate=candidate, reason=reason))
            logger.info(
                f"Candidate skipped: policy={candidate.policy.policy_id} "
                f"instance={candidate.instance} reason={reason}"
            )
            continue
        winners.append(candidate)
        state.count += 1
        if candidate.policy.lane == Lane.EMERGENCY:
            state.emergency_won = True

    return Allocation(winners=tuple(winners), skipped=tuple(skipped))
