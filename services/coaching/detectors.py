"""
Signal detectors.

Each detector is a pure function ``detect(view, goal=None) -> Optional[Signal]``
that looks for one behavioral pattern in a pre-built WindowedView. Goal-scoped
detectors are called once per active goal; child-scoped detectors are called
once and pick the strongest subject themselves.

Detectors never consult each other, never read the clock and never touch
storage.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from services.coaching.constants import (
    GOAL_AT_RISK_BASE_SEVERITY,
    GOAL_AT_RISK_PACE_TOLERANCE,
    GOAL_AT_RISK_URGENT_BOOST,
    GOAL_AT_RISK_URGENT_DAYS,
    GOAL_STALLED_BASE_SEVERITY,
    GOAL_STALLED_MAX_SEVERITY,
    GOAL_STALLED_MIN_AGE_DAYS,
    GOAL_STALLED_PROGRESS_FRACTION,
    GOAL_STALLED_SEVERITY_PER_DAY,
    HIGH_CHALLENGE_BASE_SEVERITY,
    HIGH_CHALLENGE_MAX_SEVERITY,
    HIGH_CHALLENGE_MIN_EVENTS,
    HIGH_CHALLENGE_RATIO_THRESHOLD,
    POSITIVE_STREAK_BASE_SEVERITY,
    POSITIVE_STREAK_MAX_SEVERITY,
    POSITIVE_STREAK_MIN_DAYS,
    POSITIVE_STREAK_SEVERITY_PER_DAY,
    ROUTINE_FORMING_BASE_SEVERITY,
    ROUTINE_FORMING_MAX_GAP_DAYS,
    ROUTINE_FORMING_MAX_TRAILING_GAP_DAYS,
    ROUTINE_FORMING_MAX_SEVERITY,
    ROUTINE_FORMING_MIN_DISTINCT_DAYS,
    ROUTINE_FORMING_MIN_OCCURRENCES,
    ROUTINE_FORMING_SEVERITY_PER_DAY,
    ROUTINE_SLIPPING_BASE_SEVERITY,
    ROUTINE_SLIPPING_CADENCE_MULTIPLIER,
    ROUTINE_SLIPPING_MAX_SEVERITY,
    ROUTINE_SLIPPING_MIN_GAP_DAYS,
    ROUTINE_SLIPPING_MIN_PRIOR_DAYS,
    ROUTINE_SLIPPING_SEVERITY_PER_DAY,
    SEVERITY_MAX,
    SEVERITY_MIN,
    WINDOW_7_DAYS,
    WINDOW_14_DAYS,
    WINDOW_30_DAYS,
    SignalType,
)
from services.coaching.entities import BehaviorEvent, EvidenceRef, Goal, Signal, as_utc
from services.coaching.windows import WindowedView


def clamp_severity(value: float) -> int:
    return int(max(SEVERITY_MIN, min(SEVERITY_MAX, round(value))))


def _latest(events: Iterable[BehaviorEvent], fallback: datetime) -> datetime:
    stamps = [as_utc(e.occurred_at) for e in events]
    return max(stamps) if stamps else as_utc(fallback)


def _event_refs(events: Iterable[BehaviorEvent]) -> List[EvidenceRef]:
    return [EvidenceRef.event(e.id) for e in events]


def _category_name(events: Sequence[BehaviorEvent], category_id: str) -> str:
    for event in reversed(events):
        if event.category_name:
            return event.category_name
    return category_id


def _since_goal_start(events: Iterable[BehaviorEvent], goal: Goal) -> Tuple[BehaviorEvent, ...]:
    started = as_utc(goal.created_at)
    return tuple(e for e in events if as_utc(e.occurred_at) >= started)


# ---------------------------------------------------------------------------
# Goal-scoped detectors
# ---------------------------------------------------------------------------

def detect_goal_at_risk(view: WindowedView, goal: Optional[Goal] = None) -> Optional[Signal]:
    """
    Deadline goal whose recent earn rate will not reach the target in time.

    required rate = points still needed / days left until the deadline
    observed rate = positive points over the last 7 days (or since the goal
                    started, if younger) / that many days
    Fires when observed < required * GOAL_AT_RISK_PACE_TOLERANCE. Severity
    grows with the shortfall and gets a boost when the deadline is close.
    """
    if goal is None or goal.deadline is None or not goal.is_active(view.now):
        return None

    days_remaining = max((as_utc(goal.deadline).date() - view.today).days, 1)
    required_rate = goal.remaining_points / days_remaining

    contributing = _since_goal_start(view.last_7.positive, goal)
    goal_age_days = view.day_offset(goal.created_at) + 1
    rate_days = max(min(WINDOW_7_DAYS, goal_age_days), 1)
    observed_rate = sum(e.points for e in contributing) / rate_days

    if observed_rate >= required_rate * GOAL_AT_RISK_PACE_TOLERANCE:
        return None

    shortfall = 1.0 - (observed_rate / required_rate)
    severity = GOAL_AT_RISK_BASE_SEVERITY + (SEVERITY_MAX - GOAL_AT_RISK_BASE_SEVERITY) * shortfall
    if days_remaining <= GOAL_AT_RISK_URGENT_DAYS:
        severity += GOAL_AT_RISK_URGENT_BOOST

    refs = [EvidenceRef.goal(goal.id)] + _event_refs(contributing)
    return Signal(
        type=SignalType.GOAL_AT_RISK,
        child_id=view.child_id,
        severity=clamp_severity(severity),
        evidence_refs=frozenset(refs),
        computed_at=view.now,
        latest_evidence_at=_latest(contributing, goal.created_at),
        subject_id=goal.id,
        params={
            "goal_id": goal.id,
            "goal_name": goal.name,
            "days_remaining": days_remaining,
            "progress_percent": int(goal.progress * 100),
            "required_daily_points": round(required_rate, 1),
            "observed_daily_points": round(observed_rate, 1),
            "count": len(contributing),
            "days": WINDOW_7_DAYS,
        },
    )


def detect_goal_stalled(view: WindowedView, goal: Optional[Goal] = None) -> Optional[Signal]:
    """
    Open goal with (near) zero progress over the last 14 days.

    Goals younger than GOAL_STALLED_MIN_AGE_DAYS are left alone. Severity
    grows with the number of days since the last positive event that counted
    toward the goal.
    """
    if goal is None or not goal.is_active(view.now):
        return None

    goal_age_days = view.day_offset(goal.created_at)
    if goal_age_days < GOAL_STALLED_MIN_AGE_DAYS:
        return None

    progress_events = _since_goal_start(view.last_14.positive, goal)
    earned = sum(e.points for e in progress_events)
    if earned > goal.target_points * GOAL_STALLED_PROGRESS_FRACTION:
        return None

    history = _since_goal_start(view.window(WINDOW_30_DAYS).positive, goal)
    if history:
        days_since = view.day_offset(history[-1].occurred_at)
    else:
        days_since = goal_age_days

    severity = min(
        GOAL_STALLED_BASE_SEVERITY + GOAL_STALLED_SEVERITY_PER_DAY * days_since,
        GOAL_STALLED_MAX_SEVERITY,
    )

    refs = [EvidenceRef.goal(goal.id)] + _event_refs(progress_events)
    return Signal(
        type=SignalType.GOAL_STALLED,
        child_id=view.child_id,
        severity=clamp_severity(severity),
        evidence_refs=frozenset(refs),
        computed_at=view.now,
        latest_evidence_at=_latest(progress_events, goal.created_at),
        subject_id=goal.id,
        params={
            "goal_id": goal.id,
            "goal_name": goal.name,
            "days_since_progress": days_since,
            "progress_percent": int(goal.progress * 100),
            "days": WINDOW_14_DAYS,
        },
    )


# ---------------------------------------------------------------------------
# Child-scoped detectors
# ---------------------------------------------------------------------------

def _strongest(candidates: List[Tuple[int, int, str, Signal]]) -> Optional[Signal]:
    """Highest severity, then most evidence, then lowest subject id."""
    if not candidates:
        return None
    candidates.sort(key=lambda c: (-c[0], -c[1], c[2]))
    return candidates[0][3]


def _longest_empty_run(offsets: Sequence[int]) -> int:
    """Longest run of days without an occurrence between two occurrences."""
    ordered = sorted(set(offsets), reverse=True)
    runs = [older - newer - 1 for older, newer in zip(ordered, ordered[1:])]
    return max(runs, default=0)


def _trailing_empty_run(offsets: Sequence[int]) -> int:
    """Empty days from the latest occurrence up to (but not including) today."""
    return max(min(offsets) - 1, 0)


def detect_routine_forming(view: WindowedView, goal: Optional[Goal] = None) -> Optional[Signal]:
    """
    A positive behavior category repeating consistently this week.

    Needs ROUTINE_FORMING_MIN_OCCURRENCES events on at least
    ROUTINE_FORMING_MIN_DISTINCT_DAYS different days in the last 7 days, no
    run of more than ROUTINE_FORMING_MAX_GAP_DAYS empty days between them, and
    at most ROUTINE_FORMING_MAX_TRAILING_GAP_DAYS empty days since the latest.
    """
    window = view.last_7
    candidates = []
    for category_id in window.by_category:
        events = window.positive_in_category(category_id)
        if len(events) < ROUTINE_FORMING_MIN_OCCURRENCES:
            continue
        offsets = [view.day_offset(e.occurred_at) for e in events]
        distinct_days = len(set(offsets))
        if distinct_days < ROUTINE_FORMING_MIN_DISTINCT_DAYS:
            continue
        if _longest_empty_run(offsets) > ROUTINE_FORMING_MAX_GAP_DAYS:
            continue
        if _trailing_empty_run(offsets) > ROUTINE_FORMING_MAX_TRAILING_GAP_DAYS:
            continue

        severity = min(
            ROUTINE_FORMING_BASE_SEVERITY + ROUTINE_FORMING_SEVERITY_PER_DAY * distinct_days,
            ROUTINE_FORMING_MAX_SEVERITY,
        )
        signal = Signal(
            type=SignalType.ROUTINE_FORMING,
            child_id=view.child_id,
            severity=clamp_severity(severity),
            evidence_refs=frozenset(_event_refs(events)),
            computed_at=view.now,
            latest_evidence_at=_latest(events, view.now),
            subject_id=category_id,
            params={
                "category_id": category_id,
                "behavior_name": _category_name(events, category_id),
                "count": len(events),
                "distinct_days": distinct_days,
                "days": WINDOW_7_DAYS,
            },
        )
        candidates.append((signal.severity, len(events), category_id, signal))

    return _strongest(candidates)


def detect_routine_slipping(view: WindowedView, goal: Optional[Goal] = None) -> Optional[Signal]:
    """
    A category that was a routine last week has gone quiet.

    "Established" means positive occurrences on at least
    ROUTINE_SLIPPING_MIN_PRIOR_DAYS distinct days in days 7-13. Its cadence is
    7 / those days. The routine is slipping when the days since its last
    occurrence reach ROUTINE_SLIPPING_MIN_GAP_DAYS and exceed
    ROUTINE_SLIPPING_CADENCE_MULTIPLIER times the cadence.
    """
    prior = view.prior_week
    candidates = []
    for category_id in prior.by_category:
        prior_events = prior.positive_in_category(category_id)
        prior_days = len({view.day_offset(e.occurred_at) for e in prior_events})
        if prior_days < ROUTINE_SLIPPING_MIN_PRIOR_DAYS:
            continue

        cadence = prior.days / prior_days
        events = view.last_14.positive_in_category(category_id)
        gap = view.day_offset(events[-1].occurred_at)
        if gap < ROUTINE_SLIPPING_MIN_GAP_DAYS or gap <= cadence * ROUTINE_SLIPPING_CADENCE_MULTIPLIER:
            continue

        severity = min(
            ROUTINE_SLIPPING_BASE_SEVERITY + ROUTINE_SLIPPING_SEVERITY_PER_DAY * gap,
            ROUTINE_SLIPPING_MAX_SEVERITY,
        )
        signal = Signal(
            type=SignalType.ROUTINE_SLIPPING,
            child_id=view.child_id,
            severity=clamp_severity(severity),
            evidence_refs=frozenset(_event_refs(events)),
            computed_at=view.now,
            latest_evidence_at=_latest(events, view.now),
            subject_id=category_id,
            params={
                "category_id": category_id,
                "behavior_name": _category_name(events, category_id),
                "days_since_last": gap,
                "cadence_days": round(cadence, 1),
                "count": len(events),
                "days": WINDOW_14_DAYS,
            },
        )
        candidates.append((signal.severity, len(events), category_id, signal))

    return _strongest(candidates)


def detect_high_challenge_week(view: WindowedView, goal: Optional[Goal] = None) -> Optional[Signal]:
    """
    Challenges make up more than HIGH_CHALLENGE_RATIO_THRESHOLD of this week's events.

    Informational, not blaming: the card says what was logged, nothing more.
    """
    window = view.last_7
    total = len(window.events)
    if total < HIGH_CHALLENGE_MIN_EVENTS:
        return None

    ratio = len(window.challenge) / total
    if ratio <= HIGH_CHALLENGE_RATIO_THRESHOLD:
        return None

    scaled = (ratio - HIGH_CHALLENGE_RATIO_THRESHOLD) / (1.0 - HIGH_CHALLENGE_RATIO_THRESHOLD)
    severity = HIGH_CHALLENGE_BASE_SEVERITY + (HIGH_CHALLENGE_MAX_SEVERITY - HIGH_CHALLENGE_BASE_SEVERITY) * scaled

    return Signal(
        type=SignalType.HIGH_CHALLENGE_WEEK,
        child_id=view.child_id,
        severity=clamp_severity(severity),
        evidence_refs=frozenset(_event_refs(window.events)),
        computed_at=view.now,
        latest_evidence_at=_latest(window.events, view.now),
        params={
            "count": len(window.challenge),
            "positive_count": len(window.positive),
            "challenge_percent": int(round(ratio * 100)),
            "days": WINDOW_7_DAYS,
        },
    )


def detect_positive_streak(view: WindowedView, goal: Optional[Goal] = None) -> Optional[Signal]:
    """
    Consecutive days with at least one positive moment, ending today or yesterday.
    """
    positive = view.window(WINDOW_30_DAYS).positive
    offsets = {view.day_offset(e.occurred_at) for e in positive}
    start = 0 if 0 in offsets else 1
    streak = 0
    while start + streak in offsets:
        streak += 1
    if streak < POSITIVE_STREAK_MIN_DAYS:
        return None

    streak_days = set(range(start, start + streak))
    events = tuple(e for e in positive if view.day_offset(e.occurred_at) in streak_days)
    severity = min(
        POSITIVE_STREAK_BASE_SEVERITY + POSITIVE_STREAK_SEVERITY_PER_DAY * streak,
        POSITIVE_STREAK_MAX_SEVERITY,
    )
    return Signal(
        type=SignalType.POSITIVE_STREAK,
        child_id=view.child_id,
        severity=clamp_severity(severity),
        evidence_refs=frozenset(_event_refs(events)),
        computed_at=view.now,
        latest_evidence_at=_latest(events, view.now),
        params={
            "streak_days": streak,
            "count": len(events),
            "days": streak,
        },
    )
