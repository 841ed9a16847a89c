"""
Event window builder.

Slices one child's raw history into the trailing 7/14/30-day windows the
detectors read from. Each window is split by polarity and by category, and
every slice is in chronological order, so no detector ever walks the full
event list itself.

Windows are calendar-day based: an event on the same UTC date as ``now`` is
day 0, yesterday is day 1, and a 7-day window covers days 0-6. Events stamped
after ``now`` are ignored.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from services.coaching.constants import (
    WINDOW_7_DAYS,
    WINDOW_14_DAYS,
    WINDOWS,
)
from services.coaching.entities import BehaviorEvent, Goal, as_utc


@dataclass(frozen=True)
class WindowSlice:
    """Events falling in one window, pre-partitioned."""
    days: int
    events: Tuple[BehaviorEvent, ...] = ()
    positive: Tuple[BehaviorEvent, ...] = ()
    challenge: Tuple[BehaviorEvent, ...] = ()
    by_category: Dict[str, Tuple[BehaviorEvent, ...]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.events)

    def positive_in_category(self, category_id: str) -> Tuple[BehaviorEvent, ...]:
        return tuple(e for e in self.by_category.get(category_id, ()) if e.is_positive)


@dataclass(frozen=True)
class WindowedView:
    child_id: str
    now: datetime
    windows: Dict[int, WindowSlice]
    # Days 7-13: the week before the current one
    prior_week: WindowSlice
    goals: Tuple[Goal, ...]
    insufficient_data: bool

    @property
    def today(self) -> date:
        return self.now.date()

    def window(self, days: int) -> WindowSlice:
        return self.windows[days]

    @property
    def last_7(self) -> WindowSlice:
        return self.windows[WINDOW_7_DAYS]

    @property
    def last_14(self) -> WindowSlice:
        return self.windows[WINDOW_14_DAYS]

    def day_offset(self, when: datetime) -> int:
        """Whole calendar days between ``when`` and now (0 = today)."""
        return (self.today - as_utc(when).date()).days

    def active_goals(self) -> Tuple[Goal, ...]:
        return tuple(g for g in self.goals if g.is_active(self.now))


def _chronological(events: Iterable[BehaviorEvent]) -> List[BehaviorEvent]:
    return sorted(events, key=lambda e: (as_utc(e.occurred_at), e.id))


def _make_slice(days: int, events: List[BehaviorEvent]) -> WindowSlice:
    by_category: Dict[str, List[BehaviorEvent]] = defaultdict(list)
    for event in events:
        by_category[event.category_id].append(event)
    return WindowSlice(
        days=days,
        events=tuple(events),
        positive=tuple(e for e in events if e.is_positive),
        challenge=tuple(e for e in events if e.is_challenge),
        by_category={k: tuple(v) for k, v in sorted(by_category.items())},
    )


def build(
    events: Iterable[BehaviorEvent],
    goals: Iterable[Goal],
    now: datetime,
    child_id: Optional[str] = None,
    min_events_14d: int = 3,
) -> WindowedView:
    """
    Build the windowed view for one child.

    Args:
        events: The child's events as returned by the data provider.
        goals: The child's goals.
        now: Evaluation time. Never read from the clock here.
        child_id: When given, events/goals for other children are dropped.
        min_events_14d: Below this many events in the trailing 14 days the
            view is flagged ``insufficient_data``.
    """
    now = as_utc(now)
    today = now.date()

    candidates = [
        e for e in events
        if (child_id is None or e.child_id == child_id) and as_utc(e.occurred_at) <= now
    ]
    ordered = _chronological(candidates)

    windows: Dict[int, WindowSlice] = {}
    for days in WINDOWS:
        in_window = [e for e in ordered if (today - as_utc(e.occurred_at).date()).days < days]
        windows[days] = _make_slice(days, in_window)

    prior = [
        e for e in ordered
        if WINDOW_7_DAYS <= (today - as_utc(e.occurred_at).date()).days < WINDOW_14_DAYS
    ]

    child_goals = tuple(sorted(
        (g for g in goals if child_id is None or g.child_id == child_id),
        key=lambda g: g.id,
    ))

    resolved_child = child_id
    if resolved_child is None:
        resolved_child = ordered[0].child_id if ordered else (child_goals[0].child_id if child_goals else "")

    return WindowedView(
        child_id=resolved_child,
        now=now,
        windows=windows,
        prior_week=_make_slice(WINDOW_14_DAYS - WINDOW_7_DAYS, prior),
        goals=child_goals,
        insufficient_data=len(windows[WINDOW_14_DAYS]) < min_events_14d,
    )
