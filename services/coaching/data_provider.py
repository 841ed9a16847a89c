"""
Data providers: where the engine gets a child's canonical dataset from.

Providers return already-deduplicated data and never filter on anything other
than child and time. The engine wraps any exception a provider raises in
DataUnavailable.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from sqlalchemy.orm import Session

from services.coaching.constants import Polarity
from services.coaching.entities import BehaviorEvent, ChildProfile, Goal, as_utc

logger = logging.getLogger(__name__)


class DataProvider(Protocol):
    def fetch_child(self, child_id: str) -> Optional[ChildProfile]:
        ...

    def fetch_events(self, child_id: str, since_days: int, now: datetime) -> List[BehaviorEvent]:
        ...

    def fetch_goals(self, child_id: str) -> List[Goal]:
        ...


def _since(now: datetime, since_days: int) -> datetime:
    # Start of the oldest calendar day in range, so day offsets line up with the windows.
    start = as_utc(now) - timedelta(days=since_days)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


class InMemoryDataProvider:
    """Holds plain entity lists. Used by tests and offline tooling."""

    def __init__(
        self,
        children: Iterable[ChildProfile] = (),
        events: Iterable[BehaviorEvent] = (),
        goals: Iterable[Goal] = (),
    ):
        self.children: Dict[str, ChildProfile] = {c.id: c for c in children}
        self.events: List[BehaviorEvent] = list(events)
        self.goals: List[Goal] = list(goals)

    def fetch_child(self, child_id: str) -> Optional[ChildProfile]:
        return self.children.get(child_id)

    def fetch_events(self, child_id: str, since_days: int, now: datetime) -> List[BehaviorEvent]:
        start = _since(now, since_days)
        return [
            e for e in self.events
            if e.child_id == child_id and as_utc(e.occurred_at) >= start
        ]

    def fetch_goals(self, child_id: str) -> List[Goal]:
        return [g for g in self.goals if g.child_id == child_id]

    def delete_event(self, event_id: str) -> None:
        self.events = [e for e in self.events if e.id != event_id]

    def delete_goal(self, goal_id: str) -> None:
        self.goals = [g for g in self.goals if g.id != goal_id]


class SqlDataProvider:
    """
    Reads the child, behavior_event and goal tables.

    Takes either a live Session (request-scoped, owned by the caller) or a
    session factory (a fresh session per fetch, closed afterwards).
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        if db is None and session_factory is None:
            raise ValueError("SqlDataProvider needs a session or a session factory")
        self._db = db
        self._session_factory = session_factory

    def _run(self, fn):
        if self._db is not None:
            return fn(self._db)
        db = self._session_factory()
        try:
            return fn(db)
        finally:
            db.close()

    def fetch_child(self, child_id: str) -> Optional[ChildProfile]:
        from models import Child

        def query(db: Session):
            row = db.query(Child).filter(Child.id == child_id, Child.is_active.is_(True)).first()
            if row is None:
                return None
            return ChildProfile(id=row.id, name=row.name or "")

        return self._run(query)

    def fetch_events(self, child_id: str, since_days: int, now: datetime) -> List[BehaviorEvent]:
        from models import BehaviorEvent as BehaviorEventRow

        start = _since(now, since_days)

        def query(db: Session):
            rows = (
                db.query(BehaviorEventRow)
                .filter(
                    BehaviorEventRow.child_id == child_id,
                    BehaviorEventRow.occurred_at >= start,
                )
                .order_by(BehaviorEventRow.occurred_at, BehaviorEventRow.id)
                .all()
            )
            return [
                BehaviorEvent(
                    id=row.id,
                    child_id=row.child_id,
                    category_id=row.category_id,
                    polarity=Polarity(row.polarity),
                    points=row.points or 0,
                    occurred_at=as_utc(row.occurred_at),
                    category_name=row.category_name,
                )
                for row in rows
            ]

        return self._run(query)

    def fetch_goals(self, child_id: str) -> List[Goal]:
        from models import Goal as GoalRow

        def query(db: Session):
            rows = (
                db.query(GoalRow)
                .filter(GoalRow.child_id == child_id)
                .order_by(GoalRow.id)
                .all()
            )
            return [
                Goal(
                    id=row.id,
                    child_id=row.child_id,
                    target_points=row.target_points,
                    current_points=row.current_points or 0,
                    created_at=as_utc(row.created_at),
                    deadline=as_utc(row.deadline) if row.deadline is not None else None,
                    name=row.name or "",
                    is_redeemed=bool(row.is_redeemed),
                    is_expired=bool(row.is_expired),
                )
                for row in rows
            ]

        return self._run(query)
