"""
Tests for the data providers.
"""
from datetime import timedelta

from models import BehaviorEvent as BehaviorEventRow, Child, Goal as GoalRow
from core.database import SessionLocal
from services.coaching import InMemoryDataProvider, Polarity, SqlDataProvider

from coaching_factories import NOW, CHILD_ID, at, goal, positive


class TestInMemoryDataProvider:
    def test_lookback_and_child_filter(self):
        recent = positive(3)
        old = positive(31)
        other = positive(1, child_id="child-2")
        provider = InMemoryDataProvider(events=[recent, old, other])

        assert provider.fetch_events(CHILD_ID, 30, NOW) == [recent]

    def test_lookback_covers_whole_oldest_day(self):
        early = positive(30, hour=1)
        provider = InMemoryDataProvider(events=[early])
        assert provider.fetch_events(CHILD_ID, 30, NOW) == [early]

    def test_delete_helpers(self):
        e = positive(1)
        g = goal()
        provider = InMemoryDataProvider(events=[e], goals=[g])
        provider.delete_event(e.id)
        provider.delete_goal(g.id)

        assert provider.fetch_events(CHILD_ID, 30, NOW) == []
        assert provider.fetch_goals(CHILD_ID) == []


class TestSqlDataProvider:
    def _seed(self, db_session):
        db_session.add(Child(id=CHILD_ID, name="Maya"))
        db_session.add(Child(id="child-gone", name="Sam", is_active=False))
        db_session.add(BehaviorEventRow(
            id="evt-recent", child_id=CHILD_ID, category_id="reading", category_name="Reading",
            polarity="positive", points=2, occurred_at=at(2),
        ))
        db_session.add(BehaviorEventRow(
            id="evt-old", child_id=CHILD_ID, category_id="reading",
            polarity="challenge", points=0, occurred_at=at(40),
        ))
        db_session.add(GoalRow(
            id="goal-1", child_id=CHILD_ID, name="Zoo trip", target_points=50, current_points=5,
            created_at=at(10), deadline=NOW + timedelta(days=5),
        ))
        db_session.commit()

    def test_fetch_child(self, db_session):
        self._seed(db_session)
        provider = SqlDataProvider(db=db_session)

        assert provider.fetch_child(CHILD_ID).name == "Maya"
        assert provider.fetch_child("child-gone") is None
        assert provider.fetch_child("nobody") is None

    def test_fetch_events_maps_rows(self, db_session):
        self._seed(db_session)
        events = SqlDataProvider(db=db_session).fetch_events(CHILD_ID, 30, NOW)

        assert [e.id for e in events] == ["evt-recent"]
        event = events[0]
        assert event.polarity == Polarity.POSITIVE
        assert event.points == 2
        assert event.category_name == "Reading"
        assert event.occurred_at == at(2)
        assert event.occurred_at.tzinfo is not None

    def test_fetch_goals(self, db_session):
        self._seed(db_session)
        goals = SqlDataProvider(session_factory=SessionLocal).fetch_goals(CHILD_ID)

        assert len(goals) == 1
        assert goals[0].deadline == NOW + timedelta(days=5)
        assert goals[0].remaining_points == 45
        assert goals[0].is_active(NOW)
