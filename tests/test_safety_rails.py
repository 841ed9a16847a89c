"""
Unit tests for per-category safety rails.
"""

from services.coaching.constants import CardCategory, SignalType
from services.coaching.safety_rails import DEFAULT_CATEGORY_CAPS, apply_caps, partition_caps

from coaching_factories import at, make_signal


class TestApplyCaps:
    def test_keeps_most_severe_risk_signal(self):
        slipping = make_signal(SignalType.ROUTINE_SLIPPING, 70, ["a"])
        at_risk = make_signal(SignalType.GOAL_AT_RISK, 90, ["b"])
        challenge = make_signal(SignalType.HIGH_CHALLENGE_WEEK, 50, ["c"])

        kept = apply_caps([slipping, at_risk, challenge], DEFAULT_CATEGORY_CAPS)
        assert kept == [at_risk]

    def test_categories_are_capped_independently(self):
        risk = make_signal(SignalType.GOAL_AT_RISK, 90, ["a"])
        forming = make_signal(SignalType.ROUTINE_FORMING, 40, ["b"])
        stalled = make_signal(SignalType.GOAL_STALLED, 30, ["c"])
        streak = make_signal(SignalType.POSITIVE_STREAK, 20, ["d"])

        kept = apply_caps([risk, forming, stalled, streak], DEFAULT_CATEGORY_CAPS)
        assert kept == [risk, forming, stalled, streak]

    def test_kept_signals_keep_input_order(self):
        low = make_signal(SignalType.GOAL_STALLED, 10, ["a"])
        high = make_signal(SignalType.ROUTINE_FORMING, 80, ["b"])
        assert apply_caps([low, high], DEFAULT_CATEGORY_CAPS) == [low, high]

    def test_fresher_evidence_wins_severity_tie(self):
        older = make_signal(SignalType.GOAL_AT_RISK, 60, ["a"], latest=at(5))
        newer = make_signal(SignalType.HIGH_CHALLENGE_WEEK, 60, ["b"], latest=at(1))
        assert apply_caps([older, newer], DEFAULT_CATEGORY_CAPS) == [newer]

    def test_missing_category_cap_means_zero(self):
        streak = make_signal(SignalType.POSITIVE_STREAK, 20, ["a"])
        assert apply_caps([streak], {CardCategory.RISK: 1}) == []

    def test_partition_reports_dropped(self):
        signals = [make_signal(SignalType.GOAL_AT_RISK, s, [str(s)]) for s in (50, 90)]
        signals.append(make_signal(SignalType.ROUTINE_SLIPPING, 70, ["x"]))
        kept, dropped = partition_caps(signals, DEFAULT_CATEGORY_CAPS)

        assert [s.severity for s in kept] == [90]
        assert [s.severity for s in dropped] == [70, 50]
