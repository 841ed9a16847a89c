"""
Coaching engine constants.

Detector thresholds are fixed here rather than in settings: two engines built
from the same code must reach the same verdict on the same data.
"""

from enum import Enum


class SignalType(str, Enum):
    """Behavioral patterns the engine knows how to detect."""
    GOAL_AT_RISK = "goal_at_risk"
    GOAL_STALLED = "goal_stalled"
    ROUTINE_FORMING = "routine_forming"
    ROUTINE_SLIPPING = "routine_slipping"
    HIGH_CHALLENGE_WEEK = "high_challenge_week"
    POSITIVE_STREAK = "positive_streak"


class CardCategory(str, Enum):
    """Emotional tone of a card; safety rails cap each one separately."""
    RISK = "risk"
    IMPROVEMENT = "improvement"
    NEUTRAL = "neutral"


class Polarity(str, Enum):
    POSITIVE = "positive"
    CHALLENGE = "challenge"


class EvidenceKind(str, Enum):
    EVENT = "event"
    GOAL = "goal"
    CHILD = "child"


class ActionType(str, Enum):
    """Screen a card's call to action opens."""
    ADD_MOMENT = "add_moment"
    GOAL_DETAIL = "goal_detail"
    GOALS_PICKER = "goals_picker"
    HISTORY = "history"


class HistoryFilter(str, Enum):
    ROUTINES = "routines"
    CHALLENGES = "challenges"


SIGNAL_CATEGORIES = {
    SignalType.GOAL_AT_RISK: CardCategory.RISK,
    SignalType.GOAL_STALLED: CardCategory.IMPROVEMENT,
    SignalType.ROUTINE_FORMING: CardCategory.IMPROVEMENT,
    SignalType.ROUTINE_SLIPPING: CardCategory.RISK,
    SignalType.HIGH_CHALLENGE_WEEK: CardCategory.RISK,
    SignalType.POSITIVE_STREAK: CardCategory.NEUTRAL,
}

# Goal detail falls back to the goals picker when a card has no goal.
SIGNAL_ACTIONS = {
    SignalType.GOAL_AT_RISK: (ActionType.GOAL_DETAIL, None),
    SignalType.GOAL_STALLED: (ActionType.GOAL_DETAIL, None),
    SignalType.ROUTINE_FORMING: (ActionType.HISTORY, HistoryFilter.ROUTINES),
    SignalType.ROUTINE_SLIPPING: (ActionType.HISTORY, HistoryFilter.ROUTINES),
    SignalType.HIGH_CHALLENGE_WEEK: (ActionType.HISTORY, HistoryFilter.CHALLENGES),
    SignalType.POSITIVE_STREAK: (ActionType.ADD_MOMENT, None),
}


# --- Windows ---
WINDOW_7_DAYS = 7
WINDOW_14_DAYS = 14
WINDOW_30_DAYS = 30
WINDOWS = (WINDOW_7_DAYS, WINDOW_14_DAYS, WINDOW_30_DAYS)

# How far back the engine asks the data provider to look.
LOOKBACK_DAYS = WINDOW_30_DAYS

# --- Severity scale ---
SEVERITY_MIN = 0
SEVERITY_MAX = 100

# --- GoalAtRisk ---
# At risk when the observed 7-day earn rate is below 70% of the rate required
# to hit the target by the deadline.
GOAL_AT_RISK_PACE_TOLERANCE = 0.7
GOAL_AT_RISK_BASE_SEVERITY = 50
GOAL_AT_RISK_URGENT_DAYS = 3
GOAL_AT_RISK_URGENT_BOOST = 10

# --- GoalStalled ---
GOAL_STALLED_MIN_AGE_DAYS = 5
# "Near-zero" progress: at most 5% of the target earned in the 14-day window.
GOAL_STALLED_PROGRESS_FRACTION = 0.05
GOAL_STALLED_BASE_SEVERITY = 30
GOAL_STALLED_SEVERITY_PER_DAY = 3
GOAL_STALLED_MAX_SEVERITY = 80

# --- RoutineForming ---
ROUTINE_FORMING_MIN_OCCURRENCES = 3
ROUTINE_FORMING_MIN_DISTINCT_DAYS = 3
# Longest run of empty days tolerated between occurrences.
ROUTINE_FORMING_MAX_GAP_DAYS = 2
# Empty days tolerated since the latest occurrence. Stays below
# ROUTINE_SLIPPING_MIN_GAP_DAYS so a category is never both forming and slipping.
ROUTINE_FORMING_MAX_TRAILING_GAP_DAYS = 1
ROUTINE_FORMING_BASE_SEVERITY = 40
ROUTINE_FORMING_SEVERITY_PER_DAY = 5
ROUTINE_FORMING_MAX_SEVERITY = 75

# --- RoutineSlipping ---
ROUTINE_SLIPPING_MIN_PRIOR_DAYS = 3
ROUTINE_SLIPPING_MIN_GAP_DAYS = 3
ROUTINE_SLIPPING_CADENCE_MULTIPLIER = 2.0
ROUTINE_SLIPPING_BASE_SEVERITY = 40
ROUTINE_SLIPPING_SEVERITY_PER_DAY = 5
ROUTINE_SLIPPING_MAX_SEVERITY = 85

# --- HighChallengeWeek ---
HIGH_CHALLENGE_MIN_EVENTS = 3
HIGH_CHALLENGE_RATIO_THRESHOLD = 0.5
HIGH_CHALLENGE_BASE_SEVERITY = 40
HIGH_CHALLENGE_MAX_SEVERITY = 90

# --- PositiveStreak (premium) ---
POSITIVE_STREAK_MIN_DAYS = 5
POSITIVE_STREAK_BASE_SEVERITY = 20
POSITIVE_STREAK_SEVERITY_PER_DAY = 2
POSITIVE_STREAK_MAX_SEVERITY = 50
