"""
Localization keys and the default English catalog.

The engine only picks a key and structured params for each card. Turning
those into text is the job of a Localizer, which the surrounding app owns;
TemplateLocalizer is the built-in one.
"""

from __future__ import annotations

import itertools
from string import Template
from typing import Any, Dict, List, Mapping, Optional, Protocol

from services.coaching.constants import SignalType

KEY_PREFIX = "coach"
DEFAULT_LOCALE = "en"


def localization_key(signal_type: SignalType) -> str:
    return f"{KEY_PREFIX}.{signal_type.value}"


class Localizer(Protocol):
    def resolve(self, localization_key: str, params: Mapping[str, Any], locale: str) -> str:
        ...


EN_CATALOG: Dict[str, str] = {
    "coach.goal_at_risk.title": "${goal_name} needs a push",
    "coach.goal_at_risk.body": (
        "Only ${days_remaining} days left and ${progress_percent}% complete. "
        "About ${required_daily_points} points a day would get there."
    ),
    "coach.goal_at_risk.steps.1": "Focus on quick wins that earn points",
    "coach.goal_at_risk.steps.2": "Celebrate each step toward ${goal_name}",
    "coach.goal_at_risk.steps.3": "Consider if the goal needs adjusting",
    "coach.goal_at_risk.why": (
        "Based on ${count} moments in the last ${days} days, the current pace may not "
        "reach the goal in time."
    ),
    "coach.goal_stalled.title": "${goal_name} progress has paused",
    "coach.goal_stalled.body": (
        "No real progress in the last ${days_since_progress} days. "
        "A few small wins today can restart it."
    ),
    "coach.goal_stalled.steps.1": "Check in with ${child_name} about the goal",
    "coach.goal_stalled.steps.2": "Look for small wins to log today",
    "coach.goal_stalled.steps.3": "Consider breaking the goal into smaller milestones",
    "coach.goal_stalled.why": "Almost no points logged toward this goal in ${days_since_progress} days.",
    "coach.routine_forming.title": "${behavior_name} is becoming a habit",
    "coach.routine_forming.body": (
        "${child_name} has done this ${count} times over ${distinct_days} days this week."
    ),
    "coach.routine_forming.steps.1": "Keep acknowledging when it happens",
    "coach.routine_forming.steps.2": "Try not to overpraise, consistency matters more",
    "coach.routine_forming.steps.3": "Notice if it happens at the same time each day",
    "coach.routine_forming.why": "${count} occurrences in ${days} days shows a pattern forming.",
    "coach.routine_slipping.title": "${behavior_name} has been quiet",
    "coach.routine_slipping.body": (
        "Last logged ${days_since_last} days ago after being consistent. Habits can restart."
    ),
    "coach.routine_slipping.steps.1": "Check if something changed in the routine",
    "coach.routine_slipping.steps.2": "Gently remind ${child_name} about this behavior",
    "coach.routine_slipping.steps.3": "Don't worry, habits can restart",
    "coach.routine_slipping.why": (
        "This routine was happening regularly but hasn't been logged in ${days_since_last} days."
    ),
    "coach.high_challenge_week.title": "Tough stretch for ${child_name}",
    "coach.high_challenge_week.body": (
        "${count} challenges logged in the last ${days} days. This is data, not a judgment."
    ),
    "coach.high_challenge_week.steps.1": "Look for patterns in when challenges happen",
    "coach.high_challenge_week.steps.2": "Try to catch and log more positive moments",
    "coach.high_challenge_week.steps.3": "Consider if something external is affecting behavior",
    "coach.high_challenge_week.why": (
        "More challenges than positive moments in the last ${days} days. "
        "This is data, not a judgment."
    ),
    "coach.positive_streak.title": "${streak_days} good days in a row",
    "coach.positive_streak.body": "${child_name} has had a positive moment every day for ${streak_days} days.",
    "coach.positive_streak.steps.1": "Tell ${child_name} you noticed",
    "coach.positive_streak.steps.2": "Log today's win to keep the streak going",
    "coach.positive_streak.why": "At least one positive moment logged on each of the last ${streak_days} days.",
}


class TemplateLocalizer:
    """
    Catalog-backed localizer using ``string.Template`` placeholders.

    Unknown locales fall back to the default locale; unknown keys resolve to
    the key itself so a missing string never breaks rendering.
    """

    def __init__(
        self,
        catalogs: Optional[Mapping[str, Mapping[str, str]]] = None,
        default_locale: str = DEFAULT_LOCALE,
    ):
        self._catalogs = dict(catalogs or {DEFAULT_LOCALE: EN_CATALOG})
        self._default_locale = default_locale

    def _lookup(self, localization_key: str, locale: str) -> Optional[str]:
        catalog = self._catalogs.get(locale) or self._catalogs.get(locale.split("-")[0])
        text = (catalog or {}).get(localization_key)
        if text is None:
            text = self._catalogs.get(self._default_locale, {}).get(localization_key)
        return text

    def resolve(self, localization_key: str, params: Mapping[str, Any], locale: str) -> str:
        text = self._lookup(localization_key, locale)
        if text is None:
            return localization_key
        return Template(text).safe_substitute({k: v for k, v in params.items() if v is not None})

    def steps(self, localization_key: str, params: Mapping[str, Any], locale: str) -> List[str]:
        """Numbered ``<key>.steps.N`` entries, in order, up to the first gap."""
        steps = []
        for number in itertools.count(1):
            step_key = f"{localization_key}.steps.{number}"
            if self._lookup(step_key, locale) is None:
                break
            steps.append(self.resolve(step_key, params, locale))
        return steps

    def render(self, localization_key: str, params: Mapping[str, Any], locale: str) -> Dict[str, Any]:
        """Title, body, action steps and the "why" line for a card."""
        return {
            "title": self.resolve(f"{localization_key}.title", params, locale),
            "body": self.resolve(f"{localization_key}.body", params, locale),
            "steps": self.steps(localization_key, params, locale),
            "why": self.resolve(f"{localization_key}.why", params, locale),
        }
