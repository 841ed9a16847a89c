"""
Card ranker.

Total order, most important first:
    1. severity, descending
    2. most recent supporting evidence, descending
    3. position in the signal registry, ascending

Then truncate to ``max_cards`` and map each signal to a CoachCard.
"""

from __future__ import annotations

import hashlib
from datetime import date
from typing import List, Optional, Sequence, Tuple

from services.coaching.constants import SIGNAL_ACTIONS, SIGNAL_CATEGORIES, ActionType, SignalType
from services.coaching.entities import CardAction, CoachCard, Signal, as_utc
from services.coaching.registry import SignalRegistry
from services.coaching.templates import localization_key


def card_id(child_id: str, signal_type: SignalType, window_end: date) -> str:
    """
    Stable id for a card: same child, type and evaluation day give the same id.
    """
    raw = f"{child_id}:{signal_type.value}:{window_end.isoformat()}"
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]
    return f"{signal_type.value}-{digest}"


def sort_key(signal: Signal, registry: SignalRegistry) -> Tuple:
    return (
        -signal.severity,
        -as_utc(signal.latest_evidence_at).timestamp(),
        registry.position(signal.type),
        signal.subject_id or "",
    )


def rank(signals: Sequence[Signal], registry: SignalRegistry) -> List[Signal]:
    return sorted(signals, key=lambda s: sort_key(s, registry))


def card_action(signal: Signal) -> CardAction:
    action_type, history_filter = SIGNAL_ACTIONS[signal.type]
    params = signal.params
    if action_type == ActionType.GOAL_DETAIL:
        goal_id = params.get("goal_id")
        if goal_id is None:
            return CardAction(ActionType.GOALS_PICKER, signal.child_id)
        return CardAction(action_type, signal.child_id, goal_id=goal_id)
    if action_type == ActionType.HISTORY:
        return CardAction(
            action_type,
            signal.child_id,
            category_id=params.get("category_id"),
            history_filter=history_filter,
            days=params.get("days"),
        )
    return CardAction(action_type, signal.child_id)


def to_card(signal: Signal, child_name: Optional[str] = None) -> CoachCard:
    params = dict(signal.params)
    if child_name:
        params.setdefault("child_name", child_name)
    return CoachCard(
        id=card_id(signal.child_id, signal.type, as_utc(signal.computed_at).date()),
        child_id=signal.child_id,
        signal_type=signal.type,
        category=SIGNAL_CATEGORIES[signal.type],
        severity=signal.severity,
        evidence_refs=tuple(sorted(signal.evidence_refs)),
        localization_key=localization_key(signal.type),
        params=params,
        action=card_action(signal),
    )


def rank_and_truncate(
    signals: Sequence[Signal],
    max_cards: int,
    registry: SignalRegistry,
    child_name: Optional[str] = None,
) -> List[CoachCard]:
    ranked = rank(signals, registry)
    return [to_card(signal, child_name) for signal in ranked[:max(max_cards, 0)]]
