"""
Value types shared by every stage of the coaching pipeline.

Inputs (BehaviorEvent, Goal, ChildProfile) are read-only snapshots handed over
by a data provider. Signals and CoachCards live for a single engine call;
CooldownRecord is the only type that is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from services.coaching.constants import (
    ActionType,
    CardCategory,
    EvidenceKind,
    HistoryFilter,
    Polarity,
    SignalType,
)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ChildProfile:
    id: str
    name: str = ""


@dataclass(frozen=True)
class BehaviorEvent:
    id: str
    child_id: str
    category_id: str
    polarity: Polarity
    points: int
    occurred_at: datetime
    category_name: Optional[str] = None

    @property
    def is_positive(self) -> bool:
        return self.polarity == Polarity.POSITIVE

    @property
    def is_challenge(self) -> bool:
        return self.polarity == Polarity.CHALLENGE


@dataclass(frozen=True)
class Goal:
    id: str
    child_id: str
    target_points: int
    current_points: int
    created_at: datetime
    deadline: Optional[datetime] = None
    name: str = ""
    is_redeemed: bool = False
    is_expired: bool = False

    @property
    def remaining_points(self) -> int:
        return max(self.target_points - self.current_points, 0)

    @property
    def progress(self) -> float:
        if self.target_points <= 0:
            return 0.0
        return min(self.current_points / self.target_points, 1.0)

    def is_active(self, now: datetime) -> bool:
        """Open goal: not redeemed, not expired, not complete, deadline not passed."""
        if self.is_redeemed or self.is_expired or self.remaining_points == 0:
            return False
        if self.deadline is not None and as_utc(self.deadline) <= as_utc(now):
            return False
        return True


@dataclass(frozen=True, order=True)
class EvidenceRef:
    """Typed pointer into the canonical dataset."""
    kind: EvidenceKind
    id: str

    @classmethod
    def event(cls, event_id: str) -> "EvidenceRef":
        return cls(EvidenceKind.EVENT, event_id)

    @classmethod
    def goal(cls, goal_id: str) -> "EvidenceRef":
        return cls(EvidenceKind.GOAL, goal_id)

    @classmethod
    def child(cls, child_id: str) -> "EvidenceRef":
        return cls(EvidenceKind.CHILD, child_id)

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "id": self.id}


@dataclass(frozen=True)
class Signal:
    """A detector's verdict. Never persisted."""
    type: SignalType
    child_id: str
    severity: int
    evidence_refs: FrozenSet[EvidenceRef]
    computed_at: datetime
    latest_evidence_at: datetime
    # Goal or category the signal is about, if any
    subject_id: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class CooldownRecord:
    child_id: str
    signal_type: SignalType
    last_shown_at: datetime

    def to_dict(self) -> Dict[str, str]:
        return {
            "child_id": self.child_id,
            "signal_type": self.signal_type.value,
            "last_shown_at": as_utc(self.last_shown_at).isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CooldownRecord":
        return cls(
            child_id=str(data["child_id"]),
            signal_type=SignalType(data["signal_type"]),
            last_shown_at=as_utc(datetime.fromisoformat(data["last_shown_at"])),
        )


@dataclass(frozen=True)
class CardAction:
    """Where the card sends the parent. Targets are ids only; the app builds the route."""
    type: ActionType
    child_id: str
    goal_id: Optional[str] = None
    category_id: Optional[str] = None
    history_filter: Optional[HistoryFilter] = None
    days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "child_id": self.child_id,
            "goal_id": self.goal_id,
            "category_id": self.category_id,
            "history_filter": self.history_filter.value if self.history_filter else None,
            "days": self.days,
        }


@dataclass(frozen=True)
class CoachCard:
    """Engine output. Text is resolved later from localization_key + params."""
    id: str
    child_id: str
    signal_type: SignalType
    category: CardCategory
    severity: int
    evidence_refs: Tuple[EvidenceRef, ...]
    localization_key: str
    params: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    action: Optional[CardAction] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "child_id": self.child_id,
            "signal_type": self.signal_type.value,
            "category": self.category.value,
            "severity": self.severity,
            "evidence_refs": [ref.to_dict() for ref in self.evidence_refs],
            "localization_key": self.localization_key,
            "params": dict(self.params),
            "action": self.action.to_dict() if self.action else None,
        }


@dataclass(frozen=True)
class CanonicalDataset:
    """Everything the data provider returned for one child at one point in time."""
    child: Optional[ChildProfile]
    events: Tuple[BehaviorEvent, ...] = ()
    goals: Tuple[Goal, ...] = ()

    @property
    def event_ids(self) -> FrozenSet[str]:
        return frozenset(e.id for e in self.events)

    @property
    def goal_ids(self) -> FrozenSet[str]:
        return frozenset(g.id for g in self.goals)

    def missing_refs(self, refs) -> List[EvidenceRef]:
        """Refs that do not resolve in this dataset, in stable order."""
        event_ids = self.event_ids
        goal_ids = self.goal_ids
        missing = []
        for ref in sorted(refs):
            if ref.kind == EvidenceKind.EVENT:
                found = ref.id in event_ids
            elif ref.kind == EvidenceKind.GOAL:
                found = ref.id in goal_ids
            else:
                found = self.child is not None and self.child.id == ref.id
            if not found:
                missing.append(ref)
        return missing
