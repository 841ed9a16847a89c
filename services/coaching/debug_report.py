"""
Debug report: why a child got (or did not get) each coach card.

Built by CoachingEngine.debug_report, which runs the whole pipeline without
recording anything. Meant for support tooling and the debug endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from services.coaching.constants import SignalType
from services.coaching.entities import CoachCard


class DropReason(str, Enum):
    EVIDENCE_STALE = "evidence_stale"
    COOLDOWN_ACTIVE = "cooldown_active"
    SAFETY_RAIL_CAP = "safety_rail_cap"
    RANKING_CUTOFF = "ranking_cutoff"
    DETECTOR_FAULT = "detector_fault"


class DetectorStatus(str, Enum):
    FIRED = "fired"
    NO_SIGNAL = "no_signal"
    FAULT = "fault"
    NOT_ELIGIBLE = "not_eligible"  # premium-only detector on a free call


@dataclass(frozen=True)
class DetectorOutcome:
    signal_type: SignalType
    status: DetectorStatus
    severity: Optional[int] = None
    subject_id: Optional[str] = None
    detail: str = ""


@dataclass(frozen=True)
class DroppedCandidate:
    signal_type: SignalType
    reason: DropReason
    severity: Optional[int] = None
    detail: str = ""


@dataclass
class DebugReport:
    child_id: str
    now: datetime
    is_premium: bool
    child_found: bool = True
    insufficient_data: bool = False
    event_counts: Dict[int, int] = field(default_factory=dict)
    goal_count: int = 0
    active_goal_count: int = 0
    outcomes: List[DetectorOutcome] = field(default_factory=list)
    dropped: List[DroppedCandidate] = field(default_factory=list)
    cards: List[CoachCard] = field(default_factory=list)
    active_cooldowns: List[Tuple[SignalType, datetime]] = field(default_factory=list)

    def dropped_for(self, reason: DropReason) -> List[DroppedCandidate]:
        return [d for d in self.dropped if d.reason == reason]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "child_id": self.child_id,
            "now": self.now.isoformat(),
            "is_premium": self.is_premium,
            "child_found": self.child_found,
            "insufficient_data": self.insufficient_data,
            "event_counts": {str(days): count for days, count in sorted(self.event_counts.items())},
            "goal_count": self.goal_count,
            "active_goal_count": self.active_goal_count,
            "outcomes": [
                {
                    "signal_type": o.signal_type.value,
                    "status": o.status.value,
                    "severity": o.severity,
                    "subject_id": o.subject_id,
                    "detail": o.detail,
                }
                for o in self.outcomes
            ],
            "dropped": [
                {
                    "signal_type": d.signal_type.value,
                    "reason": d.reason.value,
                    "severity": d.severity,
                    "detail": d.detail,
                }
                for d in self.dropped
            ],
            "cards": [card.to_dict() for card in self.cards],
            "active_cooldowns": [
                {"signal_type": t.value, "ends_at": ends.isoformat()}
                for t, ends in self.active_cooldowns
            ],
        }


def format_report(report: DebugReport) -> str:
    """Plain-text rendering for logs and support tickets."""
    lines = [
        f"Coach debug report for child {report.child_id}",
        f"  evaluated at: {report.now.isoformat()}  premium: {report.is_premium}",
    ]
    if not report.child_found:
        lines.append("  child not found")
        return "\n".join(lines)

    counts = ", ".join(f"{days}d={count}" for days, count in sorted(report.event_counts.items()))
    lines.append(f"  events: {counts or 'none'}")
    lines.append(f"  goals: {report.goal_count} ({report.active_goal_count} active)")
    if report.insufficient_data:
        lines.append("  insufficient data: detectors not run")
        return "\n".join(lines)

    lines.append("  detectors:")
    for outcome in report.outcomes:
        line = f"    {outcome.signal_type.value}: {outcome.status.value}"
        if outcome.severity is not None:
            line += f" (severity {outcome.severity})"
        if outcome.detail:
            line += f" - {outcome.detail}"
        lines.append(line)

    if report.dropped:
        lines.append("  dropped:")
        for dropped in report.dropped:
            line = f"    {dropped.signal_type.value}: {dropped.reason.value}"
            if dropped.detail:
                line += f" - {dropped.detail}"
            lines.append(line)

    lines.append(f"  cards ({len(report.cards)}):")
    for card in report.cards:
        lines.append(f"    {card.signal_type.value} [{card.category.value}] severity {card.severity} id={card.id}")

    if report.active_cooldowns:
        lines.append("  cooling:")
        for signal_type, ends_at in report.active_cooldowns:
            lines.append(f"    {signal_type.value} until {ends_at.isoformat()}")

    return "\n".join(lines)
