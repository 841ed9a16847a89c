"""
Signal registry.

The fixed, ordered catalog of detectors. Registration order is the final
tie-break when ranking cards, so appending a detector never reorders the
existing ones. A registry is built once and never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple

from services.coaching import detectors
from services.coaching.constants import SIGNAL_CATEGORIES, CardCategory, SignalType
from services.coaching.entities import Goal, Signal
from services.coaching.windows import WindowedView

DetectFn = Callable[[WindowedView, Optional[Goal]], Optional[Signal]]


class DetectorScope(str, Enum):
    """How the engine invokes a detector."""
    CHILD = "child"  # once per call
    GOAL = "goal"    # once per active goal


@dataclass(frozen=True)
class DetectorSpec:
    signal_type: SignalType
    detect: DetectFn
    scope: DetectorScope = DetectorScope.CHILD
    premium_only: bool = False

    @property
    def category(self) -> CardCategory:
        return SIGNAL_CATEGORIES[self.signal_type]

    @property
    def name(self) -> str:
        return self.signal_type.value


class SignalRegistry:
    """Ordered, immutable list of detectors."""

    def __init__(self, specs: Iterable[DetectorSpec]):
        self._specs: Tuple[DetectorSpec, ...] = tuple(specs)
        seen = set()
        for spec in self._specs:
            if spec.signal_type in seen:
                raise ValueError(f"Duplicate detector for {spec.signal_type.value}")
            seen.add(spec.signal_type)
        self._positions: Dict[SignalType, int] = {
            spec.signal_type: index for index, spec in enumerate(self._specs)
        }

    def all(self) -> Tuple[DetectorSpec, ...]:
        return self._specs

    def eligible(self, is_premium: bool) -> Tuple[DetectorSpec, ...]:
        """Detectors allowed to run for this caller's capability."""
        return tuple(s for s in self._specs if is_premium or not s.premium_only)

    def position(self, signal_type: SignalType) -> int:
        """Registration index; unknown types sort last."""
        return self._positions.get(signal_type, len(self._specs))

    def __len__(self) -> int:
        return len(self._specs)


DEFAULT_DETECTORS: Tuple[DetectorSpec, ...] = (
    DetectorSpec(SignalType.GOAL_AT_RISK, detectors.detect_goal_at_risk, DetectorScope.GOAL),
    DetectorSpec(SignalType.GOAL_STALLED, detectors.detect_goal_stalled, DetectorScope.GOAL),
    DetectorSpec(SignalType.ROUTINE_FORMING, detectors.detect_routine_forming),
    DetectorSpec(SignalType.ROUTINE_SLIPPING, detectors.detect_routine_slipping),
    DetectorSpec(SignalType.HIGH_CHALLENGE_WEEK, detectors.detect_high_challenge_week),
    DetectorSpec(SignalType.POSITIVE_STREAK, detectors.detect_positive_streak, premium_only=True),
)


def default_registry() -> SignalRegistry:
    return SignalRegistry(DEFAULT_DETECTORS)
