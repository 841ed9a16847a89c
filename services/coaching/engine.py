"""
Coaching engine: child history in, at most a handful of ranked coach cards out.

One call runs:
    fetch -> window build -> detect -> validate evidence -> cooldown filter
          -> safety rails -> rank/truncate -> record shown

Everything between fetch and record is pure. The only write is the cooldown
update for the cards actually returned, and it happens once, at the end, and
never after a cancellation.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from services.coaching import evidence, ranker, safety_rails, windows
from services.coaching.cancellation import CancellationToken
from services.coaching.constants import LOOKBACK_DAYS, WINDOWS, CardCategory, SignalType
from services.coaching.cooldown import CooldownManager, CooldownSnapshot
from services.coaching.cooldown_store import build_cooldown_store
from services.coaching.data_provider import DataProvider
from services.coaching.debug_report import (
    DebugReport,
    DetectorOutcome,
    DetectorStatus,
    DropReason,
    DroppedCandidate,
)
from services.coaching.entities import CanonicalDataset, CoachCard, Signal, as_utc
from services.coaching.errors import DataUnavailable, GenerationCancelled
from services.coaching.registry import DetectorScope, DetectorSpec, SignalRegistry, default_registry
from services.coaching.windows import WindowedView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    """Tunable limits. Detector thresholds live in constants.py, not here."""
    max_cards: int = 3
    min_events_14d: int = 3
    cooldown_days: int = 7
    cooldown_retention_days: int = 30
    category_caps: Mapping[CardCategory, int] = field(
        default_factory=lambda: dict(safety_rails.DEFAULT_CATEGORY_CAPS)
    )
    cooldown_overrides: Mapping[SignalType, int] = field(default_factory=dict)
    default_locale: str = "en"
    lookback_days: int = LOOKBACK_DAYS

    @classmethod
    def from_settings(cls, settings) -> "EngineConfig":
        return cls(
            max_cards=settings.COACH_MAX_CARDS,
            min_events_14d=settings.COACH_MIN_EVENTS_14D,
            cooldown_days=settings.COACH_COOLDOWN_DAYS,
            cooldown_retention_days=settings.COACH_COOLDOWN_RETENTION_DAYS,
            category_caps={
                CardCategory.RISK: settings.COACH_RISK_CAP,
                CardCategory.IMPROVEMENT: settings.COACH_IMPROVEMENT_CAP,
                CardCategory.NEUTRAL: settings.COACH_NEUTRAL_CAP,
            },
            default_locale=settings.COACH_DEFAULT_LOCALE,
        )


@dataclass
class _PipelineRun:
    """Everything one pass produced; generate_cards keeps the cards, debug_report keeps it all."""
    child_id: str
    now: datetime
    is_premium: bool
    dataset: Optional[CanonicalDataset] = None
    view: Optional[WindowedView] = None
    snapshot: Optional[CooldownSnapshot] = None
    outcomes: List[DetectorOutcome] = field(default_factory=list)
    candidates: List[Signal] = field(default_factory=list)
    dropped: List[DroppedCandidate] = field(default_factory=list)
    cards: List[CoachCard] = field(default_factory=list)

    def drop(self, signal: Signal, reason: DropReason, detail: str = "") -> None:
        self.dropped.append(DroppedCandidate(signal.type, reason, signal.severity, detail))


def _strongest_per_type(signals: Sequence[Signal]) -> Optional[Signal]:
    """One card per type: highest severity, then freshest evidence, then lowest subject id."""
    if not signals:
        return None
    return sorted(
        signals,
        key=lambda s: (-s.severity, -as_utc(s.latest_evidence_at).timestamp(), s.subject_id or ""),
    )[0]


class CoachingEngine:
    """
    Orchestrates the coaching pipeline for one child at a time.

    Owns no threads. Safe to call from several threads at once: all shared
    mutable state sits behind the CooldownManager's lock.
    """

    def __init__(
        self,
        provider: DataProvider,
        cooldowns: CooldownManager,
        config: Optional[EngineConfig] = None,
        registry: Optional[SignalRegistry] = None,
    ):
        self.provider = provider
        self.cooldowns = cooldowns
        self.config = config or EngineConfig()
        self.registry = registry or default_registry()

    @classmethod
    def from_settings(cls, provider: DataProvider, settings, store=None) -> "CoachingEngine":
        config = EngineConfig.from_settings(settings)
        if store is None:
            store = build_cooldown_store(settings.COOLDOWN_BACKEND)
        cooldowns = CooldownManager(
            store,
            cooldown_days=config.cooldown_days,
            overrides=config.cooldown_overrides,
            retention_days=config.cooldown_retention_days,
        )
        return cls(provider, cooldowns, config)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_cards(
        self,
        child_id: str,
        now: datetime,
        is_premium: bool = False,
        record_shown: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[CoachCard]:
        """
        Build the ranked coach cards for a child.

        Args:
            child_id: Child to evaluate.
            now: Evaluation time. The engine never reads the clock.
            is_premium: Lets premium-only detectors run.
            record_shown: When False, the caller records display itself via
                record_cards_shown.
            cancel_token: Cooperative cancellation; once cancelled, nothing is
                written and GenerationCancelled is raised.

        Raises:
            DataUnavailable: The data provider failed.
            GenerationCancelled: The token was cancelled before the cooldown write.
        """
        run = self._run_pipeline(child_id, now, is_premium, cancel_token)
        if record_shown and run.cards:
            self._record(child_id, run.cards, run.now, cancel_token)

        logger.info(
            f"Coach cards for child {child_id}: {len(run.candidates)} candidates, "
            f"{len(run.dropped)} dropped, {len(run.cards)} selected "
            f"[{', '.join(c.signal_type.value for c in run.cards)}]",
            extra={
                "extra_fields": {
                    "child_id": child_id,
                    "candidates": len(run.candidates),
                    "dropped": len(run.dropped),
                    "selected": len(run.cards),
                    "signal_types": [c.signal_type.value for c in run.cards],
                }
            }
        )
        return run.cards

    async def generate_cards_async(
        self,
        child_id: str,
        now: datetime,
        is_premium: bool = False,
        record_shown: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[CoachCard]:
        """
        generate_cards on a worker thread.

        The pipeline runs without recording; cooldowns are written here only
        after the await returns, so a task cancelled mid-flight writes nothing.
        """
        token = cancel_token or CancellationToken()
        try:
            cards = await asyncio.to_thread(
                self.generate_cards, child_id, now, is_premium, False, token
            )
        except asyncio.CancelledError:
            token.cancel()
            raise
        if record_shown and cards:
            self._record(child_id, cards, as_utc(now), token)
        return cards

    def record_cards_shown(self, cards: Sequence[CoachCard], now: datetime) -> None:
        """Record display for cards produced with record_shown=False."""
        by_child: Dict[str, List[SignalType]] = defaultdict(list)
        for card in cards:
            by_child[card.child_id].append(card.signal_type)
        for child_id, signal_types in by_child.items():
            self.cooldowns.record_many(child_id, signal_types, as_utc(now))

    def debug_report(self, child_id: str, now: datetime, is_premium: bool = False) -> DebugReport:
        """Full pipeline trace with no side effects."""
        run = self._run_pipeline(child_id, now, is_premium, None)
        report = DebugReport(child_id=child_id, now=run.now, is_premium=is_premium)

        if run.dataset is None or run.dataset.child is None:
            report.child_found = False
            return report

        view = run.view
        report.event_counts = {days: len(view.window(days)) for days in WINDOWS}
        report.goal_count = len(view.goals)
        report.active_goal_count = len(view.active_goals())
        report.insufficient_data = view.insufficient_data
        report.outcomes = list(run.outcomes)
        report.dropped = list(run.dropped)
        report.cards = list(run.cards)

        snapshot = run.snapshot or self.cooldowns.snapshot(child_id)
        report.active_cooldowns = [
            (t, snapshot.ends_at(t))
            for t in sorted(snapshot.records, key=lambda t: t.value)
            if snapshot.is_on_cooldown(t, run.now)
        ]
        return report

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run_pipeline(
        self,
        child_id: str,
        now: datetime,
        is_premium: bool,
        cancel_token: Optional[CancellationToken],
    ) -> _PipelineRun:
        run = _PipelineRun(child_id=child_id, now=as_utc(now), is_premium=is_premium)
        self._check(cancel_token, child_id)

        run.dataset = self._fetch(child_id, run.now)
        if run.dataset.child is None:
            logger.info(f"Child {child_id} not found; no coach cards")
            return run

        run.view = windows.build(
            run.dataset.events,
            run.dataset.goals,
            run.now,
            child_id=child_id,
            min_events_14d=self.config.min_events_14d,
        )
        if run.view.insufficient_data:
            logger.debug(
                f"Insufficient data for child {child_id}: "
                f"{len(run.view.last_14)} events in 14 days"
            )
            return run

        run.snapshot = self.cooldowns.snapshot(child_id)
        self._check(cancel_token, child_id)

        run.candidates = self._detect(run, cancel_token)

        valid, stale = evidence.partition_valid(run.candidates, run.dataset)
        for signal, reason in stale:
            logger.debug(f"Dropping stale {signal.type.value} signal for child {child_id}: {reason}")
            run.drop(signal, DropReason.EVIDENCE_STALE, reason)

        eligible = self.cooldowns.filter_eligible(valid, run.now, snapshot=run.snapshot)
        kept_ids = {id(s) for s in eligible}
        for signal in valid:
            if id(signal) not in kept_ids:
                ends_at = run.snapshot.ends_at(signal.type)
                run.drop(signal, DropReason.COOLDOWN_ACTIVE, f"cooling until {ends_at.isoformat()}")

        capped, over_cap = safety_rails.partition_caps(eligible, self.config.category_caps)
        for signal in over_cap:
            logger.debug(f"Safety rail dropped {signal.type.value} for child {child_id}")
            run.drop(signal, DropReason.SAFETY_RAIL_CAP, f"{signal.type.value} over category cap")

        child_name = run.dataset.child.name or None
        run.cards = ranker.rank_and_truncate(
            capped, self.config.max_cards, self.registry, child_name=child_name
        )
        for signal in ranker.rank(capped, self.registry)[self.config.max_cards:]:
            run.drop(signal, DropReason.RANKING_CUTOFF, f"beyond top {self.config.max_cards}")

        self._check(cancel_token, child_id)
        return run

    def _fetch(self, child_id: str, now: datetime) -> CanonicalDataset:
        try:
            child = self.provider.fetch_child(child_id)
            if child is None:
                return CanonicalDataset(child=None)
            events = self.provider.fetch_events(child_id, self.config.lookback_days, now)
            goals = self.provider.fetch_goals(child_id)
        except Exception as e:
            logger.error(f"Data provider failed for child {child_id}: {e}")
            raise DataUnavailable(child_id, e) from e
        return CanonicalDataset(child=child, events=tuple(events), goals=tuple(goals))

    def _detect(self, run: _PipelineRun, cancel_token: Optional[CancellationToken]) -> List[Signal]:
        eligible = set(s.signal_type for s in self.registry.eligible(run.is_premium))
        candidates: List[Signal] = []

        for spec in self.registry.all():
            if spec.signal_type not in eligible:
                run.outcomes.append(DetectorOutcome(spec.signal_type, DetectorStatus.NOT_ELIGIBLE))
                continue
            self._check(cancel_token, run.child_id)

            signal, outcome = self._run_detector(spec, run.view)
            run.outcomes.append(outcome)
            if outcome.status == DetectorStatus.FAULT:
                run.dropped.append(
                    DroppedCandidate(spec.signal_type, DropReason.DETECTOR_FAULT, detail=outcome.detail)
                )
            if signal is not None:
                candidates.append(signal)

        return candidates

    def _run_detector(
        self, spec: DetectorSpec, view: WindowedView
    ) -> Tuple[Optional[Signal], DetectorOutcome]:
        goals = view.active_goals() if spec.scope == DetectorScope.GOAL else (None,)
        fired: List[Signal] = []
        try:
            for goal in goals:
                signal = spec.detect(view, goal)
                if signal is None:
                    continue
                if signal.type != spec.signal_type:
                    raise ValueError(
                        f"detector emitted {signal.type.value}, expected {spec.signal_type.value}"
                    )
                fired.append(signal)
        except Exception as e:
            logger.exception(f"Detector {spec.name} failed for child {view.child_id}: {e}")
            return None, DetectorOutcome(spec.signal_type, DetectorStatus.FAULT, detail=str(e))

        signal = _strongest_per_type(fired)
        if signal is None:
            return None, DetectorOutcome(spec.signal_type, DetectorStatus.NO_SIGNAL)
        return signal, DetectorOutcome(
            spec.signal_type,
            DetectorStatus.FIRED,
            severity=signal.severity,
            subject_id=signal.subject_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record(
        self,
        child_id: str,
        cards: Sequence[CoachCard],
        now: datetime,
        cancel_token: Optional[CancellationToken],
    ) -> None:
        self._check(cancel_token, child_id)
        written = self.cooldowns.record_many(
            child_id, [card.signal_type for card in cards], now, cancel_token
        )
        if not written:
            raise GenerationCancelled(child_id)

    @staticmethod
    def _check(cancel_token: Optional[CancellationToken], child_id: str) -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(child_id)
