"""
Coaching engine package.

Turns a child's logged behavior history into a small, ranked set of coach
cards. Deterministic: same data, same cooldown state and same ``now`` give
the same cards.

Modules:
- windows: trailing 7/14/30-day slices of a child's events
- detectors: one pure function per behavioral pattern
- registry: ordered detector catalog (final ranking tie-break)
- evidence: drops signals whose evidence no longer exists
- cooldown / cooldown_store: per-type suppression after a card is shown
- safety_rails: per-tone caps
- ranker: ordering, truncation, card ids
- engine: the orchestrator

Usage:
    from services.coaching import CoachingEngine, CooldownManager, InMemoryCooldownStore
    engine = CoachingEngine(provider, CooldownManager(InMemoryCooldownStore()))
    cards = engine.generate_cards(child_id, now, is_premium=False)
"""

from .constants import (
    ActionType,
    CardCategory,
    EvidenceKind,
    HistoryFilter,
    Polarity,
    SignalType,
    SIGNAL_CATEGORIES,
)
from .entities import (
    BehaviorEvent,
    CanonicalDataset,
    CardAction,
    ChildProfile,
    CoachCard,
    CooldownRecord,
    EvidenceRef,
    Goal,
    Signal,
)
from .errors import (
    CoachingEngineError,
    CooldownStoreCorrupt,
    DataUnavailable,
    GenerationCancelled,
)
from .cancellation import CancellationToken
from .cooldown import CooldownManager, CooldownSnapshot
from .cooldown_store import (
    CooldownStore,
    InMemoryCooldownStore,
    RedisCooldownStore,
    SqlCooldownStore,
    build_cooldown_store,
)
from .data_provider import DataProvider, InMemoryDataProvider, SqlDataProvider
from .debug_report import DebugReport, DropReason, format_report
from .registry import DetectorScope, DetectorSpec, SignalRegistry, default_registry
from .templates import Localizer, TemplateLocalizer
from .engine import CoachingEngine, EngineConfig

__all__ = [
    # Vocabulary
    "ActionType",
    "CardCategory",
    "EvidenceKind",
    "HistoryFilter",
    "Polarity",
    "SignalType",
    "SIGNAL_CATEGORIES",
    # Entities
    "BehaviorEvent",
    "CanonicalDataset",
    "CardAction",
    "ChildProfile",
    "CoachCard",
    "CooldownRecord",
    "EvidenceRef",
    "Goal",
    "Signal",
    # Errors
    "CoachingEngineError",
    "CooldownStoreCorrupt",
    "DataUnavailable",
    "GenerationCancelled",
    # Cooldowns
    "CancellationToken",
    "CooldownManager",
    "CooldownSnapshot",
    "CooldownStore",
    "InMemoryCooldownStore",
    "RedisCooldownStore",
    "SqlCooldownStore",
    "build_cooldown_store",
    # Data
    "DataProvider",
    "InMemoryDataProvider",
    "SqlDataProvider",
    # Engine
    "CoachingEngine",
    "EngineConfig",
    "DetectorScope",
    "DetectorSpec",
    "SignalRegistry",
    "default_registry",
    "DebugReport",
    "DropReason",
    "format_report",
    "Localizer",
    "TemplateLocalizer",
]
