"""
Safety rails: per-tone caps on the candidate set.

Three risk cards at once overwhelm a parent no matter how real each pattern
is, so after cooldown filtering only the most severe ``cap[category]`` signals
of each tone survive.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Mapping, Sequence, Tuple

from services.coaching.constants import SIGNAL_CATEGORIES, CardCategory
from services.coaching.entities import Signal, as_utc

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_CAPS: Dict[CardCategory, int] = {
    CardCategory.RISK: 1,
    CardCategory.IMPROVEMENT: 2,
    CardCategory.NEUTRAL: 1,
}


def _severity_order(signal: Signal) -> Tuple:
    # Stable inside a category: severity, then fresher evidence, then type name.
    return (-signal.severity, -as_utc(signal.latest_evidence_at).timestamp(), signal.type.value)


def partition_caps(
    signals: Sequence[Signal],
    caps: Mapping[CardCategory, int],
) -> Tuple[List[Signal], List[Signal]]:
    """
    Returns (kept, dropped). Kept signals come back in their original order.

    A category missing from ``caps`` has a cap of zero.
    """
    grouped: Dict[CardCategory, List[Signal]] = defaultdict(list)
    for signal in signals:
        grouped[SIGNAL_CATEGORIES[signal.type]].append(signal)

    kept_ids = set()
    dropped: List[Signal] = []
    for category, members in grouped.items():
        cap = max(caps.get(category, 0), 0)
        ordered = sorted(members, key=_severity_order)
        kept_ids.update(id(s) for s in ordered[:cap])
        dropped.extend(ordered[cap:])

    kept = [s for s in signals if id(s) in kept_ids]
    return kept, dropped


def apply_caps(signals: Sequence[Signal], caps: Mapping[CardCategory, int]) -> List[Signal]:
    kept, dropped = partition_caps(signals, caps)
    for signal in dropped:
        logger.debug(
            f"Safety rail dropped {signal.type.value} (severity {signal.severity}) "
            f"for child {signal.child_id}"
        )
    return kept
