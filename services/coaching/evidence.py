"""
Evidence validation.

A signal whose proof has vanished (an event was deleted, a goal removed, the
child itself is gone) is dropped whole. Evidence is never repaired or
partially trusted.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

from services.coaching.entities import CanonicalDataset, EvidenceRef, Signal

logger = logging.getLogger(__name__)


def partition_valid(
    signals: Sequence[Signal],
    dataset: CanonicalDataset,
) -> Tuple[List[Signal], List[Tuple[Signal, str]]]:
    """
    Split signals into (valid, [(invalid, reason)]), preserving input order.
    """
    valid: List[Signal] = []
    invalid: List[Tuple[Signal, str]] = []

    for signal in signals:
        if not signal.evidence_refs:
            invalid.append((signal, "no evidence cited"))
            continue
        if dataset.child is None or dataset.child.id != signal.child_id:
            invalid.append((signal, f"child {signal.child_id} no longer exists"))
            continue
        missing = dataset.missing_refs(signal.evidence_refs)
        if missing:
            invalid.append((signal, "missing evidence: " + _describe(missing)))
            continue
        valid.append(signal)

    return valid, invalid


def filter_valid(signals: Sequence[Signal], dataset: CanonicalDataset) -> List[Signal]:
    """Keep only signals whose every evidence reference resolves."""
    valid, invalid = partition_valid(signals, dataset)
    for signal, reason in invalid:
        logger.debug(
            f"Dropping stale {signal.type.value} signal for child {signal.child_id}: {reason}"
        )
    return valid


def _describe(refs: Sequence[EvidenceRef]) -> str:
    shown = ", ".join(f"{ref.kind.value}:{ref.id}" for ref in refs[:3])
    if len(refs) > 3:
        shown += f" (+{len(refs) - 3} more)"
    return shown
