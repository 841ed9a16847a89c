"""
Cooldown manager.

Per (child, signal type) the lifecycle is Eligible -> Shown -> Cooling ->
Eligible: once a card of a type is surfaced, that type stays suppressed for
the child until its cooldown window has elapsed.

Decoded records are cached per child. Every write goes through the same lock
and updates the cache in the same critical section, so a reader in this
process never sees state older than the last write. Unreadable persisted
state fails open: the child is treated as having no cooldowns.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from services.coaching.cancellation import CancellationToken
from services.coaching.constants import SignalType
from services.coaching.entities import CooldownRecord, Signal, as_utc
from services.coaching.cooldown_store import CooldownStore
from services.coaching.errors import CooldownStoreCorrupt

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_DAYS = 7
DEFAULT_RETENTION_DAYS = 30


@dataclass(frozen=True)
class CooldownSnapshot:
    """Point-in-time view of one child's cooldowns, used for a whole engine call."""
    child_id: str
    records: Mapping[SignalType, CooldownRecord]
    windows: Mapping[SignalType, timedelta]
    default_window: timedelta

    def window_for(self, signal_type: SignalType) -> timedelta:
        return self.windows.get(signal_type, self.default_window)

    def ends_at(self, signal_type: SignalType) -> Optional[datetime]:
        record = self.records.get(signal_type)
        if record is None:
            return None
        return as_utc(record.last_shown_at) + self.window_for(signal_type)

    def is_on_cooldown(self, signal_type: SignalType, now: datetime) -> bool:
        ends = self.ends_at(signal_type)
        return ends is not None and as_utc(now) < ends


class CooldownManager:
    """Stateful gate in front of the cooldown store."""

    def __init__(
        self,
        store: CooldownStore,
        cooldown_days: int = DEFAULT_COOLDOWN_DAYS,
        overrides: Optional[Mapping[SignalType, int]] = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        self._store = store
        self._default_window = timedelta(days=cooldown_days)
        self._windows: Dict[SignalType, timedelta] = {
            signal_type: timedelta(days=days) for signal_type, days in (overrides or {}).items()
        }
        longest = max([self._default_window, *self._windows.values()])
        self._retention = max(timedelta(days=retention_days), longest)
        self._lock = threading.RLock()
        self._cache: Dict[str, Dict[SignalType, CooldownRecord]] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def cooldown_window(self, signal_type: SignalType) -> timedelta:
        return self._windows.get(signal_type, self._default_window)

    def snapshot(self, child_id: str) -> CooldownSnapshot:
        with self._lock:
            records = dict(self._records(child_id))
        return CooldownSnapshot(
            child_id=child_id,
            records=records,
            windows=dict(self._windows),
            default_window=self._default_window,
        )

    def is_on_cooldown(self, child_id: str, signal_type: SignalType, now: datetime) -> bool:
        return self.snapshot(child_id).is_on_cooldown(signal_type, now)

    def cooldown_ends_at(self, child_id: str, signal_type: SignalType) -> Optional[datetime]:
        return self.snapshot(child_id).ends_at(signal_type)

    def active_cooldowns(self, child_id: str, now: datetime) -> List[Tuple[SignalType, datetime]]:
        """(signal type, ends at) for every type still cooling, in type order."""
        snap = self.snapshot(child_id)
        active = []
        for signal_type in sorted(snap.records, key=lambda t: t.value):
            if snap.is_on_cooldown(signal_type, now):
                active.append((signal_type, snap.ends_at(signal_type)))
        return active

    def filter_eligible(
        self,
        signals: Sequence[Signal],
        now: datetime,
        snapshot: Optional[CooldownSnapshot] = None,
    ) -> List[Signal]:
        """
        Drop signals whose type is cooling for their child.

        Pass the call's snapshot so every signal is judged against the same state.
        """
        snapshots: Dict[str, CooldownSnapshot] = {}
        if snapshot is not None:
            snapshots[snapshot.child_id] = snapshot
        eligible = []
        for signal in signals:
            snap = snapshots.get(signal.child_id)
            if snap is None:
                snap = snapshots[signal.child_id] = self.snapshot(signal.child_id)
            if snap.is_on_cooldown(signal.type, now):
                logger.debug(
                    f"Suppressing {signal.type.value} for child {signal.child_id}: "
                    f"cooling until {snap.ends_at(signal.type).isoformat()}"
                )
                continue
            eligible.append(signal)
        return eligible

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_shown(self, child_id: str, signal_type: SignalType, now: datetime) -> None:
        self.record_many(child_id, [signal_type], now)

    def record_many(
        self,
        child_id: str,
        signal_types: Iterable[SignalType],
        now: datetime,
        cancel_token: Optional[CancellationToken] = None,
    ) -> bool:
        """
        Upsert one record per type in a single store write.

        Returns False (and writes nothing) if the token was cancelled before
        the write began.
        """
        signal_types = list(dict.fromkeys(signal_types))
        if not signal_types:
            return True
        now = as_utc(now)

        with self._lock:
            if cancel_token is not None and cancel_token.is_cancelled:
                return False

            records = dict(self._records(child_id))
            for signal_type in signal_types:
                records[signal_type] = CooldownRecord(child_id, signal_type, now)

            cutoff = now - self._retention
            records = {
                t: r for t, r in records.items() if as_utc(r.last_shown_at) > cutoff
            }
            ordered = [records[t] for t in sorted(records, key=lambda t: t.value)]

            try:
                self._store.save(child_id, ordered)
            except Exception as e:
                # Next read goes back to whatever the store really holds.
                self._cache.pop(child_id, None)
                logger.error(f"Failed to persist cooldowns for child {child_id}: {e}")
                return True

            self._cache[child_id] = records
            return True

    def clear_child(self, child_id: str) -> None:
        with self._lock:
            self._store.save(child_id, [])
            self._cache[child_id] = {}

    def invalidate_cache(self, child_id: Optional[str] = None) -> None:
        with self._lock:
            if child_id is None:
                self._cache.clear()
            else:
                self._cache.pop(child_id, None)

    # ------------------------------------------------------------------
    # Internals (call with the lock held)
    # ------------------------------------------------------------------

    def _records(self, child_id: str) -> Dict[SignalType, CooldownRecord]:
        cached = self._cache.get(child_id)
        if cached is not None:
            return cached

        try:
            loaded = self._store.load(child_id)
        except CooldownStoreCorrupt as e:
            logger.warning(f"{e}; treating all signals as eligible")
            return {}
        except Exception as e:
            logger.warning(
                f"Could not load cooldowns for child {child_id}: {e}; treating all signals as eligible"
            )
            return {}

        records: Dict[SignalType, CooldownRecord] = {}
        for record in loaded:
            current = records.get(record.signal_type)
            if current is None or as_utc(record.last_shown_at) > as_utc(current.last_shown_at):
                records[record.signal_type] = record
        self._cache[child_id] = records
        return records
