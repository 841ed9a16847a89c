"""
Cooldown persistence backends.

The engine only needs two calls per child: ``load(child_id)`` and
``save(child_id, records)``. ``save`` replaces the child's whole record set,
which is how pruned records disappear. Backends raise CooldownStoreCorrupt
when what they hold cannot be decoded; the CooldownManager decides what to do
about it.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.orm import Session

from core.cache import cache_key
from services.coaching.constants import SignalType
from services.coaching.entities import CooldownRecord, as_utc
from services.coaching.errors import CooldownStoreCorrupt

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "coach_cooldowns"


class CooldownStore(Protocol):
    def load(self, child_id: str) -> List[CooldownRecord]:
        ...

    def save(self, child_id: str, records: Sequence[CooldownRecord]) -> None:
        ...


class InMemoryCooldownStore:
    """Process-local store, used in tests and single-process tools."""

    def __init__(self, initial: Optional[Dict[str, Sequence[CooldownRecord]]] = None):
        self._lock = threading.Lock()
        self._data: Dict[str, List[CooldownRecord]] = {
            child_id: list(records) for child_id, records in (initial or {}).items()
        }
        self.load_calls = 0
        self.save_calls = 0

    def load(self, child_id: str) -> List[CooldownRecord]:
        with self._lock:
            self.load_calls += 1
            return list(self._data.get(child_id, []))

    def save(self, child_id: str, records: Sequence[CooldownRecord]) -> None:
        with self._lock:
            self.save_calls += 1
            self._data[child_id] = list(records)


class SqlCooldownStore:
    """Rows in the coach_cooldown table, one per (child, signal type)."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def load(self, child_id: str) -> List[CooldownRecord]:
        from models import CoachCooldown

        db = self._session_factory()
        try:
            rows = (
                db.query(CoachCooldown)
                .filter(CoachCooldown.child_id == child_id)
                .order_by(CoachCooldown.signal_type)
                .all()
            )
            records = []
            for row in rows:
                try:
                    signal_type = SignalType(row.signal_type)
                except ValueError:
                    raise CooldownStoreCorrupt(child_id, f"unknown signal type {row.signal_type!r}")
                if row.last_shown_at is None:
                    raise CooldownStoreCorrupt(child_id, f"missing timestamp for {row.signal_type}")
                records.append(CooldownRecord(
                    child_id=row.child_id,
                    signal_type=signal_type,
                    last_shown_at=as_utc(row.last_shown_at),
                ))
            return records
        finally:
            db.close()

    def save(self, child_id: str, records: Sequence[CooldownRecord]) -> None:
        from models import CoachCooldown

        db = self._session_factory()
        try:
            existing = {
                row.signal_type: row
                for row in db.query(CoachCooldown).filter(CoachCooldown.child_id == child_id).all()
            }
            keep = set()
            for record in records:
                key = record.signal_type.value
                keep.add(key)
                row = existing.get(key)
                if row is None:
                    db.add(CoachCooldown(
                        child_id=child_id,
                        signal_type=key,
                        last_shown_at=as_utc(record.last_shown_at),
                    ))
                else:
                    row.last_shown_at = as_utc(record.last_shown_at)
            for key, row in existing.items():
                if key not in keep:
                    db.delete(row)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class RedisCooldownStore:
    """One JSON list per child under ``coach_cooldowns:{child_id}``."""

    def __init__(self, client):
        self._client = client

    @staticmethod
    def key(child_id: str) -> str:
        return cache_key(REDIS_KEY_PREFIX, child_id)

    def load(self, child_id: str) -> List[CooldownRecord]:
        raw = self._client.get(self.key(child_id))
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise CooldownStoreCorrupt(child_id, f"invalid JSON ({e})")
        if not isinstance(entries, list):
            raise CooldownStoreCorrupt(child_id, "expected a list of records")
        try:
            return [CooldownRecord.from_dict(entry) for entry in entries]
        except (KeyError, ValueError, TypeError) as e:
            raise CooldownStoreCorrupt(child_id, f"malformed record ({e})")

    def save(self, child_id: str, records: Sequence[CooldownRecord]) -> None:
        payload = json.dumps([record.to_dict() for record in records])
        self._client.set(self.key(child_id), payload)


def build_cooldown_store(backend: str) -> CooldownStore:
    """
    Build the configured backend.

    Falls back to the in-memory store (with a warning) when Redis is selected
    but unreachable.
    """
    backend = (backend or "").lower()
    if backend == "database":
        from core.database import SessionLocal
        return SqlCooldownStore(SessionLocal)
    if backend == "redis":
        from core.cache import get_redis_client
        client = get_redis_client()
        if client is not None:
            return RedisCooldownStore(client)
        logger.warning("Redis cooldown backend unavailable; cooldowns will not survive restarts")
        return InMemoryCooldownStore()
    if backend == "memory":
        return InMemoryCooldownStore()
    raise ValueError(f"Unknown cooldown backend: {backend!r}")
