import copy
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from quarterclock.services.clock.state import ClockState, ClockStatus, utcnow
from .backends import StorageError
from .records import clock_record, event_record, to_iso


logger = logging.getLogger(__name__)


class CachedCollection:
    """A whole collection of records behind a staleness-bounded cache.

    Reads try, in order: a fresh cache, the durable backend (repopulating
    the cache), a stale cache, and finally an empty collection.

    Writes update the cache first; that alone makes the write visible to
    this process. The durable write is best effort: failures are logged and
    swallowed, so callers always see success.
    """

    def __init__(self, name: str, backend, key_field: str,
                 cache_timeout: float = 300.0, now_fn: Callable[[], datetime] = utcnow):
        self.name = name
        self.backend = backend
        self.key_field = key_field
        self.cache_timeout = timedelta(seconds=cache_timeout)
        self._now = now_fn
        self._cache: Optional[Dict[str, dict]] = None
        self._cached_at: Optional[datetime] = None

    def _cache_age(self) -> Optional[timedelta]:
        if self._cache is None or self._cached_at is None:
            return None
        return self._now() - self._cached_at

    def _fill_cache(self, records: Dict[str, dict]) -> None:
        self._cache = copy.deepcopy(records)
        self._cached_at = self._now()

    def load(self) -> Dict[str, dict]:
        age = self._cache_age()
        if age is not None and age < self.cache_timeout:
            return copy.deepcopy(self._cache)

        try:
            stored = self.backend.read()
        except StorageError as exc:
            logger.warning(f"[storage-read-failed] collection={self.name} error={exc}")
            stored = None
        if stored is not None:
            records = {r[self.key_field]: r for r in stored if self.key_field in r}
            self._fill_cache(records)
            logger.debug(f"[storage-load] collection={self.name} source=durable count={len(records)}")
            return copy.deepcopy(records)

        if self._cache is not None:
            logger.info(f"[storage-load] collection={self.name} source=stale_cache age={age}")
            return copy.deepcopy(self._cache)

        return {}

    def save(self, records: Dict[str, dict]) -> None:
        self._fill_cache(records)
        try:
            self.backend.write(list(records.values()))
        except StorageError as exc:
            logger.warning(f"[storage-write-failed] collection={self.name} count={len(records)} error={exc}")

    def get(self, key: str) -> Optional[dict]:
        return self.load().get(key)

    def put(self, key: str, record: dict) -> dict:
        records = self.load()
        records[key] = record
        self.save(records)
        return record

    def delete(self, key: str) -> bool:
        records = self.load()
        if records.pop(key, None) is None:
            return False
        self.save(records)
        return True

    def values(self) -> List[dict]:
        return list(self.load().values())

    def drop_cache(self) -> None:
        """Forget the cache entirely, including the stale fallback."""
        self._cache = None
        self._cached_at = None


class EventStore:
    """Event metadata records (names, score, quarter, status, settings)."""

    def __init__(self, collection: CachedCollection, default_settings: dict):
        self.collection = collection
        self.default_settings = dict(default_settings)
        self._now = collection._now

    def _stamp(self) -> str:
        return to_iso(self._now())

    def create_event(self, display_name_a: str, display_name_b: str,
                     settings: Optional[dict] = None, event_id: Optional[str] = None) -> dict:
        merged = dict(self.default_settings)
        merged.update({k: v for k, v in (settings or {}).items() if v is not None})
        event_id = event_id or str(uuid.uuid4())
        record = event_record(event_id, display_name_a, display_name_b, merged, self._stamp())
        self.collection.put(event_id, record)
        logger.info(f"[event-create] event={event_id} settings={record['settings']}")
        return record

    def get(self, event_id: str) -> Optional[dict]:
        return self.collection.get(event_id)

    def update(self, event_id: str, **fields) -> Optional[dict]:
        records = self.collection.load()
        record = records.get(event_id)
        if record is None:
            logger.info(f"[event-update] event={event_id} not_found")
            return None
        fields.pop('id', None)
        fields.pop('createdAt', None)
        record.update(fields)
        record['updatedAt'] = self._stamp()
        records[event_id] = record
        self.collection.save(records)
        return record

    def update_score(self, event_id: str, team: str, points: int) -> Optional[dict]:
        record = self.get(event_id)
        if record is None:
            return None
        key = 'scoreA' if team == 'A' else 'scoreB'
        return self.update(event_id, **{key: max(0, int(record.get(key, 0)) + int(points))})

    def update_quarter(self, event_id: str, quarter: int) -> Optional[dict]:
        return self.update(event_id, currentQuarter=quarter)

    def end_event(self, event_id: str) -> Optional[dict]:
        return self.update(event_id, status=ClockStatus.FINISHED.value)

    def delete(self, event_id: str) -> bool:
        return self.collection.delete(event_id)

    def all(self) -> List[dict]:
        return self.collection.values()


class ClockStore:
    """Durable projection of each event's ClockState."""

    def __init__(self, collection: CachedCollection):
        self.collection = collection
        self._now = collection._now

    def save_state(self, state: ClockState) -> dict:
        records = self.collection.load()
        now = to_iso(self._now())
        existing = records.get(state.event_id)
        created_at = existing.get('createdAt', now) if existing else now
        record = clock_record(state, created_at=created_at, updated_at=now)
        records[state.event_id] = record
        self.collection.save(records)
        return record

    def save_states(self, states: List[ClockState]) -> int:
        """Write many states in one read-modify-write cycle."""
        if not states:
            return 0
        records = self.collection.load()
        now = to_iso(self._now())
        for state in states:
            existing = records.get(state.event_id)
            created_at = existing.get('createdAt', now) if existing else now
            records[state.event_id] = clock_record(state, created_at=created_at, updated_at=now)
        self.collection.save(records)
        return len(states)

    def get(self, event_id: str) -> Optional[dict]:
        return self.collection.get(event_id)

    def delete(self, event_id: str) -> bool:
        return self.collection.delete(event_id)

    def all(self) -> List[dict]:
        return self.collection.values()


class Storage:
    def __init__(self, events: EventStore, clocks: ClockStore):
        self.events = events
        self.clocks = clocks
