"""Tiered, best-effort storage for event and clock records.

A process-local cache is authoritative for the current process; the durable
backend (a database row, a JSON file, or memory) is written through on every
change and read when the cache goes stale.
"""
from quarterclock.services.clock.state import utcnow
from .backends import DatabaseBackend, FileBackend, MemoryBackend, StorageError
from .collections import CachedCollection, ClockStore, EventStore, Storage


EVENTS = 'events'
CLOCKS = 'clocks'


def default_event_settings(config) -> dict:
    return {
        'quarterLengthMinutes': config.get('DEFAULT_QUARTER_LENGTH_MIN', 15),
        'breakLengthMinutes': config.get('DEFAULT_BREAK_LENGTH_MIN', 3),
        'totalQuarters': config.get('DEFAULT_TOTAL_QUARTERS', 4),
    }


def _backends(app):
    kind = app.config.get('STORAGE_BACKEND', 'database')
    if kind == 'database':
        return DatabaseBackend(app, EVENTS), DatabaseBackend(app, CLOCKS)
    if kind == 'file':
        return FileBackend(app.config['EVENT_DATA_FILE']), FileBackend(app.config['CLOCK_DATA_FILE'])
    if kind == 'memory':
        memory = MemoryBackend()
        return memory.bind(EVENTS), memory.bind(CLOCKS)
    raise ValueError(f'Unknown STORAGE_BACKEND {kind!r}')


def build_storage(app, now_fn=utcnow) -> Storage:
    events_backend, clocks_backend = _backends(app)
    timeout = float(app.config.get('STORAGE_CACHE_TIMEOUT_SEC', 300))
    events = CachedCollection(EVENTS, events_backend, key_field='id', cache_timeout=timeout, now_fn=now_fn)
    clocks = CachedCollection(CLOCKS, clocks_backend, key_field='eventId', cache_timeout=timeout, now_fn=now_fn)
    return Storage(
        events=EventStore(events, default_event_settings(app.config)),
        clocks=ClockStore(clocks),
    )


__all__ = [
    'CachedCollection', 'ClockStore', 'DatabaseBackend', 'EventStore', 'FileBackend',
    'MemoryBackend', 'Storage', 'StorageError', 'build_storage', 'default_event_settings',
]
