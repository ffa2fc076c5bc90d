import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from quarterclock.services.storage.records import state_fields_from_record
from .jobs import PeriodicJob, spawn_thread
from .machine import Clock, restore_clock
from .state import (
    DEFAULT_TOTAL_QUARTERS,
    ClockConfig,
    ClockEvent,
    ClockListener,
    ClockStatus,
    EventSource,
    EventType,
    utcnow,
)


logger = logging.getLogger(__name__)


@dataclass
class RegistrySettings:
    eviction_ttl: float = 2 * 60 * 60
    sweep_interval: float = 30 * 60
    autosave_interval: float = 30
    max_instances: int = 100
    default_total_quarters: int = DEFAULT_TOTAL_QUARTERS

    @classmethod
    def from_config(cls, config: Mapping) -> 'RegistrySettings':
        return cls(
            eviction_ttl=float(config.get('CLOCK_EVICTION_TTL_SEC', cls.eviction_ttl)),
            sweep_interval=float(config.get('CLOCK_SWEEP_INTERVAL_SEC', cls.sweep_interval)),
            autosave_interval=float(config.get('CLOCK_AUTOSAVE_INTERVAL_SEC', cls.autosave_interval)),
            max_instances=int(config.get('CLOCK_MAX_INSTANCES', cls.max_instances)),
            default_total_quarters=int(config.get('DEFAULT_TOTAL_QUARTERS', cls.default_total_quarters)),
        )


class ClockCallbacks:
    """Hooks for whoever owns event metadata. Called synchronously from the
    clock's notification path, so implementations must not block."""

    def on_quarter_advance(self, event_id: str, new_quarter: int) -> None:
        pass

    def on_event_finished(self, event_id: str) -> None:
        pass


@dataclass
class _Entry:
    clock: Clock
    last_accessed_at: datetime
    unsubscribers: List[Callable[[], None]] = field(default_factory=list)


class ClockRegistry:
    """At most one live Clock per event for this process.

    Clocks are restored from the clock store on first use, written through
    on every change, flushed again by a periodic auto-save, and evicted once
    idle past the TTL or when the registry grows past its cap.
    """

    def __init__(self, storage, settings: Optional[RegistrySettings] = None,
                 callbacks: Optional[ClockCallbacks] = None,
                 listeners: Iterable[ClockListener] = (),
                 now_fn: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.settings = settings or RegistrySettings()
        self.callbacks = callbacks or ClockCallbacks()
        self._listeners = list(listeners)
        self._now = now_fn
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.RLock()
        self._jobs = [
            PeriodicJob('clock-sweep', self.settings.sweep_interval, self.sweep),
            PeriodicJob('clock-autosave', self.settings.autosave_interval, self.save_all),
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._entries

    def add_listener(self, listener: ClockListener) -> None:
        """Attach ``listener`` to every clock, including ones already live."""
        with self._lock:
            self._listeners.append(listener)
            for entry in self._entries.values():
                entry.unsubscribers.append(entry.clock.subscribe(listener))

    # ---- instance lifecycle ----

    def get_or_create(self, event_id: str, config: ClockConfig) -> Clock:
        with self._lock:
            entry = self._entries.get(event_id)
            if entry is not None:
                entry.last_accessed_at = self._now()
                return entry.clock

            record = self.storage.clocks.get(event_id)
            if record is not None:
                clock = restore_clock(config, state_fields_from_record(record), now_fn=self._now)
                logger.info(f"[clock-restore] event={event_id} quarter={clock.get_state().current_quarter} running={clock.get_state().is_running}")
            else:
                clock = Clock(config, now_fn=self._now)
                self.storage.clocks.save_state(clock.get_state())
                logger.info(f"[clock-create] event={event_id} quarter_length={config.quarter_length_seconds}s quarters={config.total_quarters}")

            entry = _Entry(clock=clock, last_accessed_at=self._now())
            entry.unsubscribers.append(clock.subscribe(self._persist))
            entry.unsubscribers.append(clock.subscribe(self._side_effects))
            for listener in self._listeners:
                entry.unsubscribers.append(clock.subscribe(listener))
            self._entries[event_id] = entry
            return clock

    def _persist(self, event: ClockEvent) -> None:
        self.storage.clocks.save_state(event.resulting_state)

    def _side_effects(self, event: ClockEvent) -> None:
        state = event.resulting_state
        if state.status == ClockStatus.FINISHED:
            self.callbacks.on_event_finished(event.event_id)
        elif event.type == EventType.NEXT_QUARTER:
            self.callbacks.on_quarter_advance(event.event_id, state.current_quarter)

    def resolve_config(self, event_id: str) -> Optional[ClockConfig]:
        entry = self._entries.get(event_id)
        if entry is not None:
            return entry.clock.config
        event = self.storage.events.get(event_id)
        if event is not None:
            settings = event.get('settings') or {}
            return ClockConfig(
                event_id=event_id,
                quarter_length_seconds=float(settings['quarterLengthMinutes']) * 60,
                total_quarters=int(settings.get('totalQuarters', self.settings.default_total_quarters)),
            )
        record = self.storage.clocks.get(event_id)
        if record is not None:
            return ClockConfig(
                event_id=event_id,
                quarter_length_seconds=float(record['quarterLengthSeconds']),
                total_quarters=self.settings.default_total_quarters,
            )
        return None

    def get_clock(self, event_id: str) -> Optional[Clock]:
        """The live clock for ``event_id``, restoring it if needed; None if unknown."""
        with self._lock:
            entry = self._entries.get(event_id)
            if entry is not None:
                entry.last_accessed_at = self._now()
                return entry.clock
            config = self.resolve_config(event_id)
            if config is None:
                logger.info(f"[clock-not-found] event={event_id}")
                return None
            return self.get_or_create(event_id, config)

    def delete(self, event_id: str) -> bool:
        with self._lock:
            entry = self._entries.pop(event_id, None)
            if entry is not None:
                for unsubscribe in entry.unsubscribers:
                    unsubscribe()
            removed = self.storage.clocks.delete(event_id)
        logger.info(f"[clock-delete] event={event_id} live={entry is not None} record={removed}")
        return entry is not None or removed

    # ---- command surface ----

    def snapshot(self, clock: Clock) -> dict:
        state = clock.get_state()
        remaining = clock.get_current_time()
        return {
            'event_id': state.event_id,
            'time_remaining': remaining,
            'is_running': state.is_running,
            'current_quarter': state.current_quarter,
            'status': state.status.value,
            'is_expired': remaining <= 0,
            'is_game_finished': state.status == ClockStatus.FINISHED,
        }

    def _command(self, event_id: str, action: str, *args) -> Optional[dict]:
        with self._lock:
            clock = self.get_clock(event_id)
            if clock is None:
                return None
            clock.settle_expiry()
            if action:
                getattr(clock, action)(*args)
            return self.snapshot(clock)

    def create(self, event_id: str, quarter_length_seconds: float, total_quarters: int) -> dict:
        config = ClockConfig(
            event_id=event_id,
            quarter_length_seconds=float(quarter_length_seconds),
            total_quarters=int(total_quarters),
        )
        with self._lock:
            return self.snapshot(self.get_or_create(event_id, config))

    def start(self, event_id: str) -> Optional[dict]:
        return self._command(event_id, 'start')

    def pause(self, event_id: str) -> Optional[dict]:
        return self._command(event_id, 'pause')

    def next_quarter(self, event_id: str) -> Optional[dict]:
        return self._command(event_id, 'next_quarter')

    def reset(self, event_id: str) -> Optional[dict]:
        return self._command(event_id, 'reset')

    def sync(self, event_id: str, partial: Mapping) -> Optional[dict]:
        return self._command(event_id, 'sync', dict(partial), EventSource.CONTROLLER)

    def get_state(self, event_id: str) -> Optional[dict]:
        return self._command(event_id, None)

    # ---- maintenance ----

    def sweep(self) -> List[str]:
        """Evict idle clocks past the TTL, then the least recently used
        ones until the registry is back under its cap."""
        now = self._now()
        ttl = timedelta(seconds=self.settings.eviction_ttl)
        evicted = []
        with self._lock:
            for event_id, entry in list(self._entries.items()):
                if now - entry.last_accessed_at > ttl:
                    evicted.append(event_id)
                    self._evict(event_id)
            overflow = len(self._entries) - self.settings.max_instances
            if overflow > 0:
                by_age = sorted(self._entries.items(), key=lambda item: item[1].last_accessed_at)
                for event_id, _ in by_age[:overflow]:
                    evicted.append(event_id)
                    self._evict(event_id)
            remaining = len(self._entries)
        logger.info(f"[clock-sweep] evicted={len(evicted)} active={remaining}")
        return evicted

    def _evict(self, event_id: str) -> None:
        entry = self._entries.pop(event_id)
        self.storage.clocks.save_state(entry.clock.get_state())
        for unsubscribe in entry.unsubscribers:
            unsubscribe()

    def save_all(self) -> int:
        # capture and write under one hold of the lock
        with self._lock:
            states = [entry.clock.get_state() for entry in self._entries.values()]
            saved = self.storage.clocks.save_states(states)
        if saved:
            logger.info(f"[clock-autosave] saved={saved}")
        return saved

    def start_maintenance(self, spawn: Callable = spawn_thread) -> None:
        for job in self._jobs:
            job.start(spawn)

    def shutdown(self) -> None:
        """Flush everything, stop the background jobs, drop every clock.
        Safe to call more than once."""
        self.save_all()
        for job in self._jobs:
            job.stop()
        with self._lock:
            count = len(self._entries)
            for entry in self._entries.values():
                for unsubscribe in entry.unsubscribers:
                    unsubscribe()
            self._entries.clear()
        if count:
            logger.info(f"[clock-shutdown] released={count}")

    def get_memory_stats(self) -> dict:
        with self._lock:
            accessed = [entry.last_accessed_at for entry in self._entries.values()]
            count = len(self._entries)
        cap = self.settings.max_instances
        pressure = 'low'
        if count > cap * 0.8:
            pressure = 'high'
        elif count > cap * 0.5:
            pressure = 'medium'
        return {
            'active_clocks': count,
            'max_instances': cap,
            'oldest_access': min(accessed).isoformat() if accessed else None,
            'newest_access': max(accessed).isoformat() if accessed else None,
            'memory_pressure': pressure,
        }
