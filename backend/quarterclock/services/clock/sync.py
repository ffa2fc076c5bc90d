"""Client-side reconciliation against the authoritative clock.

Two roles poll the same read path:

- ``ObserverSync`` (read-only viewers) never runs transitions. Each poll
  overwrites its view verbatim; between polls it extrapolates a display
  value with the same remaining-time formula. Server always wins.
- ``ControllerSync`` (the one client issuing commands) keeps a local Clock
  mirror for instant feedback and only adopts authoritative timing when
  ``status`` or ``is_running`` disagree, e.g. after a server-side expiry.

A Socket.IO ``state_update`` carries the same payload as a poll, so push
subscribers can feed it straight into ``adopt``.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from .jobs import PeriodicJob, spawn_thread
from .machine import Clock
from .state import ClockConfig, ClockState, ClockStatus, EventSource, remaining_seconds, utcnow


logger = logging.getLogger(__name__)

COMMANDS = ('start', 'pause', 'next_quarter', 'reset')


class RegistryTransport:
    """In-process transport: talks to a ClockRegistry directly."""

    def __init__(self, registry, event_id: str):
        self.registry = registry
        self.event_id = event_id

    def fetch(self) -> Optional[dict]:
        return self.registry.get_state(self.event_id)

    def send(self, action: str) -> Optional[dict]:
        if action not in COMMANDS:
            raise ValueError(f'Unknown clock command {action!r}')
        return getattr(self.registry, action)(self.event_id)


def seed_state(snapshot: dict, polled_at: datetime) -> ClockState:
    # Re-anchor on the poll: the remaining time becomes the "quarter" and the
    # run segment starts at the poll instant.
    running = bool(snapshot['is_running'])
    return ClockState(
        event_id=snapshot.get('event_id', ''),
        quarter_length_seconds=float(snapshot['time_remaining']),
        is_running=running,
        started_at=polled_at if running else None,
        current_quarter=int(snapshot['current_quarter']),
        status=ClockStatus(snapshot['status']),
    )


class ObserverSync:
    def __init__(self, fetch: Callable[[], Optional[dict]], poll_interval: float = 3.0,
                 now_fn: Callable[[], datetime] = utcnow):
        self.fetch = fetch
        self.poll_interval = poll_interval
        self._now = now_fn
        self.is_running = False
        self.current_quarter = 1
        self.status = ClockStatus.SCHEDULED.value
        self.time_remaining = 0.0
        self.polled_at: Optional[datetime] = None
        self._seed: Optional[ClockState] = None
        self._job = PeriodicJob('observer-poll', poll_interval, self.poll)

    def adopt(self, snapshot: dict) -> None:
        now = self._now()
        self.is_running = bool(snapshot['is_running'])
        self.current_quarter = int(snapshot['current_quarter'])
        self.status = snapshot['status']
        self.time_remaining = float(snapshot['time_remaining'])
        self.polled_at = now
        self._seed = seed_state(snapshot, now)

    def poll(self) -> bool:
        snapshot = self.fetch()
        if snapshot is None:
            logger.info("[observer-poll] not_found")
            return False
        self.adopt(snapshot)
        return True

    def display_time(self) -> float:
        if self._seed is None:
            return self.time_remaining
        return remaining_seconds(self._seed, self._now())

    def start(self, spawn: Callable = spawn_thread) -> None:
        self.poll()
        self._job.start(spawn)

    def stop(self) -> None:
        self._job.stop()


class ControllerSync:
    def __init__(self, transport, config: ClockConfig, poll_interval: float = 10.0,
                 now_fn: Callable[[], datetime] = utcnow):
        self.transport = transport
        self.poll_interval = poll_interval
        self._now = now_fn
        self.mirror = Clock(config, now_fn=now_fn)
        self._job = PeriodicJob('controller-reconcile', poll_interval, self.reconcile)

    def _command(self, action: str) -> Optional[dict]:
        getattr(self.mirror, action)()
        return self.transport.send(action)

    def start(self) -> Optional[dict]:
        return self._command('start')

    def pause(self) -> Optional[dict]:
        return self._command('pause')

    def next_quarter(self) -> Optional[dict]:
        return self._command('next_quarter')

    def reset(self) -> Optional[dict]:
        return self._command('reset')

    def display_time(self) -> float:
        return self.mirror.get_current_time()

    def reconcile(self) -> bool:
        """Adopt the authoritative state when status or running disagree.
        Returns True if the mirror was overwritten."""
        snapshot = self.transport.fetch()
        if snapshot is None:
            logger.info("[controller-reconcile] not_found")
            return False
        local = self.mirror.get_state()
        if snapshot['status'] == local.status.value and bool(snapshot['is_running']) == local.is_running:
            return False
        now = self._now()
        running = bool(snapshot['is_running'])
        self.mirror.sync({
            'is_running': running,
            'started_at': now if running else None,
            'accumulated_run_time_seconds': max(0.0, local.quarter_length_seconds - float(snapshot['time_remaining'])),
            'current_quarter': int(snapshot['current_quarter']),
            'status': snapshot['status'],
        }, source=EventSource.CONTROLLER)
        logger.info(
            f"[controller-reconcile] adopted status={snapshot['status']} running={running} remaining={snapshot['time_remaining']}"
        )
        return True

    def start_polling(self, spawn: Callable = spawn_thread) -> None:
        self._job.start(spawn)

    def stop(self) -> None:
        self._job.stop()


def build_observer(app, event_id: str, now_fn: Callable[[], datetime] = utcnow) -> ObserverSync:
    """Observer polling the app's registry at ``OBSERVER_POLL_INTERVAL_SEC``."""
    transport = RegistryTransport(app.extensions['clock_registry'], event_id)
    interval = float(app.config.get('OBSERVER_POLL_INTERVAL_SEC', 3.0))
    return ObserverSync(transport.fetch, poll_interval=interval, now_fn=now_fn)


def build_controller(app, event_id: str, now_fn: Callable[[], datetime] = utcnow) -> Optional[ControllerSync]:
    """Controller reconciling at ``CONTROLLER_POLL_INTERVAL_SEC``, its mirror
    seeded from the current authoritative state. None for unknown events."""
    registry = app.extensions['clock_registry']
    config = registry.resolve_config(event_id)
    if config is None:
        return None
    interval = float(app.config.get('CONTROLLER_POLL_INTERVAL_SEC', 10.0))
    controller = ControllerSync(RegistryTransport(registry, event_id), config, poll_interval=interval, now_fn=now_fn)
    controller.reconcile()
    return controller
