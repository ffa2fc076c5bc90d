import logging
import math
from datetime import datetime, timezone
from typing import Callable, List, Mapping, Optional

from .state import (
    STATE_FIELDS,
    ClockConfig,
    ClockEvent,
    ClockListener,
    ClockState,
    ClockStatus,
    EventSource,
    EventType,
    remaining_seconds,
    utcnow,
)


logger = logging.getLogger(__name__)


def _number(name: str, value, cast=float):
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f'{name} must be a number, got {value!r}')
    try:
        number = cast(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f'{name} must be a number, got {value!r}') from None
    if not math.isfinite(number) or number < 0:
        raise ValueError(f'{name} must be a non-negative number, got {value!r}')
    return number


def _coerce(name: str, value):
    """Validate one externally supplied field. Raises ValueError before any
    state is touched, so a bad snapshot never reaches listeners or storage."""
    if name == 'status':
        return value if isinstance(value, ClockStatus) else ClockStatus(value)
    if name == 'is_running':
        return bool(value)
    if name == 'current_quarter':
        quarter = _number(name, value, int)
        if quarter < 1:
            raise ValueError(f'current_quarter must be at least 1, got {value!r}')
        return quarter
    if name in ('accumulated_run_time_seconds', 'quarter_length_seconds'):
        return _number(name, value)
    if name == 'started_at':
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if not isinstance(value, datetime):
            raise ValueError(f'started_at must be an ISO-8601 timestamp, got {value!r}')
        if value.tzinfo is None:
            # naive timestamps are UTC
            value = value.replace(tzinfo=timezone.utc)
        return value
    return value


class Clock:
    """Countdown for one event: start/pause/quarter progression.

    Knows nothing about storage or transport. Expected edge cases (double
    start, pausing a stopped clock, acting on a finished game) are logged
    no-ops, never exceptions.
    """

    def __init__(self, config: ClockConfig, now_fn: Callable[[], datetime] = utcnow):
        self.config = config
        self._now = now_fn
        self._listeners: List[ClockListener] = []
        self._state = ClockState(
            event_id=config.event_id,
            quarter_length_seconds=config.quarter_length_seconds,
        )

    @property
    def event_id(self) -> str:
        return self._state.event_id

    def get_state(self) -> ClockState:
        return self._state.copy()

    def get_current_time(self) -> float:
        return remaining_seconds(self._state, self._now())

    def is_expired(self) -> bool:
        return self.get_current_time() <= 0

    def is_game_finished(self) -> bool:
        return self._state.status == ClockStatus.FINISHED

    def subscribe(self, listener: ClockListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _refuse_if_finished(self, action: str) -> bool:
        if self.is_game_finished():
            logger.info(f"[clock-ignore] event={self.event_id} action={action} reason=finished")
            return True
        return False

    def start(self, source: EventSource = EventSource.CONTROLLER) -> None:
        if self._refuse_if_finished('start'):
            return
        if self._state.is_running:
            logger.info(f"[clock-ignore] event={self.event_id} action=start reason=already_running")
            return
        if self.get_current_time() <= 0:
            logger.info(f"[clock-ignore] event={self.event_id} action=start reason=no_time_remaining")
            return
        now = self._now()
        self._state = self._state.copy(is_running=True, started_at=now, status=ClockStatus.LIVE)
        self._emit(EventType.START, now, source)

    def pause(self, source: EventSource = EventSource.CONTROLLER) -> None:
        if self._refuse_if_finished('pause'):
            return
        if not self._state.is_running or self._state.started_at is None:
            logger.info(f"[clock-ignore] event={self.event_id} action=pause reason=not_running")
            return
        now = self._now()
        self._stop_at(now)
        self._emit(EventType.PAUSE, now, source)

    def settle_expiry(self, source: EventSource = EventSource.REGISTRY) -> bool:
        """Stop a running clock that has reached zero. Returns True if it did."""
        if not self._state.is_running or self.get_current_time() > 0:
            return False
        now = self._now()
        self._stop_at(now)
        logger.info(f"[clock-expired] event={self.event_id} quarter={self._state.current_quarter}")
        self._emit(EventType.PAUSE, now, source)
        return True

    def _stop_at(self, now: datetime) -> None:
        started = self._state.started_at
        elapsed = (now - started).total_seconds() if started is not None else 0.0
        accumulated = min(
            self._state.quarter_length_seconds,
            self._state.accumulated_run_time_seconds + max(0.0, elapsed),
        )
        self._state = self._state.copy(
            is_running=False,
            started_at=None,
            accumulated_run_time_seconds=accumulated,
            status=ClockStatus.SCHEDULED,
        )

    def next_quarter(self, source: EventSource = EventSource.CONTROLLER) -> None:
        if self._refuse_if_finished('nextQuarter'):
            return
        upcoming = self._state.current_quarter + 1
        finished = upcoming > self.config.total_quarters
        if finished:
            logger.info(f"[clock-finish] event={self.event_id} quarter={self._state.current_quarter}")
        self._state = self._state.copy(
            current_quarter=self._state.current_quarter if finished else upcoming,
            is_running=False,
            started_at=None,
            accumulated_run_time_seconds=0.0,
            status=ClockStatus.FINISHED if finished else ClockStatus.SCHEDULED,
        )
        self._emit(EventType.NEXT_QUARTER, self._now(), source)

    def reset(self, source: EventSource = EventSource.CONTROLLER) -> None:
        if self._refuse_if_finished('reset'):
            return
        self._state = self._state.copy(
            is_running=False,
            started_at=None,
            accumulated_run_time_seconds=0.0,
            status=ClockStatus.SCHEDULED,
        )
        self._emit(EventType.RESET, self._now(), source)

    def sync(self, partial: Mapping, source: EventSource = EventSource.REGISTRY) -> bool:
        """Merge an external snapshot into the state.

        Emits ``sync`` only when something actually changed, so replaying
        the same snapshot is silent. Returns whether the state changed.

        A clock never changes identity: ``event_id`` is ignored. Malformed
        values raise ValueError and leave the state untouched.
        """
        changes = {}
        for name, value in partial.items():
            if name not in STATE_FIELDS:
                logger.debug(f"[clock-sync] event={self.event_id} ignoring field={name}")
                continue
            if name == 'event_id':
                if value != self.event_id:
                    logger.warning(f"[clock-sync] event={self.event_id} rejected event_id={value!r}")
                continue
            changes[name] = _coerce(name, value)
        previous = self._state
        merged = self._normalize(previous.copy(**changes))
        if merged == previous:
            return False
        self._state = merged
        self._emit(EventType.SYNC, self._now(), source)
        return True

    def _normalize(self, state: ClockState) -> ClockState:
        # a running clock needs an anchor; a stopped one keeps accumulated within the quarter
        if state.status == ClockStatus.FINISHED:
            state = state.copy(is_running=False)
        if state.is_running:
            return state.copy(
                started_at=state.started_at or self._now(),
                status=ClockStatus.LIVE,
            )
        return state.copy(
            started_at=None,
            accumulated_run_time_seconds=min(state.accumulated_run_time_seconds, state.quarter_length_seconds),
            status=ClockStatus.SCHEDULED if state.status == ClockStatus.LIVE else state.status,
        )

    def _emit(self, event_type: EventType, timestamp: datetime, source: EventSource) -> None:
        event = ClockEvent(
            type=event_type,
            timestamp=timestamp,
            event_id=self.event_id,
            resulting_state=self._state.copy(),
            source=source,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"[clock-listener-error] event={self.event_id} type={event_type.value}")

    def __repr__(self) -> str:
        return f"<Clock {self.event_id} q={self._state.current_quarter} {self._state.status.value}>"


def restore_clock(config: ClockConfig, snapshot: Optional[Mapping], now_fn=utcnow) -> Clock:
    clock = Clock(config, now_fn=now_fn)
    if snapshot:
        clock.sync(snapshot)
    return clock
