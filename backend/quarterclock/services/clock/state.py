import math
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional


DEFAULT_QUARTER_LENGTH_SECONDS = 15 * 60
DEFAULT_TOTAL_QUARTERS = 4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClockStatus(str, Enum):
    SCHEDULED = 'scheduled'
    LIVE = 'live'
    FINISHED = 'finished'


class EventType(str, Enum):
    START = 'start'
    PAUSE = 'pause'
    NEXT_QUARTER = 'nextQuarter'
    RESET = 'reset'
    SYNC = 'sync'


class EventSource(str, Enum):
    CONTROLLER = 'controller'
    REGISTRY = 'registry'
    OBSERVER = 'observer'


@dataclass
class ClockConfig:
    event_id: str
    quarter_length_seconds: float = DEFAULT_QUARTER_LENGTH_SECONDS
    total_quarters: int = DEFAULT_TOTAL_QUARTERS


@dataclass
class ClockState:
    """Everything needed to rebuild a clock.

    ``accumulated_run_time_seconds`` is the running time already consumed in
    the current quarter across every start/pause cycle, not time spent paused.
    """

    event_id: str
    quarter_length_seconds: float
    is_running: bool = False
    started_at: Optional[datetime] = None
    accumulated_run_time_seconds: float = 0.0
    current_quarter: int = 1
    status: ClockStatus = ClockStatus.SCHEDULED

    def copy(self, **changes) -> 'ClockState':
        return replace(self, **changes)


STATE_FIELDS = frozenset(f.name for f in fields(ClockState))


@dataclass(frozen=True)
class ClockEvent:
    type: EventType
    timestamp: datetime
    event_id: str
    resulting_state: ClockState
    source: EventSource = EventSource.CONTROLLER


ClockListener = Callable[[ClockEvent], Any]


def round10(value: float) -> float:
    # half-up, so 0.05 ticks never round toward even
    return math.floor(value * 10 + 0.5) / 10


def remaining_seconds(state: ClockState, now: datetime) -> float:
    """Seconds left in the current quarter at ``now``.

    This is the only place remaining time is derived; the registry, the
    observer extrapolation and the controller mirror all call it.
    """
    if not state.is_running or state.started_at is None:
        return max(0.0, state.quarter_length_seconds - state.accumulated_run_time_seconds)
    elapsed = (now - state.started_at).total_seconds()
    remaining = state.quarter_length_seconds - state.accumulated_run_time_seconds - elapsed
    return max(0.0, round10(remaining))
