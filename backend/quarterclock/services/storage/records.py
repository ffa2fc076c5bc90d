"""Durable record layouts.

Field names here are the on-disk contract shared by every process reading
the same store, so they stay camelCase regardless of Python naming.
"""
from datetime import datetime, timezone
from typing import Optional

from quarterclock.services.clock.state import ClockState, ClockStatus


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def from_iso(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def clock_record(state: ClockState, created_at: str, updated_at: str) -> dict:
    return {
        'eventId': state.event_id,
        'isRunning': state.is_running,
        'startedAt': to_iso(state.started_at),
        'accumulatedRunTimeSeconds': state.accumulated_run_time_seconds,
        'currentQuarter': state.current_quarter,
        'quarterLengthSeconds': state.quarter_length_seconds,
        'status': ClockStatus(state.status).value,
        'createdAt': created_at,
        'updatedAt': updated_at,
    }


def state_fields_from_record(record: dict) -> dict:
    """Partial ClockState fields suitable for ``Clock.sync``."""
    return {
        'event_id': record['eventId'],
        'is_running': bool(record.get('isRunning', False)),
        'started_at': from_iso(record.get('startedAt')),
        'accumulated_run_time_seconds': float(record.get('accumulatedRunTimeSeconds', 0.0)),
        'current_quarter': int(record.get('currentQuarter', 1)),
        'quarter_length_seconds': float(record['quarterLengthSeconds']),
        'status': ClockStatus(record.get('status', ClockStatus.SCHEDULED.value)),
    }


def event_record(event_id: str, display_name_a: str, display_name_b: str, settings: dict, now: str) -> dict:
    return {
        'id': event_id,
        'displayNameA': display_name_a,
        'displayNameB': display_name_b,
        'scoreA': 0,
        'scoreB': 0,
        'currentQuarter': 1,
        'status': ClockStatus.SCHEDULED.value,
        'settings': {
            'quarterLengthMinutes': settings['quarterLengthMinutes'],
            'breakLengthMinutes': settings['breakLengthMinutes'],
            'totalQuarters': settings['totalQuarters'],
        },
        'createdAt': now,
        'updatedAt': now,
    }
