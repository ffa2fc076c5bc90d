"""Request validation for the HTTP surface.

Each validator returns a ValidationResult; routes turn an invalid one into a
400 with ``{'error': result.error}``.
"""
import math
import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence


NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-'&.]+$")
MAX_NAME_LENGTH = 50
MAX_QUARTER_LENGTH_MIN = 60
MAX_TOTAL_QUARTERS = 8
MAX_POINTS_DELTA = 10
TIMER_ACTIONS = ('start', 'pause', 'nextQuarter', 'reset', 'sync')


@dataclass
class ValidationResult:
    is_valid: bool
    error: Optional[str] = None
    value: Any = None


def ok(value) -> ValidationResult:
    return ValidationResult(True, value=value)


def fail(error: str) -> ValidationResult:
    return ValidationResult(False, error=error)


def _number(raw) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    try:
        num = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(num) or math.isinf(num):
        return None
    return num


def validate_display_name(name) -> ValidationResult:
    if not name or not isinstance(name, str):
        return fail('Team name is required')
    cleaned = name.strip()
    if not cleaned:
        return fail('Team name cannot be empty')
    if len(cleaned) > MAX_NAME_LENGTH:
        return fail(f'Team name must be {MAX_NAME_LENGTH} characters or less')
    if not NAME_PATTERN.match(cleaned):
        return fail('Team name contains invalid characters')
    return ok(cleaned)


def validate_quarter_length(length, allowed: Optional[Sequence[float]] = None) -> ValidationResult:
    if length is None:
        return fail('Quarter length is required')
    num = _number(length)
    if num is None:
        return fail('Quarter length must be a valid number')
    if num <= 0:
        return fail('Quarter length must be greater than 0')
    if num > MAX_QUARTER_LENGTH_MIN:
        return fail(f'Quarter length cannot exceed {MAX_QUARTER_LENGTH_MIN} minutes')
    if allowed and num not in allowed:
        options = ', '.join(str(a) for a in allowed)
        return fail(f'Quarter length must be one of: {options} minutes')
    return ok(num)


def validate_total_quarters(total) -> ValidationResult:
    num = _number(total)
    if num is None or not num.is_integer():
        return fail('Total quarters must be a whole number')
    if not 1 <= num <= MAX_TOTAL_QUARTERS:
        return fail(f'Total quarters must be between 1 and {MAX_TOTAL_QUARTERS}')
    return ok(int(num))


def validate_team(team) -> ValidationResult:
    if not team or not isinstance(team, str):
        return fail('Team identifier is required')
    cleaned = team.strip().upper()
    if cleaned not in ('A', 'B'):
        return fail('Team must be either A or B')
    return ok(cleaned)


def validate_points(points) -> ValidationResult:
    if points is None:
        return fail('Points value is required')
    num = _number(points)
    if num is None:
        return fail('Points must be a valid number')
    if not num.is_integer():
        return fail('Points must be a whole number')
    if abs(num) > MAX_POINTS_DELTA:
        return fail(f'Points must be between -{MAX_POINTS_DELTA} and {MAX_POINTS_DELTA}')
    return ok(int(num))


def validate_timer_action(action) -> ValidationResult:
    if not action or not isinstance(action, str):
        return fail('Action is required')
    cleaned = action.strip()
    if cleaned not in TIMER_ACTIONS:
        return fail(f"Invalid action. Use: {', '.join(TIMER_ACTIONS)}")
    return ok(cleaned)


def validate_create_request(data, allowed_lengths: Optional[Sequence[float]] = None) -> ValidationResult:
    if not isinstance(data, dict):
        return fail('Game data is required')
    team_a = validate_display_name(data.get('teamA'))
    if not team_a.is_valid:
        return fail(f'Team A: {team_a.error}')
    team_b = validate_display_name(data.get('teamB'))
    if not team_b.is_valid:
        return fail(f'Team B: {team_b.error}')
    if team_a.value == team_b.value:
        return fail('Team names must be different')

    raw_settings = data.get('settings') or {}
    if not isinstance(raw_settings, dict):
        return fail('Settings must be an object')
    settings = {}
    if raw_settings.get('quarterLengthMinutes') is not None:
        length = validate_quarter_length(raw_settings['quarterLengthMinutes'], allowed_lengths)
        if not length.is_valid:
            return length
        settings['quarterLengthMinutes'] = length.value
    if raw_settings.get('totalQuarters') is not None:
        total = validate_total_quarters(raw_settings['totalQuarters'])
        if not total.is_valid:
            return total
        settings['totalQuarters'] = total.value
    if raw_settings.get('breakLengthMinutes') is not None:
        brk = _number(raw_settings['breakLengthMinutes'])
        if brk is None or brk < 0:
            return fail('Break length must be a non-negative number')
        settings['breakLengthMinutes'] = brk
    return ok({'teamA': team_a.value, 'teamB': team_b.value, 'settings': settings})


def validate_score_request(data) -> ValidationResult:
    if not isinstance(data, dict):
        return fail('Score update data is required')
    team = validate_team(data.get('team'))
    if not team.is_valid:
        return team
    points = validate_points(data.get('points'))
    if not points.is_valid:
        return points
    return ok({'team': team.value, 'points': points.value})
