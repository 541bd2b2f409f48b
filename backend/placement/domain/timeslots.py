from __future__ import annotations

from ..utils.time import format_hhmm, parse_hhmm
from .errors import InvalidIntervalError

CANONICAL_START_TIMES: tuple[str, ...] = ("08:30", "11:00", "13:20", "15:00", "16:40", "18:20")
MIN_DURATION_MINUTES = 120
END_STEP_MINUTES = 10


def valid_start_times(slot_start: str, slot_end: str) -> list[str]:
    """Canonical starts inside the slot that leave at least the minimum duration."""
    lo = parse_hhmm(slot_start)
    hi = parse_hhmm(slot_end)
    return [
        start
        for start in CANONICAL_START_TIMES
        if lo <= parse_hhmm(start) and parse_hhmm(start) + MIN_DURATION_MINUTES <= hi
    ]


def valid_end_times(start: str, slot_end: str) -> list[str]:
    first = parse_hhmm(start) + MIN_DURATION_MINUTES
    last = parse_hhmm(slot_end)
    return [format_hhmm(m) for m in range(first, last + 1, END_STEP_MINUTES)]


def bookable_intervals(slot_start: str, slot_end: str) -> dict[str, list[str]]:
    return {start: valid_end_times(start, slot_end) for start in valid_start_times(slot_start, slot_end)}


def validate_custom_interval(slot_start: str, slot_end: str, start: str, end: str) -> tuple[str, str]:
    """Return the normalized `(start, end)` or raise InvalidIntervalError."""
    try:
        start_norm = format_hhmm(parse_hhmm(start))
        end_norm = format_hhmm(parse_hhmm(end))
    except ValueError as exc:
        raise InvalidIntervalError(str(exc)) from exc
    if start_norm not in valid_start_times(slot_start, slot_end):
        raise InvalidIntervalError(f"start {start_norm} is not a bookable start time for this slot")
    if end_norm not in valid_end_times(start_norm, slot_end):
        raise InvalidIntervalError(f"end {end_norm} is not a bookable end time for start {start_norm}")
    return start_norm, end_norm
