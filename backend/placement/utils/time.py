from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

JST = ZoneInfo("Asia/Tokyo")

MINUTES_PER_DAY = 24 * 60


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def utc_naive_to_jst(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(JST)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_hhmm(value: str) -> int:
    """Parse `HH:MM` or `HH:MM:SS` into minutes since midnight. Seconds are dropped."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"invalid time {value!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
        second = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as exc:
        raise ValueError(f"invalid time {value!r}") from exc
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        raise ValueError(f"invalid time {value!r}")
    return hour * 60 + minute


def format_hhmm(minutes: int) -> str:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"minute offset out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_hhmm(value: str) -> str:
    return format_hhmm(parse_hhmm(value))


def duration_minutes(start: str, end: str) -> int:
    return parse_hhmm(end) - parse_hhmm(start)


def slot_start_utc_naive(slot_date: date, start: str) -> datetime:
    """Slot-local (JST) date + `HH:MM` as a naive UTC datetime."""
    minutes = parse_hhmm(start)
    local = datetime.combine(slot_date, time(minutes // 60, minutes % 60), tzinfo=JST)
    return to_utc_naive(local)


def jst_today(now_utc: datetime) -> date:
    return utc_naive_to_jst(now_utc).date()


def jst_hhmm(now_utc: datetime) -> str:
    return utc_naive_to_jst(now_utc).strftime("%H:%M")
