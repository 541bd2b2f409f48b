"""Availability cache: the per-slot projection of non-cancelled reservations.

Every function returns a new list so SQLAlchemy sees the JSON column change.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol, TypedDict

from ..models import ReservationStatus
from ..utils.time import parse_hhmm
from .errors import InconsistentCacheStateError
from .services import Interval

logger = logging.getLogger(__name__)

LIVE_STATUSES = frozenset({ReservationStatus.APPLIED, ReservationStatus.CONFIRMED})


class CacheEntry(TypedDict):
    start: str
    end: str
    status: str
    reservation_id: int


class ReservationLike(Protocol):
    id: int
    status: ReservationStatus
    custom_start_time: str | None
    custom_end_time: str | None
    slot_start_time: str
    slot_end_time: str


def _sort_key(entry: dict[str, Any]) -> tuple[int, int, int]:
    return parse_hhmm(entry["start"]), parse_hhmm(entry["end"]), int(entry["reservation_id"])


def project_entry(reservation: ReservationLike) -> CacheEntry:
    # Legacy records may lack a custom interval; fall back to the slot snapshot.
    return CacheEntry(
        start=reservation.custom_start_time or reservation.slot_start_time,
        end=reservation.custom_end_time or reservation.slot_end_time,
        status=str(ReservationStatus(reservation.status).value),
        reservation_id=reservation.id,
    )


def build_cache(reservations: Iterable[ReservationLike]) -> list[CacheEntry]:
    entries = [project_entry(r) for r in reservations if r.status != ReservationStatus.CANCELLED]
    return sorted(entries, key=_sort_key)


def upsert_entry(
    cache: list[dict[str, Any]] | None,
    reservation: ReservationLike,
    *,
    expect_existing: bool = False,
) -> list[dict[str, Any]]:
    """Insert the reservation's entry, or replace it if already present."""
    entry = project_entry(reservation)
    current = list(cache or [])
    kept = [e for e in current if e.get("reservation_id") != reservation.id]
    if expect_existing and len(kept) == len(current):
        _report_missing(reservation.id, "patch")
    kept.append(dict(entry))
    return sorted(kept, key=_sort_key)


def remove_entry(cache: list[dict[str, Any]] | None, reservation_id: int) -> list[dict[str, Any]]:
    current = list(cache or [])
    kept = [e for e in current if e.get("reservation_id") != reservation_id]
    if len(kept) == len(current):
        _report_missing(reservation_id, "remove")
    return kept


def _report_missing(reservation_id: int, op: str) -> None:
    # Recoverable: the full rebuild is the authoritative repair path.
    err = InconsistentCacheStateError(f"cache entry for reservation {reservation_id} missing on {op}")
    logger.warning(
        "Availability cache drift detected",
        extra={"event": "cache_drift", "op": op, "reservation_id": reservation_id, "code": err.code},
    )


def live_intervals(cache: list[dict[str, Any]] | None) -> list[Interval]:
    """Intervals that count against capacity: applied and confirmed only."""
    return [
        Interval(parse_hhmm(e["start"]), parse_hhmm(e["end"]))
        for e in (cache or [])
        if e.get("status") in LIVE_STATUSES
    ]


def _normalized(cache: list[dict[str, Any]] | None) -> list[tuple[str, str, str, int]]:
    return sorted((e["start"], e["end"], e["status"], int(e["reservation_id"])) for e in (cache or []))


def caches_equal(a: list[dict[str, Any]] | None, b: list[dict[str, Any]] | None) -> bool:
    return _normalized(a) == _normalized(b)
