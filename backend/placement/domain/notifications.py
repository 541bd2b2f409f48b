from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..models import Reservation, Student

SUBJECT_PREFIX = "[Clinical Training]"


@dataclass(frozen=True)
class NotificationRequest:
    to: str
    subject: str
    body: str

    def as_payload(self) -> dict[str, str]:
        return {"to": self.to, "subject": self.subject, "body": self.body}


class NotificationDispatcher(Protocol):
    async def send(self, request: NotificationRequest) -> None: ...


def _interval_line(reservation: Reservation) -> str:
    return (
        f"{reservation.slot_date.isoformat()} "
        f"{reservation.custom_start_time}-{reservation.custom_end_time} "
        f"(training {reservation.slot_training_type})"
    )


def _request(student: Student, subject: str, lines: list[str]) -> NotificationRequest | None:
    if not student.email:
        return None
    body = "\n".join([f"{student.name},", "", *lines, "", "Clinical Training System"])
    return NotificationRequest(to=student.email, subject=f"{SUBJECT_PREFIX} {subject}", body=body)


def booking_confirmed(student: Student, reservation: Reservation) -> NotificationRequest | None:
    return _request(student, "Reservation confirmed", ["Your reservation is confirmed:", _interval_line(reservation)])


def application_received(student: Student, reservation: Reservation) -> NotificationRequest | None:
    return _request(
        student,
        "Application received",
        [
            f"Your priority {reservation.priority} application was received:",
            _interval_line(reservation),
            "The result will be announced after the lottery.",
        ],
    )


def reservation_cancelled(student: Student, reservation: Reservation) -> NotificationRequest | None:
    return _request(student, "Reservation cancelled", ["Your reservation was cancelled:", _interval_line(reservation)])


def lottery_won(student: Student, reservation: Reservation) -> NotificationRequest | None:
    return _request(
        student,
        "Lottery result",
        ["You were allocated the following placement (first day):", _interval_line(reservation)],
    )


def attendance_approved(student: Student, reservation: Reservation) -> NotificationRequest | None:
    minutes = reservation.actual_minutes or 0
    return _request(
        student,
        "Attendance approved",
        [
            "Your attendance was approved:",
            _interval_line(reservation),
            f"Credited time: {minutes // 60}h {minutes % 60:02d}m",
        ],
    )
