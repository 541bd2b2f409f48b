from __future__ import annotations


class DomainError(Exception):
    """Base class for business-rule rejections raised by the allocation core."""

    code = "domain_error"


class CapacityExceededError(DomainError):
    code = "capacity_exceeded"

    def __init__(self, capacity: int, at_minute: int | None = None) -> None:
        self.capacity = capacity
        self.at_minute = at_minute
        super().__init__(f"slot capacity {capacity} would be exceeded")


class PriorityAlreadyTakenError(DomainError):
    code = "priority_already_taken"


class CancellationWindowClosedError(DomainError):
    code = "cancellation_window_closed"


class RecordNotFoundError(DomainError):
    code = "record_not_found"


class InconsistentCacheStateError(DomainError):
    """Internal: an incremental cache patch could not find its entry."""

    code = "inconsistent_cache_state"


class NotificationDeliveryFailedError(DomainError):
    code = "notification_delivery_failed"


class DuplicateReservationError(DomainError):
    code = "duplicate_reservation"


class SlotNotOpenError(DomainError):
    code = "slot_not_open"


class InvalidIntervalError(DomainError):
    code = "invalid_interval"


class InvalidTransitionError(DomainError):
    code = "invalid_transition"


class BookingWindowClosedError(DomainError):
    code = "booking_window_closed"


class TrainingTypeMismatchError(DomainError):
    code = "training_type_mismatch"


class SlotHasActiveReservationsError(DomainError):
    code = "slot_has_active_reservations"


class LotteryAlreadyRunningError(DomainError):
    code = "lottery_already_running"


class VersionConflictError(DomainError):
    code = "version_conflict"


class StudentNumberMismatchError(DomainError):
    code = "student_number_mismatch"


class ForbiddenError(DomainError):
    code = "forbidden"


class StudentAlreadyConfirmedError(DomainError):
    code = "student_already_confirmed"


class LotteryRunFailedError(DomainError):
    code = "lottery_run_failed"
