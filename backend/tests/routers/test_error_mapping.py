import pytest
from fastapi import HTTPException
from placement.domain import errors
from placement.routers.errors import audit, bad_request, domain_http_error
from placement.routers import errors as router_errors


@pytest.mark.parametrize(
    ("exc", "status_code"),
    [
        (errors.RecordNotFoundError("missing"), 404),
        (errors.ForbiddenError("not yours"), 403),
        (errors.StudentNumberMismatchError("wrong number"), 403),
        (errors.InvalidIntervalError("end before start"), 400),
        (errors.NotificationDeliveryFailedError("webhook down"), 502),
        (errors.PriorityAlreadyTakenError("priority 1 used"), 409),
        (errors.VersionConflictError("stale"), 409),
        (errors.CancellationWindowClosedError("closed"), 409),
        (errors.StudentAlreadyConfirmedError("already placed"), 409),
        (errors.LotteryRunFailedError("run failed"), 500),
    ],
)
def test_domain_errors_map_to_status(exc: errors.DomainError, status_code: int) -> None:
    http_exc = domain_http_error(exc)
    assert http_exc.status_code == status_code
    assert http_exc.detail["code"] == exc.code
    assert http_exc.detail["message"] == str(exc)


def test_capacity_error_carries_where_it_overflowed() -> None:
    http_exc = domain_http_error(errors.CapacityExceededError(3, at_minute=570))
    assert http_exc.detail["extra"] == {"capacity": 3, "at_minute": 570}


def test_bad_request_wraps_value_error() -> None:
    http_exc = bad_request(ValueError("slot_date must be a date"))
    assert http_exc.status_code == 400
    assert http_exc.detail["code"] == "invalid_request"


def test_audit_failure_becomes_500(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing(**kwargs: object) -> None:
        raise RuntimeError("sink down")

    monkeypatch.setattr(router_errors, "emit_audit_log", failing)
    with pytest.raises(HTTPException) as excinfo:
        audit(action="slot.deleted", initiator="admin", slot_id=1)
    assert excinfo.value.status_code == 500
