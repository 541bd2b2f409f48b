from typing import Any

from fastapi import HTTPException, status

from ..domain import errors
from ..schemas import ErrorDetail
from ..utils.audit_log import emit_audit_log

_STATUS_BY_ERROR: dict[type[errors.DomainError], int] = {
    errors.RecordNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.ForbiddenError: status.HTTP_403_FORBIDDEN,
    errors.InvalidIntervalError: status.HTTP_400_BAD_REQUEST,
    errors.StudentNumberMismatchError: status.HTTP_403_FORBIDDEN,
    errors.NotificationDeliveryFailedError: status.HTTP_502_BAD_GATEWAY,
    errors.LotteryRunFailedError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def domain_http_error(exc: errors.DomainError) -> HTTPException:
    """Typed rejection: the `code` tells the caller which rule was violated."""
    extra: dict[str, Any] = {}
    if isinstance(exc, errors.CapacityExceededError):
        extra = {"capacity": exc.capacity, "at_minute": exc.at_minute}
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
        status.HTTP_409_CONFLICT,
    )
    detail = ErrorDetail(code=exc.code, message=str(exc), extra=extra)
    return HTTPException(status_code=status_code, detail=detail.model_dump())


def bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=ErrorDetail(code="invalid_request", message=str(exc)).model_dump(),
    )


def audit(**kwargs: Any) -> None:
    """Audit after commit; a failing audit sink is reported as a server error."""
    try:
        emit_audit_log(**kwargs)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed") from exc
