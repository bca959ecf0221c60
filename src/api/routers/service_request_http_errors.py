from typing import NoReturn

from fastapi import HTTPException, status

from src.core.service_requests import (
    AuthorizationError,
    InvalidStateError,
    PersistenceError,
    ServiceRequestLifecycleError,
    ServiceRequestNotFoundError,
    ValidationError,
)

HTTP_422_UNPROCESSABLE = getattr(
    status,
    "HTTP_422_UNPROCESSABLE_CONTENT",
    status.HTTP_422_UNPROCESSABLE_ENTITY,
)


def service_request_error_detail(exc: ServiceRequestLifecycleError) -> dict:
    return {
        "kind": exc.kind,
        "code": exc.code,
        "reason": exc.reason,
        "retriable": exc.retriable,
    }


def raise_service_request_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, ServiceRequestNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, InvalidStateError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, AuthorizationError):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, ValidationError):
        status_code = HTTP_422_UNPROCESSABLE
    elif isinstance(exc, PersistenceError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        raise exc
    raise HTTPException(
        status_code=status_code,
        detail=service_request_error_detail(exc),
    ) from exc
