"""
Application errors and the handlers that render them.

Every error leaves the API as the same envelope:

    {"error_code": "...", "message": "...", "details": {...}}

The device client parses that envelope back into the matching class, so
the error codes below are part of the wire contract.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AppException(Exception):
    error_code = "ERR_INTERNAL_SERVER"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Dict[str, Any] = None,
    ):
        self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.details = dict(details or {})
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    error_code = "ERR_PERM_001"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(message, details=details)


class ResourceNotFoundError(AppException):
    error_code = "ERR_NOT_FOUND_001"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found" if resource_id is None else f"{resource} with ID {resource_id} not found"
        super().__init__(message, details={"resource": resource, "id": resource_id})


class AuthenticationError(AppException):
    error_code = "ERR_AUTH_001"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class InvalidStateTransitionError(AppException):
    """
    The operation is not allowed in the current trip/attendance state.

    Raised before any write is attempted, e.g. marking a student boarded
    while the trip is idle.
    """
    error_code = "ERR_STATE_001"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current_state: Optional[str] = None, details: Dict[str, Any] = None):
        details = dict(details or {})
        if current_state is not None:
            details["current_state"] = current_state
        super().__init__(message, details=details)


class PreconditionFailedError(AppException):
    """
    A setup step is missing. `remediation` names what the client should
    do next ("select_route", "register_vehicle", "login", ...).
    """
    error_code = "ERR_PRECONDITION_001"
    status_code = status.HTTP_412_PRECONDITION_FAILED

    def __init__(self, message: str, remediation: Optional[str] = None, details: Dict[str, Any] = None):
        details = dict(details or {})
        if remediation:
            details["remediation"] = remediation
        self.remediation = remediation
        super().__init__(message, details=details)


class TransientIOError(AppException):
    """Retryable I/O failure: timeout, dropped connection, backend unavailable."""
    error_code = "ERR_TRANSIENT_IO"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Temporary I/O failure", details: Dict[str, Any] = None):
        super().__init__(message, details=details)


# Tracking preconditions, one class per remediation

class NotAuthenticatedError(PreconditionFailedError):
    error_code = "ERR_TRACK_AUTH"

    def __init__(self):
        super().__init__("You must be logged in to track location", remediation="login")


class TrackingDisabledError(PreconditionFailedError):
    error_code = "ERR_TRACK_DISABLED"

    def __init__(self, vehicle_id: Any = None):
        super().__init__(
            "Tracking is disabled for this vehicle",
            remediation="enable_vehicle_tracking",
            details={"vehicle_id": vehicle_id}
        )


class PositioningUnavailableError(PreconditionFailedError):
    error_code = "ERR_TRACK_NO_GPS"

    def __init__(self):
        super().__init__("This device does not support geolocation", remediation="use_supported_device")


# Terminal streamer failures

class PositionPermissionDeniedError(AppException):
    error_code = "ERR_POS_DENIED"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Permission to access location was denied"):
        super().__init__(message)


class TrackingFailedError(AppException):
    error_code = "ERR_POS_FAILED"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, retries: int, last_error: Optional[str] = None):
        super().__init__(
            f"Location tracking stopped after {retries} retries",
            details={"retries": retries, "last_error": last_error}
        )


# Handlers

HTTP_ERROR_CODES = {
    400: "ERR_BAD_REQUEST",
    401: "ERR_UNAUTHORIZED",
    403: "ERR_FORBIDDEN",
    404: "ERR_NOT_FOUND",
    409: "ERR_CONFLICT",
    412: "ERR_PRECONDITION",
    503: "ERR_UNAVAILABLE",
}


def error_response(status_code: int, error_code: str, message: Any, details: Dict[str, Any] = None,
                   headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error_code": error_code, "message": message, "details": details or {}},
        headers=headers,
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    return error_response(exc.status_code, exc.error_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap plain HTTPExceptions (auth dependencies, 404 routes) in the error envelope."""
    return error_response(
        exc.status_code,
        HTTP_ERROR_CODES.get(exc.status_code, "ERR_UNKNOWN"),
        exc.detail,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ERR_VALIDATION",
        "Validation error",
        {"errors": exc.errors()},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "ERR_INTERNAL_SERVER",
        "An internal server error occurred",
    )
