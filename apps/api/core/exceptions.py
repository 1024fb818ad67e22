"""
Custom exception classes and error handling.

Provides consistent error responses across the API. Domain errors raised by
the gym setup orchestrator are translated into these by
``api_error_from_setup_error``.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class ConflictError(APIException):
    """Request conflicts with current state (wrong wizard step, last gym)."""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )


class ServiceUnavailableError(APIException):
    """Remote store temporarily unavailable."""

    def __init__(self, detail: str = "Service temporarily unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="SERVICE_UNAVAILABLE"
        )


def api_error_from_setup_error(exc: Exception) -> APIException:
    """Map an orchestrator error onto the HTTP error surface."""
    from services.gym_setup import errors

    if isinstance(exc, errors.GymNotFound):
        return NotFoundError("Gym", str(exc.gym_id))
    if isinstance(exc, errors.ValidationError):
        return ValidationError(str(exc), field=exc.field)
    if isinstance(exc, errors.InvalidTransition):
        return ConflictError(str(exc), error_code="INVALID_SETUP_STEP")
    if isinstance(exc, errors.LastGymError):
        return ConflictError(str(exc), error_code="LAST_GYM")
    if isinstance(exc, errors.TransientRemoteError):
        return ServiceUnavailableError(str(exc))
    return APIException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc) or "Internal error",
        error_code="INTERNAL_ERROR",
    )
