"""
Team Assessment Engine - API Errors
Translation of service errors into HTTP responses
"""
from fastapi import HTTPException, status

from assessment_engine.services.exceptions import (
    AccessDeniedError,
    AccessDeniedReason,
    AssessmentError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ScorerError,
    ValidationFailedError,
)

# Checked in order; subclasses first
_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ValidationFailedError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ScorerError, status.HTTP_502_BAD_GATEWAY),
)

_PASSWORD_REASONS = frozenset({
    AccessDeniedReason.NEED_TEST_PASSWORD,
    AccessDeniedReason.INVALID_TEST_PASSWORD,
})


def status_for(error: AssessmentError) -> int:
    if isinstance(error, AccessDeniedError) and error.reason in _PASSWORD_REASONS:
        return status.HTTP_401_UNAUTHORIZED
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def to_http_exception(error: AssessmentError) -> HTTPException:
    """Build the HTTPException for a service error: {"error": code, "message": text}."""
    return HTTPException(
        status_code=status_for(error),
        detail={"error": error.code, "message": error.message},
    )
