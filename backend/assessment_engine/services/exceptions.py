"""
Team Assessment Engine - Service Errors
Typed failures raised by the engine services. Routers translate them to HTTP responses.
"""
from enum import Enum


class AccessDeniedReason(str, Enum):
    """Why a caller may not start (or submit) a test."""
    NOT_A_MEMBER = "NOT_A_MEMBER"
    NOT_PUBLISHED = "NOT_PUBLISHED"
    NOT_YET_OPEN = "NOT_YET_OPEN"
    WINDOW_CLOSED = "WINDOW_CLOSED"
    NEED_TEST_PASSWORD = "NEED_TEST_PASSWORD"
    INVALID_TEST_PASSWORD = "INVALID_TEST_PASSWORD"
    NOT_ASSIGNED = "NOT_ASSIGNED"
    MAX_ATTEMPTS_REACHED = "MAX_ATTEMPTS_REACHED"


ACCESS_DENIED_MESSAGES = {
    AccessDeniedReason.NOT_A_MEMBER: "You are not a member of this team",
    AccessDeniedReason.NOT_PUBLISHED: "Test is not published",
    AccessDeniedReason.NOT_YET_OPEN: "Test has not started yet",
    AccessDeniedReason.WINDOW_CLOSED: "Test has ended",
    AccessDeniedReason.NEED_TEST_PASSWORD: "Test password required",
    AccessDeniedReason.INVALID_TEST_PASSWORD: "Invalid test password",
    AccessDeniedReason.NOT_ASSIGNED: "Test not assigned to you",
    AccessDeniedReason.MAX_ATTEMPTS_REACHED: "Maximum number of attempts reached",
}


class AssessmentError(Exception):
    """Base error for the assessment engine."""
    code = "ASSESSMENT_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(AssessmentError):
    """Requested entity does not exist (or is not visible to the caller)."""
    code = "NOT_FOUND"


class PermissionDeniedError(AssessmentError):
    """Caller lacks the role or ownership for the operation."""
    code = "FORBIDDEN"


class AccessDeniedError(AssessmentError):
    """The access gate refused the caller."""

    def __init__(self, reason: AccessDeniedReason, message: str | None = None):
        super().__init__(message or ACCESS_DENIED_MESSAGES[reason], code=reason.value)
        self.reason = reason


class InvalidTransitionError(AssessmentError):
    """Operation not allowed in the entity's current state. No state was changed."""
    code = "INVALID_TRANSITION"


class ValidationFailedError(AssessmentError):
    """Request is well-formed but semantically invalid."""
    code = "VALIDATION_FAILED"


class ScorerError(AssessmentError):
    """The external free-response scorer failed, timed out or returned garbage."""
    code = "SCORER_FAILED"


# Stable codes for InvalidTransitionError
ATTEMPT_FROZEN = "ATTEMPT_FROZEN"
ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
ATTEMPT_NOT_SUBMITTED = "ATTEMPT_NOT_SUBMITTED"
TEST_NOT_EDITABLE = "TEST_NOT_EDITABLE"
SUGGESTION_ALREADY_REVIEWED = "SUGGESTION_ALREADY_REVIEWED"
ATTEMPT_NOT_STARTED = "ATTEMPT_NOT_STARTED"
TEST_CLOSED = "TEST_CLOSED"
