"""Team Assessment Engine - Services initialization."""
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

__all__ = [
    "AccessDeniedError",
    "AccessDeniedReason",
    "AssessmentError",
    "InvalidTransitionError",
    "NotFoundError",
    "PermissionDeniedError",
    "ScorerError",
    "ValidationFailedError",
]
