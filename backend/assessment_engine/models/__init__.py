"""Team Assessment Engine - Models initialization."""
from assessment_engine.models.assessment import (
    Test,
    Question,
    QuestionOption,
    TestAssignment,
    TestAudit,
    TestStatus,
    QuestionType,
    ScoreReleaseMode,
    AssignmentScope,
    AuditAction,
    MCQ_TYPES,
    FREE_RESPONSE_TYPES,
)
from assessment_engine.models.attempt import (
    TestAttempt,
    AttemptAnswer,
    ProctorEvent,
    AiGradingSuggestion,
    AttemptStatus,
    ProctorEventKind,
    SuggestionStatus,
    ACTIVE_STATUSES,
    COMPLETED_STATUSES,
    active_attempt_key,
)
from assessment_engine.models.membership import Membership, RosterEntry, MemberRole


__all__ = [
    # Test definition models
    "Test",
    "Question",
    "QuestionOption",
    "TestAssignment",
    "TestAudit",
    "TestStatus",
    "QuestionType",
    "ScoreReleaseMode",
    "AssignmentScope",
    "AuditAction",
    "MCQ_TYPES",
    "FREE_RESPONSE_TYPES",
    # Attempt models
    "TestAttempt",
    "AttemptAnswer",
    "ProctorEvent",
    "AiGradingSuggestion",
    "AttemptStatus",
    "ProctorEventKind",
    "SuggestionStatus",
    "ACTIVE_STATUSES",
    "COMPLETED_STATUSES",
    "active_attempt_key",
    # Membership models
    "Membership",
    "RosterEntry",
    "MemberRole",
]
