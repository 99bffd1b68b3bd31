"""
Team Assessment Engine - Grading Schemas
Pydantic schemas for admin attempt review, AI suggestions and manual grading
"""
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from assessment_engine.models.attempt import AttemptStatus, SuggestionStatus


class AnswerReview(BaseModel):
    """An answer with its grading state."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    question_id: uuid.UUID
    answer_text: str | None = None
    selected_option_ids: list[uuid.UUID] | None = None
    numeric_answer: float | None = None
    marked_for_review: bool = False
    points_awarded: float | None = None
    needs_manual_grade: bool = False
    graded_at: datetime | None = None
    grader_note: str | None = None


class ProctoringEvidence(BaseModel):
    """Proctoring score with the evidence it was computed from."""
    model_config = ConfigDict(from_attributes=True)

    score: float
    event_counts: dict[str, int]
    tab_switch_count: int
    time_off_page_seconds: int
    logged_tab_switches: int
    counter_divergence: int


class AttemptGradingState(BaseModel):
    """Attempt totals as graders see them."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    test_id: uuid.UUID
    membership_id: uuid.UUID
    status: AttemptStatus
    started_at: datetime | None = None
    submitted_at: datetime | None = None
    grade_earned: float | None = None
    proctoring_score: float | None = None


class AttemptSummary(AttemptGradingState):
    """Admin listing entry for one attempt."""
    tab_switch_count: int = 0
    time_off_page_seconds: int = 0
    ip_at_start: str | None = None
    user_agent_at_start: str | None = None
    ip_at_submit: str | None = None
    user_agent_at_submit: str | None = None
    proctoring: ProctoringEvidence
    answers: list[AnswerReview] = []


class AiGradeRequest(BaseModel):
    """Request AI suggestions for one answer or every free-response answer."""
    mode: Literal["single", "all"] = "single"
    answer_id: uuid.UUID | None = None


class SuggestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    attempt_id: uuid.UUID
    answer_id: uuid.UUID
    question_id: uuid.UUID
    suggested_points: float
    max_points: float
    explanation: str
    strengths: list[str] | None = None
    gaps: list[str] | None = None
    rubric_alignment: str | None = None
    injection_suspected: bool = False
    model: str | None = None
    status: SuggestionStatus
    applied_points: float | None = None
    reviewed_at: datetime | None = None
    created_at: datetime


class SuggestionFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    answer_id: uuid.UUID
    error: str


class AiGradeResponse(BaseModel):
    suggestions: list[SuggestionResponse]
    failed: list[SuggestionFailureResponse] = []


class AcceptSuggestionRequest(BaseModel):
    """Accept a suggestion, optionally with adjusted points."""
    points: float | None = Field(default=None, ge=0)
    note: str | None = None


class ManualGradeRequest(BaseModel):
    points: float = Field(..., ge=0)
    note: str | None = None


class GradeUpdateResponse(BaseModel):
    answer: AnswerReview
    attempt: AttemptGradingState
    suggestion: SuggestionResponse | None = None
