"""
Team Assessment Engine - Attempt Schemas
Pydantic schemas for taking a test: start, autosave, telemetry, submit, results
"""
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from assessment_engine.models.attempt import AttemptStatus, ProctorEventKind
from assessment_engine.schemas.assessment import QuestionPublic


class StartAttemptRequest(BaseModel):
    """Start (or resume) an attempt."""
    test_password: str | None = None
    fingerprint: str | None = Field(default=None, max_length=512)


class AttemptResponse(BaseModel):
    """Attempt state as seen by its owner."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    test_id: uuid.UUID
    membership_id: uuid.UUID
    status: AttemptStatus
    started_at: datetime | None = None
    submitted_at: datetime | None = None
    tab_switch_count: int = 0
    time_off_page_seconds: int = 0


class SavedAnswer(BaseModel):
    """An answer's content as last autosaved."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    question_id: uuid.UUID
    answer_text: str | None = None
    selected_option_ids: list[uuid.UUID] | None = None
    numeric_answer: float | None = None
    marked_for_review: bool = False


class StartAttemptResponse(BaseModel):
    """Everything needed to render or resume the attempt."""
    attempt: AttemptResponse
    resumed: bool
    questions: list[QuestionPublic]
    answers: list[SavedAnswer]
    time_limit_seconds: int
    time_remaining_seconds: int | None = None
    require_fullscreen: bool


class AnswerItem(BaseModel):
    """One answer in an autosave batch. Send only the field matching the question type."""
    question_id: uuid.UUID
    answer_text: str | None = Field(default=None, max_length=20000)
    selected_option_ids: list[uuid.UUID] | None = None
    numeric_answer: float | None = None
    marked_for_review: bool | None = None


class SaveAnswersRequest(BaseModel):
    answers: list[AnswerItem] = Field(..., min_length=1, max_length=500)


class AnswerItemErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    index: int
    question_id: uuid.UUID
    code: str
    message: str


class SaveAnswersResponse(BaseModel):
    """Saved items plus a per-item report of rejected ones."""
    saved: list[SavedAnswer]
    errors: list[AnswerItemErrorResponse] = []


class TabTrackingRequest(BaseModel):
    tab_switch_count: int = Field(..., ge=0)
    time_off_page_seconds: int = Field(..., ge=0)


class ProctorEventRequest(BaseModel):
    kind: ProctorEventKind
    meta: dict[str, Any] | None = None


class ProctorEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    kind: ProctorEventKind
    ts: datetime


class SubmitAttemptResponse(BaseModel):
    """Submission outcome. Scores are revealed through the results endpoint."""
    attempt: AttemptResponse
    needs_manual_grading: bool


class ResultAnswer(BaseModel):
    question_id: uuid.UUID
    points: float
    points_awarded: float | None = None
    is_correct: bool = False
    prompt: str | None = None
    type: str | None = None
    answer_text: str | None = None
    selected_option_ids: list[uuid.UUID] | None = None
    numeric_answer: float | None = None
    grader_note: str | None = None
    explanation: str | None = None
    correct_option_ids: list[uuid.UUID] | None = None
    correct_numeric_values: list[float] | None = None
    numeric_tolerance: float | None = None


class LearnerResultResponse(BaseModel):
    """A learner's result, shaped by the test's release policy."""
    attempt_id: uuid.UUID
    status: AttemptStatus
    submitted_at: datetime | None = None
    scores_released: bool
    release_mode: str
    grade_earned: float | None = None
    max_points: float | None = None
    answers: list[ResultAnswer] | None = None
