"""
Team Assessment Engine - Test Schemas
Pydantic schemas for test authoring, publication and question payloads
"""
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from assessment_engine.models.assessment import AssignmentScope, QuestionType, ScoreReleaseMode


# ==================== AUTHORING ====================

class OptionCreate(BaseModel):
    """An answer choice for a multiple-choice question."""
    label: str = Field(..., min_length=1)
    is_correct: bool = False
    order: int = Field(default=0, ge=0)


class QuestionCreate(BaseModel):
    """A question definition."""
    type: QuestionType
    prompt: str = Field(..., min_length=1)
    explanation: str | None = None
    points: float = Field(default=1.0, ge=0)
    order: int = Field(default=0, ge=0)
    numeric_tolerance: float | None = Field(default=None, ge=0)
    correct_numeric_values: list[float] | None = None
    options: list[OptionCreate] = []


class AssignmentIn(BaseModel):
    """Audience rule for a test."""
    scope: AssignmentScope
    subteam_id: uuid.UUID | None = None
    target_membership_id: uuid.UUID | None = None
    event_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def _scope_payload(self) -> "AssignmentIn":
        required = {
            AssignmentScope.SUBTEAM: ("subteam_id", self.subteam_id),
            AssignmentScope.PERSONAL: ("target_membership_id", self.target_membership_id),
            AssignmentScope.EVENT: ("event_id", self.event_id),
        }.get(self.scope)
        if required and required[1] is None:
            raise ValueError(f"{required[0]} is required when scope is {self.scope.value}")
        return self


class TestCreate(BaseModel):
    """Request to create a draft test."""
    __test__ = False

    team_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    instructions: str | None = None
    duration_minutes: int = Field(..., ge=1, le=720)
    start_at: datetime | None = None
    end_at: datetime | None = None
    allow_late_until: datetime | None = None
    max_attempts: int | None = Field(default=None, ge=1)
    score_release_mode: ScoreReleaseMode = ScoreReleaseMode.FULL_TEST
    release_scores_at: datetime | None = None
    require_fullscreen: bool = True
    assignments: list[AssignmentIn] | None = None
    questions: list[QuestionCreate] = []


class TestUpdate(BaseModel):
    """Partial update of a test's settings."""
    __test__ = False

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    instructions: str | None = None
    duration_minutes: int | None = Field(default=None, ge=1, le=720)
    start_at: datetime | None = None
    end_at: datetime | None = None
    allow_late_until: datetime | None = None
    max_attempts: int | None = Field(default=None, ge=1)
    score_release_mode: ScoreReleaseMode | None = None
    release_scores_at: datetime | None = None
    require_fullscreen: bool | None = None


class AssignmentsReplace(BaseModel):
    """Replace every assignment of a test."""
    assignments: list[AssignmentIn]


class PublishRequest(BaseModel):
    """Publish a draft test with its schedule and access settings."""
    start_at: datetime
    end_at: datetime
    allow_late_until: datetime | None = None
    test_password: str | None = Field(default=None, min_length=6)
    release_scores_at: datetime | None = None
    duration_minutes: int | None = Field(default=None, ge=1, le=720)
    max_attempts: int | None = Field(default=None, ge=1)
    score_release_mode: ScoreReleaseMode | None = None
    require_fullscreen: bool | None = None
    assignment_mode: Literal["TEAM", "SUBTEAMS", "EVENT"] | None = None
    selected_subteams: list[uuid.UUID] = []
    selected_event_id: uuid.UUID | None = None


# ==================== PAYLOADS ====================

class OptionPublic(BaseModel):
    """Answer choice as shown to a learner: no correctness flag."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    label: str
    order: int


class OptionWithKey(OptionPublic):
    """Answer choice including its correctness flag."""
    is_correct: bool


class QuestionPublic(BaseModel):
    """Question as shown to a learner while taking the test."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: QuestionType
    prompt: str
    points: float
    order: int
    options: list[OptionPublic] = []


class QuestionWithKey(QuestionPublic):
    """Question with its answer key and rubric."""
    explanation: str | None = None
    numeric_tolerance: float | None = None
    correct_numeric_values: list[float] | None = None
    options: list[OptionWithKey] = []


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    scope: AssignmentScope
    subteam_id: uuid.UUID | None = None
    target_membership_id: uuid.UUID | None = None
    event_id: uuid.UUID | None = None


class TestSummary(BaseModel):
    """Test listing entry."""
    __test__ = False
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    team_id: uuid.UUID
    name: str
    description: str | None = None
    status: str
    duration_minutes: int
    start_at: datetime | None = None
    end_at: datetime | None = None
    allow_late_until: datetime | None = None
    max_attempts: int | None = None
    score_release_mode: ScoreReleaseMode
    release_scores_at: datetime | None = None
    require_fullscreen: bool
    requires_password: bool = False
    question_count: int = 0
    total_points: float = 0.0


class TestDetail(TestSummary):
    """Full test view. Questions with keys are only included for admins."""
    instructions: str | None = None
    published_at: datetime | None = None
    assignments: list[AssignmentResponse] = []
    questions: list[QuestionWithKey] = []
