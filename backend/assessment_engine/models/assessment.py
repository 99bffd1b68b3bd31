"""
Team Assessment Engine - Test Definition Models
SQLAlchemy models for tests, questions, options, assignments and the authoring audit trail
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assessment_engine.core.database import Base
from assessment_engine.core.timeutils import utcnow

if TYPE_CHECKING:
    from assessment_engine.models.attempt import TestAttempt


class TestStatus(str, Enum):
    """Publication state of a test."""
    __test__ = False

    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"


class QuestionType(str, Enum):
    """Supported question types."""
    MCQ_SINGLE = "MCQ_SINGLE"
    MCQ_MULTI = "MCQ_MULTI"
    NUMERIC = "NUMERIC"
    SHORT_TEXT = "SHORT_TEXT"
    LONG_TEXT = "LONG_TEXT"


MCQ_TYPES = frozenset({QuestionType.MCQ_SINGLE, QuestionType.MCQ_MULTI})
FREE_RESPONSE_TYPES = frozenset({QuestionType.SHORT_TEXT, QuestionType.LONG_TEXT})


class ScoreReleaseMode(str, Enum):
    """How much of a graded attempt a learner may see once scores are released."""
    NONE = "NONE"
    SCORE_ONLY = "SCORE_ONLY"
    SCORE_WITH_WRONG = "SCORE_WITH_WRONG"
    FULL_TEST = "FULL_TEST"


class AssignmentScope(str, Enum):
    """Audience rule of a test assignment."""
    TEAM = "TEAM"
    SUBTEAM = "SUBTEAM"
    PERSONAL = "PERSONAL"
    EVENT = "EVENT"


class AuditAction(str, Enum):
    """Authoring and grading actions recorded on a test."""
    CREATE = "CREATE"
    ADD_QUESTION = "ADD_QUESTION"
    UPDATE = "UPDATE"
    ASSIGN = "ASSIGN"
    PUBLISH = "PUBLISH"
    CLOSE = "CLOSE"
    AI_GRADE_REQUEST = "AI_GRADE_REQUEST"
    GRADE_OVERRIDE = "GRADE_OVERRIDE"


class Test(Base):
    """A timed test definition owned by a team."""

    __tablename__ = "tests"
    # Keep pytest from trying to collect this class
    __test__ = False

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    team_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=TestStatus.DRAFT.value)

    # Scheduling
    duration_minutes: Mapped[int] = mapped_column(Integer)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    allow_late_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Access
    test_password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    max_attempts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    require_fullscreen: Mapped[bool] = mapped_column(Boolean, default=True)

    # Score release
    score_release_mode: Mapped[str] = mapped_column(
        String(30), default=ScoreReleaseMode.FULL_TEST.value
    )
    release_scores_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by_membership_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    questions: Mapped[list["Question"]] = relationship(
        "Question",
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="Question.order",
    )
    assignments: Mapped[list["TestAssignment"]] = relationship(
        "TestAssignment",
        back_populates="test",
        cascade="all, delete-orphan",
    )
    attempts: Mapped[list["TestAttempt"]] = relationship(
        "TestAttempt",
        back_populates="test",
        cascade="all, delete-orphan",
    )

    @property
    def total_points(self) -> float:
        return sum(q.points for q in self.questions)

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def requires_password(self) -> bool:
        return bool(self.test_password_hash)

    def __repr__(self):
        return f"<Test {self.name!r} status={self.status}>"


class Question(Base):
    """A question belonging to exactly one test."""

    __tablename__ = "questions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tests.id", ondelete="CASCADE"),
        index=True
    )
    type: Mapped[str] = mapped_column(String(20))
    prompt: Mapped[str] = mapped_column(Text)
    # Rubric / worked explanation, shown to graders and (when released) learners
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    points: Mapped[float] = mapped_column(Float, default=1.0)
    order: Mapped[int] = mapped_column(Integer, default=0)

    # NUMERIC only
    numeric_tolerance: Mapped[float | None] = mapped_column(Float, nullable=True)
    correct_numeric_values: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Relationships
    test: Mapped["Test"] = relationship("Test", back_populates="questions")
    options: Mapped[list["QuestionOption"]] = relationship(
        "QuestionOption",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="QuestionOption.order",
    )

    @property
    def question_type(self) -> QuestionType:
        return QuestionType(self.type)

    @property
    def is_free_response(self) -> bool:
        return self.question_type in FREE_RESPONSE_TYPES


class QuestionOption(Base):
    """An answer choice of a multiple-choice question."""

    __tablename__ = "question_options"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("questions.id", ondelete="CASCADE"),
        index=True
    )
    label: Mapped[str] = mapped_column(Text)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    order: Mapped[int] = mapped_column(Integer, default=0)

    question: Mapped["Question"] = relationship("Question", back_populates="options")


class TestAssignment(Base):
    """
    Declares who may take a test.

    Exactly one of the scope-specific columns is meaningful per scope:
    SUBTEAM -> subteam_id, PERSONAL -> target_membership_id, EVENT -> event_id.
    """

    __tablename__ = "test_assignments"
    __test__ = False

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tests.id", ondelete="CASCADE"),
        index=True
    )
    scope: Mapped[str] = mapped_column(String(20))
    subteam_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    target_membership_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    event_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    test: Mapped["Test"] = relationship("Test", back_populates="assignments")


class TestAudit(Base):
    """Append-only record of authoring and grading actions on a test."""

    __tablename__ = "test_audits"
    __test__ = False

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tests.id", ondelete="CASCADE"),
        index=True
    )
    actor_membership_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    action: Mapped[str] = mapped_column(String(40))
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
