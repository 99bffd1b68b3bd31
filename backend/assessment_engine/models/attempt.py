"""
Team Assessment Engine - Attempt Models
SQLAlchemy models for attempts, answers, proctoring events and AI grading suggestions
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assessment_engine.core.database import Base
from assessment_engine.core.timeutils import utcnow

if TYPE_CHECKING:
    from assessment_engine.models.assessment import Question, Test


class AttemptStatus(str, Enum):
    """Lifecycle of one learner's attempt."""
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    GRADED = "GRADED"


ACTIVE_STATUSES = (AttemptStatus.NOT_STARTED.value, AttemptStatus.IN_PROGRESS.value)
COMPLETED_STATUSES = (AttemptStatus.SUBMITTED.value, AttemptStatus.GRADED.value)


class ProctorEventKind(str, Enum):
    """Integrity signals reported by the test-taking client."""
    TAB_SWITCH = "TAB_SWITCH"
    VISIBILITY_HIDDEN = "VISIBILITY_HIDDEN"
    BLUR = "BLUR"
    EXIT_FULLSCREEN = "EXIT_FULLSCREEN"
    COPY = "COPY"
    PASTE = "PASTE"
    CUT = "CUT"
    CONTEXT_MENU = "CONTEXT_MENU"
    DEVTOOLS_OPEN = "DEVTOOLS_OPEN"
    RESIZE = "RESIZE"
    MULTI_MONITOR_HINT = "MULTI_MONITOR_HINT"


class SuggestionStatus(str, Enum):
    """Review state of an AI grading suggestion. PENDING means unreviewed."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


def active_attempt_key(membership_id: uuid.UUID, test_id: uuid.UUID) -> str:
    """Value of TestAttempt.active_key while an attempt is not terminal."""
    return f"{membership_id}:{test_id}"


class TestAttempt(Base):
    """
    One learner's instance of taking a test.

    ``active_key`` carries "<membership>:<test>" while the attempt is
    NOT_STARTED or IN_PROGRESS and is cleared on submission. The unique
    constraint on it lets the store reject a second concurrent non-terminal
    attempt; NULLs never collide.
    """

    __tablename__ = "test_attempts"
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
    membership_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    status: Mapped[str] = mapped_column(String(20), default=AttemptStatus.NOT_STARTED.value)
    active_key: Mapped[str | None] = mapped_column(String(80), unique=True, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Scoring
    grade_earned: Mapped[float | None] = mapped_column(Float, nullable=True)
    proctoring_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Raw integrity counters reported through autosave
    tab_switch_count: Mapped[int] = mapped_column(Integer, default=0)
    time_off_page_seconds: Mapped[int] = mapped_column(Integer, default=0)

    # Client evidence
    client_fingerprint_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ip_at_start: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent_at_start: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ip_at_submit: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent_at_submit: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    test: Mapped["Test"] = relationship("Test", back_populates="attempts")
    answers: Mapped[list["AttemptAnswer"]] = relationship(
        "AttemptAnswer",
        back_populates="attempt",
        cascade="all, delete-orphan",
    )
    proctor_events: Mapped[list["ProctorEvent"]] = relationship(
        "ProctorEvent",
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="ProctorEvent.ts",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in COMPLETED_STATUSES

    def __repr__(self):
        return f"<TestAttempt {self.id} status={self.status} grade={self.grade_earned}>"


class AttemptAnswer(Base):
    """
    A learner's answer to one question of one attempt.

    Content columns are owned by autosave; grading columns are owned by
    submission and the grading coordinator. Neither path writes the other's.
    """

    __tablename__ = "attempt_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_answer_question"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("test_attempts.id", ondelete="CASCADE"),
        index=True
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("questions.id", ondelete="CASCADE"),
        index=True
    )

    # Content (autosave)
    answer_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_option_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    numeric_answer: Mapped[float | None] = mapped_column(Float, nullable=True)
    marked_for_review: Mapped[bool] = mapped_column(Boolean, default=False)

    # Grading
    points_awarded: Mapped[float | None] = mapped_column(Float, nullable=True)
    needs_manual_grade: Mapped[bool] = mapped_column(Boolean, default=False)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    grader_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    attempt: Mapped["TestAttempt"] = relationship("TestAttempt", back_populates="answers")
    question: Mapped["Question"] = relationship("Question")

    @property
    def awaiting_manual_grade(self) -> bool:
        return self.needs_manual_grade and self.graded_at is None


class ProctorEvent(Base):
    """Append-only integrity evidence for an attempt. Never updated or deleted."""

    __tablename__ = "proctor_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("test_attempts.id", ondelete="CASCADE"),
        index=True
    )
    kind: Mapped[str] = mapped_column(String(40))
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    attempt: Mapped["TestAttempt"] = relationship("TestAttempt", back_populates="proctor_events")


class AiGradingSuggestion(Base):
    """
    Advisory score for a free-response answer produced by an external scorer.

    Never changes AttemptAnswer.points_awarded by itself; a grader has to
    accept it.
    """

    __tablename__ = "ai_grading_suggestions"

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
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("test_attempts.id", ondelete="CASCADE"),
        index=True
    )
    answer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("attempt_answers.id", ondelete="CASCADE"),
        index=True
    )
    question_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True))
    requested_by_membership_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    suggested_points: Mapped[float] = mapped_column(Float)
    max_points: Mapped[float] = mapped_column(Float)
    explanation: Mapped[str] = mapped_column(Text, default="")
    strengths: Mapped[list | None] = mapped_column(JSON, nullable=True)
    gaps: Mapped[list | None] = mapped_column(JSON, nullable=True)
    rubric_alignment: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    injection_suspected: Mapped[bool] = mapped_column(Boolean, default=False)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=SuggestionStatus.PENDING.value)
    reviewed_by_membership_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_points: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    answer: Mapped["AttemptAnswer"] = relationship("AttemptAnswer")
