"""
Team Assessment Engine - Attempt State Machine
Start/resume, autosave, integrity telemetry and submission of test attempts.

Lifecycle:
    NOT_STARTED -> IN_PROGRESS -> SUBMITTED (free response pending) | GRADED
Terminal attempts are frozen for the learner.
"""
import hashlib
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from assessment_engine.ai.core.telemetry import get_tracer
from assessment_engine.core.database import dialect_name
from assessment_engine.core.timeutils import as_utc, utcnow
from assessment_engine.models.assessment import MCQ_TYPES, FREE_RESPONSE_TYPES, Question, QuestionType, Test
from assessment_engine.models.attempt import (
    ACTIVE_STATUSES,
    COMPLETED_STATUSES,
    AttemptAnswer,
    AttemptStatus,
    ProctorEvent,
    ProctorEventKind,
    TestAttempt,
    active_attempt_key,
)
from assessment_engine.schemas.attempt import AnswerItem
from assessment_engine.services.access import can_start, is_test_available
from assessment_engine.services.directory import CallerContext, MembershipDirectory, SqlMembershipDirectory
from assessment_engine.services.exceptions import (
    ALREADY_SUBMITTED,
    ATTEMPT_FROZEN,
    ATTEMPT_NOT_STARTED,
    AccessDeniedError,
    AccessDeniedReason,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from assessment_engine.services.grading import grade_attempt
from assessment_engine.services.proctoring import ProctoringSummary, calculate_proctoring_score, summarize_proctoring
from assessment_engine.services.release import learner_question_payload, shape_learner_result

logger = logging.getLogger(__name__)

# Autosave item error codes
UNKNOWN_QUESTION = "UNKNOWN_QUESTION"
INVALID_ANSWER_SHAPE = "INVALID_ANSWER_SHAPE"
UNKNOWN_OPTION = "UNKNOWN_OPTION"
TOO_MANY_OPTIONS = "TOO_MANY_OPTIONS"
DUPLICATE_QUESTION = "DUPLICATE_QUESTION"

# Columns autosave may write; grading columns are never touched here
_CONTENT_FIELDS = ("answer_text", "selected_option_ids", "numeric_answer", "marked_for_review")


@dataclass
class AnswerItemError:
    """Why one autosave item was rejected."""
    index: int
    question_id: uuid.UUID
    code: str
    message: str


@dataclass
class SaveAnswersResult:
    saved: list[AttemptAnswer] = field(default_factory=list)
    errors: list[AnswerItemError] = field(default_factory=list)


@dataclass
class TakePayload:
    """Everything a client needs to render (or resume) an attempt."""
    test: Test
    attempt: TestAttempt
    questions: list[dict[str, Any]]
    answers: list[AttemptAnswer]
    time_limit_seconds: int
    time_remaining_seconds: int | None


@dataclass
class AttemptOverview:
    """Admin view of one attempt: the attempt plus its integrity evidence."""
    attempt: TestAttempt
    proctoring: ProctoringSummary


def hash_fingerprint(fingerprint: str | None) -> str | None:
    """Store a digest of the client fingerprint, never the raw value."""
    if not fingerprint:
        return None
    return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


class AttemptService:
    """Owns every learner-side transition of a TestAttempt."""

    def __init__(self, db: AsyncSession, directory: MembershipDirectory | None = None):
        self.db = db
        self.directory = directory or SqlMembershipDirectory(db)

    # ==================== LOOKUPS ====================

    async def _load_test(self, test_id: uuid.UUID) -> Test:
        result = await self.db.execute(
            select(Test)
            .where(Test.id == test_id)
            .options(
                selectinload(Test.questions).selectinload(Question.options),
                selectinload(Test.assignments),
            )
            .execution_options(populate_existing=True)
        )
        test = result.scalar_one_or_none()
        if test is None:
            raise NotFoundError("Test not found")
        return test

    async def _resolve_caller(self, team_id: uuid.UUID, user_id: uuid.UUID) -> CallerContext:
        caller = await self.directory.get_caller(user_id, team_id)
        if caller is None:
            raise AccessDeniedError(AccessDeniedReason.NOT_A_MEMBER)
        return caller

    async def _load_attempt(
        self,
        test_id: uuid.UUID,
        attempt_id: uuid.UUID,
        with_answers: bool = False,
        with_events: bool = False,
        for_update: bool = False,
    ) -> TestAttempt:
        query = select(TestAttempt).where(
            TestAttempt.id == attempt_id,
            TestAttempt.test_id == test_id,
        )
        if with_answers:
            query = query.options(selectinload(TestAttempt.answers))
        if with_events:
            query = query.options(selectinload(TestAttempt.proctor_events))
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query.execution_options(populate_existing=True))
        attempt = result.scalar_one_or_none()
        if attempt is None:
            raise NotFoundError("Attempt not found")
        return attempt

    async def _owned_attempt(
        self,
        test: Test,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        **load_options: bool,
    ) -> tuple[CallerContext, TestAttempt]:
        caller = await self._resolve_caller(test.team_id, user_id)
        attempt = await self._load_attempt(test.id, attempt_id, **load_options)
        if attempt.membership_id != caller.membership_id:
            raise PermissionDeniedError("Attempt belongs to another member")
        return caller, attempt

    @staticmethod
    def _require_in_progress(attempt: TestAttempt) -> None:
        if attempt.status != AttemptStatus.IN_PROGRESS.value:
            raise InvalidTransitionError("Attempt is no longer in progress", code=ATTEMPT_FROZEN)

    async def _find_active(self, membership_id: uuid.UUID, test_id: uuid.UUID) -> TestAttempt | None:
        result = await self.db.execute(
            select(TestAttempt)
            .where(
                TestAttempt.membership_id == membership_id,
                TestAttempt.test_id == test_id,
                TestAttempt.status.in_(ACTIVE_STATUSES),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _completed_count(self, membership_id: uuid.UUID, test_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(TestAttempt.id)).where(
                TestAttempt.membership_id == membership_id,
                TestAttempt.test_id == test_id,
                TestAttempt.status.in_(COMPLETED_STATUSES),
            )
        )
        return result.scalar() or 0

    # ==================== START / RESUME ====================

    async def _resume(
        self,
        attempt: TestAttempt,
        ip: str | None,
        user_agent: str | None,
        fingerprint: str | None,
    ) -> TestAttempt:
        if attempt.status == AttemptStatus.NOT_STARTED.value:
            attempt.status = AttemptStatus.IN_PROGRESS.value
            attempt.started_at = utcnow()
            attempt.ip_at_start = ip
            attempt.user_agent_at_start = user_agent
            attempt.client_fingerprint_hash = hash_fingerprint(fingerprint)
            await self.db.flush()
        return attempt

    async def start_attempt(
        self,
        test_id: uuid.UUID,
        user_id: uuid.UUID,
        fingerprint: str | None = None,
        password: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[TestAttempt, bool]:
        """
        Start a new attempt or resume the caller's open one.

        Returns:
            (attempt, created) where created is False on resume
        """
        test = await self._load_test(test_id)
        caller = await self._resolve_caller(test.team_id, user_id)

        decision = can_start(test, caller, password, utcnow())
        if not decision.allowed:
            raise AccessDeniedError(decision.reason)

        membership_id = caller.membership_id

        existing = await self._find_active(membership_id, test_id)
        if existing is not None:
            return await self._resume(existing, ip, user_agent, fingerprint), False

        if not caller.is_admin and test.max_attempts is not None:
            if await self._completed_count(membership_id, test_id) >= test.max_attempts:
                raise AccessDeniedError(AccessDeniedReason.MAX_ATTEMPTS_REACHED)

        attempt = TestAttempt(
            test_id=test_id,
            membership_id=membership_id,
            status=AttemptStatus.IN_PROGRESS.value,
            active_key=active_attempt_key(membership_id, test_id),
            started_at=utcnow(),
            ip_at_start=ip,
            user_agent_at_start=user_agent,
            client_fingerprint_hash=hash_fingerprint(fingerprint),
        )
        self.db.add(attempt)
        try:
            await self.db.flush()
        except IntegrityError:
            # A concurrent start won the active_key slot; resume its attempt
            await self.db.rollback()
            winner = await self._find_active(membership_id, test_id)
            if winner is None:
                raise
            logger.info("Duplicate start for membership %s on test %s resumed", membership_id, test_id)
            return await self._resume(winner, ip, user_agent, fingerprint), False

        logger.info("Attempt %s started on test %s", attempt.id, test_id)
        return attempt, True

    async def get_take_payload(
        self,
        test_id: uuid.UUID,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> TakePayload:
        """Stripped questions and saved answers for the caller's attempt."""
        test = await self._load_test(test_id)
        _, attempt = await self._owned_attempt(test, attempt_id, user_id, with_answers=True)

        time_limit = test.duration_minutes * 60
        remaining = None
        if attempt.status == AttemptStatus.IN_PROGRESS.value and attempt.started_at is not None:
            deadline = as_utc(attempt.started_at) + timedelta(seconds=time_limit)
            remaining = max(0, int((deadline - utcnow()).total_seconds()))

        return TakePayload(
            test=test,
            attempt=attempt,
            questions=[learner_question_payload(question) for question in test.questions],
            answers=list(attempt.answers),
            time_limit_seconds=time_limit,
            time_remaining_seconds=remaining,
        )

    # ==================== AUTOSAVE ====================

    @staticmethod
    def _validate_item(question: Question, item: AnswerItem) -> tuple[str, str] | None:
        question_type = QuestionType(question.type)
        has_text = item.answer_text is not None
        has_selection = bool(item.selected_option_ids)
        has_number = item.numeric_answer is not None

        if question_type in MCQ_TYPES:
            if has_text or has_number:
                return INVALID_ANSWER_SHAPE, "Multiple-choice answers take selected options only"
            known = {option.id for option in question.options}
            unknown = [option_id for option_id in item.selected_option_ids or [] if option_id not in known]
            if unknown:
                return UNKNOWN_OPTION, f"Option {unknown[0]} does not belong to this question"
            if question_type == QuestionType.MCQ_SINGLE and len(set(item.selected_option_ids or [])) > 1:
                return TOO_MANY_OPTIONS, "Single-choice questions take at most one option"
        elif question_type == QuestionType.NUMERIC:
            if has_text or has_selection:
                return INVALID_ANSWER_SHAPE, "Numeric answers take a number only"
            if has_number and not math.isfinite(item.numeric_answer):
                return INVALID_ANSWER_SHAPE, "Numeric answer must be finite"
        elif question_type in FREE_RESPONSE_TYPES:
            if has_selection or has_number:
                return INVALID_ANSWER_SHAPE, "Free-response answers take text only"
        return None

    def _upsert_statement(self, values: dict[str, Any]):
        insert = postgresql_insert if dialect_name(self.db) == "postgresql" else sqlite_insert
        stmt = insert(AttemptAnswer).values(**values)
        updates = {name: stmt.excluded[name] for name in _CONTENT_FIELDS}
        updates["updated_at"] = stmt.excluded.updated_at
        return stmt.on_conflict_do_update(
            index_elements=["attempt_id", "question_id"],
            set_=updates,
        )

    async def save_answers(
        self,
        test_id: uuid.UUID,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        items: Iterable[AnswerItem],
    ) -> SaveAnswersResult:
        """
        Batch autosave.

        Valid items are upserted on (attempt, question), last write wins.
        Invalid items are reported individually and do not block the others.
        """
        test = await self._load_test(test_id)
        _, attempt = await self._owned_attempt(test, attempt_id, user_id)
        self._require_in_progress(attempt)

        questions = {question.id: question for question in test.questions}
        outcome = SaveAnswersResult()
        seen: set[uuid.UUID] = set()
        saved_ids: list[uuid.UUID] = []
        now = utcnow()

        for index, item in enumerate(items):
            if item.question_id in seen:
                outcome.errors.append(AnswerItemError(
                    index, item.question_id, DUPLICATE_QUESTION, "Question appears more than once in the batch",
                ))
                continue
            seen.add(item.question_id)

            question = questions.get(item.question_id)
            if question is None:
                outcome.errors.append(AnswerItemError(
                    index, item.question_id, UNKNOWN_QUESTION, "Question does not belong to this test",
                ))
                continue

            problem = self._validate_item(question, item)
            if problem is not None:
                outcome.errors.append(AnswerItemError(index, item.question_id, *problem))
                continue

            await self.db.execute(self._upsert_statement({
                "id": uuid.uuid4(),
                "attempt_id": attempt.id,
                "question_id": question.id,
                "answer_text": item.answer_text,
                "selected_option_ids": (
                    [str(option_id) for option_id in item.selected_option_ids]
                    if item.selected_option_ids is not None else None
                ),
                "numeric_answer": item.numeric_answer,
                "marked_for_review": bool(item.marked_for_review),
                "created_at": now,
                "updated_at": now,
            }))
            saved_ids.append(question.id)

        if saved_ids:
            result = await self.db.execute(
                select(AttemptAnswer)
                .where(
                    AttemptAnswer.attempt_id == attempt.id,
                    AttemptAnswer.question_id.in_(saved_ids),
                )
                .execution_options(populate_existing=True)
            )
            by_question = {answer.question_id: answer for answer in result.scalars().all()}
            outcome.saved = [by_question[question_id] for question_id in saved_ids]

        if outcome.errors:
            logger.info("Autosave on attempt %s rejected %d item(s)", attempt.id, len(outcome.errors))
        return outcome

    # ==================== TELEMETRY ====================

    async def update_tab_tracking(
        self,
        test_id: uuid.UUID,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        tab_switch_count: int,
        time_off_page_seconds: int,
    ) -> TestAttempt:
        """Record the client's integrity counters. Stored values never decrease."""
        test = await self._load_test(test_id)
        _, attempt = await self._owned_attempt(test, attempt_id, user_id)
        self._require_in_progress(attempt)

        attempt.tab_switch_count = max(attempt.tab_switch_count or 0, tab_switch_count)
        attempt.time_off_page_seconds = max(attempt.time_off_page_seconds or 0, time_off_page_seconds)
        await self.db.flush()
        return attempt

    async def record_proctor_event(
        self,
        test_id: uuid.UUID,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        kind: ProctorEventKind,
        meta: dict | None = None,
    ) -> ProctorEvent:
        """Append one integrity event to the attempt's log."""
        test = await self._load_test(test_id)
        _, attempt = await self._owned_attempt(test, attempt_id, user_id)
        self._require_in_progress(attempt)

        event = ProctorEvent(attempt_id=attempt.id, kind=ProctorEventKind(kind).value, meta=meta)
        self.db.add(event)
        await self.db.flush()
        return event

    # ==================== SUBMISSION ====================

    async def submit_attempt(
        self,
        test_id: uuid.UUID,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> TestAttempt:
        """
        Submit and auto-grade an attempt in one transaction.

        The attempt row is locked, then moved IN_PROGRESS -> GRADED (or
        SUBMITTED when free responses await a grader) by a guarded UPDATE, so
        of two concurrent submissions exactly one wins and the other gets
        ALREADY_SUBMITTED.
        """
        with get_tracer().start_as_current_span("attempt.submit") as span:
            span.set_attribute("attempt.id", str(attempt_id))
            attempt = await self._submit(test_id, attempt_id, user_id, ip, user_agent)
            span.set_attribute("attempt.status", attempt.status)
            span.set_attribute("attempt.proctoring_score", attempt.proctoring_score)
            return attempt

    async def _submit(
        self,
        test_id: uuid.UUID,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        ip: str | None,
        user_agent: str | None,
    ) -> TestAttempt:
        test = await self._load_test(test_id)
        _, attempt = await self._owned_attempt(
            test, attempt_id, user_id,
            with_answers=True, with_events=True, for_update=True,
        )

        if attempt.is_terminal:
            raise InvalidTransitionError("Attempt was already submitted", code=ALREADY_SUBMITTED)
        if attempt.status != AttemptStatus.IN_PROGRESS.value:
            raise InvalidTransitionError("Attempt has not been started", code=ATTEMPT_NOT_STARTED)

        now = utcnow()
        availability = is_test_available(test, now)
        if not availability.allowed:
            raise AccessDeniedError(availability.reason)

        grade = grade_attempt(test.questions, attempt.answers)
        proctoring_score = calculate_proctoring_score(attempt.proctor_events)
        new_status = AttemptStatus.SUBMITTED if grade.needs_manual_grading else AttemptStatus.GRADED

        result = await self.db.execute(
            update(TestAttempt)
            .where(
                TestAttempt.id == attempt.id,
                TestAttempt.status == AttemptStatus.IN_PROGRESS.value,
            )
            .values(
                status=new_status.value,
                active_key=None,
                submitted_at=now,
                grade_earned=grade.total,
                proctoring_score=proctoring_score,
                ip_at_submit=ip,
                user_agent_at_submit=user_agent,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            raise InvalidTransitionError("Attempt was already submitted", code=ALREADY_SUBMITTED)

        by_question = {answer.question_id: answer for answer in attempt.answers}
        for outcome in grade.outcomes:
            answer = by_question.get(outcome.question_id)
            if answer is None:
                answer = AttemptAnswer(attempt_id=attempt.id, question_id=outcome.question_id)
                attempt.answers.append(answer)
            answer.needs_manual_grade = outcome.needs_manual_grade
            if outcome.needs_manual_grade:
                answer.points_awarded = None
                answer.graded_at = None
            else:
                answer.points_awarded = outcome.points_awarded
                answer.graded_at = now

        await self.db.flush()
        logger.info(
            "Attempt %s submitted: status=%s grade=%.2f proctoring=%.2f",
            attempt.id, new_status.value, grade.total, proctoring_score,
        )
        return attempt

    # ==================== READS ====================

    async def get_result(
        self,
        test_id: uuid.UUID,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> dict[str, Any]:
        """The caller's result, shaped by the test's score release policy."""
        test = await self._load_test(test_id)
        caller = await self._resolve_caller(test.team_id, user_id)
        attempt = await self._load_attempt(test.id, attempt_id, with_answers=True)
        if attempt.membership_id != caller.membership_id and not caller.is_admin:
            raise PermissionDeniedError("Attempt belongs to another member")
        return shape_learner_result(test, attempt, utcnow())

    async def list_attempts(self, test_id: uuid.UUID, user_id: uuid.UUID) -> list[AttemptOverview]:
        """Every attempt on a test with its integrity evidence. Admins only."""
        test = await self._load_test(test_id)
        caller = await self._resolve_caller(test.team_id, user_id)
        if not caller.is_admin:
            raise PermissionDeniedError("Only team admins can review attempts")

        result = await self.db.execute(
            select(TestAttempt)
            .where(TestAttempt.test_id == test.id)
            .options(
                selectinload(TestAttempt.answers).selectinload(AttemptAnswer.question),
                selectinload(TestAttempt.proctor_events),
            )
            .order_by(TestAttempt.created_at)
            .execution_options(populate_existing=True)
        )
        return [
            AttemptOverview(
                attempt=attempt,
                proctoring=summarize_proctoring(
                    attempt.proctor_events,
                    tab_switch_count=attempt.tab_switch_count,
                    time_off_page_seconds=attempt.time_off_page_seconds,
                ),
            )
            for attempt in result.scalars().all()
        ]
