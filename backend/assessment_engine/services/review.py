"""
Team Assessment Engine - Grading Coordinator
Manual and AI-assisted grading of submitted attempts.

AI suggestions are advisory: they are stored as PENDING and only change an
answer's points when a grader accepts them.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Literal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from assessment_engine.ai.agents.grader import FreeResponseScorer, free_response_grader
from assessment_engine.ai.core.telemetry import agent_span
from assessment_engine.core.timeutils import utcnow
from assessment_engine.models.assessment import AuditAction, Question, Test, TestAudit
from assessment_engine.models.attempt import (
    AiGradingSuggestion,
    AttemptAnswer,
    AttemptStatus,
    SuggestionStatus,
    TestAttempt,
)
from assessment_engine.services.directory import CallerContext, MembershipDirectory, SqlMembershipDirectory
from assessment_engine.services.exceptions import (
    ATTEMPT_NOT_SUBMITTED,
    SUGGESTION_ALREADY_REVIEWED,
    AccessDeniedError,
    AccessDeniedReason,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ScorerError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

GradingMode = Literal["single", "all"]


@dataclass(frozen=True)
class _ScoringJob:
    """Plain snapshot of one answer to score, taken before any external call."""
    answer_id: uuid.UUID
    question_id: uuid.UUID
    prompt: str
    rubric: str | None
    max_points: float
    response: str


@dataclass
class SuggestionFailure:
    answer_id: uuid.UUID
    error: str


@dataclass
class SuggestionBatch:
    """Outcome of one AI grading request."""
    suggestions: list[AiGradingSuggestion] = field(default_factory=list)
    failed: list[SuggestionFailure] = field(default_factory=list)


@dataclass
class GradeUpdate:
    """An answer after a grading action, with its recomputed attempt."""
    answer: AttemptAnswer
    attempt: TestAttempt
    suggestion: AiGradingSuggestion | None = None


class GradingCoordinator:
    """Admin-side grading of attempts after submission."""

    def __init__(
        self,
        db: AsyncSession,
        scorer: FreeResponseScorer | None = None,
        directory: MembershipDirectory | None = None,
    ):
        self.db = db
        self.scorer = scorer or free_response_grader
        self.directory = directory or SqlMembershipDirectory(db)

    # ==================== HELPERS ====================

    async def _require_admin(self, team_id: uuid.UUID, user_id: uuid.UUID) -> CallerContext:
        caller = await self.directory.get_caller(user_id, team_id)
        if caller is None:
            raise AccessDeniedError(AccessDeniedReason.NOT_A_MEMBER)
        if not caller.is_admin:
            raise PermissionDeniedError("Only team admins can grade attempts")
        return caller

    async def _get_test(self, test_id: uuid.UUID) -> Test:
        test = await self.db.get(Test, test_id)
        if test is None:
            raise NotFoundError("Test not found")
        return test

    async def _load_attempt(self, attempt_id: uuid.UUID) -> TestAttempt:
        result = await self.db.execute(
            select(TestAttempt)
            .where(TestAttempt.id == attempt_id)
            .options(
                selectinload(TestAttempt.answers)
                .selectinload(AttemptAnswer.question)
                .selectinload(Question.options)
            )
            .execution_options(populate_existing=True)
        )
        attempt = result.scalar_one_or_none()
        if attempt is None:
            raise NotFoundError("Attempt not found")
        return attempt

    async def _load_answer(self, answer_id: uuid.UUID) -> AttemptAnswer:
        result = await self.db.execute(
            select(AttemptAnswer)
            .where(AttemptAnswer.id == answer_id)
            .options(selectinload(AttemptAnswer.question), selectinload(AttemptAnswer.attempt))
            .execution_options(populate_existing=True)
        )
        answer = result.scalar_one_or_none()
        if answer is None:
            raise NotFoundError("Answer not found")
        return answer

    async def _load_suggestion(self, suggestion_id: uuid.UUID) -> AiGradingSuggestion:
        result = await self.db.execute(
            select(AiGradingSuggestion)
            .where(AiGradingSuggestion.id == suggestion_id)
            .options(
                selectinload(AiGradingSuggestion.answer).selectinload(AttemptAnswer.question),
                selectinload(AiGradingSuggestion.answer).selectinload(AttemptAnswer.attempt),
            )
            .execution_options(populate_existing=True)
        )
        suggestion = result.scalar_one_or_none()
        if suggestion is None:
            raise NotFoundError("Suggestion not found")
        return suggestion

    @staticmethod
    def _require_submitted(attempt: TestAttempt) -> None:
        if not attempt.is_terminal:
            raise InvalidTransitionError("Attempt has not been submitted", code=ATTEMPT_NOT_SUBMITTED)

    @staticmethod
    def _check_points(points: float, question: Question) -> None:
        if points < 0 or points > question.points:
            raise ValidationFailedError(f"Points must be between 0 and {question.points}")

    def _audit(self, test_id: uuid.UUID, actor: CallerContext, action: AuditAction, details: dict) -> None:
        self.db.add(TestAudit(
            test_id=test_id,
            actor_membership_id=actor.membership_id,
            action=action.value,
            details=details,
        ))

    async def recompute_attempt(self, attempt_id: uuid.UUID) -> TestAttempt:
        """
        Re-total an attempt from its answers.

        grade_earned is the sum of awarded points on graded answers. A
        SUBMITTED attempt becomes GRADED once nothing awaits a manual grade.
        """
        await self.db.flush()
        result = await self.db.execute(
            select(TestAttempt)
            .where(TestAttempt.id == attempt_id)
            .options(selectinload(TestAttempt.answers))
            .execution_options(populate_existing=True)
        )
        attempt = result.scalar_one()

        attempt.grade_earned = sum(
            answer.points_awarded
            for answer in attempt.answers
            if answer.graded_at is not None and answer.points_awarded is not None
        )
        if attempt.status == AttemptStatus.SUBMITTED.value and not any(
            answer.awaiting_manual_grade for answer in attempt.answers
        ):
            attempt.status = AttemptStatus.GRADED.value
            logger.info("Attempt %s fully graded", attempt.id)

        await self.db.flush()
        return attempt

    # ==================== AI SUGGESTIONS ====================

    def _select_jobs(
        self,
        attempt: TestAttempt,
        mode: GradingMode,
        answer_id: uuid.UUID | None,
    ) -> list[_ScoringJob]:
        candidates = [
            answer for answer in attempt.answers
            if answer.question is not None
            and answer.question.is_free_response
            and answer.answer_text
            and answer.answer_text.strip()
        ]

        if mode == "single":
            if answer_id is None:
                raise ValidationFailedError("answer_id is required in single mode")
            candidates = [answer for answer in candidates if answer.id == answer_id]
            if not candidates:
                raise NotFoundError("Free-response answer not found")
        elif not candidates:
            raise ValidationFailedError("No free-response answers available for AI grading")

        return [
            _ScoringJob(
                answer_id=answer.id,
                question_id=answer.question_id,
                prompt=answer.question.prompt,
                rubric=answer.question.explanation,
                max_points=float(answer.question.points),
                response=answer.answer_text,
            )
            for answer in candidates
        ]

    async def request_suggestions(
        self,
        test_id: uuid.UUID,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        mode: GradingMode = "single",
        answer_id: uuid.UUID | None = None,
    ) -> SuggestionBatch:
        """
        Ask the scorer for suggestions on one or every free-response answer.

        All reads happen before the first scorer call and nothing is written
        until every call has returned. A failing call is reported in
        ``failed`` and leaves the attempt untouched; in single mode it is
        raised as ScorerError.
        """
        test = await self._get_test(test_id)
        caller = await self._require_admin(test.team_id, user_id)

        attempt = await self._load_attempt(attempt_id)
        if attempt.test_id != test.id:
            raise NotFoundError("Attempt not found")
        self._require_submitted(attempt)

        jobs = self._select_jobs(attempt, mode, answer_id)

        batch = SuggestionBatch()
        results = []
        for job in jobs:
            with agent_span("request_suggestion", "GradingCoordinator", {"answer.id": job.answer_id}) as span:
                try:
                    suggestion = await self.scorer.suggest(
                        prompt=job.prompt,
                        rubric=job.rubric,
                        max_points=job.max_points,
                        response=job.response,
                    )
                except ScorerError as e:
                    span.set_attribute("grading.failed", True)
                    logger.warning("Scorer failed for answer %s: %s", job.answer_id, e.message)
                    if mode == "single":
                        raise
                    batch.failed.append(SuggestionFailure(answer_id=job.answer_id, error=e.message))
                    continue
            results.append((job, suggestion))

        for job, suggestion in results:
            row = AiGradingSuggestion(
                test_id=test.id,
                attempt_id=attempt.id,
                answer_id=job.answer_id,
                question_id=job.question_id,
                requested_by_membership_id=caller.membership_id,
                suggested_points=suggestion.suggested_points,
                max_points=job.max_points,
                explanation=suggestion.explanation,
                strengths=suggestion.strengths,
                gaps=suggestion.gaps,
                rubric_alignment=suggestion.rubric_alignment,
                raw_response=suggestion.raw_response,
                injection_suspected=suggestion.injection_suspected,
                model=suggestion.model,
                status=SuggestionStatus.PENDING.value,
            )
            self.db.add(row)
            batch.suggestions.append(row)

        self._audit(test.id, caller, AuditAction.AI_GRADE_REQUEST, {
            "attempt_id": str(attempt.id),
            "mode": mode,
            "created": len(batch.suggestions),
            "failed": len(batch.failed),
        })
        await self.db.flush()
        return batch

    async def _reviewable_suggestion(
        self,
        suggestion_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> tuple[AiGradingSuggestion, CallerContext]:
        suggestion = await self._load_suggestion(suggestion_id)
        test = await self._get_test(suggestion.test_id)
        caller = await self._require_admin(test.team_id, user_id)
        if suggestion.status != SuggestionStatus.PENDING.value:
            raise InvalidTransitionError(
                "Suggestion has already been reviewed", code=SUGGESTION_ALREADY_REVIEWED
            )
        return suggestion, caller

    async def accept_suggestion(
        self,
        suggestion_id: uuid.UUID,
        user_id: uuid.UUID,
        points: float | None = None,
        note: str | None = None,
    ) -> GradeUpdate:
        """Apply a suggestion (optionally with adjusted points) to its answer."""
        suggestion, caller = await self._reviewable_suggestion(suggestion_id, user_id)
        answer = suggestion.answer
        self._require_submitted(answer.attempt)

        applied = suggestion.suggested_points if points is None else points
        self._check_points(applied, answer.question)

        now = utcnow()
        answer.points_awarded = applied
        answer.graded_at = now
        if note is not None:
            answer.grader_note = note

        suggestion.status = SuggestionStatus.ACCEPTED.value
        suggestion.reviewed_by_membership_id = caller.membership_id
        suggestion.reviewed_at = now
        suggestion.applied_points = applied

        self._audit(suggestion.test_id, caller, AuditAction.GRADE_OVERRIDE, {
            "answer_id": str(answer.id),
            "points": applied,
            "source": "ai_suggestion",
            "suggestion_id": str(suggestion.id),
        })
        attempt = await self.recompute_attempt(answer.attempt_id)
        return GradeUpdate(answer=answer, attempt=attempt, suggestion=suggestion)

    async def reject_suggestion(self, suggestion_id: uuid.UUID, user_id: uuid.UUID) -> AiGradingSuggestion:
        """Dismiss a suggestion. The answer is not touched."""
        suggestion, caller = await self._reviewable_suggestion(suggestion_id, user_id)

        suggestion.status = SuggestionStatus.REJECTED.value
        suggestion.reviewed_by_membership_id = caller.membership_id
        suggestion.reviewed_at = utcnow()
        await self.db.flush()
        return suggestion

    # ==================== MANUAL GRADING ====================

    async def grade_answer(
        self,
        answer_id: uuid.UUID,
        user_id: uuid.UUID,
        points: float,
        note: str | None = None,
    ) -> GradeUpdate:
        """Set an answer's points by hand, overriding any earlier grade."""
        answer = await self._load_answer(answer_id)
        test = await self._get_test(answer.attempt.test_id)
        caller = await self._require_admin(test.team_id, user_id)
        self._require_submitted(answer.attempt)
        self._check_points(points, answer.question)

        answer.points_awarded = points
        answer.graded_at = utcnow()
        if note is not None:
            answer.grader_note = note

        self._audit(test.id, caller, AuditAction.GRADE_OVERRIDE, {
            "answer_id": str(answer.id),
            "points": points,
            "source": "manual",
        })
        attempt = await self.recompute_attempt(answer.attempt_id)
        return GradeUpdate(answer=answer, attempt=attempt)
