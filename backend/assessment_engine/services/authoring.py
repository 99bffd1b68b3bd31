"""
Team Assessment Engine - Test Authoring Service
Creating, editing, assigning, publishing and closing tests.
Every change is recorded in the test's audit trail.
"""
import logging
import math
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from assessment_engine.core.security import hash_test_password
from assessment_engine.core.timeutils import as_utc, utcnow
from assessment_engine.models.assessment import (
    MCQ_TYPES,
    AssignmentScope,
    AuditAction,
    Question,
    QuestionOption,
    QuestionType,
    Test,
    TestAssignment,
    TestAudit,
    TestStatus,
)
from assessment_engine.schemas.assessment import (
    AssignmentIn,
    PublishRequest,
    QuestionCreate,
    TestCreate,
    TestUpdate,
)
from assessment_engine.services.access import matches_assignment
from assessment_engine.services.directory import CallerContext, MembershipDirectory, SqlMembershipDirectory
from assessment_engine.services.exceptions import (
    TEST_CLOSED,
    TEST_NOT_EDITABLE,
    AccessDeniedError,
    AccessDeniedReason,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

# Fields that change what is being answered; frozen once published
STRUCTURAL_FIELDS = frozenset({"name", "description", "instructions", "duration_minutes"})

REQUIRED_FIELDS = frozenset({"name", "duration_minutes", "score_release_mode", "require_fullscreen"})


def validate_question(data: QuestionCreate) -> None:
    """
    Check a question definition is gradable.

    MCQ needs at least two options and one correct one (exactly one for
    MCQ_SINGLE). NUMERIC needs finite accepted values. Text questions take
    no options.
    """
    if data.type in MCQ_TYPES:
        if len(data.options) < 2:
            raise ValidationFailedError("Multiple-choice questions need at least two options")
        correct = sum(1 for option in data.options if option.is_correct)
        if correct == 0:
            raise ValidationFailedError("Multiple-choice questions need a correct option")
        if data.type == QuestionType.MCQ_SINGLE and correct != 1:
            raise ValidationFailedError("Single-choice questions need exactly one correct option")
        if data.correct_numeric_values:
            raise ValidationFailedError("Multiple-choice questions take no numeric answers")
        return

    if data.options:
        raise ValidationFailedError(f"{data.type.value} questions take no options")

    if data.type == QuestionType.NUMERIC:
        values = data.correct_numeric_values or []
        if not values:
            raise ValidationFailedError("Numeric questions need at least one accepted value")
        if not all(math.isfinite(value) for value in values):
            raise ValidationFailedError("Accepted values must be finite numbers")
    elif data.correct_numeric_values:
        raise ValidationFailedError(f"{data.type.value} questions take no numeric answers")


def validate_window(
    start_at: datetime | None,
    end_at: datetime | None,
    allow_late_until: datetime | None,
) -> None:
    start_at, end_at, allow_late_until = as_utc(start_at), as_utc(end_at), as_utc(allow_late_until)
    if start_at is not None and end_at is not None and end_at <= start_at:
        raise ValidationFailedError("end_at must be after start_at")
    if allow_late_until is not None:
        if end_at is None:
            raise ValidationFailedError("allow_late_until requires end_at")
        if allow_late_until < end_at:
            raise ValidationFailedError("allow_late_until must not be before end_at")


def build_question(data: QuestionCreate, order: int) -> Question:
    validate_question(data)
    return Question(
        type=data.type.value,
        prompt=data.prompt,
        explanation=data.explanation,
        points=data.points,
        order=order,
        numeric_tolerance=data.numeric_tolerance if data.type == QuestionType.NUMERIC else None,
        correct_numeric_values=data.correct_numeric_values if data.type == QuestionType.NUMERIC else None,
        options=[
            QuestionOption(label=option.label, is_correct=option.is_correct, order=option.order or index)
            for index, option in enumerate(data.options)
        ],
    )


def build_assignment(data: AssignmentIn) -> TestAssignment:
    return TestAssignment(
        scope=data.scope.value,
        subteam_id=data.subteam_id if data.scope == AssignmentScope.SUBTEAM else None,
        target_membership_id=data.target_membership_id if data.scope == AssignmentScope.PERSONAL else None,
        event_id=data.event_id if data.scope == AssignmentScope.EVENT else None,
    )


class AuthoringService:
    """Admin operations on test definitions."""

    def __init__(self, db: AsyncSession, directory: MembershipDirectory | None = None):
        self.db = db
        self.directory = directory or SqlMembershipDirectory(db)

    async def _caller(self, team_id: uuid.UUID, user_id: uuid.UUID) -> CallerContext:
        caller = await self.directory.get_caller(user_id, team_id)
        if caller is None:
            raise AccessDeniedError(AccessDeniedReason.NOT_A_MEMBER)
        return caller

    async def _admin(self, team_id: uuid.UUID, user_id: uuid.UUID) -> CallerContext:
        caller = await self._caller(team_id, user_id)
        if not caller.is_admin:
            raise PermissionDeniedError("Only team admins can manage tests")
        return caller

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

    def _audit(self, test: Test, actor: CallerContext, action: AuditAction, details: dict | None = None) -> None:
        self.db.add(TestAudit(
            test_id=test.id,
            actor_membership_id=actor.membership_id,
            action=action.value,
            details=details or {},
        ))

    @staticmethod
    def _require_draft(test: Test) -> None:
        if test.status != TestStatus.DRAFT.value:
            raise InvalidTransitionError("Only draft tests can be edited", code=TEST_NOT_EDITABLE)

    @staticmethod
    def _require_open(test: Test) -> None:
        if test.status == TestStatus.CLOSED.value:
            raise InvalidTransitionError("Test is closed", code=TEST_CLOSED)

    # ==================== READS ====================

    async def list_tests(self, team_id: uuid.UUID, user_id: uuid.UUID) -> list[Test]:
        """Admins see every test of the team; members see published tests assigned to them."""
        caller = await self._caller(team_id, user_id)

        query = (
            select(Test)
            .where(Test.team_id == team_id)
            .options(
                selectinload(Test.questions).selectinload(Question.options),
                selectinload(Test.assignments),
            )
            .order_by(Test.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if not caller.is_admin:
            query = query.where(Test.status == TestStatus.PUBLISHED.value)

        result = await self.db.execute(query)
        tests = list(result.scalars().all())
        if caller.is_admin:
            return tests
        return [test for test in tests if matches_assignment(test.assignments, caller)]

    async def get_test(self, test_id: uuid.UUID, user_id: uuid.UUID) -> tuple[Test, CallerContext]:
        """A test the caller may see. Hidden tests look missing to members."""
        test = await self._load_test(test_id)
        caller = await self._caller(test.team_id, user_id)
        if not caller.is_admin:
            visible = test.status != TestStatus.DRAFT.value and matches_assignment(test.assignments, caller)
            if not visible:
                raise NotFoundError("Test not found")
        return test, caller

    # ==================== WRITES ====================

    async def create_test(self, user_id: uuid.UUID, data: TestCreate) -> Test:
        """Create a draft test. With no assignments given it is assigned to the whole team."""
        caller = await self._admin(data.team_id, user_id)
        validate_window(data.start_at, data.end_at, data.allow_late_until)

        assignments = data.assignments
        if assignments is None:
            assignments = [AssignmentIn(scope=AssignmentScope.TEAM)]

        test = Test(
            team_id=data.team_id,
            name=data.name,
            description=data.description,
            instructions=data.instructions,
            status=TestStatus.DRAFT.value,
            duration_minutes=data.duration_minutes,
            start_at=data.start_at,
            end_at=data.end_at,
            allow_late_until=data.allow_late_until,
            max_attempts=data.max_attempts,
            score_release_mode=data.score_release_mode.value,
            release_scores_at=data.release_scores_at,
            require_fullscreen=data.require_fullscreen,
            created_by_membership_id=caller.membership_id,
            questions=[
                build_question(question, question.order or index)
                for index, question in enumerate(data.questions)
            ],
            assignments=[build_assignment(assignment) for assignment in assignments],
        )
        self.db.add(test)
        await self.db.flush()

        self._audit(test, caller, AuditAction.CREATE, {
            "name": test.name,
            "questions": len(data.questions),
        })
        await self.db.flush()
        logger.info("Test %s created by membership %s", test.id, caller.membership_id)
        return await self._load_test(test.id)

    async def add_question(self, test_id: uuid.UUID, user_id: uuid.UUID, data: QuestionCreate) -> Question:
        """Append a question to a draft test."""
        test = await self._load_test(test_id)
        caller = await self._admin(test.team_id, user_id)
        self._require_draft(test)

        question = build_question(data, data.order or len(test.questions))
        test.questions.append(question)
        await self.db.flush()

        self._audit(test, caller, AuditAction.ADD_QUESTION, {
            "question_id": str(question.id),
            "type": question.type,
        })
        await self.db.flush()
        return question

    async def update_test(self, test_id: uuid.UUID, user_id: uuid.UUID, data: TestUpdate) -> Test:
        """
        Change test settings.

        Structural fields are frozen once the test leaves DRAFT; schedule and
        release settings stay editable until the test is closed.
        """
        test = await self._load_test(test_id)
        caller = await self._admin(test.team_id, user_id)
        self._require_open(test)

        changes = data.model_dump(exclude_unset=True)
        cleared = [name for name in REQUIRED_FIELDS & changes.keys() if changes[name] is None]
        if cleared:
            raise ValidationFailedError(f"{cleared[0]} cannot be cleared")
        if STRUCTURAL_FIELDS & changes.keys():
            self._require_draft(test)

        validate_window(
            changes.get("start_at", test.start_at),
            changes.get("end_at", test.end_at),
            changes.get("allow_late_until", test.allow_late_until),
        )

        for name, value in changes.items():
            if name == "score_release_mode":
                value = value.value
            setattr(test, name, value)

        self._audit(test, caller, AuditAction.UPDATE, {"fields": sorted(changes)})
        await self.db.flush()
        return await self._load_test(test.id)

    async def set_assignments(
        self,
        test_id: uuid.UUID,
        user_id: uuid.UUID,
        assignments: list[AssignmentIn],
    ) -> Test:
        """Replace the test's audience."""
        test = await self._load_test(test_id)
        caller = await self._admin(test.team_id, user_id)
        self._require_open(test)

        test.assignments = [build_assignment(assignment) for assignment in assignments]
        self._audit(test, caller, AuditAction.ASSIGN, {
            "scopes": [assignment.scope.value for assignment in assignments],
        })
        await self.db.flush()
        return await self._load_test(test.id)

    @staticmethod
    def _assignments_for_mode(data: PublishRequest) -> list[AssignmentIn] | None:
        if data.assignment_mode is None:
            return None
        if data.assignment_mode == "TEAM":
            return [AssignmentIn(scope=AssignmentScope.TEAM)]
        if data.assignment_mode == "SUBTEAMS":
            if not data.selected_subteams:
                raise ValidationFailedError("Select at least one subteam")
            return [
                AssignmentIn(scope=AssignmentScope.SUBTEAM, subteam_id=subteam_id)
                for subteam_id in data.selected_subteams
            ]
        if data.selected_event_id is None:
            raise ValidationFailedError("Select an event")
        return [AssignmentIn(scope=AssignmentScope.EVENT, event_id=data.selected_event_id)]

    async def publish_test(self, test_id: uuid.UUID, user_id: uuid.UUID, data: PublishRequest) -> Test:
        """Publish a draft test with its final schedule, password and audience."""
        test = await self._load_test(test_id)
        caller = await self._admin(test.team_id, user_id)
        self._require_draft(test)

        if not test.questions:
            raise ValidationFailedError("Cannot publish a test without questions")
        validate_window(data.start_at, data.end_at, data.allow_late_until)
        assignments = self._assignments_for_mode(data)

        test.start_at = data.start_at
        test.end_at = data.end_at
        test.allow_late_until = data.allow_late_until
        test.release_scores_at = data.release_scores_at
        if data.duration_minutes is not None:
            test.duration_minutes = data.duration_minutes
        if data.max_attempts is not None:
            test.max_attempts = data.max_attempts
        if data.score_release_mode is not None:
            test.score_release_mode = data.score_release_mode.value
        if data.require_fullscreen is not None:
            test.require_fullscreen = data.require_fullscreen
        if data.test_password:
            test.test_password_hash = hash_test_password(data.test_password)
        if assignments is not None:
            test.assignments = [build_assignment(assignment) for assignment in assignments]

        test.status = TestStatus.PUBLISHED.value
        test.published_at = utcnow()

        self._audit(test, caller, AuditAction.PUBLISH, {
            "start_at": data.start_at.isoformat(),
            "end_at": data.end_at.isoformat(),
            "password_protected": bool(data.test_password),
            "assignment_mode": data.assignment_mode,
        })
        await self.db.flush()
        logger.info("Test %s published", test.id)
        return await self._load_test(test.id)

    async def close_test(self, test_id: uuid.UUID, user_id: uuid.UUID) -> Test:
        """Stop a published test from accepting new attempts or submissions."""
        test = await self._load_test(test_id)
        caller = await self._admin(test.team_id, user_id)
        if test.status != TestStatus.PUBLISHED.value:
            raise InvalidTransitionError("Only published tests can be closed", code=TEST_NOT_EDITABLE)

        test.status = TestStatus.CLOSED.value
        self._audit(test, caller, AuditAction.CLOSE)
        await self.db.flush()
        return await self._load_test(test.id)
