"""
Team Assessment Engine - Test Authoring Tests
"""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from assessment_engine.core.security import verify_test_password
from assessment_engine.core.timeutils import utcnow
from assessment_engine.models import AssignmentScope, AuditAction, QuestionType, TestAudit, TestStatus
from assessment_engine.schemas.assessment import (
    AssignmentIn,
    OptionCreate,
    PublishRequest,
    QuestionCreate,
    TestCreate,
    TestUpdate,
)
from assessment_engine.services.authoring import AuthoringService, validate_question, validate_window
from assessment_engine.services.exceptions import (
    TEST_CLOSED,
    TEST_NOT_EDITABLE,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)


def _mcq(correct=(True, False), question_type=QuestionType.MCQ_SINGLE) -> QuestionCreate:
    return QuestionCreate(
        type=question_type,
        prompt="Which element has symbol K?",
        points=2.0,
        options=[OptionCreate(label=f"Choice {index}", is_correct=flag) for index, flag in enumerate(correct)],
    )


def _publish(**fields) -> PublishRequest:
    now = utcnow()
    values = {"start_at": now - timedelta(minutes=5), "end_at": now + timedelta(hours=2)}
    values.update(fields)
    return PublishRequest(**values)


async def _draft(service: AuthoringService, admin, team_id, **fields):
    values = {"team_id": team_id, "name": "Invitational Practice", "duration_minutes": 30, "questions": [_mcq()]}
    values.update(fields)
    return await service.create_test(admin.user_id, TestCreate(**values))


# ==================== VALIDATION ====================

class TestQuestionValidation:

    def test_valid_questions(self):
        validate_question(_mcq())
        validate_question(_mcq((True, True, False), QuestionType.MCQ_MULTI))
        validate_question(QuestionCreate(type=QuestionType.NUMERIC, prompt="g?", correct_numeric_values=[9.81]))
        validate_question(QuestionCreate(type=QuestionType.LONG_TEXT, prompt="Discuss"))

    @pytest.mark.parametrize("data", [
        _mcq((True,)),
        _mcq((False, False)),
        _mcq((True, True)),
        QuestionCreate(type=QuestionType.NUMERIC, prompt="g?"),
        QuestionCreate(type=QuestionType.NUMERIC, prompt="g?", correct_numeric_values=[float("inf")]),
        QuestionCreate(type=QuestionType.SHORT_TEXT, prompt="Name it", options=[OptionCreate(label="x")]),
        QuestionCreate(type=QuestionType.LONG_TEXT, prompt="Discuss", correct_numeric_values=[1.0]),
    ])
    def test_invalid_questions(self, data):
        with pytest.raises(ValidationFailedError):
            validate_question(data)


class TestWindowValidation:

    def test_end_must_follow_start(self):
        now = utcnow()
        with pytest.raises(ValidationFailedError):
            validate_window(now, now, None)

    def test_late_grace_needs_end(self):
        with pytest.raises(ValidationFailedError):
            validate_window(None, None, utcnow())

    def test_late_grace_cannot_precede_end(self):
        now = utcnow()
        with pytest.raises(ValidationFailedError):
            validate_window(None, now, now - timedelta(minutes=1))

    def test_open_ended_window(self):
        validate_window(None, None, None)


# ==================== LIFECYCLE ====================

@pytest.mark.asyncio
async def test_create_defaults_to_whole_team(db_session, admin, team_id):
    service = AuthoringService(db_session)

    test = await _draft(service, admin, team_id)

    assert test.status == TestStatus.DRAFT.value
    assert [assignment.scope for assignment in test.assignments] == [AssignmentScope.TEAM.value]
    assert test.question_count == 1
    assert test.created_by_membership_id == admin.id

    audits = await db_session.execute(select(TestAudit).where(TestAudit.test_id == test.id))
    assert [audit.action for audit in audits.scalars().all()] == [AuditAction.CREATE.value]


@pytest.mark.asyncio
async def test_members_cannot_create_tests(db_session, learner, team_id):
    with pytest.raises(PermissionDeniedError):
        await _draft(AuthoringService(db_session), learner, team_id)


@pytest.mark.asyncio
async def test_add_question_only_while_draft(db_session, admin, team_id):
    service = AuthoringService(db_session)
    test = await _draft(service, admin, team_id)

    question = await service.add_question(
        test.id, admin.user_id, QuestionCreate(type=QuestionType.LONG_TEXT, prompt="Explain", points=5.0)
    )
    assert question.id is not None

    await service.publish_test(test.id, admin.user_id, _publish())

    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.add_question(test.id, admin.user_id, QuestionCreate(type=QuestionType.LONG_TEXT, prompt="More"))
    assert exc_info.value.code == TEST_NOT_EDITABLE


@pytest.mark.asyncio
async def test_publish_requires_questions(db_session, admin, team_id):
    service = AuthoringService(db_session)
    test = await _draft(service, admin, team_id, questions=[])

    with pytest.raises(ValidationFailedError):
        await service.publish_test(test.id, admin.user_id, _publish())


@pytest.mark.asyncio
async def test_publish_hashes_password_and_sets_audience(db_session, admin, team_id):
    service = AuthoringService(db_session)
    test = await _draft(service, admin, team_id)
    subteams = [uuid.uuid4(), uuid.uuid4()]

    published = await service.publish_test(test.id, admin.user_id, _publish(
        test_password="secret123",
        assignment_mode="SUBTEAMS",
        selected_subteams=subteams,
        max_attempts=2,
    ))

    assert published.status == TestStatus.PUBLISHED.value
    assert published.published_at is not None
    assert published.max_attempts == 2
    assert published.test_password_hash != "secret123"
    assert verify_test_password("secret123", published.test_password_hash)
    assert sorted(assignment.subteam_id for assignment in published.assignments) == sorted(subteams)


@pytest.mark.asyncio
async def test_publish_subteams_needs_a_selection(db_session, admin, team_id):
    service = AuthoringService(db_session)
    test = await _draft(service, admin, team_id)

    with pytest.raises(ValidationFailedError):
        await service.publish_test(test.id, admin.user_id, _publish(assignment_mode="SUBTEAMS"))


@pytest.mark.asyncio
async def test_structural_fields_frozen_after_publish(db_session, admin, team_id):
    service = AuthoringService(db_session)
    test = await _draft(service, admin, team_id)
    await service.publish_test(test.id, admin.user_id, _publish())

    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.update_test(test.id, admin.user_id, TestUpdate(duration_minutes=90))
    assert exc_info.value.code == TEST_NOT_EDITABLE

    new_end = utcnow() + timedelta(days=1)
    updated = await service.update_test(test.id, admin.user_id, TestUpdate(end_at=new_end))
    assert updated.end_at is not None


@pytest.mark.asyncio
async def test_required_fields_cannot_be_cleared(db_session, admin, team_id):
    service = AuthoringService(db_session)
    test = await _draft(service, admin, team_id)

    with pytest.raises(ValidationFailedError):
        await service.update_test(test.id, admin.user_id, TestUpdate(name=None))


@pytest.mark.asyncio
async def test_closed_test_is_read_only(db_session, admin, team_id):
    service = AuthoringService(db_session)
    test = await _draft(service, admin, team_id)
    await service.publish_test(test.id, admin.user_id, _publish())

    closed = await service.close_test(test.id, admin.user_id)
    assert closed.status == TestStatus.CLOSED.value

    with pytest.raises(InvalidTransitionError) as updating:
        await service.update_test(test.id, admin.user_id, TestUpdate(max_attempts=3))
    with pytest.raises(InvalidTransitionError):
        await service.close_test(test.id, admin.user_id)
    assert updating.value.code == TEST_CLOSED


@pytest.mark.asyncio
async def test_set_assignments_replaces_audience(db_session, admin, team_id):
    service = AuthoringService(db_session)
    test = await _draft(service, admin, team_id)
    event_id = uuid.uuid4()

    updated = await service.set_assignments(test.id, admin.user_id, [
        AssignmentIn(scope=AssignmentScope.EVENT, event_id=event_id),
    ])

    assert [(a.scope, a.event_id) for a in updated.assignments] == [(AssignmentScope.EVENT.value, event_id)]


# ==================== VISIBILITY ====================

@pytest.mark.asyncio
async def test_members_see_only_published_assigned_tests(db_session, make_membership, admin, team_id):
    subteam = uuid.uuid4()
    learner = await make_membership(team_id, subteam_id=subteam)
    service = AuthoringService(db_session)

    draft = await _draft(service, admin, team_id, name="Draft")
    mine = await _draft(service, admin, team_id, name="Mine")
    theirs = await _draft(service, admin, team_id, name="Theirs")
    await service.publish_test(mine.id, admin.user_id, _publish(
        assignment_mode="SUBTEAMS", selected_subteams=[subteam],
    ))
    await service.publish_test(theirs.id, admin.user_id, _publish(
        assignment_mode="SUBTEAMS", selected_subteams=[uuid.uuid4()],
    ))

    visible = await service.list_tests(team_id, learner.user_id)
    everything = await service.list_tests(team_id, admin.user_id)

    assert [test.name for test in visible] == ["Mine"]
    assert len(everything) == 3

    with pytest.raises(NotFoundError):
        await service.get_test(draft.id, learner.user_id)
    with pytest.raises(NotFoundError):
        await service.get_test(theirs.id, learner.user_id)
    test, caller = await service.get_test(mine.id, learner.user_id)
    assert not caller.is_admin
