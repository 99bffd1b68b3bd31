"""
Team Assessment Engine - Tests API
Endpoints for authoring, assigning, publishing and closing tests
"""
import uuid

from fastapi import APIRouter, Query, status

from assessment_engine.api.deps import CurrentUserId, DbSession
from assessment_engine.api.errors import to_http_exception
from assessment_engine.models.assessment import Test
from assessment_engine.schemas.assessment import (
    AssignmentsReplace,
    PublishRequest,
    QuestionCreate,
    QuestionWithKey,
    TestCreate,
    TestDetail,
    TestSummary,
    TestUpdate,
)
from assessment_engine.services.authoring import AuthoringService
from assessment_engine.services.exceptions import AssessmentError

router = APIRouter(prefix="/tests", tags=["Tests"])


def _detail(test: Test, include_key: bool = True) -> TestDetail:
    detail = TestDetail.model_validate(test)
    if not include_key:
        detail.questions = []
    return detail


@router.get("", response_model=list[TestSummary])
async def list_tests(
    user_id: CurrentUserId,
    db: DbSession,
    team_id: uuid.UUID = Query(...),
) -> list[TestSummary]:
    """List the team's tests visible to the caller."""
    try:
        tests = await AuthoringService(db).list_tests(team_id, user_id)
    except AssessmentError as e:
        raise to_http_exception(e)
    return [TestSummary.model_validate(test) for test in tests]


@router.post("", response_model=TestDetail, status_code=status.HTTP_201_CREATED)
async def create_test(
    payload: TestCreate,
    user_id: CurrentUserId,
    db: DbSession,
) -> TestDetail:
    """Create a draft test (admins only)."""
    try:
        test = await AuthoringService(db).create_test(user_id, payload)
    except AssessmentError as e:
        raise to_http_exception(e)
    return _detail(test)


@router.get("/{test_id}", response_model=TestDetail)
async def get_test(
    test_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
) -> TestDetail:
    """
    Test detail.
    Questions and answer keys are only included for admins.
    """
    try:
        test, caller = await AuthoringService(db).get_test(test_id, user_id)
    except AssessmentError as e:
        raise to_http_exception(e)
    return _detail(test, include_key=caller.is_admin)


@router.patch("/{test_id}", response_model=TestDetail)
async def update_test(
    test_id: uuid.UUID,
    payload: TestUpdate,
    user_id: CurrentUserId,
    db: DbSession,
) -> TestDetail:
    try:
        test = await AuthoringService(db).update_test(test_id, user_id, payload)
    except AssessmentError as e:
        raise to_http_exception(e)
    return _detail(test)


@router.post("/{test_id}/questions", response_model=QuestionWithKey, status_code=status.HTTP_201_CREATED)
async def add_question(
    test_id: uuid.UUID,
    payload: QuestionCreate,
    user_id: CurrentUserId,
    db: DbSession,
) -> QuestionWithKey:
    """Add a question to a draft test."""
    try:
        question = await AuthoringService(db).add_question(test_id, user_id, payload)
    except AssessmentError as e:
        raise to_http_exception(e)
    return QuestionWithKey.model_validate(question)


@router.put("/{test_id}/assignments", response_model=TestDetail)
async def replace_assignments(
    test_id: uuid.UUID,
    payload: AssignmentsReplace,
    user_id: CurrentUserId,
    db: DbSession,
) -> TestDetail:
    try:
        test = await AuthoringService(db).set_assignments(test_id, user_id, payload.assignments)
    except AssessmentError as e:
        raise to_http_exception(e)
    return _detail(test)


@router.post("/{test_id}/publish", response_model=TestDetail)
async def publish_test(
    test_id: uuid.UUID,
    payload: PublishRequest,
    user_id: CurrentUserId,
    db: DbSession,
) -> TestDetail:
    """Publish a draft test with its schedule, optional password and audience."""
    try:
        test = await AuthoringService(db).publish_test(test_id, user_id, payload)
    except AssessmentError as e:
        raise to_http_exception(e)
    return _detail(test)


@router.post("/{test_id}/close", response_model=TestDetail)
async def close_test(
    test_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
) -> TestDetail:
    try:
        test = await AuthoringService(db).close_test(test_id, user_id)
    except AssessmentError as e:
        raise to_http_exception(e)
    return _detail(test)
