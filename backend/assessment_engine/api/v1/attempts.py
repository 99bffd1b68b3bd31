"""
Team Assessment Engine - Attempts API
Endpoints for taking a test: start/resume, autosave, telemetry, submit and results
"""
import uuid

from fastapi import APIRouter, Request, Response, status

from assessment_engine.api.deps import CurrentUserId, DbSession, Scorer, client_ip, user_agent
from assessment_engine.api.errors import to_http_exception
from assessment_engine.models.attempt import AttemptStatus
from assessment_engine.schemas.assessment import QuestionPublic
from assessment_engine.schemas.attempt import (
    AnswerItemErrorResponse,
    AttemptResponse,
    LearnerResultResponse,
    ProctorEventRequest,
    ProctorEventResponse,
    SaveAnswersRequest,
    SaveAnswersResponse,
    SavedAnswer,
    StartAttemptRequest,
    StartAttemptResponse,
    SubmitAttemptResponse,
    TabTrackingRequest,
)
from assessment_engine.schemas.grading import (
    AiGradeRequest,
    AiGradeResponse,
    AnswerReview,
    AttemptSummary,
    ProctoringEvidence,
    SuggestionFailureResponse,
    SuggestionResponse,
)
from assessment_engine.services.attempts import AttemptOverview, AttemptService
from assessment_engine.services.exceptions import AssessmentError
from assessment_engine.services.review import GradingCoordinator

router = APIRouter(prefix="/tests", tags=["Attempts"])


def _summary(overview: AttemptOverview) -> AttemptSummary:
    attempt = overview.attempt
    return AttemptSummary(
        id=attempt.id,
        test_id=attempt.test_id,
        membership_id=attempt.membership_id,
        status=attempt.status,
        started_at=attempt.started_at,
        submitted_at=attempt.submitted_at,
        grade_earned=attempt.grade_earned,
        proctoring_score=attempt.proctoring_score,
        tab_switch_count=attempt.tab_switch_count,
        time_off_page_seconds=attempt.time_off_page_seconds,
        ip_at_start=attempt.ip_at_start,
        user_agent_at_start=attempt.user_agent_at_start,
        ip_at_submit=attempt.ip_at_submit,
        user_agent_at_submit=attempt.user_agent_at_submit,
        proctoring=ProctoringEvidence.model_validate(overview.proctoring),
        answers=[AnswerReview.model_validate(answer) for answer in attempt.answers],
    )


@router.post("/{test_id}/attempts/start", response_model=StartAttemptResponse)
async def start_attempt(
    test_id: uuid.UUID,
    request: Request,
    response: Response,
    user_id: CurrentUserId,
    db: DbSession,
    payload: StartAttemptRequest | None = None,
) -> StartAttemptResponse:
    """
    Start a new attempt, or resume the caller's open one.
    Responds 201 when a new attempt was created and 200 on resume.
    """
    payload = payload or StartAttemptRequest()
    service = AttemptService(db)

    try:
        attempt, created = await service.start_attempt(
            test_id,
            user_id,
            fingerprint=payload.fingerprint,
            password=payload.test_password,
            ip=client_ip(request),
            user_agent=user_agent(request),
        )
        take = await service.get_take_payload(test_id, attempt.id, user_id)
    except AssessmentError as e:
        raise to_http_exception(e)

    if created:
        response.status_code = status.HTTP_201_CREATED

    return StartAttemptResponse(
        attempt=AttemptResponse.model_validate(take.attempt),
        resumed=not created,
        questions=[QuestionPublic.model_validate(question) for question in take.questions],
        answers=[SavedAnswer.model_validate(answer) for answer in take.answers],
        time_limit_seconds=take.time_limit_seconds,
        time_remaining_seconds=take.time_remaining_seconds,
        require_fullscreen=take.test.require_fullscreen,
    )


@router.post("/{test_id}/attempts/{attempt_id}/answers", response_model=SaveAnswersResponse)
async def save_answers(
    test_id: uuid.UUID,
    attempt_id: uuid.UUID,
    payload: SaveAnswersRequest,
    user_id: CurrentUserId,
    db: DbSession,
) -> SaveAnswersResponse:
    """
    Autosave a batch of answers.
    Rejected items are listed in ``errors``; the rest are saved.
    """
    try:
        result = await AttemptService(db).save_answers(test_id, attempt_id, user_id, payload.answers)
    except AssessmentError as e:
        raise to_http_exception(e)

    return SaveAnswersResponse(
        saved=[SavedAnswer.model_validate(answer) for answer in result.saved],
        errors=[AnswerItemErrorResponse.model_validate(error) for error in result.errors],
    )


@router.patch("/{test_id}/attempts/{attempt_id}/tab-tracking", response_model=AttemptResponse)
async def update_tab_tracking(
    test_id: uuid.UUID,
    attempt_id: uuid.UUID,
    payload: TabTrackingRequest,
    user_id: CurrentUserId,
    db: DbSession,
) -> AttemptResponse:
    try:
        attempt = await AttemptService(db).update_tab_tracking(
            test_id,
            attempt_id,
            user_id,
            tab_switch_count=payload.tab_switch_count,
            time_off_page_seconds=payload.time_off_page_seconds,
        )
    except AssessmentError as e:
        raise to_http_exception(e)
    return AttemptResponse.model_validate(attempt)


@router.post(
    "/{test_id}/attempts/{attempt_id}/proctor-events",
    response_model=ProctorEventResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_proctor_event(
    test_id: uuid.UUID,
    attempt_id: uuid.UUID,
    payload: ProctorEventRequest,
    user_id: CurrentUserId,
    db: DbSession,
) -> ProctorEventResponse:
    try:
        event = await AttemptService(db).record_proctor_event(
            test_id, attempt_id, user_id, kind=payload.kind, meta=payload.meta
        )
    except AssessmentError as e:
        raise to_http_exception(e)
    return ProctorEventResponse.model_validate(event)


@router.post("/{test_id}/attempts/{attempt_id}/submit", response_model=SubmitAttemptResponse)
async def submit_attempt(
    test_id: uuid.UUID,
    attempt_id: uuid.UUID,
    request: Request,
    user_id: CurrentUserId,
    db: DbSession,
) -> SubmitAttemptResponse:
    """Submit the attempt. Objective questions are graded immediately."""
    try:
        attempt = await AttemptService(db).submit_attempt(
            test_id,
            attempt_id,
            user_id,
            ip=client_ip(request),
            user_agent=user_agent(request),
        )
    except AssessmentError as e:
        raise to_http_exception(e)

    return SubmitAttemptResponse(
        attempt=AttemptResponse.model_validate(attempt),
        needs_manual_grading=attempt.status == AttemptStatus.SUBMITTED.value,
    )


@router.get("/{test_id}/attempts/{attempt_id}/results", response_model=LearnerResultResponse)
async def get_results(
    test_id: uuid.UUID,
    attempt_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
) -> LearnerResultResponse:
    """The caller's result, revealed according to the test's release settings."""
    try:
        result = await AttemptService(db).get_result(test_id, attempt_id, user_id)
    except AssessmentError as e:
        raise to_http_exception(e)
    return LearnerResultResponse.model_validate(result)


@router.get("/{test_id}/attempts", response_model=list[AttemptSummary])
async def list_attempts(
    test_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
) -> list[AttemptSummary]:
    """Every attempt with answers and proctoring evidence (admins only)."""
    try:
        overviews = await AttemptService(db).list_attempts(test_id, user_id)
    except AssessmentError as e:
        raise to_http_exception(e)
    return [_summary(overview) for overview in overviews]


@router.post("/{test_id}/attempts/{attempt_id}/ai/grade", response_model=AiGradeResponse)
async def request_ai_grading(
    test_id: uuid.UUID,
    attempt_id: uuid.UUID,
    payload: AiGradeRequest,
    user_id: CurrentUserId,
    db: DbSession,
    scorer: Scorer,
) -> AiGradeResponse:
    """
    Ask the AI scorer for suggestions on free-response answers.
    Suggestions are stored unreviewed and never change points by themselves.
    """
    try:
        batch = await GradingCoordinator(db, scorer=scorer).request_suggestions(
            test_id,
            attempt_id,
            user_id,
            mode=payload.mode,
            answer_id=payload.answer_id,
        )
    except AssessmentError as e:
        raise to_http_exception(e)

    return AiGradeResponse(
        suggestions=[SuggestionResponse.model_validate(row) for row in batch.suggestions],
        failed=[SuggestionFailureResponse.model_validate(failure) for failure in batch.failed],
    )
