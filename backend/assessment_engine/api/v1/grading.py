"""
Team Assessment Engine - Grading API
Endpoints for reviewing AI suggestions and grading answers by hand
"""
import uuid

from fastapi import APIRouter

from assessment_engine.api.deps import CurrentUserId, DbSession
from assessment_engine.api.errors import to_http_exception
from assessment_engine.schemas.grading import (
    AcceptSuggestionRequest,
    AnswerReview,
    AttemptGradingState,
    GradeUpdateResponse,
    ManualGradeRequest,
    SuggestionResponse,
)
from assessment_engine.services.exceptions import AssessmentError
from assessment_engine.services.review import GradeUpdate, GradingCoordinator

router = APIRouter(prefix="/grading", tags=["Grading"])


def _grade_update(update: GradeUpdate) -> GradeUpdateResponse:
    return GradeUpdateResponse(
        answer=AnswerReview.model_validate(update.answer),
        attempt=AttemptGradingState.model_validate(update.attempt),
        suggestion=(
            SuggestionResponse.model_validate(update.suggestion)
            if update.suggestion is not None else None
        ),
    )


@router.post("/suggestions/{suggestion_id}/accept", response_model=GradeUpdateResponse)
async def accept_suggestion(
    suggestion_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
    payload: AcceptSuggestionRequest | None = None,
) -> GradeUpdateResponse:
    """Apply a suggestion's points (or adjusted points) to its answer."""
    payload = payload or AcceptSuggestionRequest()
    try:
        update = await GradingCoordinator(db).accept_suggestion(
            suggestion_id, user_id, points=payload.points, note=payload.note
        )
    except AssessmentError as e:
        raise to_http_exception(e)
    return _grade_update(update)


@router.post("/suggestions/{suggestion_id}/reject", response_model=SuggestionResponse)
async def reject_suggestion(
    suggestion_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
) -> SuggestionResponse:
    try:
        suggestion = await GradingCoordinator(db).reject_suggestion(suggestion_id, user_id)
    except AssessmentError as e:
        raise to_http_exception(e)
    return SuggestionResponse.model_validate(suggestion)


@router.patch("/answers/{answer_id}", response_model=GradeUpdateResponse)
async def grade_answer(
    answer_id: uuid.UUID,
    payload: ManualGradeRequest,
    user_id: CurrentUserId,
    db: DbSession,
) -> GradeUpdateResponse:
    """Grade an answer by hand. Points must be within the question's value."""
    try:
        update = await GradingCoordinator(db).grade_answer(
            answer_id, user_id, points=payload.points, note=payload.note
        )
    except AssessmentError as e:
        raise to_http_exception(e)
    return _grade_update(update)
