"""
Team Assessment Engine - Score Release
Decides what a learner may see of a test and of their own graded attempt.
"""
from datetime import datetime
from typing import Any

from assessment_engine.core.timeutils import as_utc
from assessment_engine.models.assessment import MCQ_TYPES, Question, QuestionType, ScoreReleaseMode, Test
from assessment_engine.models.attempt import AttemptAnswer, TestAttempt


def scores_released(test: Test, now: datetime) -> bool:
    """Scores are visible once release_scores_at has passed (or when it is unset)."""
    release_at = as_utc(test.release_scores_at)
    return release_at is None or as_utc(now) >= release_at


def learner_question_payload(question: Question) -> dict[str, Any]:
    """A question as a learner sees it while taking the test: no key, no rubric."""
    return {
        "id": question.id,
        "type": question.type,
        "prompt": question.prompt,
        "points": question.points,
        "order": question.order,
        "options": [
            {"id": option.id, "label": option.label, "order": option.order}
            for option in question.options
        ],
    }


def _answer_key(question: Question) -> dict[str, Any]:
    key: dict[str, Any] = {"explanation": question.explanation}
    if QuestionType(question.type) in MCQ_TYPES:
        key["correct_option_ids"] = [option.id for option in question.options if option.is_correct]
    elif question.type == QuestionType.NUMERIC.value:
        key["correct_numeric_values"] = question.correct_numeric_values or []
        key["numeric_tolerance"] = question.numeric_tolerance or 0.0
    return key


def _answer_entry(question: Question, answer: AttemptAnswer | None, with_details: bool) -> dict[str, Any]:
    points_awarded = answer.points_awarded if answer is not None else None
    entry: dict[str, Any] = {
        "question_id": question.id,
        "points": question.points,
        "points_awarded": points_awarded,
        "is_correct": points_awarded is not None and points_awarded > 0,
    }
    if with_details:
        entry.update(
            prompt=question.prompt,
            type=question.type,
            answer_text=answer.answer_text if answer else None,
            selected_option_ids=answer.selected_option_ids if answer else None,
            numeric_answer=answer.numeric_answer if answer else None,
            grader_note=answer.grader_note if answer else None,
            **_answer_key(question),
        )
    return entry


def shape_learner_result(test: Test, attempt: TestAttempt, now: datetime) -> dict[str, Any]:
    """
    The learner's view of their attempt under the test's release policy.

    NONE, an unfinished attempt, or a release date in the future expose
    status only. SCORE_ONLY adds the score. SCORE_WITH_WRONG adds per-question
    points and reveals prompt, response and key only where a graded answer did
    not earn points; answers still awaiting a grader stay hidden. FULL_TEST
    reveals everything.
    """
    result: dict[str, Any] = {
        "attempt_id": attempt.id,
        "status": attempt.status,
        "submitted_at": attempt.submitted_at,
        "scores_released": False,
        "release_mode": test.score_release_mode,
    }

    mode = ScoreReleaseMode(test.score_release_mode)
    if not attempt.is_terminal or mode == ScoreReleaseMode.NONE or not scores_released(test, now):
        return result

    result.update(
        scores_released=True,
        grade_earned=attempt.grade_earned,
        max_points=test.total_points,
    )
    if mode == ScoreReleaseMode.SCORE_ONLY:
        return result

    by_question = {answer.question_id: answer for answer in attempt.answers}
    answers = []
    for question in test.questions:
        entry_answer = by_question.get(question.id)
        earned = entry_answer is not None and (entry_answer.points_awarded or 0) > 0
        awaiting_grade = entry_answer is not None and bool(entry_answer.awaiting_manual_grade)
        with_details = mode == ScoreReleaseMode.FULL_TEST or not (earned or awaiting_grade)
        answers.append(_answer_entry(question, entry_answer, with_details))
    result["answers"] = answers
    return result
