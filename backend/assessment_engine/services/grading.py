"""
Team Assessment Engine - Auto-Grading Engine
Deterministic, side-effect-free scoring of objective questions.

Rules:
- MCQ_SINGLE / MCQ_MULTI: full points iff the selected option set equals the
  correct option set; anything else scores 0 (no partial credit).
- NUMERIC: full points iff the value is within tolerance of any accepted value
  (tolerance defaults to 0, boundary inclusive).
- SHORT_TEXT / LONG_TEXT: never auto-graded; non-blank answers are flagged
  for manual grading.
- A missing or blank answer scores 0 and is not flagged.

Anything that cannot be graded because the question or answer data is
inconsistent is flagged for manual grading and awards 0.
"""
import math
import uuid
from dataclasses import dataclass, field
from typing import Iterable

from assessment_engine.models.assessment import (
    FREE_RESPONSE_TYPES,
    MCQ_TYPES,
    Question,
    QuestionType,
)
from assessment_engine.models.attempt import AttemptAnswer

# Relative slack for float noise at the tolerance boundary (e.g. 10.3 - 10.0 vs 0.3)
_BOUNDARY_REL_TOL = 1e-12


@dataclass(frozen=True)
class GradeOutcome:
    """Auto-grading result for one question."""
    question_id: uuid.UUID
    points_awarded: float
    needs_manual_grade: bool
    detail: str

    @property
    def is_correct(self) -> bool:
        return self.points_awarded > 0 and not self.needs_manual_grade


@dataclass
class AttemptGrade:
    """Auto-grading result for a whole attempt."""
    outcomes: list[GradeOutcome] = field(default_factory=list)

    @property
    def total(self) -> float:
        return sum(o.points_awarded for o in self.outcomes if not o.needs_manual_grade)

    @property
    def needs_manual_grading(self) -> bool:
        return any(o.needs_manual_grade for o in self.outcomes)


def _scored(question: Question, correct: bool, detail: str) -> GradeOutcome:
    return GradeOutcome(
        question_id=question.id,
        points_awarded=float(question.points) if correct else 0.0,
        needs_manual_grade=False,
        detail=detail,
    )


def _manual(question: Question, detail: str) -> GradeOutcome:
    return GradeOutcome(
        question_id=question.id,
        points_awarded=0.0,
        needs_manual_grade=True,
        detail=detail,
    )


def _unanswered(question: Question) -> GradeOutcome:
    return GradeOutcome(
        question_id=question.id,
        points_awarded=0.0,
        needs_manual_grade=False,
        detail="unanswered",
    )


def _has_text(answer: AttemptAnswer) -> bool:
    return bool(answer.answer_text and answer.answer_text.strip())


def _has_selection(answer: AttemptAnswer) -> bool:
    return bool(answer.selected_option_ids)


def _has_number(answer: AttemptAnswer) -> bool:
    return answer.numeric_answer is not None


def is_blank(answer: AttemptAnswer | None) -> bool:
    """True if the answer carries no content in any field."""
    if answer is None:
        return True
    return not (_has_text(answer) or _has_selection(answer) or _has_number(answer))


def within_tolerance(value: float, accepted: float, tolerance: float) -> bool:
    """|value - accepted| <= tolerance, inclusive at the boundary."""
    distance = abs(value - accepted)
    return distance <= tolerance or math.isclose(distance, tolerance, rel_tol=_BOUNDARY_REL_TOL)


def _grade_mcq(question: Question, answer: AttemptAnswer) -> GradeOutcome:
    if _has_text(answer) or _has_number(answer):
        return _manual(question, "answer content does not match question type")

    correct_ids = {str(option.id) for option in question.options if option.is_correct}
    if not correct_ids:
        return _manual(question, "no correct option configured")
    if question.type == QuestionType.MCQ_SINGLE.value and len(correct_ids) != 1:
        return _manual(question, "single-choice question has several correct options")

    selected_ids = {str(option_id) for option_id in answer.selected_option_ids}
    if selected_ids == correct_ids:
        return _scored(question, True, "correct selection")
    return _scored(question, False, "incorrect selection")


def _grade_numeric(question: Question, answer: AttemptAnswer) -> GradeOutcome:
    if _has_selection(answer) or (_has_text(answer) and not _has_number(answer)):
        return _manual(question, "answer content does not match question type")

    accepted_values = question.correct_numeric_values or []
    try:
        accepted = [float(value) for value in accepted_values]
    except (TypeError, ValueError):
        return _manual(question, "accepted values are not numeric")
    if not accepted or not all(math.isfinite(value) for value in accepted):
        return _manual(question, "no accepted numeric value configured")

    tolerance = question.numeric_tolerance or 0.0
    if tolerance < 0 or not math.isfinite(tolerance):
        return _manual(question, "invalid tolerance")

    value = float(answer.numeric_answer)
    if not math.isfinite(value):
        return _manual(question, "submitted value is not finite")

    if any(within_tolerance(value, target, tolerance) for target in accepted):
        return _scored(question, True, "within tolerance")
    return _scored(question, False, "outside tolerance")


def auto_grade(question: Question, answer: AttemptAnswer | None) -> GradeOutcome:
    """
    Grade one (question, answer) pair.

    Deterministic: the same inputs always give the same outcome.
    """
    if is_blank(answer):
        return _unanswered(question)

    try:
        question_type = QuestionType(question.type)
    except ValueError:
        return _manual(question, f"unknown question type {question.type!r}")

    if question_type in FREE_RESPONSE_TYPES:
        if not _has_text(answer):
            return _manual(question, "answer content does not match question type")
        return _manual(question, "free response")

    if question_type in MCQ_TYPES:
        return _grade_mcq(question, answer)

    return _grade_numeric(question, answer)


def grade_attempt(
    questions: Iterable[Question],
    answers: Iterable[AttemptAnswer],
) -> AttemptGrade:
    """Grade every question of a test against the attempt's answers."""
    by_question = {answer.question_id: answer for answer in answers}
    return AttemptGrade(
        outcomes=[auto_grade(question, by_question.get(question.id)) for question in questions]
    )
