"""
Team Assessment Engine - Auto-Grading Tests
"""
import uuid

from assessment_engine.models import AttemptAnswer, Question, QuestionOption, QuestionType
from assessment_engine.services.grading import auto_grade, grade_attempt, is_blank, within_tolerance


def _mcq(question_type: QuestionType, correct: tuple[bool, ...], points: float = 4.0) -> Question:
    return Question(
        id=uuid.uuid4(),
        type=question_type.value,
        prompt="Pick the noble gases",
        points=points,
        options=[
            QuestionOption(id=uuid.uuid4(), label=f"Option {index}", is_correct=is_correct, order=index)
            for index, is_correct in enumerate(correct)
        ],
    )


def _numeric(values, tolerance=None, points: float = 5.0) -> Question:
    return Question(
        id=uuid.uuid4(),
        type=QuestionType.NUMERIC.value,
        prompt="Boiling point of water at sea level in C",
        points=points,
        numeric_tolerance=tolerance,
        correct_numeric_values=values,
    )


def _text(question_type: QuestionType = QuestionType.LONG_TEXT, points: float = 5.0) -> Question:
    return Question(id=uuid.uuid4(), type=question_type.value, prompt="Explain", points=points)


def _answer(question: Question, **content) -> AttemptAnswer:
    return AttemptAnswer(id=uuid.uuid4(), question_id=question.id, **content)


def _option_ids(question: Question, *indexes: int) -> list[str]:
    return [str(question.options[index].id) for index in indexes]


class TestMultipleChoice:

    def test_single_choice_correct(self):
        question = _mcq(QuestionType.MCQ_SINGLE, (True, False, False))
        outcome = auto_grade(question, _answer(question, selected_option_ids=_option_ids(question, 0)))

        assert outcome.points_awarded == 4.0
        assert outcome.is_correct
        assert not outcome.needs_manual_grade

    def test_single_choice_wrong(self):
        question = _mcq(QuestionType.MCQ_SINGLE, (True, False, False))
        outcome = auto_grade(question, _answer(question, selected_option_ids=_option_ids(question, 1)))

        assert outcome.points_awarded == 0.0
        assert not outcome.needs_manual_grade

    def test_multi_choice_requires_exact_set(self):
        question = _mcq(QuestionType.MCQ_MULTI, (True, True, False))

        exact = auto_grade(question, _answer(question, selected_option_ids=_option_ids(question, 1, 0)))
        subset = auto_grade(question, _answer(question, selected_option_ids=_option_ids(question, 0)))
        superset = auto_grade(question, _answer(question, selected_option_ids=_option_ids(question, 0, 1, 2)))

        assert exact.points_awarded == 4.0
        assert subset.points_awarded == 0.0
        assert superset.points_awarded == 0.0

    def test_option_ids_may_be_uuids(self):
        question = _mcq(QuestionType.MCQ_SINGLE, (False, True))
        outcome = auto_grade(question, _answer(question, selected_option_ids=[question.options[1].id]))
        assert outcome.points_awarded == 4.0

    def test_no_correct_option_is_flagged(self):
        question = _mcq(QuestionType.MCQ_MULTI, (False, False))
        outcome = auto_grade(question, _answer(question, selected_option_ids=_option_ids(question, 0)))

        assert outcome.needs_manual_grade
        assert outcome.points_awarded == 0.0

    def test_single_choice_with_two_correct_options_is_flagged(self):
        question = _mcq(QuestionType.MCQ_SINGLE, (True, True))
        outcome = auto_grade(question, _answer(question, selected_option_ids=_option_ids(question, 0)))
        assert outcome.needs_manual_grade

    def test_text_on_choice_question_is_flagged(self):
        question = _mcq(QuestionType.MCQ_SINGLE, (True, False))
        outcome = auto_grade(question, _answer(question, answer_text="A"))
        assert outcome.needs_manual_grade


class TestNumeric:

    def test_within_tolerance_boundary_inclusive(self):
        question = _numeric([10.0], tolerance=0.5)

        assert auto_grade(question, _answer(question, numeric_answer=10.5)).points_awarded == 5.0
        assert auto_grade(question, _answer(question, numeric_answer=9.5)).points_awarded == 5.0
        assert auto_grade(question, _answer(question, numeric_answer=10.51)).points_awarded == 0.0

    def test_just_past_tolerance_scores_zero(self):
        question = _numeric([10.0], tolerance=0.5)

        assert auto_grade(question, _answer(question, numeric_answer=10.5 + 1e-10)).points_awarded == 0.0
        assert auto_grade(question, _answer(question, numeric_answer=9.5 - 1e-10)).points_awarded == 0.0

    def test_float_noise_at_boundary_still_counts(self):
        question = _numeric([10.0], tolerance=0.3)

        # 10.3 - 10.0 evaluates to 0.3000000000000007
        assert auto_grade(question, _answer(question, numeric_answer=10.3)).points_awarded == 5.0
        assert within_tolerance(10.3, 10.0, 0.3)
        assert not within_tolerance(10.3 + 1e-10, 10.0, 0.3)

    def test_tolerance_defaults_to_exact(self):
        question = _numeric([100.0])

        assert auto_grade(question, _answer(question, numeric_answer=100.0)).points_awarded == 5.0
        assert auto_grade(question, _answer(question, numeric_answer=100.01)).points_awarded == 0.0

    def test_any_accepted_value(self):
        question = _numeric([2.0, -2.0], tolerance=0.1)
        outcome = auto_grade(question, _answer(question, numeric_answer=-1.95))
        assert outcome.points_awarded == 5.0

    def test_missing_accepted_values_is_flagged(self):
        question = _numeric([])
        outcome = auto_grade(question, _answer(question, numeric_answer=3.0))

        assert outcome.needs_manual_grade
        assert outcome.points_awarded == 0.0

    def test_non_numeric_accepted_value_is_flagged(self):
        question = _numeric(["ten"])
        assert auto_grade(question, _answer(question, numeric_answer=10.0)).needs_manual_grade

    def test_selection_on_numeric_question_is_flagged(self):
        question = _numeric([1.0])
        outcome = auto_grade(question, _answer(question, selected_option_ids=[str(uuid.uuid4())]))
        assert outcome.needs_manual_grade


class TestFreeResponse:

    def test_text_answers_are_flagged(self):
        for question_type in (QuestionType.SHORT_TEXT, QuestionType.LONG_TEXT):
            question = _text(question_type)
            outcome = auto_grade(question, _answer(question, answer_text="Because of hydrogen bonds"))

            assert outcome.needs_manual_grade
            assert outcome.points_awarded == 0.0
            assert not outcome.is_correct

    def test_blank_text_is_unanswered(self):
        question = _text()
        outcome = auto_grade(question, _answer(question, answer_text="   "))

        assert not outcome.needs_manual_grade
        assert outcome.points_awarded == 0.0


class TestBlankAnswers:

    def test_missing_answer_scores_zero(self):
        question = _numeric([1.0])
        outcome = auto_grade(question, None)

        assert outcome.points_awarded == 0.0
        assert not outcome.needs_manual_grade
        assert outcome.detail == "unanswered"

    def test_is_blank(self):
        question = _text()

        assert is_blank(None)
        assert is_blank(_answer(question, answer_text="", selected_option_ids=[]))
        assert not is_blank(_answer(question, numeric_answer=0.0))


class TestGradeAttempt:

    def test_totals_and_manual_flag(self):
        mcq = _mcq(QuestionType.MCQ_SINGLE, (True, False), points=5.0)
        numeric = _numeric([10.0], tolerance=0.5, points=5.0)
        essay = _text(points=5.0)

        grade = grade_attempt(
            [mcq, numeric, essay],
            [
                _answer(mcq, selected_option_ids=_option_ids(mcq, 0)),
                _answer(numeric, numeric_answer=12.0),
                _answer(essay, answer_text="Ice has an open lattice."),
            ],
        )

        assert grade.total == 5.0
        assert grade.needs_manual_grading
        assert [outcome.question_id for outcome in grade.outcomes] == [mcq.id, numeric.id, essay.id]

    def test_is_deterministic(self):
        mcq = _mcq(QuestionType.MCQ_MULTI, (True, True, False))
        answers = [_answer(mcq, selected_option_ids=_option_ids(mcq, 0, 1))]

        assert grade_attempt([mcq], answers).outcomes == grade_attempt([mcq], answers).outcomes
