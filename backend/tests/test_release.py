"""
Team Assessment Engine - Score Release Tests
"""
import uuid
from datetime import timedelta

import pytest

from assessment_engine.core.timeutils import utcnow
from assessment_engine.models import (
    AttemptAnswer,
    AttemptStatus,
    Question,
    QuestionOption,
    QuestionType,
    ScoreReleaseMode,
    Test,
    TestAttempt,
)
from assessment_engine.services.release import learner_question_payload, scores_released, shape_learner_result

NOW = utcnow()


@pytest.fixture
def graded():
    """A graded attempt: MCQ right (5/5), numeric wrong (0/5)."""
    mcq = Question(
        id=uuid.uuid4(),
        type=QuestionType.MCQ_SINGLE.value,
        prompt="Which halogen is liquid at room temperature?",
        explanation="Bromine",
        points=5.0,
        order=0,
        options=[
            QuestionOption(id=uuid.uuid4(), label="Bromine", is_correct=True, order=0),
            QuestionOption(id=uuid.uuid4(), label="Iodine", is_correct=False, order=1),
        ],
    )
    numeric = Question(
        id=uuid.uuid4(),
        type=QuestionType.NUMERIC.value,
        prompt="Atomic number of bromine?",
        points=5.0,
        order=1,
        numeric_tolerance=0.0,
        correct_numeric_values=[35.0],
    )
    test = Test(
        id=uuid.uuid4(),
        name="Halogens",
        duration_minutes=20,
        score_release_mode=ScoreReleaseMode.FULL_TEST.value,
        questions=[mcq, numeric],
    )
    attempt = TestAttempt(
        id=uuid.uuid4(),
        status=AttemptStatus.GRADED.value,
        submitted_at=NOW,
        grade_earned=5.0,
        answers=[
            AttemptAnswer(
                question_id=mcq.id,
                selected_option_ids=[str(mcq.options[0].id)],
                points_awarded=5.0,
                graded_at=NOW,
            ),
            AttemptAnswer(question_id=numeric.id, numeric_answer=53.0, points_awarded=0.0, graded_at=NOW),
        ],
    )
    return test, attempt


def test_learner_payload_has_no_key():
    question = Question(
        id=uuid.uuid4(),
        type=QuestionType.MCQ_MULTI.value,
        prompt="Pick the metals",
        explanation="Na and K",
        points=2.0,
        order=0,
        options=[QuestionOption(id=uuid.uuid4(), label="Na", is_correct=True, order=0)],
    )

    payload = learner_question_payload(question)

    assert set(payload) == {"id", "type", "prompt", "points", "order", "options"}
    assert payload["options"] == [{"id": question.options[0].id, "label": "Na", "order": 0}]


def test_scores_released_respects_release_date():
    test = Test(release_scores_at=NOW + timedelta(hours=1))

    assert not scores_released(test, NOW)
    assert scores_released(test, NOW + timedelta(hours=1))
    assert scores_released(Test(release_scores_at=None), NOW)


def test_full_test_reveals_everything(graded):
    test, attempt = graded

    result = shape_learner_result(test, attempt, NOW)

    assert result["scores_released"] is True
    assert result["grade_earned"] == 5.0
    assert result["max_points"] == 10.0
    mcq_entry, numeric_entry = result["answers"]
    assert mcq_entry["is_correct"] is True
    assert mcq_entry["correct_option_ids"] == [test.questions[0].options[0].id]
    assert mcq_entry["explanation"] == "Bromine"
    assert numeric_entry["is_correct"] is False
    assert numeric_entry["correct_numeric_values"] == [35.0]
    assert numeric_entry["numeric_answer"] == 53.0


def test_score_with_wrong_reveals_only_missed_questions(graded):
    test, attempt = graded
    test.score_release_mode = ScoreReleaseMode.SCORE_WITH_WRONG.value

    mcq_entry, numeric_entry = shape_learner_result(test, attempt, NOW)["answers"]

    assert mcq_entry["points_awarded"] == 5.0
    assert "correct_option_ids" not in mcq_entry
    assert "prompt" not in mcq_entry
    assert numeric_entry["correct_numeric_values"] == [35.0]
    assert numeric_entry["prompt"] == "Atomic number of bromine?"


def test_score_with_wrong_hides_rubric_until_graded(graded):
    test, attempt = graded
    test.score_release_mode = ScoreReleaseMode.SCORE_WITH_WRONG.value
    essay = Question(
        id=uuid.uuid4(),
        type=QuestionType.LONG_TEXT.value,
        prompt="Why does ice float?",
        explanation="Hydrogen bonding gives ice an open, less dense lattice",
        points=5.0,
        order=2,
    )
    test.questions.append(essay)
    attempt.status = AttemptStatus.SUBMITTED.value
    attempt.answers.append(
        AttemptAnswer(question_id=essay.id, answer_text="It is lighter", needs_manual_grade=True)
    )

    essay_entry = shape_learner_result(test, attempt, NOW)["answers"][2]

    assert essay_entry["points_awarded"] is None
    assert "explanation" not in essay_entry
    assert "prompt" not in essay_entry

    attempt.answers[2].points_awarded = 0.0
    attempt.answers[2].graded_at = NOW
    graded_entry = shape_learner_result(test, attempt, NOW)["answers"][2]

    assert graded_entry["explanation"] == essay.explanation


def test_score_only(graded):
    test, attempt = graded
    test.score_release_mode = ScoreReleaseMode.SCORE_ONLY.value

    result = shape_learner_result(test, attempt, NOW)

    assert result["grade_earned"] == 5.0
    assert "answers" not in result


def test_none_hides_score(graded):
    test, attempt = graded
    test.score_release_mode = ScoreReleaseMode.NONE.value

    result = shape_learner_result(test, attempt, NOW)

    assert result["scores_released"] is False
    assert "grade_earned" not in result
    assert result["status"] == AttemptStatus.GRADED.value


def test_future_release_date_hides_score(graded):
    test, attempt = graded
    test.release_scores_at = NOW + timedelta(days=1)

    result = shape_learner_result(test, attempt, NOW)

    assert result["scores_released"] is False
    assert "answers" not in result


def test_unfinished_attempt_shows_status_only(graded):
    test, attempt = graded
    attempt.status = AttemptStatus.IN_PROGRESS.value

    result = shape_learner_result(test, attempt, NOW)

    assert result == {
        "attempt_id": attempt.id,
        "status": AttemptStatus.IN_PROGRESS.value,
        "submitted_at": NOW,
        "scores_released": False,
        "release_mode": ScoreReleaseMode.FULL_TEST.value,
    }
