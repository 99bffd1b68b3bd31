"""
Team Assessment Engine - API Tests
End-to-end flows through the HTTP layer.
"""
import uuid
from datetime import timedelta

import pytest

from assessment_engine.core.timeutils import utcnow

from conftest import auth_headers_for, long_text_question, mcq_single_question

API = "/api/v1"


@pytest.mark.asyncio
async def test_health_check(client):
    """Test health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_requires_bearer_token(client):
    response = await client.get(f"{API}/tests", params={"team_id": str(uuid.uuid4())})
    assert response.status_code in (401, 403)

    response = await client.get(
        f"{API}/tests",
        params={"team_id": str(uuid.uuid4())},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_errors_carry_code_and_message(client, learner):
    response = await client.get(f"{API}/tests/{uuid.uuid4()}", headers=auth_headers_for(learner.user_id))

    assert response.status_code == 404
    assert response.json()["detail"] == {"error": "NOT_FOUND", "message": "Test not found"}


@pytest.mark.asyncio
async def test_author_publish_take_and_review(client, admin, learner, team_id):
    admin_headers = auth_headers_for(admin.user_id)
    learner_headers = auth_headers_for(learner.user_id)
    now = utcnow()

    # Author
    response = await client.post(f"{API}/tests", headers=admin_headers, json={
        "team_id": str(team_id),
        "name": "Chemistry Lab Practical",
        "duration_minutes": 30,
        "questions": [
            {
                "type": "MCQ_SINGLE",
                "prompt": "Which gas relights a glowing splint?",
                "points": 5,
                "options": [
                    {"label": "Oxygen", "is_correct": True},
                    {"label": "Nitrogen"},
                ],
            },
            {
                "type": "NUMERIC",
                "prompt": "pOH of 1e-10 M hydroxide?",
                "points": 5,
                "numeric_tolerance": 0.5,
                "correct_numeric_values": [10],
            },
        ],
    })
    assert response.status_code == 201
    created = response.json()
    test_id = created["id"]
    assert created["status"] == "DRAFT"
    assert created["total_points"] == 10.0
    mcq, numeric = created["questions"]
    correct_option = next(option["id"] for option in mcq["options"] if option["is_correct"])

    # Publish with a password
    response = await client.post(f"{API}/tests/{test_id}/publish", headers=admin_headers, json={
        "start_at": (now - timedelta(minutes=5)).isoformat(),
        "end_at": (now + timedelta(hours=1)).isoformat(),
        "test_password": "secret123",
        "score_release_mode": "FULL_TEST",
    })
    assert response.status_code == 200
    assert response.json()["status"] == "PUBLISHED"
    assert response.json()["requires_password"] is True

    # Learners see the test but not its questions
    response = await client.get(f"{API}/tests/{test_id}", headers=learner_headers)
    assert response.status_code == 200
    assert response.json()["questions"] == []

    # Start needs the password
    response = await client.post(f"{API}/tests/{test_id}/attempts/start", headers=learner_headers)
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "NEED_TEST_PASSWORD"

    response = await client.post(
        f"{API}/tests/{test_id}/attempts/start",
        headers=learner_headers,
        json={"test_password": "nope-nope"},
    )
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "INVALID_TEST_PASSWORD"

    response = await client.post(
        f"{API}/tests/{test_id}/attempts/start",
        headers={**learner_headers, "X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        json={"test_password": "secret123", "fingerprint": "fp-1"},
    )
    assert response.status_code == 201
    started = response.json()
    attempt_id = started["attempt"]["id"]
    assert started["resumed"] is False
    assert started["time_limit_seconds"] == 1800
    assert all("is_correct" not in option for option in started["questions"][0]["options"])

    response = await client.post(
        f"{API}/tests/{test_id}/attempts/start",
        headers=learner_headers,
        json={"test_password": "secret123"},
    )
    assert response.status_code == 200
    assert response.json()["resumed"] is True
    assert response.json()["attempt"]["id"] == attempt_id

    # Autosave, telemetry, submit
    response = await client.post(
        f"{API}/tests/{test_id}/attempts/{attempt_id}/answers",
        headers=learner_headers,
        json={"answers": [
            {"question_id": mcq["id"], "selected_option_ids": [correct_option]},
            {"question_id": numeric["id"], "numeric_answer": 10.4},
            {"question_id": str(uuid.uuid4()), "answer_text": "stray"},
        ]},
    )
    assert response.status_code == 200
    assert len(response.json()["saved"]) == 2
    assert response.json()["errors"][0]["code"] == "UNKNOWN_QUESTION"

    response = await client.patch(
        f"{API}/tests/{test_id}/attempts/{attempt_id}/tab-tracking",
        headers=learner_headers,
        json={"tab_switch_count": 2, "time_off_page_seconds": 15},
    )
    assert response.status_code == 200
    assert response.json()["tab_switch_count"] == 2

    response = await client.post(
        f"{API}/tests/{test_id}/attempts/{attempt_id}/proctor-events",
        headers=learner_headers,
        json={"kind": "TAB_SWITCH", "meta": {"hidden_ms": 4000}},
    )
    assert response.status_code == 201

    response = await client.post(f"{API}/tests/{test_id}/attempts/{attempt_id}/submit", headers=learner_headers)
    assert response.status_code == 200
    assert response.json()["attempt"]["status"] == "GRADED"
    assert response.json()["needs_manual_grading"] is False

    response = await client.post(f"{API}/tests/{test_id}/attempts/{attempt_id}/submit", headers=learner_headers)
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "ALREADY_SUBMITTED"

    # Results and review
    response = await client.get(f"{API}/tests/{test_id}/attempts/{attempt_id}/results", headers=learner_headers)
    assert response.status_code == 200
    result = response.json()
    assert result["grade_earned"] == 10.0
    assert result["max_points"] == 10.0
    assert all(answer["is_correct"] for answer in result["answers"])

    response = await client.get(f"{API}/tests/{test_id}/attempts", headers=admin_headers)
    assert response.status_code == 200
    [summary] = response.json()
    assert summary["ip_at_start"] == "203.0.113.9"
    assert summary["proctoring_score"] == 95.0
    assert summary["proctoring"]["counter_divergence"] == 1

    response = await client.get(f"{API}/tests/{test_id}/attempts", headers=learner_headers)
    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_ai_assisted_grading_flow(client, make_test, admin, learner, team_id, fake_scorer):
    test = await make_test(team_id, questions=[mcq_single_question(), long_text_question()])
    test_id = test.id
    mcq, essay = test.questions
    mcq_id, essay_id, correct_option = mcq.id, essay.id, mcq.options[0].id
    admin_headers = auth_headers_for(admin.user_id)
    learner_headers = auth_headers_for(learner.user_id)

    response = await client.post(f"{API}/tests/{test_id}/attempts/start", headers=learner_headers)
    assert response.status_code == 201
    attempt_id = response.json()["attempt"]["id"]

    await client.post(
        f"{API}/tests/{test_id}/attempts/{attempt_id}/answers",
        headers=learner_headers,
        json={"answers": [
            {"question_id": str(mcq_id), "selected_option_ids": [str(correct_option)]},
            {"question_id": str(essay_id), "answer_text": "Ice is less dense because of its open lattice."},
        ]},
    )
    response = await client.post(f"{API}/tests/{test_id}/attempts/{attempt_id}/submit", headers=learner_headers)
    assert response.json()["attempt"]["status"] == "SUBMITTED"
    assert response.json()["needs_manual_grading"] is True

    # Members cannot ask for suggestions
    response = await client.post(
        f"{API}/tests/{test_id}/attempts/{attempt_id}/ai/grade",
        headers=learner_headers,
        json={"mode": "all"},
    )
    assert response.status_code == 403

    response = await client.post(
        f"{API}/tests/{test_id}/attempts/{attempt_id}/ai/grade",
        headers=admin_headers,
        json={"mode": "all"},
    )
    assert response.status_code == 200
    [suggestion] = response.json()["suggestions"]
    assert suggestion["status"] == "PENDING"
    assert suggestion["suggested_points"] == 3.0
    assert len(fake_scorer.calls) == 1

    # Suggestion alone changes nothing
    response = await client.get(f"{API}/tests/{test_id}/attempts/{attempt_id}/results", headers=learner_headers)
    assert response.json()["status"] == "SUBMITTED"

    response = await client.post(
        f"{API}/grading/suggestions/{suggestion['id']}/accept",
        headers=admin_headers,
        json={"points": 4, "note": "Clear explanation"},
    )
    assert response.status_code == 200
    update = response.json()
    assert update["answer"]["points_awarded"] == 4.0
    assert update["attempt"]["status"] == "GRADED"
    assert update["attempt"]["grade_earned"] == 9.0

    response = await client.post(f"{API}/grading/suggestions/{suggestion['id']}/reject", headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "SUGGESTION_ALREADY_REVIEWED"

    response = await client.patch(
        f"{API}/grading/answers/{update['answer']['id']}",
        headers=admin_headers,
        json={"points": 7},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_scorer_failure_maps_to_bad_gateway(client, make_test, admin, learner, team_id, fake_scorer):
    test = await make_test(team_id, questions=[long_text_question(order=0)])
    test_id, essay_id = test.id, test.questions[0].id
    admin_headers = auth_headers_for(admin.user_id)
    learner_headers = auth_headers_for(learner.user_id)
    fake_scorer.fail = True

    response = await client.post(f"{API}/tests/{test_id}/attempts/start", headers=learner_headers)
    attempt_id = response.json()["attempt"]["id"]
    response = await client.post(
        f"{API}/tests/{test_id}/attempts/{attempt_id}/answers",
        headers=learner_headers,
        json={"answers": [{"question_id": str(essay_id), "answer_text": "Hydrogen bonds."}]},
    )
    answer_id = response.json()["saved"][0]["id"]
    await client.post(f"{API}/tests/{test_id}/attempts/{attempt_id}/submit", headers=learner_headers)

    response = await client.post(
        f"{API}/tests/{test_id}/attempts/{attempt_id}/ai/grade",
        headers=admin_headers,
        json={"mode": "single", "answer_id": answer_id},
    )

    assert response.status_code == 502
    assert response.json()["detail"]["error"] == "SCORER_FAILED"


@pytest.mark.asyncio
async def test_closed_window_blocks_start(client, make_test, learner, team_id):
    now = utcnow()
    test = await make_test(team_id, start_at=now - timedelta(hours=2), end_at=now - timedelta(hours=1))

    response = await client.post(
        f"{API}/tests/{test.id}/attempts/start", headers=auth_headers_for(learner.user_id)
    )

    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "WINDOW_CLOSED"
