"""
Team Assessment Engine - Test Configuration
Pytest fixtures and configuration for testing
"""
import os

# Point the app's own engine at SQLite before anything imports the settings
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from assessment_engine.ai.agents.grader import ScorerSuggestion
from assessment_engine.api.deps import get_scorer
from assessment_engine.core.database import Base, get_db
from assessment_engine.core.security import create_access_token
from assessment_engine.core.timeutils import utcnow
from assessment_engine.main import app
from assessment_engine.models import (
    AssignmentScope,
    MemberRole,
    Membership,
    Question,
    QuestionOption,
    QuestionType,
    RosterEntry,
    Test,
    TestAssignment,
    TestStatus,
)
from assessment_engine.services.exceptions import ScorerError


# ==================== DATABASE ====================

@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """A throwaway SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_maker() as session:
        yield session


# ==================== SCORER ====================

class FakeScorer:
    """Free-response scorer double that records its calls."""

    def __init__(self, points: float = 3.0, fail: bool = False, fail_on: set[str] | None = None):
        self.points = points
        self.fail = fail
        self.fail_on = fail_on or set()
        self.calls: list[dict[str, Any]] = []

    async def suggest(self, prompt, rubric, max_points, response) -> ScorerSuggestion:
        self.calls.append({
            "prompt": prompt,
            "rubric": rubric,
            "max_points": max_points,
            "response": response,
        })
        if self.fail or response in self.fail_on:
            raise ScorerError("Scorer timed out after 30s")
        return ScorerSuggestion(
            suggested_points=min(self.points, max_points),
            explanation="Explains the main mechanism but misses the example.",
            strengths=["Correct mechanism"],
            gaps=["No worked example"],
            rubric_alignment="2 of 3 rubric points met",
            raw_response={"suggested_points": self.points},
            model="fake-scorer",
        )


@pytest.fixture
def fake_scorer() -> FakeScorer:
    return FakeScorer()


# ==================== HTTP CLIENT ====================

@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, fake_scorer: FakeScorer) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session and scorer overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scorer] = lambda: fake_scorer

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers_for(user_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user_id))}"}


@pytest.fixture
def auth_headers() -> Callable[[Membership], dict[str, str]]:
    """Bearer headers for a membership's user."""
    return lambda membership: auth_headers_for(membership.user_id)


# ==================== MEMBERSHIPS ====================

@pytest.fixture
def team_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture
async def make_membership(db_session: AsyncSession) -> Callable[..., Awaitable[Membership]]:
    async def _make(
        team_id: uuid.UUID,
        role: MemberRole = MemberRole.MEMBER,
        subteam_id: uuid.UUID | None = None,
        event_ids: tuple[uuid.UUID, ...] = (),
    ) -> Membership:
        membership = Membership(
            team_id=team_id,
            user_id=uuid.uuid4(),
            subteam_id=subteam_id,
            role=role.value,
        )
        db_session.add(membership)
        await db_session.flush()
        for event_id in event_ids:
            db_session.add(RosterEntry(membership_id=membership.id, event_id=event_id))
        await db_session.commit()
        return membership

    return _make


@pytest_asyncio.fixture
async def admin(make_membership, team_id) -> Membership:
    return await make_membership(team_id, role=MemberRole.ADMIN)


@pytest_asyncio.fixture
async def learner(make_membership, team_id) -> Membership:
    return await make_membership(team_id)


# ==================== TESTS & QUESTIONS ====================

def mcq_single_question(points: float = 5.0, order: int = 0) -> Question:
    """Single choice with options A (correct) and B."""
    return Question(
        type=QuestionType.MCQ_SINGLE.value,
        prompt="Which gas is produced at the cathode during electrolysis of water?",
        explanation="Hydrogen is reduced at the cathode.",
        points=points,
        order=order,
        options=[
            QuestionOption(label="A", is_correct=True, order=0),
            QuestionOption(label="B", is_correct=False, order=1),
        ],
    )


def numeric_question(points: float = 5.0, order: int = 1) -> Question:
    """Accepts 10 with tolerance 0.5."""
    return Question(
        type=QuestionType.NUMERIC.value,
        prompt="What is the pOH of a 1e-10 M hydroxide solution?",
        points=points,
        order=order,
        numeric_tolerance=0.5,
        correct_numeric_values=[10.0],
    )


def long_text_question(points: float = 5.0, order: int = 1) -> Question:
    return Question(
        type=QuestionType.LONG_TEXT.value,
        prompt="Explain why ice floats on water.",
        explanation="Hydrogen bonding gives ice an open lattice that is less dense than liquid water.",
        points=points,
        order=order,
    )


@pytest_asyncio.fixture
async def make_test(db_session: AsyncSession) -> Callable[..., Awaitable[Test]]:
    """Factory for a test that is open right now and assigned to the whole team."""

    async def _make(
        team_id: uuid.UUID,
        questions: list[Question] | None = None,
        status: TestStatus = TestStatus.PUBLISHED,
        assignments: list[TestAssignment] | None = None,
        **fields: Any,
    ) -> Test:
        now = utcnow()
        values: dict[str, Any] = {
            "name": "Regional Chemistry Lab",
            "duration_minutes": 50,
            "start_at": now - timedelta(hours=1),
            "end_at": now + timedelta(hours=1),
        }
        values.update(fields)
        test = Test(
            team_id=team_id,
            status=status.value,
            questions=questions if questions is not None else [mcq_single_question(), numeric_question()],
            assignments=(
                assignments if assignments is not None
                else [TestAssignment(scope=AssignmentScope.TEAM.value)]
            ),
            **values,
        )
        db_session.add(test)
        await db_session.commit()
        return test

    return _make
