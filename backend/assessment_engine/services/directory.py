"""
Team Assessment Engine - Membership Directory
Resolves a (user, team) pair into the caller context used by the access gate.
"""
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_engine.models.membership import MemberRole, Membership, RosterEntry


@dataclass(frozen=True)
class CallerContext:
    """Who is calling, as far as tests are concerned."""
    user_id: uuid.UUID
    team_id: uuid.UUID
    membership_id: uuid.UUID
    subteam_id: uuid.UUID | None = None
    is_admin: bool = False
    event_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)


class MembershipDirectory(Protocol):
    """Identity/role and roster lookup owned by the wider platform."""

    async def get_caller(self, user_id: uuid.UUID, team_id: uuid.UUID) -> CallerContext | None:
        ...


class SqlMembershipDirectory:
    """Directory backed by the platform's membership and roster tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_caller(self, user_id: uuid.UUID, team_id: uuid.UUID) -> CallerContext | None:
        result = await self.db.execute(
            select(Membership).where(
                Membership.user_id == user_id,
                Membership.team_id == team_id,
            )
        )
        membership = result.scalar_one_or_none()
        if membership is None:
            return None

        events = await self.db.execute(
            select(RosterEntry.event_id).where(RosterEntry.membership_id == membership.id)
        )

        return CallerContext(
            user_id=user_id,
            team_id=team_id,
            membership_id=membership.id,
            subteam_id=membership.subteam_id,
            is_admin=membership.role == MemberRole.ADMIN.value,
            event_ids=frozenset(events.scalars().all()),
        )
