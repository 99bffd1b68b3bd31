"""
Team Assessment Engine - Membership Models
Read-side copies of the platform's membership and roster tables used for role and audience checks
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from assessment_engine.core.database import Base
from assessment_engine.core.timeutils import utcnow


class MemberRole(str, Enum):
    """Team roles relevant to tests."""
    MEMBER = "MEMBER"
    ADMIN = "ADMIN"


class Membership(Base):
    """A user's membership in a team."""

    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_membership_team_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    team_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    subteam_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=MemberRole.MEMBER.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class RosterEntry(Base):
    """A membership scheduled for an event."""

    __tablename__ = "roster_entries"
    __table_args__ = (
        UniqueConstraint("membership_id", "event_id", name="uq_roster_membership_event"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    membership_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("memberships.id", ondelete="CASCADE"),
        index=True
    )
    event_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
