"""
Team Assessment Engine - Availability & Access Gate
Pure decisions about whether a caller may start a test right now.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

from assessment_engine.core.security import verify_test_password
from assessment_engine.core.timeutils import as_utc
from assessment_engine.models.assessment import AssignmentScope, Test, TestAssignment, TestStatus
from assessment_engine.services.directory import CallerContext
from assessment_engine.services.exceptions import AccessDeniedReason


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a gate check. ``reason`` is set whenever access is refused."""
    allowed: bool
    reason: AccessDeniedReason | None = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: AccessDeniedReason) -> "AccessDecision":
        return cls(allowed=False, reason=reason)


def is_test_available(test: Test, now: datetime) -> AccessDecision:
    """
    Publication and time-window check.

    Open interval is [start_at, end_at]; when allow_late_until is set the
    window extends through (end_at, allow_late_until]. Unset bounds are open.
    Applies to every caller, admins included.
    """
    if test.status != TestStatus.PUBLISHED.value:
        return AccessDecision.deny(AccessDeniedReason.NOT_PUBLISHED)

    now = as_utc(now)
    start_at = as_utc(test.start_at)
    end_at = as_utc(test.end_at)
    allow_late_until = as_utc(test.allow_late_until)

    if start_at is not None and now < start_at:
        return AccessDecision.deny(AccessDeniedReason.NOT_YET_OPEN)

    if end_at is not None and now > end_at:
        if allow_late_until is None or now > allow_late_until:
            return AccessDecision.deny(AccessDeniedReason.WINDOW_CLOSED)

    return AccessDecision.allow()


_SCOPE_MATCHERS: dict[AssignmentScope, Callable[[TestAssignment, CallerContext], bool]] = {
    AssignmentScope.TEAM: lambda assignment, caller: True,
    AssignmentScope.SUBTEAM: lambda assignment, caller: (
        caller.subteam_id is not None and assignment.subteam_id == caller.subteam_id
    ),
    AssignmentScope.PERSONAL: lambda assignment, caller: (
        assignment.target_membership_id == caller.membership_id
    ),
    AssignmentScope.EVENT: lambda assignment, caller: (
        assignment.event_id is not None and assignment.event_id in caller.event_ids
    ),
}


def matches_assignment(assignments: Iterable[TestAssignment], caller: CallerContext) -> bool:
    """True if any assignment's audience includes the caller. No assignments -> False."""
    for assignment in assignments:
        try:
            matcher = _SCOPE_MATCHERS[AssignmentScope(assignment.scope)]
        except ValueError:
            # Unknown scope grants nothing
            continue
        if matcher(assignment, caller):
            return True
    return False


def check_test_password(test: Test, supplied_password: str | None) -> AccessDecision:
    """Verify the supplied password against the stored hash, if the test has one."""
    if not test.test_password_hash:
        return AccessDecision.allow()
    if not supplied_password:
        return AccessDecision.deny(AccessDeniedReason.NEED_TEST_PASSWORD)
    if not verify_test_password(supplied_password, test.test_password_hash):
        return AccessDecision.deny(AccessDeniedReason.INVALID_TEST_PASSWORD)
    return AccessDecision.allow()


def can_start(
    test: Test,
    caller: CallerContext,
    supplied_password: str | None,
    now: datetime,
) -> AccessDecision:
    """
    Decide whether ``caller`` may start ``test`` at ``now``.

    Admins skip the password and assignment checks but are still bound by
    publication status and the time window. The max-attempts rule is not
    part of the gate: it depends on attempt history and is enforced when an
    attempt is created.
    """
    availability = is_test_available(test, now)
    if not availability.allowed:
        return availability

    if caller.is_admin:
        return AccessDecision.allow()

    password = check_test_password(test, supplied_password)
    if not password.allowed:
        return password

    if not matches_assignment(test.assignments, caller):
        return AccessDecision.deny(AccessDeniedReason.NOT_ASSIGNED)

    return AccessDecision.allow()
