"""
Team Assessment Engine - API Dependencies
FastAPI dependencies for authentication, sessions and collaborators
"""
import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_engine.ai.agents.grader import FreeResponseScorer, free_response_grader
from assessment_engine.core.database import get_db
from assessment_engine.core.security import verify_token

# Security scheme
security = HTTPBearer()


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> uuid.UUID:
    """
    Resolve the bearer token to the caller's user id.

    Users live in the platform's identity service; the engine only trusts
    the token's subject.

    Raises:
        HTTPException: If token is invalid or expired
    """
    subject = verify_token(credentials.credentials, token_type="access")

    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return uuid.UUID(subject)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_scorer() -> FreeResponseScorer:
    """The free-response scorer used for AI grading suggestions."""
    return free_response_grader


def client_ip(request: Request) -> str | None:
    """Caller IP, honouring the first X-Forwarded-For hop when behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def user_agent(request: Request) -> str | None:
    value = request.headers.get("user-agent")
    return value[:512] if value else None


# Type aliases for common dependencies
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Scorer = Annotated[FreeResponseScorer, Depends(get_scorer)]
