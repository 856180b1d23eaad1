"""
SmartNotes Backend — Request Dependencies
===========================================

Authentication dependencies shared by the routers.

    get_bearer_token      Authorization: Bearer <token>, or AuthenticationError
    get_current_identity  the credential record behind the token
    get_current_user      the profile (created on first access)

FastAPI caches dependencies per request, so all of them share the request's
database session.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import get_db_session
from smartnotes.exceptions import AuthenticationError
from smartnotes.middleware.rate_limit import mark_token_verified
from smartnotes.models.user import AuthUser, User
from smartnotes.services.auth_service import auth_service
from smartnotes.services.user_service import user_service

# auto_error=False: a missing header becomes our 401 body instead of FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError(message="Sign in to continue")
    return credentials.credentials


async def resolve_user(db: AsyncSession, token: str) -> User:
    """Token → profile. Also used by the WebSocket route, which has no headers to spare."""
    identity = await auth_service.get_user(db, token)
    if identity is None:
        raise AuthenticationError(message="Your session has expired. Please sign in again.")
    return await user_service.get_current_user(db, identity)


async def get_current_identity(
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db_session),
) -> AuthUser:
    identity = await auth_service.get_user(db, token)
    if identity is None:
        raise AuthenticationError(message="Your session has expired. Please sign in again.")
    mark_token_verified(token)
    return identity


async def get_current_user(
    identity: AuthUser = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    return await user_service.get_current_user(db, identity)
