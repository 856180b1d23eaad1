"""
SmartNotes Backend — Auth Routes
==================================

Sign-up signs the new account in immediately, so both endpoints return a session.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import get_db_session
from smartnotes.deps import get_bearer_token
from smartnotes.middleware.rate_limit import forget_token
from smartnotes.schemas.common import ErrorResponse, MessageResponse
from smartnotes.schemas.user import SessionResponse, SignInRequest, SignUpRequest
from smartnotes.services.auth_service import auth_service
from smartnotes.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/signup",
    status_code=201,
    response_model=SessionResponse,
    responses={
        400: {"description": "Password too short", "model": ErrorResponse},
        409: {"description": "Email already registered", "model": ErrorResponse},
    },
    summary="Create an account and open a session",
)
async def sign_up(
    body: SignUpRequest,
    db: AsyncSession = Depends(get_db_session),
) -> SessionResponse:
    await auth_service.sign_up(db, body.email, body.password, body.full_name)
    token, session, identity = await auth_service.sign_in(db, body.email, body.password)
    await user_service.get_current_user(db, identity)
    return SessionResponse(
        access_token=token,
        expires_at=session.expires_at,
        user_id=identity.id,
    )


@router.post(
    "/signin",
    response_model=SessionResponse,
    responses={401: {"description": "Invalid credentials", "model": ErrorResponse}},
    summary="Sign in with email and password",
)
async def sign_in(
    body: SignInRequest,
    db: AsyncSession = Depends(get_db_session),
) -> SessionResponse:
    token, session, identity = await auth_service.sign_in(db, body.email, body.password)
    return SessionResponse(
        access_token=token,
        expires_at=session.expires_at,
        user_id=identity.id,
    )


@router.post(
    "/signout",
    response_model=MessageResponse,
    summary="End the current session",
)
async def sign_out(
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await user_service.logout(db, token)
    forget_token(token)
    return MessageResponse(message="Signed out")
