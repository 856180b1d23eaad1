"""SmartNotes Backend — profile, statistics, settings and account deletion routes."""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import get_db_session
from smartnotes.deps import get_current_user
from smartnotes.models.user import User
from smartnotes.schemas.user import (
    UserProfileUpdate,
    UserResponse,
    UserSettingsSchema,
    UserStats,
)
from smartnotes.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("/me", response_model=UserResponse, summary="Current profile")
async def get_me(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(user)


@router.patch("/me", response_model=UserResponse, summary="Update name or avatar")
async def update_me(
    body: UserProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    updated = await user_service.update_profile(db, user.id, body)
    return UserResponse.model_validate(updated)


@router.get("/me/stats", response_model=UserStats, summary="Profile statistics")
async def get_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserStats:
    return await user_service.get_user_stats(db, user.id)


@router.get("/me/settings", response_model=UserSettingsSchema, summary="App preferences")
async def get_settings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserSettingsSchema:
    return await user_service.get_user_settings(db, user.id)


@router.put("/me/settings", response_model=UserSettingsSchema, summary="Replace app preferences")
async def put_settings(
    body: UserSettingsSchema,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserSettingsSchema:
    return await user_service.update_settings(db, user.id, body)


@router.delete(
    "/me",
    status_code=204,
    summary="Delete the account and all of its data",
    description="Irreversible. Every session of the account is signed out.",
)
async def delete_me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await user_service.delete_all_user_data(db, user.id)
    return Response(status_code=204)
