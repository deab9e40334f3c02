"""
Profile endpoints:
  POST /users                       — create the caller's profile
  GET  /users/username-available    — is a username free?
  GET  /users/{id}                  — fetch a profile
  PUT  /users/{id}                  — edit your own profile
  POST /users/{id}/refresh-posts    — re-snapshot your profile onto your posts
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from teefeed.database import get_db
from teefeed.identity import current_user_id, require_user_id
from teefeed.profiles import ProfileService
from teefeed.schemas import (
    SnapshotRefresh,
    UserCreate,
    UsernameAvailability,
    UserResponse,
    UserUpdate,
)
from teefeed.store import PostStore

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    user_id: Optional[str] = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Register the signed-in user's golfer profile; 409 if the username is taken."""
    with tracer.start_as_current_span("create_user"):
        return await ProfileService(db).create_profile(
            user_id, body.username, body.display_name, body.handicap
        )


@router.get("/username-available", response_model=UsernameAvailability)
async def username_available(
    username: str = Query(...),
    user_id: Optional[str] = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    available = await ProfileService(db).is_username_available(username, exclude_user_id=user_id)
    return UsernameAvailability(username=username, available=available)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, db: AsyncSession = Depends(get_db)):
    return await ProfileService(db).get_profile(user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    body: UserUpdate,
    caller_id: Optional[str] = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Edit a profile. Posts already shared keep the old name until the
    author calls refresh-posts.
    """
    with tracer.start_as_current_span("update_user"):
        return await ProfileService(db).update_profile(
            caller_id, user_id, body.username, body.display_name, body.handicap
        )


@router.post("/{user_id}/refresh-posts", response_model=SnapshotRefresh)
async def refresh_posts(
    user_id: str,
    caller_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("refresh_author_snapshot"):
        profile = await ProfileService(db).get_profile(user_id)
        updated = await PostStore(db).refresh_author_snapshot(
            caller_id, user_id, profile.display_name, profile.username
        )
        return SnapshotRefresh(posts_updated=updated)
