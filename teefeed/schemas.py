"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


# ──────────────────────────── Users ───────────────────────────────────────

class UserCreate(BaseModel):
    username: str = Field(..., max_length=100)
    display_name: str = Field("", max_length=255)
    handicap: Optional[float] = None


class UserUpdate(UserCreate):
    pass


class UserResponse(BaseModel):
    user_id: str
    username: str
    display_name: str
    handicap: Optional[float]
    handicap_display: str
    date_joined: datetime

    class Config:
        from_attributes = True


class UsernameAvailability(BaseModel):
    username: str
    available: bool


class SnapshotRefresh(BaseModel):
    posts_updated: int


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(BaseModel):
    """A played round. Numeric fields stay strings, checked by validate_round."""
    title: str = Field(..., max_length=255)
    score: str = Field(..., max_length=16)
    holes: str = Field("", max_length=16)
    greens_in_regulation: str = Field("", max_length=16)


class PostResponse(BaseModel):
    post_id: str
    author_id: str
    author_display_name: str
    author_username: str
    title: str
    score: str
    holes: str
    greens_in_regulation: str
    like_count: int
    created_at: datetime
    liked_by_viewer: bool = False

    class Config:
        from_attributes = True


class PostCreated(BaseModel):
    post_id: str


class LikeCountUpdate(BaseModel):
    like_count: int = Field(..., ge=0)


class LikeStatus(BaseModel):
    post_id: str
    user_id: str
    liked: bool


# ──────────────────────────── Feed ────────────────────────────────────────

class FeedItemResponse(BaseModel):
    """Either a post or a promotional slot; slots carry only their ordinal."""
    kind: Literal["post", "promo"]
    post: Optional[PostResponse] = None
    slot: Optional[int] = None


class FeedResponse(BaseModel):
    items: list[FeedItemResponse]
    post_count: int
    # True when served from the last-known-good cache because the store was down
    stale: bool = False


class CourseGroupResponse(BaseModel):
    course_name: str
    posts: list[PostResponse]
    best_score: Optional[int]
    average_score: float
    total_rounds: int
    last_played: Optional[datetime]


class PersonalFeedResponse(BaseModel):
    author_id: str
    mode: Literal["chronological", "by_course"]
    posts: list[PostResponse] = []
    groups: list[CourseGroupResponse] = []
