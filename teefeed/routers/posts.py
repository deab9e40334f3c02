"""
Post and like endpoints. Posts are addressed under their author:
  POST   /posts                                  — share a round
  GET    /posts/{author_id}/{post_id}            — fetch one post
  DELETE /posts/{author_id}/{post_id}            — delete (author only)
  PUT    /posts/{author_id}/{post_id}/like-count — overwrite the like counter
  GET    /posts/{author_id}/{post_id}/likes/{user_id} — has user liked it?
  PUT    /posts/{author_id}/{post_id}/likes/{user_id} — like (idempotent)
  DELETE /posts/{author_id}/{post_id}/likes/{user_id} — unlike (idempotent)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from teefeed.database import get_db
from teefeed.errors import PermissionDenied
from teefeed.identity import current_user_id, require_user_id
from teefeed.models import Post, as_utc
from teefeed.profiles import ProfileService
from teefeed.schemas import LikeCountUpdate, LikeStatus, PostCreate, PostCreated, PostResponse
from teefeed.store import LikeLedger, PostStore
from teefeed.validation import validate_round

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def build_post_response(post: Post, liked_by_viewer: bool = False) -> PostResponse:
    response = PostResponse.model_validate(post)
    response.created_at = as_utc(post.created_at)
    response.liked_by_viewer = liked_by_viewer
    return response


@router.post("/", response_model=PostCreated, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    user_id: Optional[str] = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Share a played round:

    1. Validate the round (nothing is written if this fails).
    2. Snapshot the author's display name and username onto the post.
    3. Persist, then announce the change on the feed channel.
    """
    validate_round(body.title, body.score, body.holes, body.greens_in_regulation)

    display_name, username = "", ""
    if user_id:
        profile = await ProfileService(db).find_profile(user_id)
        if profile is not None:
            display_name, username = profile.display_name, profile.username

    post_id = await PostStore(db).create_post(user_id, body, display_name, username)
    return PostCreated(post_id=post_id)


@router.get("/{author_id}/{post_id}", response_model=PostResponse)
async def get_post(
    author_id: str,
    post_id: str,
    viewer_id: Optional[str] = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    post = await PostStore(db).get_post(author_id, post_id)
    liked = False
    if viewer_id:
        liked = await LikeLedger(db).is_liked(author_id, post_id, viewer_id)
    return build_post_response(post, liked)


@router.delete("/{author_id}/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    author_id: str,
    post_id: str,
    caller_id: Optional[str] = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("delete_post"):
        await PostStore(db).delete_post(caller_id, author_id, post_id)


@router.put("/{author_id}/{post_id}/like-count", status_code=status.HTTP_204_NO_CONTENT)
async def update_like_count(
    author_id: str,
    post_id: str,
    body: LikeCountUpdate,
    caller_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Overwrite like_count with the value the caller computed. Any signed-in
    user may write it on behalf of their own like; last write wins.
    """
    with tracer.start_as_current_span("update_like_count") as span:
        span.set_attribute("post.id", post_id)
        span.set_attribute("like.count", body.like_count)
        await PostStore(db).update_like_count(author_id, post_id, body.like_count)


@router.get("/{author_id}/{post_id}/likes/{user_id}", response_model=LikeStatus)
async def get_like(author_id: str, post_id: str, user_id: str, db: AsyncSession = Depends(get_db)):
    liked = await LikeLedger(db).is_liked(author_id, post_id, user_id)
    return LikeStatus(post_id=post_id, user_id=user_id, liked=liked)


async def _set_like(
    author_id: str, post_id: str, user_id: str, caller_id: str, liked: bool, db: AsyncSession
) -> LikeStatus:
    if caller_id != user_id:
        raise PermissionDenied("You can only like or unlike as yourself")
    with tracer.start_as_current_span("set_liked") as span:
        span.set_attribute("post.id", post_id)
        span.set_attribute("like.liked", liked)
        await LikeLedger(db).set_liked(author_id, post_id, user_id, liked)
    return LikeStatus(post_id=post_id, user_id=user_id, liked=liked)


@router.put("/{author_id}/{post_id}/likes/{user_id}", response_model=LikeStatus)
async def like_post(
    author_id: str,
    post_id: str,
    user_id: str,
    caller_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await _set_like(author_id, post_id, user_id, caller_id, True, db)


@router.delete("/{author_id}/{post_id}/likes/{user_id}", response_model=LikeStatus)
async def unlike_post(
    author_id: str,
    post_id: str,
    user_id: str,
    caller_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await _set_like(author_id, post_id, user_id, caller_id, False, db)
