"""
SQLAlchemy ORM models.

Tables:
  users  — golfer profiles (the identity provider's display fields)
  posts  — played rounds, with a snapshot of the author's profile
  likes  — like ledger: one row per (post, user) currently liked
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from teefeed.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


class UserProfile(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    handicap: Mapped[Optional[float]] = mapped_column(Float)
    date_joined: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    @property
    def handicap_display(self) -> str:
        if self.handicap is None:
            return "Not set"
        return f"{self.handicap:.1f}"


class Post(Base):
    __tablename__ = "posts"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    author_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # Snapshot of the author's profile at creation time. Not kept in sync
    # with later profile edits; see PostStore.refresh_author_snapshot.
    author_display_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    author_username: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)  # course name
    score: Mapped[str] = mapped_column(String(16), nullable=False)
    holes: Mapped[str] = mapped_column(String(16), default="", nullable=False)
    greens_in_regulation: Mapped[str] = mapped_column(String(16), default="", nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_posts_author_created", "author_id", "created_at"),
        Index("idx_posts_created", "created_at"),
    )


class Like(Base):
    __tablename__ = "likes"

    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    post_owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    liked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        # "which of these posts has viewer X liked?" — feed hydration
        Index("idx_likes_user", "user_id"),
    )
