"""
Golfer profiles: the display fields the identity provider hands to the feed.

Usernames are unique. Availability is checked before create and before an
update that changes the username; the unique index catches the race where
two golfers claim the same name at once.
"""
import logging
from typing import Optional

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from teefeed.errors import Conflict, NotFound, PermissionDenied, Unauthenticated, ValidationFailed
from teefeed.models import UserProfile, utcnow
from teefeed.store import store_errors

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ProfileService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def is_username_available(self, username: str, exclude_user_id: Optional[str] = None) -> bool:
        username = username.strip()
        if not username:
            return False
        with store_errors("is_username_available"):
            rows = await self.db.execute(
                select(UserProfile.user_id).where(UserProfile.username == username)
            )
            owners = {r[0] for r in rows.all()}
        owners.discard(exclude_user_id)
        return not owners

    async def get_profile(self, user_id: str) -> UserProfile:
        with store_errors("get_profile"):
            profile = await self.db.get(UserProfile, user_id)
        if profile is None:
            raise NotFound("User not found")
        return profile

    async def find_profile(self, user_id: str) -> Optional[UserProfile]:
        with store_errors("get_profile"):
            return await self.db.get(UserProfile, user_id)

    async def create_profile(
        self,
        user_id: Optional[str],
        username: str,
        display_name: str = "",
        handicap: Optional[float] = None,
    ) -> UserProfile:
        if not user_id:
            raise Unauthenticated()
        username = username.strip()
        if not username:
            raise ValidationFailed("Username cannot be empty", field="username")

        with tracer.start_as_current_span("create_profile"):
            if await self.find_profile(user_id) is not None:
                raise Conflict("Profile already exists")
            if not await self.is_username_available(username):
                raise Conflict("Username already taken")

            profile = UserProfile(
                user_id=user_id,
                username=username,
                display_name=display_name,
                handicap=handicap,
                date_joined=utcnow(),
            )
            self.db.add(profile)
            await self._commit()

        logger.info("Created profile %s (id=%s)", username, user_id)
        return profile

    async def update_profile(
        self,
        caller_id: Optional[str],
        user_id: str,
        username: str,
        display_name: str,
        handicap: Optional[float] = None,
    ) -> UserProfile:
        if not caller_id:
            raise Unauthenticated()
        if caller_id != user_id:
            raise PermissionDenied("You can only edit your own profile")
        username = username.strip()
        if not username:
            raise ValidationFailed("Username cannot be empty", field="username")

        profile = await self.get_profile(user_id)
        if profile.username != username and not await self.is_username_available(username, user_id):
            raise Conflict("Username is already taken")

        profile.username = username
        profile.display_name = display_name
        profile.handicap = handicap
        await self._commit()
        logger.info("Updated profile %s", user_id)
        return profile

    async def _commit(self) -> None:
        try:
            with store_errors("save_profile"):
                await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise Conflict("Username already taken") from exc
