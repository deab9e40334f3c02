"""
Async HTTP client for the TeeFeed API, used by the UI layer.

Identity travels in the X-User-Id header. Error responses are turned back
into the teefeed.errors classes; transport failures (timeouts, refused
connections) become RemoteUnavailable, so callers never see httpx errors.

The client is also a LikeBackend for LikeCoordinator, and validates rounds
locally before anything is sent.
"""
import logging
from typing import Optional

import httpx

from teefeed.config import settings
from teefeed.errors import RemoteUnavailable, error_for_status
from teefeed.schemas import (
    FeedResponse,
    PersonalFeedResponse,
    PostCreate,
    PostResponse,
    UserResponse,
)
from teefeed.validation import validate_round

logger = logging.getLogger(__name__)


class FeedApiClient:
    def __init__(
        self,
        user_id: Optional[str],
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.user_id = user_id
        self._base_url = base_url or settings.api_base_url
        self._timeout = timeout or settings.api_timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        headers = {"X-User-Id": self.user_id} if self.user_id else {}
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        )

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "FeedApiClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if self._http is None:
            raise RuntimeError("FeedApiClient not started — call start() first")
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise RemoteUnavailable() from exc

        if resp.is_error:
            try:
                detail = resp.json().get("detail")
            except ValueError:
                detail = None
            raise error_for_status(resp.status_code, detail if isinstance(detail, str) else None)
        return resp

    # ── Profiles ────────────────────────────────────────────────────────────

    async def create_profile(
        self, username: str, display_name: str = "", handicap: Optional[float] = None
    ) -> UserResponse:
        resp = await self._request(
            "POST",
            "/users/",
            json={"username": username, "display_name": display_name, "handicap": handicap},
        )
        return UserResponse(**resp.json())

    async def get_profile(self, user_id: str) -> UserResponse:
        resp = await self._request("GET", f"/users/{user_id}")
        return UserResponse(**resp.json())

    async def is_username_available(self, username: str) -> bool:
        resp = await self._request("GET", "/users/username-available", params={"username": username})
        return resp.json()["available"]

    async def update_profile(
        self, user_id: str, username: str, display_name: str = "", handicap: Optional[float] = None
    ) -> UserResponse:
        resp = await self._request(
            "PUT",
            f"/users/{user_id}",
            json={"username": username, "display_name": display_name, "handicap": handicap},
        )
        return UserResponse(**resp.json())

    async def refresh_posts(self, user_id: str) -> int:
        """Re-snapshot the profile onto the author's posts. Returns posts updated."""
        resp = await self._request("POST", f"/users/{user_id}/refresh-posts")
        return resp.json()["posts_updated"]

    # ── Posts ───────────────────────────────────────────────────────────────

    async def submit_round(
        self, title: str, score: str, holes: str = "", greens_in_regulation: str = ""
    ) -> str:
        """Validate locally, then create the post. Returns the new post id."""
        validate_round(title, score, holes, greens_in_regulation)
        body = PostCreate(
            title=title, score=score, holes=holes, greens_in_regulation=greens_in_regulation
        )
        resp = await self._request("POST", "/posts/", json=body.model_dump())
        return resp.json()["post_id"]

    async def get_post(self, author_id: str, post_id: str) -> PostResponse:
        resp = await self._request("GET", f"/posts/{author_id}/{post_id}")
        return PostResponse(**resp.json())

    async def delete_post(self, author_id: str, post_id: str) -> None:
        await self._request("DELETE", f"/posts/{author_id}/{post_id}")

    # ── Likes (LikeBackend) ─────────────────────────────────────────────────

    async def update_like_count(self, author_id: str, post_id: str, like_count: int) -> None:
        await self._request(
            "PUT", f"/posts/{author_id}/{post_id}/like-count", json={"like_count": like_count}
        )

    async def set_liked(self, author_id: str, post_id: str, user_id: str, liked: bool) -> None:
        method = "PUT" if liked else "DELETE"
        await self._request(method, f"/posts/{author_id}/{post_id}/likes/{user_id}")

    async def is_liked(self, author_id: str, post_id: str, user_id: str) -> bool:
        resp = await self._request("GET", f"/posts/{author_id}/{post_id}/likes/{user_id}")
        return resp.json()["liked"]

    # ── Feed ────────────────────────────────────────────────────────────────

    async def global_feed(self) -> FeedResponse:
        resp = await self._request("GET", "/feed/")
        return FeedResponse(**resp.json())

    async def personal_feed(self, author_id: str, mode: str = "chronological") -> PersonalFeedResponse:
        resp = await self._request("GET", f"/feed/users/{author_id}", params={"mode": mode})
        return PersonalFeedResponse(**resp.json())
