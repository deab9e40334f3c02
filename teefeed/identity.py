"""
Caller identity.

The identity provider sits in front of the API and forwards the signed-in
user's id in the X-User-Id header. It is trusted as-is.
"""
from typing import Optional

from fastapi import Depends, Header

from teefeed.errors import Unauthenticated


async def current_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


async def require_user_id(user_id: Optional[str] = Depends(current_user_id)) -> str:
    if user_id is None:
        raise Unauthenticated()
    return user_id
