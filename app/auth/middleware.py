"""Caller identity dependency for FastAPI.

Authentication happens upstream (session gateway). It forwards the
authenticated user's id in ``X-User-Id``; here we only resolve that id to an
active user.
"""

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User

USER_ID_HEADER = "X-User-Id"


class AuthenticatedUser:
    """Container for the resolved caller context."""

    def __init__(self, user_id: int, user: User) -> None:
        self.user_id = user_id
        self.user = user

    @property
    def is_admin(self) -> bool:
        return self.user.is_admin


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    raw = request.headers.get(USER_ID_HEADER)
    if not raw:
        raise HTTPException(status_code=403, detail="Missing authentication headers")

    try:
        user_id = int(raw)
    except ValueError:
        raise HTTPException(status_code=403, detail="Malformed user id header")

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User is not active")

    return AuthenticatedUser(user_id=user_id, user=user)
