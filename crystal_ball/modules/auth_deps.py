from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_ball.modules.auth_helpers import find_session_user, get_auth_token
from crystal_ball.modules.db import User, get_session


@dataclass
class AuthContext:
    user: User
    token: str

    @property
    def is_admin(self) -> bool:
        return bool(self.user.is_admin)


async def require_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> AuthContext:
    """Any signed-in user, including those who still owe a password change."""
    token = get_auth_token(request) or ""
    found = await find_session_user(session, token)
    if not found:
        raise HTTPException(status_code=401, detail="Not authenticated")
    _auth_session, user = found
    return AuthContext(user=user, token=token)


async def require_active_user(auth: AuthContext = Depends(require_user)) -> AuthContext:
    if auth.user.requires_password_change:
        raise HTTPException(status_code=403, detail="Password change required")
    return auth


async def require_admin(auth: AuthContext = Depends(require_active_user)) -> AuthContext:
    if not auth.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return auth
