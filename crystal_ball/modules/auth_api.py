import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_ball.modules.api_helpers import commit
from crystal_ball.modules.auth_deps import AuthContext, require_user
from crystal_ball.modules.auth_helpers import (
    SESSION_COOKIE,
    consume_reset_token,
    create_session,
    find_user_by_email,
    hash_password,
    issue_reset_token,
    password_policy_error,
    revoke_sessions,
    user_to_dict,
    verify_password,
)
from crystal_ball.modules.db import AuthSession, get_session
from crystal_ball.modules.email_service import password_reset, send_best_effort
from settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginPayload(BaseModel):
    email: str
    password: str


class ForgotPasswordPayload(BaseModel):
    email: str


class ResetPasswordPayload(BaseModel):
    token: str
    new_password: str


def _set_session_cookie(response: Response, token: str) -> None:
    cfg = get_settings()
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=cfg.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=cfg.session_cookie_secure,
    )


@router.post("/login")
async def login(
    payload: LoginPayload,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    user = await find_user_by_email(session, payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    record = await create_session(session, user, request)
    await commit(session, "sign in")
    _set_session_cookie(response, record.token)
    logger.info("User %s signed in", user.email)
    return {"token": record.token, "user": user_to_dict(user)}


@router.post("/logout")
async def logout(
    response: Response,
    auth: AuthContext = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    await session.execute(delete(AuthSession).where(AuthSession.token == auth.token))
    await commit(session, "sign out")
    response.delete_cookie(SESSION_COOKIE)
    return {"success": True}


@router.get("/me")
async def me(auth: AuthContext = Depends(require_user)):
    return {"user": user_to_dict(auth.user)}


@router.post("/forgot-password")
async def forgot_password(payload: ForgotPasswordPayload, session: AsyncSession = Depends(get_session)):
    user = await find_user_by_email(session, payload.email)
    if user:
        token = await issue_reset_token(session, user)
        await commit(session, "issue password reset")
        reset_url = f"{get_settings().app_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"
        await send_best_effort(password_reset(user.email, reset_url))
    return {"success": True}


@router.post("/reset-password")
async def reset_password(payload: ResetPasswordPayload, session: AsyncSession = Depends(get_session)):
    policy_error = password_policy_error(payload.new_password)
    if policy_error:
        raise HTTPException(status_code=400, detail=policy_error)
    user = await consume_reset_token(session, payload.token)
    if not user:
        await commit(session, "reset password")
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    user.password_hash = hash_password(payload.new_password)
    user.requires_password_change = False
    await revoke_sessions(session, user.id)
    await commit(session, "reset password")
    return {"success": True}
