import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from crystal_ball.modules.api_helpers import commit
from crystal_ball.modules.auth_deps import AuthContext, require_admin
from crystal_ball.modules.auth_helpers import (
    find_user_by_email,
    hash_password,
    normalize_email,
    revoke_sessions,
    user_to_dict,
)
from crystal_ball.modules.db import Character, User, get_session
from crystal_ball.modules.email_service import account_created, send_best_effort
from crystal_ball.modules.logging_helpers import write_audit
from crystal_ball.modules.object_storage import character_prefix, get_object_store
from settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/users", tags=["admin"])


class CreateUserPayload(BaseModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=8)
    name: str | None = Field(default=None, min_length=1)
    is_admin: bool = False


class UpdateUserPayload(BaseModel):
    is_admin: bool


@router.get("")
async def list_users(
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_admin),
):
    users = (await session.execute(select(User).order_by(User.created_at, User.email))).scalars().all()
    return {"users": [user_to_dict(user) for user in users]}


@router.post("", status_code=201)
async def create_user(
    payload: CreateUserPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_admin),
):
    email = normalize_email(payload.email)
    if "@" not in email:
        raise HTTPException(status_code=400, detail="Invalid email address")
    if await find_user_by_email(session, email):
        raise HTTPException(status_code=400, detail="User with this email already exists")

    user = User(
        email=email,
        name=payload.name or email.split("@")[0],
        password_hash=hash_password(payload.password),
        is_admin=payload.is_admin,
        requires_password_change=True,
    )
    session.add(user)
    await session.flush()
    write_audit(session, "user_create", auth.user.email, user.id, after={"email": email, "is_admin": payload.is_admin})
    await commit(session, "create user")
    await session.refresh(user)

    login_url = f"{get_settings().app_url.rstrip('/')}/login"
    await send_best_effort(account_created(email, payload.password, login_url, payload.name))
    return {"message": "User created successfully", "user": user_to_dict(user)}


@router.patch("/{user_id}")
async def update_user(
    user_id: str,
    payload: UpdateUserPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_admin),
):
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    before = {"is_admin": bool(user.is_admin)}
    user.is_admin = payload.is_admin
    write_audit(session, "user_update", auth.user.email, user.id, before=before, after={"is_admin": payload.is_admin})
    await commit(session, "update user")
    await session.refresh(user)
    return {"user": user_to_dict(user)}


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_admin),
):
    if user_id == auth.user.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    character_ids = (
        await session.execute(select(Character.id).where(Character.user_id == user.id))
    ).scalars().all()
    store = get_object_store()
    for character_id in character_ids:
        try:
            await run_in_threadpool(store.delete_prefix, character_prefix(user.id, character_id))
        except Exception:
            logger.warning("Could not delete sheets of character %s", character_id, exc_info=True)

    write_audit(session, "user_delete", auth.user.email, user.id, before=user_to_dict(user))
    await revoke_sessions(session, user.id)
    await session.delete(user)
    await commit(session, "delete user")
    return {"success": True}
