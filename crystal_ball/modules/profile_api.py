import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_ball.modules.api_helpers import commit
from crystal_ball.modules.auth_deps import AuthContext, require_active_user, require_user
from crystal_ball.modules.auth_helpers import (
    hash_password,
    normalize_email,
    password_policy_error,
    revoke_sessions,
    user_to_dict,
    verify_password,
)
from crystal_ball.modules.db import User, get_session
from crystal_ball.modules.image_helpers import image_data_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])


class ProfileUpdatePayload(BaseModel):
    name: str | None = None
    email: str | None = None


class ChangePasswordPayload(BaseModel):
    current_password: str
    new_password: str


@router.get("")
async def get_profile(auth: AuthContext = Depends(require_user)):
    return {"user": user_to_dict(auth.user)}


@router.patch("")
async def update_profile(
    payload: ProfileUpdatePayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    name = (payload.name or "").strip()
    email = normalize_email(payload.email or "")
    if not name and not email:
        raise HTTPException(status_code=400, detail="At least one field must be provided")

    user = auth.user
    if email and email != user.email:
        taken = (
            await session.execute(select(User.id).where(User.email == email, User.id != user.id))
        ).first()
        if taken:
            raise HTTPException(status_code=400, detail="Email already in use")
        user.email = email
    if name:
        user.name = name
    await commit(session, "update profile")
    await session.refresh(user)
    return {"success": True, "user": user_to_dict(user)}


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_user),
):
    if not payload.current_password or not payload.new_password:
        raise HTTPException(status_code=400, detail="Current password and new password are required")
    policy_error = password_policy_error(payload.new_password)
    if policy_error:
        raise HTTPException(status_code=400, detail=policy_error)
    user = auth.user
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid current password")

    user.password_hash = hash_password(payload.new_password)
    user.requires_password_change = False
    await revoke_sessions(session, user.id, keep_token=auth.token)
    await commit(session, "change password")
    logger.info("User %s changed password", user.email)
    return {"success": True}


@router.post("/image")
async def upload_profile_image(
    image: UploadFile = File(...),
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    auth.user.image = image_data_url(await image.read())
    await commit(session, "update profile image")
    return {"success": True, "image": auth.user.image}
