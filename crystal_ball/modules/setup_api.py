import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_ball.modules.api_helpers import commit
from crystal_ball.modules.auth_helpers import (
    count_users,
    hash_password,
    normalize_email,
    password_policy_error,
    user_to_dict,
)
from crystal_ball.modules.db import User, get_session
from crystal_ball.modules.logging_helpers import write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/setup", tags=["setup"])


class SetupPayload(BaseModel):
    email: str
    password: str
    name: str | None = None


@router.get("/status")
async def setup_status(session: AsyncSession = Depends(get_session)):
    return {"needs_setup": await count_users(session) == 0}


@router.post("", status_code=201)
async def run_setup(payload: SetupPayload, session: AsyncSession = Depends(get_session)):
    email = normalize_email(payload.email)
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    if await count_users(session) > 0:
        raise HTTPException(status_code=400, detail="Setup has already been completed")
    policy_error = password_policy_error(payload.password)
    if policy_error:
        raise HTTPException(status_code=400, detail=policy_error)

    user = User(
        email=email,
        name=(payload.name or "").strip() or email,
        password_hash=hash_password(payload.password),
        is_admin=True,
        requires_password_change=False,
    )
    session.add(user)
    await session.flush()
    write_audit(session, "setup", email, user.id, after={"is_admin": True})
    await commit(session, "create admin account")
    await session.refresh(user)
    logger.info("Initial administrator %s created", email)
    return {"user": user_to_dict(user)}
