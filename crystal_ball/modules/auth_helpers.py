import hashlib
import hmac
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_ball.modules.db import AuthSession, User, Verification
from settings import get_settings

SESSION_COOKIE = "session_token"
PBKDF2_ITERATIONS = 240_000
RESET_TOKEN_TTL = timedelta(hours=24)
MIN_PASSWORD_LENGTH = 8


def _sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def make_token() -> str:
    return secrets.token_hex(32)


def hash_password(password: str, *, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, expected = (encoded or "").split("$", 3)
        rounds = int(iterations)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", (password or "").encode("utf-8"), salt.encode("utf-8"), rounds)
    return hmac.compare_digest(digest.hex(), expected)


def password_policy_error(password: str) -> Optional[str]:
    """Return the first failed rule for a user-chosen password, or None."""
    password = password or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        return "Password must be at least 8 characters long"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[0-9]", password):
        return "Password must contain at least one number"
    return None


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_auth_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        if token:
            return token
    return request.cookies.get(SESSION_COOKIE) or None


async def find_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    stmt = select(User).where(User.email == normalize_email(email))
    return (await session.execute(stmt)).scalars().first()


async def count_users(session: AsyncSession) -> int:
    return (await session.execute(select(func.count()).select_from(User))).scalar_one()


async def create_session(session: AsyncSession, user: User, request: Request | None = None) -> AuthSession:
    ttl = timedelta(hours=get_settings().session_ttl_hours)
    record = AuthSession(
        token=make_token(),
        user_id=user.id,
        expires_at=utcnow() + ttl,
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=(request.headers.get("user-agent") or "")[:512] if request is not None else None,
    )
    session.add(record)
    return record


async def find_session_user(session: AsyncSession, token: str) -> Optional[tuple[AuthSession, User]]:
    if not token:
        return None
    stmt = select(AuthSession, User).join(User, User.id == AuthSession.user_id).where(AuthSession.token == token)
    row = (await session.execute(stmt)).first()
    if not row:
        return None
    auth_session, user = row
    if _aware(auth_session.expires_at) <= utcnow():
        await session.delete(auth_session)
        await session.commit()
        return None
    return auth_session, user


async def revoke_sessions(session: AsyncSession, user_id: str, *, keep_token: str | None = None) -> None:
    stmt = delete(AuthSession).where(AuthSession.user_id == user_id)
    if keep_token:
        stmt = stmt.where(AuthSession.token != keep_token)
    await session.execute(stmt)


def _reset_identifier(user_id: str) -> str:
    return f"password-reset:{user_id}"


async def issue_reset_token(session: AsyncSession, user: User) -> str:
    token = make_token()
    await session.execute(delete(Verification).where(Verification.identifier == _reset_identifier(user.id)))
    session.add(
        Verification(
            identifier=_reset_identifier(user.id),
            value=_sha256(token),
            expires_at=utcnow() + RESET_TOKEN_TTL,
        )
    )
    return token


async def consume_reset_token(session: AsyncSession, token: str) -> Optional[User]:
    stmt = select(Verification).where(Verification.value == _sha256(token or ""))
    record = (await session.execute(stmt)).scalars().first()
    if not record or not record.identifier.startswith("password-reset:"):
        return None
    await session.delete(record)
    if _aware(record.expires_at) <= utcnow():
        return None
    return await session.get(User, record.identifier.split(":", 1)[1])


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "is_admin": bool(user.is_admin),
        "requires_password_change": bool(user.requires_password_change),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
