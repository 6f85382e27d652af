import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

MIN_LEVEL = 1
MAX_LEVEL = 20


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_level(raw) -> int:
    try:
        level = int(str(raw).strip())
    except (TypeError, ValueError):
        level = 0
    if level < MIN_LEVEL or level > MAX_LEVEL:
        raise HTTPException(status_code=400, detail="Invalid level (must be 1-20)")
    return level


async def commit(session: AsyncSession, operation: str) -> None:
    """Commit, turning database failures into a logged 500 with a stable message."""
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.exception("%s integrity failure", operation)
        raise HTTPException(status_code=500, detail=f"Failed to {operation}")
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("%s database failure", operation)
        raise HTTPException(status_code=500, detail=f"Failed to {operation}")
