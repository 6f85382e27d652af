import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from crystal_ball.modules.db import AuditLog

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("crystal_ball")


def write_audit(
    session: AsyncSession,
    action: str,
    username: str,
    target_id: str | None,
    before: Any = None,
    after: Any = None,
) -> AuditLog:
    """Stage an audit row on the caller's session; it commits with the action it records."""
    entry = AuditLog(
        action=action,
        username=username,
        target_id=target_id,
        before=before,
        after=after,
    )
    session.add(entry)
    return entry
