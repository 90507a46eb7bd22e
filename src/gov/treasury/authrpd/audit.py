"""Authentication audit events.

Audit rows are best effort: a failure to record an event is logged and never
turns a successful login or refresh into an error.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gov.treasury.authrpd.keys.periods import utcnow
from gov.treasury.authrpd.model.audit import AuthAuditLog
from gov.treasury.authrpd.tokens.actors import actor_type_value

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAIL = "LOGIN_FAIL"
    REFRESH_SUCCESS = "REFRESH_SUCCESS"
    REFRESH_FAIL = "REFRESH_FAIL"
    LOGOUT = "LOGOUT"
    TOKENS_REVOKED = "TOKENS_REVOKED"


async def log_event(
    database_session_maker: async_sessionmaker[AsyncSession],
    action: AuditAction,
    actor_type: Optional[str] = None,
    actor_id: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Record an audit event in its own transaction."""
    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                database_session.add(
                    AuthAuditLog(
                        actor_type=(
                            actor_type_value(actor_type) if actor_type is not None else None
                        ),
                        actor_id=str(actor_id) if actor_id is not None else None,
                        action=action.value,
                        meta=meta,
                        ip=ip,
                        user_agent=user_agent,
                        created_at=utcnow(),
                    )
                )
    except (SQLAlchemyError, OSError):
        logger.exception(
            "Failed to record audit event %s for %s:%s", action.value, actor_type, actor_id
        )
