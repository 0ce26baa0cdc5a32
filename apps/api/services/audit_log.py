"""Best-effort audit trail of external queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.audit_log import AuditLog

logger = logging.getLogger(__name__)


@dataclass
class CallerContext:
    """Who is calling and from where; built once per request by the router layer."""

    user_id: str
    email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    enforce_rate_limits: bool = True


async def record_audit(
    db: AsyncSession,
    caller: CallerContext,
    *,
    action: str,
    target: Optional[str] = None,
    params: Optional[Dict[str, Any]] = None,
) -> None:
    """Write one audit row. A failed write is logged and never reaches the caller."""
    try:
        db.add(
            AuditLog(
                user_id=caller.user_id,
                action=action,
                target=target,
                params_json=params or {},
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
            )
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("Audit log write failed for %s: %s", action, exc)
