"""Per-user rate limiting dependency."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from routers.auth_scope import AuthContext, get_auth_context
from services.rate_limiter import enforce_rate_limit


def rate_limit(endpoint: str, limit: int, window_minutes: int) -> Callable[..., None]:
    """Return a FastAPI dependency that enforces per-user request quotas."""

    async def _dependency(request: Request, auth: AuthContext = Depends(get_auth_context)):
        if getattr(request.app.state, "disable_rate_limits", False):
            return
        await enforce_rate_limit(auth.user_id, endpoint, limit, window_minutes)

    return _dependency
