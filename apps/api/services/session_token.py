"""Access token helpers for authenticated user scope.

Tokens are the identity provider's HS256 access tokens: ``sub`` is the user
id, ``email`` the account e-mail, and ``aud``/``role`` must name an
authenticated session. ``create_session_token`` issues the same shape for local
tooling and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


AUTHENTICATED_ROLE = "authenticated"


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    ttl_hours = int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24)
    expires_at = now + timedelta(hours=max(ttl_hours, 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "aud": settings.JWT_AUDIENCE,
        "role": AUTHENTICATED_ROLE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if email:
        claims["email"] = email

    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {"token": token, "expires_at": int(expires_at.timestamp())}


def decode_session_token(token: str) -> Dict[str, Any]:
    """Verify signature, expiry and audience; raise ValueError for anything else."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
    except JWTError as exc:
        raise ValueError("Invalid or expired access token.") from exc

    if str(payload.get("role", "")).strip() != AUTHENTICATED_ROLE:
        raise ValueError("Access token is not an authenticated session.")

    if not str(payload.get("sub", "")).strip():
        raise ValueError("Access token missing subject.")

    return payload
