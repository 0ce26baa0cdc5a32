"""Profile bootstrap for authenticated users."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.profile import Profile

logger = logging.getLogger(__name__)


async def ensure_profile(db: AsyncSession, user_id: str, email: Optional[str] = None) -> Profile:
    """Return the caller's profile, creating it from the session claims on first use."""
    profile = await db.get(Profile, user_id)
    if profile is not None:
        if email and not profile.email:
            profile.email = email
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning("Email for user %s already belongs to another profile", user_id)
                profile = await db.get(Profile, user_id)
        return profile

    db.add(Profile(id=user_id, email=email or None))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await db.get(Profile, user_id)
        if existing is not None:
            return existing
        # The email is taken by another account; keep the profile without it.
        logger.warning("Email for user %s already belongs to another profile", user_id)
        db.add(Profile(id=user_id))
        await db.commit()
    return await db.get(Profile, user_id)
