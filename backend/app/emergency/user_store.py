"""User lookup and last-known-location refresh."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.emergency.models import utcnow
from backend.app.emergency.tables import User


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    return await session.get(User, user_id)


async def update_location(
    session: AsyncSession,
    user: User,
    latitude: float,
    longitude: float,
    address: Optional[str] = None,
) -> None:
    user.last_latitude = latitude
    user.last_longitude = longitude
    user.last_address = address
    user.location_updated_at = utcnow()
    await session.flush()
