"""
Shared FastAPI dependencies: service container and authenticated user.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.container import ServiceContainer
from backend.app.core.database import get_db
from backend.app.core.errors import AccountInactiveError, AuthError
from backend.app.core.logging_config import bind_request_context
from backend.app.core.security import decode_access_token
from backend.app.emergency import user_store
from backend.app.emergency.tables import User

_bearer = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


async def resolve_user(
    container: ServiceContainer,
    session: AsyncSession,
    token: Optional[str],
) -> User:
    """Token → active user. AuthError (401) or AccountInactiveError (403)."""
    if not token:
        raise AuthError()
    user_id = decode_access_token(container.settings, token)

    user = await user_store.get_user(session, user_id)
    if user is None:
        raise AuthError("The user belonging to this token no longer exists.")
    if not user.is_active:
        raise AccountInactiveError()
    return user


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    container: ServiceContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db),
) -> User:
    user = await resolve_user(container, session, credentials.credentials if credentials else None)
    bind_request_context(user_id=user.id)
    request.state.user_id = user.id
    return user
