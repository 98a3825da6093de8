"""
Bearer token verification (PyJWT, HS256).

Token issuance belongs to the auth service; `create_access_token` exists
for operators and tests that need a valid token for a known user id.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from backend.app.core.config import Settings
from backend.app.core.errors import AuthError


def create_access_token(
    settings: Settings,
    user_id: int,
    *,
    email: Optional[str] = None,
    expires_in: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "id": user_id,
        "iat": now,
        "exp": now + (expires_in or timedelta(minutes=settings.JWT_EXPIRE_MINUTES)),
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(settings: Settings, token: str) -> int:
    """Verify signature and expiry; return the user id claim."""
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Your token has expired. Please log in again.")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token. Please log in again.")

    user_id = claims.get("id")
    if not isinstance(user_id, int):
        raise AuthError("Invalid token. Please log in again.")
    return user_id
