"""
Per-user panic activation throttle.

Fixed window in Redis: `ratelimit:alert:{user_id}` counts activations and
expires after the window. When Redis is unreachable the limiter lets the
alert through.
"""

from __future__ import annotations

import logging
from typing import Optional

from backend.app.core.cache import RedisCache
from backend.app.core.errors import RateLimitError

logger = logging.getLogger(__name__)


class AlertRateLimiter:

    def __init__(
        self,
        cache: Optional[RedisCache],
        *,
        max_alerts: int = 3,
        window_seconds: int = 60,
        enabled: bool = True,
    ):
        self.cache = cache
        self.max_alerts = max_alerts
        self.window_seconds = window_seconds
        self.enabled = enabled

    async def check(self, user_id: int) -> None:
        """Count one activation; raise RateLimitError past the limit."""
        if not self.enabled or self.cache is None:
            return

        count = await self.cache.incr_window(f"ratelimit:alert:{user_id}", self.window_seconds)
        if count is None:
            logger.warning(
                "Rate limiter unavailable, allowing alert for user %s", user_id,
                extra={"user_id": user_id},
            )
            return

        if count > self.max_alerts:
            logger.warning(
                "Alert rate limit hit for user %s (%d in %ds)",
                user_id, count, self.window_seconds,
                extra={"user_id": user_id},
            )
            raise RateLimitError(retry_after=self.window_seconds)
