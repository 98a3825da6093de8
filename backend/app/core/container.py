"""
Service container — every long-lived client, built once per process.

    build_container(settings)
        ├── Database            (engine + session factory)
        ├── RedisCache          (lazy connection)
        ├── AlertEventBus       (live listeners)
        ├── NotificationDispatcher(SmsGateway, EmailGateway, PushGateway)
        ├── AlertOrchestrator   (dispatcher + event bus)
        └── AlertRateLimiter    (RedisCache)

The FastAPI app keeps the container on `app.state.container`; handlers
reach it through `api.deps.get_container`. Tests build their own with
fake gateways and pass it to `create_app`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend.app.core.cache import RedisCache
from backend.app.core.config import Settings
from backend.app.core.database import Database
from backend.app.emergency.channels import EmailGateway, PushGateway, SmsGateway
from backend.app.emergency.dispatcher import NotificationDispatcher
from backend.app.emergency.events import AlertEventBus
from backend.app.emergency.orchestrator import AlertOrchestrator
from backend.app.emergency.rate_limit import AlertRateLimiter

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    database: Database
    cache: Optional[RedisCache]
    events: AlertEventBus
    dispatcher: NotificationDispatcher
    orchestrator: AlertOrchestrator
    rate_limiter: AlertRateLimiter

    async def close(self) -> None:
        await self.dispatcher.close()
        if self.cache is not None:
            await self.cache.close()
        await self.database.close()


def build_container(
    settings: Settings,
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
    cache: Optional[RedisCache] = None,
) -> ServiceContainer:
    """Wire the production object graph; `dispatcher`/`cache` override for tests."""
    database = Database(
        settings.DATABASE_URL,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=settings.DATABASE_ECHO,
    )
    if cache is None and settings.ALERT_RATE_LIMIT_ENABLED:
        cache = RedisCache(settings.REDIS_URL)

    if dispatcher is None:
        dispatcher = NotificationDispatcher(
            sms=SmsGateway.from_settings(settings),
            email=EmailGateway.from_settings(settings),
            push=PushGateway.from_settings(settings),
        )

    events = AlertEventBus(max_queue_size=settings.LIVE_EVENT_QUEUE_SIZE)
    orchestrator = AlertOrchestrator(
        dispatcher,
        events,
        map_link_base=settings.MAP_LINK_BASE,
    )
    rate_limiter = AlertRateLimiter(
        cache,
        max_alerts=settings.ALERT_RATE_LIMIT_MAX,
        window_seconds=settings.ALERT_RATE_LIMIT_WINDOW_SECONDS,
        enabled=settings.ALERT_RATE_LIMIT_ENABLED,
    )

    logger.info(
        "Services wired: sms=%s email=%s push=%s rate_limit=%s",
        dispatcher.sms.provider, dispatcher.email.provider, dispatcher.push.provider,
        "on" if rate_limiter.enabled else "off",
    )
    return ServiceContainer(
        settings=settings,
        database=database,
        cache=cache,
        events=events,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        rate_limiter=rate_limiter,
    )
