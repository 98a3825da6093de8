"""
dispatcher.py — Concurrent per-contact notification fan-out.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    contacts ──┬── contact A:  sms → email → push   (sequential per contact)
               ├── contact B:  sms → email → push
               └── contact C:  sms → email → push
                        │
                        ▼  asyncio.gather (wait for all)
               flat list of NotificationOutcome
                        │
                        ▼
               on_sms_sent(contact_id) for each sent SMS (sequential)

Rules:
    • A channel is attempted only if the contact's preference is on
      (email additionally needs an address on file).
    • Any exception from a gateway becomes a `failed` outcome and an ERROR
      log line. One failure never blocks another channel or contact.
    • No retries, no ordering between contacts, no cancellation.
    • The callback runs after the gather so it can share one database
      session; a failing callback is logged and skipped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from typing import Awaitable, Callable, Iterable, List, Optional

from backend.app.emergency.channels.email_alert import (
    EmailGateway,
    build_alert_html,
    build_alert_plain,
    build_alert_subject,
)
from backend.app.emergency.channels.sms_gateway import SmsGateway, format_alert_sms
from backend.app.emergency.channels.web_push import PushGateway, build_alert_push
from backend.app.emergency.models import (
    AlertContext,
    ContactTarget,
    DeliveryStatus,
    NotificationChannel,
    NotificationOutcome,
    utcnow,
)

logger = logging.getLogger(__name__)

SmsSentCallback = Callable[[int], Awaitable[None]]


class NotificationDispatcher:
    """Deliver one alert to many contacts over their enabled channels."""

    def __init__(self, sms: SmsGateway, email: EmailGateway, push: PushGateway):
        self.sms = sms
        self.email = email
        self.push = push

    async def close(self) -> None:
        for gateway in (self.sms, self.email, self.push):
            await gateway.close()

    # ── Single attempt ──

    async def _attempt(
        self,
        context: AlertContext,
        contact: ContactTarget,
        channel: NotificationChannel,
        send: Callable[[], Awaitable[str]],
    ) -> NotificationOutcome:
        outcome = NotificationOutcome(contact_id=contact.contact_id, channel=channel)
        try:
            outcome.provider_ref = await send()
            outcome.status = DeliveryStatus.SENT
        except Exception as exc:
            logger.error(
                "%s delivery to contact %s failed for alert %s: %s",
                channel.value.upper(), contact.contact_id, context.alert_id, exc,
                extra={
                    "alert_id": context.alert_id,
                    "contact_id": contact.contact_id,
                    "channel": channel.value,
                },
            )
            outcome.status = DeliveryStatus.FAILED
            outcome.error_message = str(exc)
        outcome.notified_at = utcnow()
        return outcome

    async def _notify_one(
        self,
        context: AlertContext,
        contact: ContactTarget,
    ) -> List[NotificationOutcome]:
        outcomes: List[NotificationOutcome] = []

        if contact.notify_sms:
            outcomes.append(await self._attempt(
                context, contact, NotificationChannel.SMS,
                partial(self.sms.send, contact.phone, format_alert_sms(context)),
            ))

        if contact.notify_email and contact.email:
            outcomes.append(await self._attempt(
                context, contact, NotificationChannel.EMAIL,
                partial(
                    self.email.send,
                    contact.email,
                    build_alert_subject(context),
                    build_alert_html(context),
                    build_alert_plain(context),
                ),
            ))

        if contact.notify_push:
            outcomes.append(await self._attempt(
                context, contact, NotificationChannel.PUSH,
                partial(self.push.send, contact.contact_id, build_alert_push(context)),
            ))

        return outcomes

    # ── Public API ──

    async def notify_contacts(
        self,
        context: AlertContext,
        contacts: Iterable[ContactTarget],
        on_sms_sent: Optional[SmsSentCallback] = None,
    ) -> List[NotificationOutcome]:
        """
        Attempt every enabled channel for every contact.

        Returns one outcome per channel attempted per contact. Never raises
        because a channel failed.
        """
        contacts = list(contacts)
        start = time.perf_counter()

        per_contact = await asyncio.gather(
            *(self._notify_one(context, c) for c in contacts)
        )
        outcomes = [o for group in per_contact for o in group]

        if on_sms_sent is not None:
            for outcome in outcomes:
                if outcome.channel != NotificationChannel.SMS or not outcome.succeeded:
                    continue
                try:
                    await on_sms_sent(outcome.contact_id)
                except Exception as exc:
                    logger.warning(
                        "Alert counter update failed for contact %s: %s",
                        outcome.contact_id, exc,
                        extra={"contact_id": outcome.contact_id},
                    )

        sent = sum(1 for o in outcomes if o.succeeded)
        logger.info(
            "Alert %s dispatched: %d/%d attempts sent to %d contacts (%.0fms)",
            context.alert_id, sent, len(outcomes), len(contacts),
            (time.perf_counter() - start) * 1000,
            extra={
                "alert_id": context.alert_id,
                "recipient_count": len(contacts),
                "duration_ms": (time.perf_counter() - start) * 1000,
            },
        )
        return outcomes

    async def send_resolution_notice(
        self,
        contacts: Iterable[ContactTarget],
        body: str,
    ) -> int:
        """SMS-only follow-up. Failures are logged; returns how many were sent."""

        async def _one(contact: ContactTarget) -> bool:
            try:
                await self.sms.send(contact.phone, body)
                return True
            except Exception as exc:
                logger.error(
                    "Resolution notice to contact %s failed: %s",
                    contact.contact_id, exc,
                    extra={"contact_id": contact.contact_id, "channel": "sms"},
                )
                return False

        results = await asyncio.gather(*(_one(c) for c in contacts))
        return sum(results)
