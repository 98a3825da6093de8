"""
orchestrator.py — Panic activation and resolution workflows.

═══════════════════════════════════════════════════════════════════════════
ACTIVATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Validate        │  latitude/longitude present, numeric, in range
    └─────────┬───────────┘  → InvalidLocation (nothing written)
              ▼
    ┌─────────────────────┐
    │  2. Load contacts   │  active only, primary first
    └─────────┬───────────┘  → NoContactsConfigured (nothing written)
              ▼
    ┌─────────────────────┐
    │  2b. Admit          │  rate limit; only valid requests are counted
    └─────────┬───────────┘  → RateLimitError (nothing written)
              ▼
    ┌─────────────────────┐
    │  3. Record alert    │  status = active
    │  4. User location   │  last-known location refresh
    └─────────┬───────────┘  COMMIT
              ▼
    ┌─────────────────────┐
    │  5. Dispatch        │  concurrent fan-out, failures captured
    │  6. Store outcomes  │
    └─────────┬───────────┘  COMMIT
              ▼
    ┌─────────────────────┐
    │  7. Live event      │  alert_activated (no listener is fine)
    │  8. Summary         │  notified / delivered contact counts
    └─────────────────────┘

The alert row is committed before any provider is called.

Resolve / false alarm / cancel: conditional transition, COMMIT, SMS
notice to the contacts the alert reached, alert_status_changed event.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import InvalidLocation, NoContactsConfigured
from backend.app.emergency import alert_store, contact_store, user_store
from backend.app.emergency.alert_store import AlertInfo, AlertLocation
from backend.app.emergency.channels.sms_gateway import format_resolution_sms
from backend.app.emergency.dispatcher import NotificationDispatcher
from backend.app.emergency.events import AlertEventBus
from backend.app.emergency.models import (
    AlertContext,
    AlertStatus,
    AlertSummary,
    AlertType,
    ResolutionOutcome,
)
from backend.app.emergency.tables import EmergencyAlert, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivationOptions:
    alert_type: AlertType = AlertType.PANIC
    message: Optional[str] = None
    battery_level: Optional[int] = None
    network_type: Optional[str] = None


def _coordinate(value: Any, name: str, bound: float) -> float:
    if value is None or value == "":
        raise InvalidLocation(field=name)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidLocation(f"{name.capitalize()} must be a number", field=name)
    if not math.isfinite(number) or not -bound <= number <= bound:
        raise InvalidLocation(
            f"{name.capitalize()} must be between -{bound:g} and {bound:g}", field=name,
        )
    return number


def validate_location(latitude: Any, longitude: Any) -> Tuple[float, float]:
    """Return (latitude, longitude) as floats or raise InvalidLocation. 0 is valid."""
    return (
        _coordinate(latitude, "latitude", 90.0),
        _coordinate(longitude, "longitude", 180.0),
    )


class AlertOrchestrator:

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        events: AlertEventBus,
        *,
        map_link_base: str = "https://www.google.com/maps?q=",
    ):
        self.dispatcher = dispatcher
        self.events = events
        self.map_link_base = map_link_base

    # ═══════════════════════════════════════════════════════════════════════
    # Activation
    # ═══════════════════════════════════════════════════════════════════════

    async def activate_alert(
        self,
        session: AsyncSession,
        user: User,
        location: Mapping[str, Any],
        options: Optional[ActivationOptions] = None,
        admit: Optional[Callable[[int], Awaitable[None]]] = None,
    ) -> AlertSummary:
        """
        Run the activation flow. `admit(user_id)` is awaited once the request
        is known to be valid (e.g. the rate limiter); it may raise to refuse.
        """
        options = options or ActivationOptions()
        latitude, longitude = validate_location(location.get("latitude"), location.get("longitude"))
        address = location.get("address")
        accuracy = location.get("accuracy")

        contacts = await contact_store.list_active_contacts(session, user.id)
        if not contacts:
            raise NoContactsConfigured(user.id)
        if admit is not None:
            await admit(user.id)
        targets = [contact_store.to_target(c) for c in contacts]

        alert = await alert_store.create_alert(
            session,
            user.id,
            options.alert_type,
            AlertLocation(latitude, longitude, address, accuracy),
            AlertInfo(options.message, options.battery_level, options.network_type),
        )
        await user_store.update_location(session, user, latitude, longitude, address)
        await session.commit()

        logger.warning(
            "Emergency alert %s activated by user %s (%s) with %d contacts",
            alert.id, user.id, options.alert_type.value, len(targets),
            extra={"alert_id": alert.id, "user_id": user.id, "recipient_count": len(targets)},
        )

        context = AlertContext(
            alert_id=alert.id,
            user_id=user.id,
            user_name=user.name,
            latitude=latitude,
            longitude=longitude,
            activated_at=alert.activated_at,
            map_link_base=self.map_link_base,
            user_phone=user.phone,
            user_email=user.email,
            address=address,
            alert_type=options.alert_type,
            message=options.message,
        )
        outcomes = await self.dispatcher.notify_contacts(
            context,
            targets,
            on_sms_sent=partial(contact_store.record_alert_sent, session),
        )
        await alert_store.append_notification_outcomes(session, alert.id, outcomes)
        await session.commit()

        delivered = len({o.contact_id for o in outcomes if o.succeeded})
        self.events.publish(user.id, "alert_activated", {
            "alertId": alert.id,
            "status": AlertStatus.ACTIVE.value,
            "notifiedContacts": len(targets),
            "deliveredContacts": delivered,
        })

        return AlertSummary(
            alert_id=alert.id,
            status=AlertStatus.ACTIVE,
            latitude=latitude,
            longitude=longitude,
            activated_at=alert.activated_at,
            notified_contacts=len(targets),
            delivered_contacts=delivered,
            address=address,
            accuracy=accuracy,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Transitions
    # ═══════════════════════════════════════════════════════════════════════

    async def resolve_alert(
        self,
        session: AsyncSession,
        user: User,
        alert_id: str,
        outcome: Optional[ResolutionOutcome] = None,
        notes: Optional[str] = None,
    ) -> EmergencyAlert:
        alert = await alert_store.resolve(session, alert_id, user.id, outcome, notes)
        await session.commit()
        await self._after_transition(session, user, alert)
        return alert

    async def mark_false_alarm(self, session: AsyncSession, user: User, alert_id: str) -> EmergencyAlert:
        alert = await alert_store.mark_false_alarm(session, alert_id, user.id)
        await session.commit()
        await self._after_transition(session, user, alert)
        return alert

    async def cancel_alert(self, session: AsyncSession, user: User, alert_id: str) -> EmergencyAlert:
        alert = await alert_store.cancel(session, alert_id, user.id)
        await session.commit()
        await self._after_transition(session, user, alert)
        return alert

    async def _after_transition(self, session: AsyncSession, user: User, alert: EmergencyAlert) -> None:
        # the transition is already committed; nothing here may fail the request
        try:
            contacts = await contact_store.get_contacts_by_ids(
                session, user.id, (n.contact_id for n in alert.notifications),
            )
        except SQLAlchemyError as exc:
            logger.error(
                "Resolution notice for alert %s skipped: contact lookup failed: %s",
                alert.id, exc,
                extra={"alert_id": alert.id, "user_id": user.id},
            )
            contacts = []

        targets = [contact_store.to_target(c) for c in contacts if c.notify_sms]
        body = format_resolution_sms(user.name, alert.status, alert.resolution_outcome)
        sent = await self.dispatcher.send_resolution_notice(targets, body)

        logger.info(
            "Alert %s closed as %s; notice sent to %d/%d contacts",
            alert.id, alert.status.value, sent, len(targets),
            extra={"alert_id": alert.id, "user_id": user.id, "recipient_count": len(targets)},
        )
        self.events.publish(user.id, "alert_status_changed", {
            "alertId": alert.id,
            "status": alert.status.value,
        })
