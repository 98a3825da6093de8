"""
Alert record store — lifecycle records for panic activations.

Transitions are conditional updates:

    UPDATE emergency_alerts SET status = :target, ...
     WHERE id = :id AND user_id = :user AND status = 'active'

Zero rows on an alert the caller owns means it already left `active`
(InvalidTransition). Two racing resolvers can never both win.

Functions flush but never commit; the caller owns the transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import InvalidTransition, NotFoundError
from backend.app.emergency.models import (
    AlertStatus,
    AlertType,
    NotificationOutcome,
    ResolutionOutcome,
    as_utc,
    utcnow,
)
from backend.app.emergency.tables import AlertNotification, EmergencyAlert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertLocation:
    latitude: float
    longitude: float
    address: Optional[str] = None
    accuracy: Optional[float] = None


@dataclass(frozen=True)
class AlertInfo:
    message: Optional[str] = None
    battery_level: Optional[int] = None
    network_type: Optional[str] = None


def _duration_seconds(activated_at: datetime, deactivated_at: datetime) -> int:
    delta = as_utc(deactivated_at) - as_utc(activated_at)
    return max(0, int(delta.total_seconds()))


# ═══════════════════════════════════════════════════════════════════════════
# Create & Query
# ═══════════════════════════════════════════════════════════════════════════

async def create_alert(
    session: AsyncSession,
    user_id: int,
    alert_type: AlertType,
    location: AlertLocation,
    info: Optional[AlertInfo] = None,
) -> EmergencyAlert:
    info = info or AlertInfo()
    alert = EmergencyAlert(
        user_id=user_id,
        alert_type=alert_type,
        status=AlertStatus.ACTIVE,
        latitude=location.latitude,
        longitude=location.longitude,
        address=location.address,
        accuracy=location.accuracy,
        message=info.message,
        battery_level=info.battery_level,
        network_type=info.network_type,
        activated_at=utcnow(),
        notifications=[],
    )
    session.add(alert)
    await session.flush()
    return alert


async def find_by_id(session: AsyncSession, alert_id: str, user_id: int) -> EmergencyAlert:
    """Fetch an owned alert with its outcomes. NotFound for foreign ids."""
    result = await session.execute(
        select(EmergencyAlert)
        .where(
            EmergencyAlert.id == alert_id,
            EmergencyAlert.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    )
    alert = result.scalar_one_or_none()
    if alert is None:
        raise NotFoundError("Alert", id=alert_id)
    return alert


async def find_active_for_user(session: AsyncSession, user_id: int) -> List[EmergencyAlert]:
    result = await session.execute(
        select(EmergencyAlert)
        .where(
            EmergencyAlert.user_id == user_id,
            EmergencyAlert.status == AlertStatus.ACTIVE,
        )
        .order_by(EmergencyAlert.activated_at.desc())
    )
    return list(result.scalars().all())


async def list_history(session: AsyncSession, user_id: int, limit: int = 10) -> List[EmergencyAlert]:
    """Most recent alerts first, any status."""
    result = await session.execute(
        select(EmergencyAlert)
        .where(EmergencyAlert.user_id == user_id)
        .order_by(EmergencyAlert.activated_at.desc(), EmergencyAlert.id)
        .limit(limit)
    )
    return list(result.scalars().all())


# ═══════════════════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════════════════

async def _transition(
    session: AsyncSession,
    alert_id: str,
    user_id: int,
    target: AlertStatus,
    **values: Any,
) -> EmergencyAlert:
    alert = await find_by_id(session, alert_id, user_id)

    now = utcnow()
    result = await session.execute(
        update(EmergencyAlert)
        .where(
            EmergencyAlert.id == alert_id,
            EmergencyAlert.user_id == user_id,
            EmergencyAlert.status == AlertStatus.ACTIVE,
        )
        .values(
            status=target,
            deactivated_at=now,
            duration_seconds=_duration_seconds(alert.activated_at, now),
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidTransition(alert_id, alert.status.value, target.value)

    logger.info(
        "Alert %s → %s", alert_id, target.value,
        extra={"alert_id": alert_id, "user_id": user_id},
    )
    return await find_by_id(session, alert_id, user_id)


async def resolve(
    session: AsyncSession,
    alert_id: str,
    user_id: int,
    outcome: Optional[ResolutionOutcome] = None,
    notes: Optional[str] = None,
) -> EmergencyAlert:
    now = utcnow()
    return await _transition(
        session, alert_id, user_id, AlertStatus.RESOLVED,
        resolution_outcome=outcome or ResolutionOutcome.UNKNOWN,
        resolution_notes=notes,
        resolved_by=str(user_id),
        resolved_at=now,
    )


async def mark_false_alarm(session: AsyncSession, alert_id: str, user_id: int) -> EmergencyAlert:
    return await _transition(session, alert_id, user_id, AlertStatus.FALSE_ALARM)


async def cancel(session: AsyncSession, alert_id: str, user_id: int) -> EmergencyAlert:
    return await _transition(session, alert_id, user_id, AlertStatus.CANCELLED)


# ═══════════════════════════════════════════════════════════════════════════
# Notification outcomes
# ═══════════════════════════════════════════════════════════════════════════

async def append_notification_outcomes(
    session: AsyncSession,
    alert_id: str,
    outcomes: Iterable[NotificationOutcome],
) -> int:
    """Store dispatcher outcomes against an alert. Returns rows added."""
    rows = [
        AlertNotification(
            alert_id=alert_id,
            contact_id=o.contact_id,
            channel=o.channel,
            delivery_status=o.status,
            notified_at=o.notified_at,
            error_message=o.error_message,
            provider_ref=o.provider_ref,
            acknowledged=o.acknowledged,
            acknowledged_at=o.acknowledged_at,
            ack_response=o.response,
        )
        for o in outcomes
    ]
    session.add_all(rows)
    await session.flush()
    return len(rows)


async def acknowledge_notification(
    session: AsyncSession,
    alert_id: str,
    user_id: int,
    notification_id: int,
    response: Optional[str] = None,
) -> EmergencyAlert:
    alert = await find_by_id(session, alert_id, user_id)
    notification = next((n for n in alert.notifications if n.id == notification_id), None)
    if notification is None:
        raise NotFoundError("Notification", id=notification_id, alert_id=alert_id)

    notification.acknowledged = True
    notification.acknowledged_at = utcnow()
    notification.ack_response = response
    await session.flush()
    return alert


# ═══════════════════════════════════════════════════════════════════════════
# Statistics
# ═══════════════════════════════════════════════════════════════════════════

async def get_statistics(session: AsyncSession, user_id: int) -> Dict[str, Any]:
    """Count and mean duration per status, plus a total."""
    result = await session.execute(
        select(
            EmergencyAlert.status,
            func.count(EmergencyAlert.id),
            func.avg(EmergencyAlert.duration_seconds),
        )
        .where(EmergencyAlert.user_id == user_id)
        .group_by(EmergencyAlert.status)
    )

    by_status: Dict[str, Dict[str, Any]] = {
        s.value: {"count": 0, "avgDuration": None} for s in AlertStatus
    }
    total = 0
    for status, count, avg_duration in result.all():
        key = status.value if isinstance(status, AlertStatus) else str(status)
        by_status[key] = {
            "count": count,
            "avgDuration": round(float(avg_duration), 1) if avg_duration is not None else None,
        }
        total += count

    return {"total": total, "byStatus": by_status}
