"""
FastAPI routes: panic alerts.

Provides endpoints to:
    POST /emergency/alert                                   — activate a panic alert
    GET  /emergency/alerts                                  — alert history
    GET  /emergency/alerts/active                           — active alerts
    GET  /emergency/alerts/stats                            — per-status statistics
    GET  /emergency/alerts/{id}                             — alert detail with outcomes
    PUT  /emergency/alerts/{id}/resolve                     — resolve
    PUT  /emergency/alerts/{id}/false-alarm                 — mark false alarm
    PUT  /emergency/alerts/{id}/cancel                      — cancel
    PUT  /emergency/alerts/{id}/notifications/{nid}/acknowledge
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_container, get_current_user
from backend.app.api.schemas import AcknowledgeRequest, AlertCreate, ResolveRequest, ok
from backend.app.core.config import settings
from backend.app.core.container import ServiceContainer
from backend.app.core.database import get_db
from backend.app.emergency import alert_store
from backend.app.emergency.orchestrator import ActivationOptions
from backend.app.emergency.tables import User

router = APIRouter(prefix="/emergency", tags=["emergency-alerts"])


@router.post("/alert", status_code=201)
async def activate_alert(
    body: AlertCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Record a panic alert and notify every active contact."""
    summary = await container.orchestrator.activate_alert(
        session,
        user,
        {
            "latitude": body.latitude,
            "longitude": body.longitude,
            "address": body.address,
            "accuracy": body.accuracy,
        },
        ActivationOptions(
            alert_type=body.alert_type,
            message=body.message,
            battery_level=body.battery_level,
            network_type=body.network_type,
        ),
        admit=container.rate_limiter.check,
    )
    return ok(
        summary.to_dict(),
        f"Emergency alert activated! {summary.notified_contacts} contact(s) have been notified.",
    )


@router.get("/alerts")
async def alert_history(
    limit: int = Query(
        settings.ALERT_HISTORY_DEFAULT_LIMIT,
        ge=1,
        le=settings.ALERT_HISTORY_MAX_LIMIT,
        description="Most recent N alerts",
    ),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    alerts = await alert_store.list_history(session, user.id, limit)
    return ok([a.to_dict() for a in alerts], count=len(alerts))


@router.get("/alerts/active")
async def active_alerts(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    alerts = await alert_store.find_active_for_user(session, user.id)
    return ok([a.to_dict() for a in alerts], count=len(alerts))


@router.get("/alerts/stats")
async def alert_statistics(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    return ok(await alert_store.get_statistics(session, user.id))


@router.get("/alerts/{alert_id}")
async def alert_detail(
    alert_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    alert = await alert_store.find_by_id(session, alert_id, user.id)
    return ok(alert.to_dict())


@router.put("/alerts/{alert_id}/resolve")
async def resolve_alert(
    alert_id: str,
    body: Optional[ResolveRequest] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    body = body or ResolveRequest()
    alert = await container.orchestrator.resolve_alert(
        session, user, alert_id, body.outcome, body.notes,
    )
    return ok(alert.to_dict(), "Alert resolved successfully")


@router.put("/alerts/{alert_id}/false-alarm")
async def mark_false_alarm(
    alert_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.orchestrator.mark_false_alarm(session, user, alert_id)
    return ok(alert.to_dict(), "Alert marked as false alarm")


@router.put("/alerts/{alert_id}/cancel")
async def cancel_alert(
    alert_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.orchestrator.cancel_alert(session, user, alert_id)
    return ok(alert.to_dict(), "Alert cancelled")


@router.put("/alerts/{alert_id}/notifications/{notification_id}/acknowledge")
async def acknowledge_notification(
    alert_id: str,
    notification_id: int,
    body: Optional[AcknowledgeRequest] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    alert = await alert_store.acknowledge_notification(
        session, alert_id, user.id, notification_id,
        body.response if body else None,
    )
    await session.commit()
    return ok(alert.to_dict(), "Notification acknowledged")
