"""
ORM tables for the emergency system.

═══════════════════════════════════════════════════════════════════════════
DATABASE SCHEMA DESIGN
═══════════════════════════════════════════════════════════════════════════

Table: users                 (owned by the auth service; we touch location only)
Table: emergency_contacts
─────────────────────────────────────────────────────────────────────────────
| Column            | Type          | Description                          |
|-------------------|---------------|--------------------------------------|
| id                | SERIAL PK     | Contact id                           |
| user_id           | FK users      | Owner (ON DELETE CASCADE)            |
| phone             | VARCHAR(20)   | Unique per owner                     |
| is_primary        | BOOLEAN       | At most one TRUE per owner           |
| is_active         | BOOLEAN       | Inactive contacts are never alerted  |
| notify_sms/email/push | BOOLEAN   | Channel preferences                  |
| alert_count       | INTEGER       | Successful SMS alerts received       |
─────────────────────────────────────────────────────────────────────────────

Table: emergency_alerts      (id is an opaque hex string)
Table: alert_notifications   (one row per channel attempt per contact)

Constraints:
- UNIQUE (user_id, phone) on emergency_contacts
- Partial UNIQUE (user_id) WHERE is_primary — one primary contact per user
- alert_notifications.contact_id ON DELETE SET NULL, so history survives
  contact removal

═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base
from backend.app.emergency.models import (
    AlertStatus,
    AlertType,
    ContactRelation,
    DeliveryStatus,
    NotificationChannel,
    ResolutionOutcome,
    iso,
    utcnow,
)


def _enum(enum_cls, length: int = 20) -> SAEnum:
    # store the lowercase/hyphenated values, not member names
    return SAEnum(
        enum_cls,
        values_callable=lambda e: [m.value for m in e],
        native_enum=False,
        length=length,
    )


def _new_alert_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════════════════

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    hashed_password: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    last_latitude: Mapped[Optional[float]] = mapped_column(Float)
    last_longitude: Mapped[Optional[float]] = mapped_column(Float)
    last_address: Mapped[Optional[str]] = mapped_column(String(255))
    location_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    contacts: Mapped[List["EmergencyContact"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Emergency Contacts
# ═══════════════════════════════════════════════════════════════════════════

class EmergencyContact(Base):
    __tablename__ = "emergency_contacts"
    __table_args__ = (
        UniqueConstraint("user_id", "phone", name="uq_contacts_user_phone"),
        Index(
            "uq_contacts_one_primary",
            "user_id",
            unique=True,
            postgresql_where=text("is_primary"),
            sqlite_where=text("is_primary = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True,
    )
    name: Mapped[str] = mapped_column(String(50))
    phone: Mapped[str] = mapped_column(String(20))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    relation: Mapped[ContactRelation] = mapped_column(
        _enum(ContactRelation), default=ContactRelation.OTHER,
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    notify_sms: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_email: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_push: Mapped[bool] = mapped_column(Boolean, default=False)

    alert_count: Mapped[int] = mapped_column(Integer, default=0)
    last_alert_sent: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(String(200))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow,
    )

    user: Mapped[User] = relationship(back_populates="contacts")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user": self.user_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "relation": self.relation.value,
            "isPrimary": self.is_primary,
            "isActive": self.is_active,
            "notificationPreferences": {
                "sms": self.notify_sms,
                "email": self.notify_email,
                "push": self.notify_push,
            },
            "alertCount": self.alert_count,
            "lastAlertSent": iso(self.last_alert_sent),
            "notes": self.notes,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Emergency Alerts
# ═══════════════════════════════════════════════════════════════════════════

class EmergencyAlert(Base):
    __tablename__ = "emergency_alerts"
    __table_args__ = (
        Index("ix_alerts_user_activated", "user_id", "activated_at"),
        Index("ix_alerts_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_alert_id)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    alert_type: Mapped[AlertType] = mapped_column(_enum(AlertType), default=AlertType.PANIC)
    status: Mapped[AlertStatus] = mapped_column(_enum(AlertStatus), default=AlertStatus.ACTIVE)

    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    address: Mapped[Optional[str]] = mapped_column(String(255))
    accuracy: Mapped[Optional[float]] = mapped_column(Float)

    message: Mapped[Optional[str]] = mapped_column(String(500))
    battery_level: Mapped[Optional[int]] = mapped_column(Integer)
    network_type: Mapped[Optional[str]] = mapped_column(String(20))

    resolution_outcome: Mapped[Optional[ResolutionOutcome]] = mapped_column(_enum(ResolutionOutcome))
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(64))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    activated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deactivated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer)

    notifications: Mapped[List["AlertNotification"]] = relationship(
        back_populates="alert",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AlertNotification.id",
    )

    def to_dict(self) -> Dict[str, Any]:
        resolution = None
        if self.resolution_outcome is not None or self.resolved_at is not None:
            resolution = {
                "outcome": self.resolution_outcome.value if self.resolution_outcome else None,
                "notes": self.resolution_notes,
                "resolvedBy": self.resolved_by,
                "resolvedAt": iso(self.resolved_at),
            }
        return {
            "id": self.id,
            "user": self.user_id,
            "alertType": self.alert_type.value,
            "status": self.status.value,
            "location": {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "address": self.address,
                "accuracy": self.accuracy,
            },
            "additionalInfo": {
                "message": self.message,
                "batteryLevel": self.battery_level,
                "networkType": self.network_type,
            },
            "notifiedContacts": [n.to_dict() for n in self.notifications],
            "resolution": resolution,
            "activatedAt": iso(self.activated_at),
            "deactivatedAt": iso(self.deactivated_at),
            "duration": self.duration_seconds,
        }


class AlertNotification(Base):
    __tablename__ = "alert_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    alert_id: Mapped[str] = mapped_column(
        ForeignKey("emergency_alerts.id", ondelete="CASCADE"), index=True,
    )
    contact_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("emergency_contacts.id", ondelete="SET NULL"),
    )
    channel: Mapped[NotificationChannel] = mapped_column(_enum(NotificationChannel))
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        _enum(DeliveryStatus), default=DeliveryStatus.PENDING,
    )
    notified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    provider_ref: Mapped[Optional[str]] = mapped_column(String(128))

    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ack_response: Mapped[Optional[str]] = mapped_column(String(500))

    alert: Mapped[EmergencyAlert] = relationship(back_populates="notifications")
    contact: Mapped[Optional[EmergencyContact]] = relationship(lazy="selectin")

    def to_dict(self) -> Dict[str, Any]:
        contact: Any = self.contact_id
        # rows appended in this session have no contact loaded yet
        if "contact" not in inspect(self).unloaded and self.contact is not None:
            contact = {
                "id": self.contact.id,
                "name": self.contact.name,
                "phone": self.contact.phone,
                "relation": self.contact.relation.value,
            }
        return {
            "id": self.id,
            "contact": contact,
            "channel": self.channel.value,
            "deliveryStatus": self.delivery_status.value,
            "notifiedAt": iso(self.notified_at),
            "error": self.error_message,
            "acknowledgement": {
                "acknowledged": self.acknowledged,
                "acknowledgedAt": iso(self.acknowledged_at),
                "response": self.ack_response,
            },
        }
