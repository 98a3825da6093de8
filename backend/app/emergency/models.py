"""
models.py — Enums and plain data structures shared across the emergency system.

Defines:
    • AlertType, AlertStatus, ResolutionOutcome — alert lifecycle vocabulary
    • ContactRelation — who a trusted contact is to the user
    • NotificationChannel, DeliveryStatus — per-attempt delivery tracking
    • ContactTarget   — what the dispatcher needs to know about a contact
    • AlertContext    — the alert facts rendered into every message
    • NotificationOutcome — one channel attempt against one contact
    • AlertSummary    — what panic activation returns to the caller

ORM rows live in tables.py; these structures carry no persistence behaviour.

═══════════════════════════════════════════════════════════════════════════
ALERT STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    ┌────────┐   resolve       ┌────────────┐
    │ active │ ──────────────► │  resolved  │
    │        │   false alarm   ├────────────┤
    │        │ ──────────────► │ false-alarm│
    │        │   cancel        ├────────────┤
    │        │ ──────────────► │ cancelled  │
    └────────┘                 └────────────┘

Every alert starts `active`. The three targets are terminal: nothing
leaves them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    PANIC      = "panic"
    MEDICAL    = "medical"
    ACCIDENT   = "accident"
    HARASSMENT = "harassment"
    OTHER      = "other"


class AlertStatus(str, Enum):
    ACTIVE      = "active"
    RESOLVED    = "resolved"
    FALSE_ALARM = "false-alarm"
    CANCELLED   = "cancelled"


TERMINAL_STATUSES: FrozenSet[AlertStatus] = frozenset({
    AlertStatus.RESOLVED,
    AlertStatus.FALSE_ALARM,
    AlertStatus.CANCELLED,
})


def can_transition(current: AlertStatus, target: AlertStatus) -> bool:
    """Only `active` may move, and only into a terminal status."""
    return current == AlertStatus.ACTIVE and target in TERMINAL_STATUSES


class ResolutionOutcome(str, Enum):
    SAFE         = "safe"
    ASSISTED     = "assisted"
    HOSPITALIZED = "hospitalized"
    UNKNOWN      = "unknown"


class ContactRelation(str, Enum):
    FAMILY    = "Family"
    FRIEND    = "Friend"
    PARTNER   = "Partner"
    COLLEAGUE = "Colleague"
    GUARDIAN  = "Guardian"
    OTHER     = "Other"


class NotificationChannel(str, Enum):
    SMS   = "sms"
    EMAIL = "email"
    PUSH  = "push"
    CALL  = "call"  # recorded manually, never dispatched


class DeliveryStatus(str, Enum):
    PENDING   = "pending"
    SENT      = "sent"
    DELIVERED = "delivered"   # provider receipt, set by callbacks
    FAILED    = "failed"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ContactTarget:
    """
    Snapshot of a contact taken before dispatch.

    The dispatcher never touches the database session, so it works on
    these instead of ORM rows.
    """
    contact_id: int
    name: str
    phone: str
    email: Optional[str] = None
    notify_sms: bool = True
    notify_email: bool = True
    notify_push: bool = False


@dataclass(frozen=True)
class AlertContext:
    """Alert facts rendered into SMS, email and push templates."""
    alert_id: str
    user_id: int
    user_name: str
    latitude: float
    longitude: float
    activated_at: datetime
    map_link_base: str = "https://www.google.com/maps?q="
    user_phone: Optional[str] = None
    user_email: Optional[str] = None
    address: Optional[str] = None
    alert_type: AlertType = AlertType.PANIC
    message: Optional[str] = None

    @property
    def map_url(self) -> str:
        return f"{self.map_link_base}{self.latitude},{self.longitude}"

    @property
    def location_label(self) -> str:
        return self.address or f"{self.latitude:.5f}, {self.longitude:.5f}"


@dataclass
class NotificationOutcome:
    """Result of one channel attempt against one contact for one alert."""
    contact_id: Optional[int]
    channel: NotificationChannel
    status: DeliveryStatus = DeliveryStatus.PENDING
    notified_at: datetime = field(default_factory=utcnow)
    error_message: Optional[str] = None
    provider_ref: Optional[str] = None
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    response: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (DeliveryStatus.SENT, DeliveryStatus.DELIVERED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact": self.contact_id,
            "channel": self.channel.value,
            "deliveryStatus": self.status.value,
            "notifiedAt": iso(self.notified_at),
            "error": self.error_message,
            "acknowledgement": {
                "acknowledged": self.acknowledged,
                "acknowledgedAt": iso(self.acknowledged_at),
                "response": self.response,
            },
        }


@dataclass
class AlertSummary:
    """What the caller learns about a fresh activation."""
    alert_id: str
    status: AlertStatus
    latitude: float
    longitude: float
    activated_at: datetime
    notified_contacts: int
    delivered_contacts: int = 0
    address: Optional[str] = None
    accuracy: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "status": self.status.value,
            "location": {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "address": self.address,
                "accuracy": self.accuracy,
            },
            "notifiedContacts": self.notified_contacts,
            "deliveredContacts": self.delivered_contacts,
            "activatedAt": iso(self.activated_at),
        }
