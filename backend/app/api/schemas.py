"""
Pydantic schemas for the emergency API.

Request bodies accept camelCase (what the web app sends) as well as
snake_case field names. Responses are rendered by the ORM `to_dict()`
methods and wrapped with `ok()`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from backend.app.emergency.models import AlertType, ContactRelation, ResolutionOutcome

PHONE_PATTERN = r"^[+]?[(]?[0-9]{3}[)]?[-\s.]?[0-9]{3}[-\s.]?[0-9]{4,6}$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def ok(data: Any = None, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """Success envelope: {success, data, message?, ...extra}."""
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    body.update(extra)
    return body


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class AlertCreate(CamelModel):
    """
    Body for POST /emergency/alert.

    Coordinates are optional at the schema level so a missing location
    gets the specific "Location is required" error from the orchestrator.
    """
    latitude: Optional[float] = Field(None, examples=[6.5244])
    longitude: Optional[float] = Field(None, examples=[3.3792])
    address: Optional[str] = Field(None, max_length=255)
    accuracy: Optional[float] = Field(None, ge=0, description="Metres")
    alert_type: AlertType = AlertType.PANIC
    message: Optional[str] = Field(None, max_length=500)
    battery_level: Optional[int] = Field(None, ge=0, le=100)
    network_type: Optional[str] = Field(None, max_length=20)


class ResolveRequest(CamelModel):
    outcome: Optional[ResolutionOutcome] = None
    notes: Optional[str] = Field(None, max_length=1000)


class AcknowledgeRequest(CamelModel):
    response: Optional[str] = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

class NotificationPreferences(CamelModel):
    sms: bool = True
    email: bool = True
    push: bool = False


def _flatten_preferences(fields: Dict[str, Any]) -> Dict[str, Any]:
    prefs = fields.pop("notification_preferences", None)
    if prefs:
        for channel, enabled in prefs.items():
            fields[f"notify_{channel}"] = enabled
    return fields


class ContactCreate(CamelModel):
    name: str = Field(..., min_length=2, max_length=50)
    phone: str = Field(..., pattern=PHONE_PATTERN, examples=["+15551234567"])
    email: Optional[EmailStr] = None
    relation: ContactRelation = ContactRelation.OTHER
    is_primary: bool = False
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    notes: Optional[str] = Field(None, max_length=200)

    def to_store_fields(self) -> Dict[str, Any]:
        return _flatten_preferences(self.model_dump())


class ContactUpdate(CamelModel):
    """Partial update; only fields present in the body are applied."""
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    email: Optional[EmailStr] = None
    relation: Optional[ContactRelation] = None
    is_primary: Optional[bool] = None
    is_active: Optional[bool] = None
    notification_preferences: Optional[NotificationPreferences] = None
    notes: Optional[str] = Field(None, max_length=200)

    def to_store_fields(self) -> Dict[str, Any]:
        fields = self.model_dump(exclude_unset=True)
        # explicit nulls are only meaningful for the optional text fields
        for key in ("name", "phone", "relation", "is_primary", "is_active"):
            if fields.get(key, ...) is None:
                fields.pop(key)
        return _flatten_preferences(fields)
