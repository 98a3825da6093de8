"""
Contact store — persistence for a user's trusted emergency contacts.

Rules enforced here:
    • phone is unique per user (another user may reuse it)
    • at most one primary contact per user: other primaries are cleared in
      the same transaction, and the partial unique index rejects a racing
      writer with PrimaryContactConflict
    • every lookup is scoped to the owning user; foreign ids are NotFound

Functions flush but never commit; the caller owns the transaction.

Usage:
    contact = await add_contact(session, user.id, {"name": "Ada", "phone": "+15551234567"})
    contacts = await list_active_contacts(session, user.id)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import DuplicateContact, NotFoundError, PrimaryContactConflict
from backend.app.emergency.models import ContactRelation, ContactTarget, utcnow
from backend.app.emergency.tables import AlertNotification, EmergencyContact

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = (
    "name", "phone", "email", "relation", "is_primary", "is_active",
    "notify_sms", "notify_email", "notify_push", "notes",
)


def _clean(data: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: v for k, v in data.items() if k in _EDITABLE_FIELDS}
    if isinstance(fields.get("relation"), str):
        fields["relation"] = ContactRelation(fields["relation"])
    return fields


def to_target(contact: EmergencyContact) -> ContactTarget:
    """Detach the fields the dispatcher needs from an ORM row."""
    return ContactTarget(
        contact_id=contact.id,
        name=contact.name,
        phone=contact.phone,
        email=contact.email,
        notify_sms=contact.notify_sms,
        notify_email=contact.notify_email,
        notify_push=contact.notify_push,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Invariant helpers
# ═══════════════════════════════════════════════════════════════════════════

async def _ensure_phone_free(
    session: AsyncSession,
    user_id: int,
    phone: str,
    exclude_id: Optional[int] = None,
) -> None:
    stmt = select(EmergencyContact.id).where(
        EmergencyContact.user_id == user_id,
        EmergencyContact.phone == phone,
    )
    if exclude_id is not None:
        stmt = stmt.where(EmergencyContact.id != exclude_id)
    if (await session.execute(stmt)).first() is not None:
        raise DuplicateContact(phone)


async def _clear_primary(
    session: AsyncSession,
    user_id: int,
    exclude_id: Optional[int] = None,
) -> None:
    stmt = (
        update(EmergencyContact)
        .where(
            EmergencyContact.user_id == user_id,
            EmergencyContact.is_primary.is_(True),
        )
        .values(is_primary=False, updated_at=utcnow())
    )
    if exclude_id is not None:
        stmt = stmt.where(EmergencyContact.id != exclude_id)
    await session.execute(stmt)


# Postgres reports the constraint name, SQLite the constrained columns
_PHONE_VIOLATIONS = (
    "uq_contacts_user_phone",
    "UNIQUE constraint failed: emergency_contacts.user_id, emergency_contacts.phone",
)
_PRIMARY_VIOLATIONS = (
    "uq_contacts_one_primary",
    "UNIQUE constraint failed: emergency_contacts.user_id",
)


async def _flush(session: AsyncSession, user_id: int, phone: Optional[str]) -> None:
    try:
        await session.flush()
    except IntegrityError as e:
        detail = str(e.orig)
        if any(marker in detail for marker in _PHONE_VIOLATIONS):
            raise DuplicateContact(phone or "") from e
        if any(marker in detail for marker in _PRIMARY_VIOLATIONS):
            logger.warning(
                "Primary contact race lost for user %s", user_id,
                extra={"user_id": user_id},
            )
            raise PrimaryContactConflict(user_id) from e
        raise


# ═══════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════

async def add_contact(
    session: AsyncSession,
    user_id: int,
    data: Dict[str, Any],
) -> EmergencyContact:
    """Insert a contact for `user_id`. Raises DuplicateContact on a reused phone."""
    fields = _clean(data)
    await _ensure_phone_free(session, user_id, fields["phone"])

    if fields.get("is_primary"):
        await _clear_primary(session, user_id)

    contact = EmergencyContact(user_id=user_id, **fields)
    session.add(contact)
    await _flush(session, user_id, fields["phone"])

    logger.info(
        "Contact %s added for user %s", contact.id, user_id,
        extra={"user_id": user_id, "contact_id": contact.id},
    )
    return contact


async def list_active_contacts(session: AsyncSession, user_id: int) -> List[EmergencyContact]:
    """Active contacts, primary first, then in creation order."""
    result = await session.execute(
        select(EmergencyContact)
        .where(
            EmergencyContact.user_id == user_id,
            EmergencyContact.is_active.is_(True),
        )
        .order_by(
            EmergencyContact.is_primary.desc(),
            EmergencyContact.created_at,
            EmergencyContact.id,
        )
    )
    return list(result.scalars().all())


async def get_contact(session: AsyncSession, contact_id: int, user_id: int) -> EmergencyContact:
    result = await session.execute(
        select(EmergencyContact).where(
            EmergencyContact.id == contact_id,
            EmergencyContact.user_id == user_id,
        )
    )
    contact = result.scalar_one_or_none()
    if contact is None:
        raise NotFoundError("Contact", id=contact_id)
    return contact


async def get_contacts_by_ids(
    session: AsyncSession,
    user_id: int,
    ids: Iterable[Optional[int]],
) -> List[EmergencyContact]:
    wanted = {i for i in ids if i is not None}
    if not wanted:
        return []
    result = await session.execute(
        select(EmergencyContact)
        .where(
            EmergencyContact.user_id == user_id,
            EmergencyContact.id.in_(wanted),
        )
        .order_by(EmergencyContact.id)
    )
    return list(result.scalars().all())


async def update_contact(
    session: AsyncSession,
    contact_id: int,
    user_id: int,
    patch: Dict[str, Any],
) -> EmergencyContact:
    """Apply a partial update with the same phone and primary rules as insert."""
    contact = await get_contact(session, contact_id, user_id)
    fields = _clean(patch)

    new_phone = fields.get("phone")
    if new_phone is not None and new_phone != contact.phone:
        await _ensure_phone_free(session, user_id, new_phone, exclude_id=contact.id)

    # clear before assigning, or autoflush would briefly hold two primaries
    if fields.get("is_primary"):
        await _clear_primary(session, user_id, exclude_id=contact.id)

    for key, value in fields.items():
        setattr(contact, key, value)
    contact.updated_at = utcnow()
    await _flush(session, user_id, new_phone or contact.phone)

    logger.info(
        "Contact %s updated (%s)", contact.id, ", ".join(sorted(fields)) or "no changes",
        extra={"user_id": user_id, "contact_id": contact.id},
    )
    return contact


async def delete_contact(session: AsyncSession, contact_id: int, user_id: int) -> None:
    contact = await get_contact(session, contact_id, user_id)

    # historic outcomes keep their row but lose the reference
    await session.execute(
        update(AlertNotification)
        .where(AlertNotification.contact_id == contact.id)
        .values(contact_id=None)
    )
    await session.delete(contact)
    await session.flush()

    logger.info(
        "Contact %s deleted", contact_id,
        extra={"user_id": user_id, "contact_id": contact_id},
    )


async def record_alert_sent(session: AsyncSession, contact_id: int) -> None:
    """Atomically bump the alert counter and stamp the last-alert time."""
    await session.execute(
        update(EmergencyContact)
        .where(EmergencyContact.id == contact_id)
        .values(
            alert_count=EmergencyContact.alert_count + 1,
            last_alert_sent=utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
