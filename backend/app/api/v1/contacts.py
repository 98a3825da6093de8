"""
FastAPI routes: trusted emergency contacts.

Provides endpoints to:
    POST   /emergency/contacts        — add a contact
    GET    /emergency/contacts        — list active contacts (primary first)
    GET    /emergency/contacts/{id}   — one contact
    PUT    /emergency/contacts/{id}   — partial update
    DELETE /emergency/contacts/{id}   — remove
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_current_user
from backend.app.api.schemas import ContactCreate, ContactUpdate, ok
from backend.app.core.database import get_db
from backend.app.emergency import contact_store
from backend.app.emergency.tables import User

router = APIRouter(prefix="/emergency/contacts", tags=["emergency-contacts"])


@router.post("", status_code=201)
async def add_contact(
    body: ContactCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    contact = await contact_store.add_contact(session, user.id, body.to_store_fields())
    await session.commit()
    return ok(contact.to_dict(), "Emergency contact added successfully")


@router.get("")
async def list_contacts(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    contacts = await contact_store.list_active_contacts(session, user.id)
    return ok([c.to_dict() for c in contacts], count=len(contacts))


@router.get("/{contact_id}")
async def get_contact(
    contact_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    contact = await contact_store.get_contact(session, contact_id, user.id)
    return ok(contact.to_dict())


@router.put("/{contact_id}")
async def update_contact(
    contact_id: int,
    body: ContactUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    contact = await contact_store.update_contact(
        session, contact_id, user.id, body.to_store_fields(),
    )
    await session.commit()
    return ok(contact.to_dict(), "Contact updated successfully")


@router.delete("/{contact_id}")
async def delete_contact(
    contact_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    await contact_store.delete_contact(session, contact_id, user.id)
    await session.commit()
    return ok(None, "Contact deleted successfully")
