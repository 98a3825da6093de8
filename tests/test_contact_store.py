"""
test_contact_store.py — Contact persistence rules.

Covers:
    • Insert defaults and duplicate-phone detection (per user)
    • Single-primary invariant (store clear + partial unique index)
    • Listing order and inactive filtering
    • Ownership checks on get / update / delete
    • Alert counter bump and outcome reference nulling on delete

Run with:
    pytest tests/test_contact_store.py -v
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from backend.app.core.errors import DuplicateContact, NotFoundError, PrimaryContactConflict
from backend.app.emergency import contact_store
from backend.app.emergency.models import (
    AlertType,
    ContactRelation,
    DeliveryStatus,
    NotificationChannel,
    NotificationOutcome,
)
from backend.app.emergency import alert_store
from backend.app.emergency.alert_store import AlertLocation
from backend.app.emergency.tables import AlertNotification

from conftest import create_user


def _contact(phone: str = "+15551234567", **extra):
    data = {"name": "Bola", "phone": phone}
    data.update(extra)
    return data


class TestAddContact:

    def test_defaults(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            return await contact_store.add_contact(session, user.id, _contact())

        contact = run_db(scenario)
        assert contact.id is not None
        assert contact.relation == ContactRelation.OTHER
        assert contact.is_active is True
        assert contact.is_primary is False
        assert (contact.notify_sms, contact.notify_email, contact.notify_push) == (True, True, False)
        assert contact.alert_count == 0

    def test_relation_accepts_string(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            return await contact_store.add_contact(session, user.id, _contact(relation="Family"))

        assert run_db(scenario).relation == ContactRelation.FAMILY

    def test_duplicate_phone_same_user_rejected(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            await contact_store.add_contact(session, user.id, _contact())
            await contact_store.add_contact(session, user.id, _contact(name="Other"))

        with pytest.raises(DuplicateContact):
            run_db(scenario)

    def test_same_phone_different_users_allowed(self, run_db):
        async def scenario(session):
            a = await create_user(session, email="a@example.com")
            b = await create_user(session, email="b@example.com")
            first = await contact_store.add_contact(session, a.id, _contact())
            second = await contact_store.add_contact(session, b.id, _contact())
            return first, second

        first, second = run_db(scenario)
        assert first.id != second.id

    def test_new_primary_clears_previous(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            a = await contact_store.add_contact(session, user.id, _contact("+15551110000", is_primary=True))
            b = await contact_store.add_contact(session, user.id, _contact("+15552220000", is_primary=True))
            await session.refresh(a)
            return a, b

        a, b = run_db(scenario)
        assert a.is_primary is False
        assert b.is_primary is True

    def test_racing_primary_rejected_by_index(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            await contact_store.add_contact(session, user.id, _contact("+15551110000", is_primary=True))
            # a writer that skipped the clear step
            with patch.object(contact_store, "_clear_primary", new=AsyncMock()):
                await contact_store.add_contact(session, user.id, _contact("+15552220000", is_primary=True))

        with pytest.raises(PrimaryContactConflict):
            run_db(scenario)

    def test_other_integrity_errors_propagate(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            await contact_store.add_contact(session, user.id, _contact(name=None))

        with pytest.raises(IntegrityError):
            run_db(scenario)


class TestListAndGet:

    def test_primary_first_then_creation_order(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            await contact_store.add_contact(session, user.id, _contact("+15551110000", name="First"))
            await contact_store.add_contact(session, user.id, _contact("+15552220000", name="Second"))
            await contact_store.add_contact(
                session, user.id, _contact("+15553330000", name="Primary", is_primary=True),
            )
            return await contact_store.list_active_contacts(session, user.id)

        names = [c.name for c in run_db(scenario)]
        assert names == ["Primary", "First", "Second"]

    def test_inactive_excluded(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            await contact_store.add_contact(session, user.id, _contact("+15551110000"))
            await contact_store.add_contact(session, user.id, _contact("+15552220000", is_active=False))
            return await contact_store.list_active_contacts(session, user.id)

        contacts = run_db(scenario)
        assert [c.phone for c in contacts] == ["+15551110000"]

    def test_other_users_contact_not_found(self, run_db):
        async def scenario(session):
            owner = await create_user(session, email="owner@example.com")
            other = await create_user(session, email="other@example.com")
            contact = await contact_store.add_contact(session, owner.id, _contact())
            await contact_store.get_contact(session, contact.id, other.id)

        with pytest.raises(NotFoundError):
            run_db(scenario)

    def test_get_contacts_by_ids_scoped_to_owner(self, run_db):
        async def scenario(session):
            owner = await create_user(session, email="owner@example.com")
            other = await create_user(session, email="other@example.com")
            mine = await contact_store.add_contact(session, owner.id, _contact("+15551110000"))
            theirs = await contact_store.add_contact(session, other.id, _contact("+15552220000"))
            return mine.id, await contact_store.get_contacts_by_ids(
                session, owner.id, [mine.id, theirs.id, None],
            )

        mine_id, contacts = run_db(scenario)
        assert [c.id for c in contacts] == [mine_id]

    def test_get_contacts_by_ids_empty(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            return await contact_store.get_contacts_by_ids(session, user.id, [])

        assert run_db(scenario) == []


class TestUpdateContact:

    def test_partial_update(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            contact = await contact_store.add_contact(session, user.id, _contact())
            return await contact_store.update_contact(
                session, contact.id, user.id, {"name": "Renamed", "notify_push": True},
            )

        contact = run_db(scenario)
        assert contact.name == "Renamed"
        assert contact.notify_push is True
        assert contact.phone == "+15551234567"

    def test_phone_collision_rejected(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            await contact_store.add_contact(session, user.id, _contact("+15551110000"))
            second = await contact_store.add_contact(session, user.id, _contact("+15552220000"))
            await contact_store.update_contact(session, second.id, user.id, {"phone": "+15551110000"})

        with pytest.raises(DuplicateContact):
            run_db(scenario)

    def test_keeping_own_phone_is_fine(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            contact = await contact_store.add_contact(session, user.id, _contact())
            return await contact_store.update_contact(
                session, contact.id, user.id, {"phone": "+15551234567", "notes": "same"},
            )

        assert run_db(scenario).notes == "same"

    def test_promote_to_primary_demotes_others(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            a = await contact_store.add_contact(session, user.id, _contact("+15551110000", is_primary=True))
            b = await contact_store.add_contact(session, user.id, _contact("+15552220000"))
            await contact_store.update_contact(session, b.id, user.id, {"is_primary": True})
            await session.refresh(a)
            return a, b

        a, b = run_db(scenario)
        assert (a.is_primary, b.is_primary) == (False, True)

    def test_update_foreign_contact_not_found(self, run_db):
        async def scenario(session):
            owner = await create_user(session, email="owner@example.com")
            other = await create_user(session, email="other@example.com")
            contact = await contact_store.add_contact(session, owner.id, _contact())
            await contact_store.update_contact(session, contact.id, other.id, {"name": "Hijack"})

        with pytest.raises(NotFoundError):
            run_db(scenario)


class TestDeleteContact:

    def test_delete_removes_contact(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            contact = await contact_store.add_contact(session, user.id, _contact())
            await contact_store.delete_contact(session, contact.id, user.id)
            return await contact_store.list_active_contacts(session, user.id)

        assert run_db(scenario) == []

    def test_delete_missing_not_found(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            await contact_store.delete_contact(session, 999, user.id)

        with pytest.raises(NotFoundError):
            run_db(scenario)

    def test_history_keeps_outcome_without_reference(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            contact = await contact_store.add_contact(session, user.id, _contact())
            alert = await alert_store.create_alert(
                session, user.id, AlertType.PANIC, AlertLocation(1.0, 2.0),
            )
            await alert_store.append_notification_outcomes(session, alert.id, [
                NotificationOutcome(contact.id, NotificationChannel.SMS, DeliveryStatus.SENT),
            ])
            await contact_store.delete_contact(session, contact.id, user.id)
            rows = await session.execute(select(AlertNotification.contact_id))
            return rows.scalars().all()

        assert run_db(scenario) == [None]


class TestRecordAlertSent:

    def test_increments_counter_and_timestamp(self, run_db):
        async def scenario(session):
            user = await create_user(session)
            contact = await contact_store.add_contact(session, user.id, _contact())
            await contact_store.record_alert_sent(session, contact.id)
            await contact_store.record_alert_sent(session, contact.id)
            await session.refresh(contact)
            return contact

        contact = run_db(scenario)
        assert contact.alert_count == 2
        assert contact.last_alert_sent is not None
