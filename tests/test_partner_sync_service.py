"""Tests for partner-pushed contacts, orders and notes."""

import pytest

from convocrm.core.errors import NotFoundError, ValidationError
from convocrm.domain.services.automation_dispatcher import ORDER_CREATED, ORDER_STATUS_CHANGED
from convocrm.persistence.repositories.internal_message_repository import InternalMessageRepository
from convocrm.domain.services.partner_sync_service import (
    PartnerSyncService,
    note_text,
    unwrap_partner_payload,
)

CORRELATION_ID = 1718000000000417


@pytest.fixture
def service(db_session, dispatcher, partner_client, cache):
    return PartnerSyncService(db_session, dispatcher=dispatcher, partner_client=partner_client, cache=cache)


def test_unwrap_partner_payload():
    record = {"name": "Ivan"}
    assert unwrap_partner_payload({"response": {"results": [record]}}) == record
    assert unwrap_partner_payload(record) == record
    assert unwrap_partner_payload({"response": {"results": []}}) == {"response": {"results": []}}


def test_note_text():
    assert note_text("Paid").startswith("Note: Paid (")


async def test_upsert_contact_creates_then_updates(service):
    contact, action = await service.upsert_contact({
        "response": {"results": [{
            "name": "Ivan Petrov",
            "telegram_user_id": "123456789",
            "phone": "8 912 345 67 89",
            "email": "null",
        }]}
    })
    assert action == "created"
    assert contact.name == "Ivan Petrov"
    assert contact.channel_user_id == "123456789"
    assert contact.phone == "89123456789"
    assert contact.email is None

    updated, action = await service.upsert_contact({
        "tg_amo": "Ivan, ID: 123456789",
        "email": "ivan@example.com",
        "comment": "VIP",
    })
    assert action == "updated"
    assert updated.id == contact.id
    assert updated.email == "ivan@example.com"
    assert updated.comment == "VIP"
    assert updated.phone == "89123456789"
    assert updated.name == "Ivan Petrov"


async def test_upsert_order_creates_with_mapped_status(service, dispatcher):
    order, action = await service.upsert_order({
        "main_ID": str(CORRELATION_ID),
        "tg_amo": "Ivan, ID: 123456789",
        "status": "Выполнен",
        "OrderName": "Delivery to Berlin",
        "_id": "ord-1",
    })

    assert action == "created"
    assert order.correlation_id == CORRELATION_ID
    assert order.status == "completed"
    assert order.partner_status_id == "142"
    assert order.partner_id == "ord-1"
    assert order.title == "Delivery to Berlin"
    assert order.source == "partner"
    assert dispatcher.triggers == [ORDER_CREATED]


async def test_upsert_order_updates_existing(service, dispatcher):
    first, _ = await service.upsert_order({"main_ID": str(CORRELATION_ID), "tg_amo": "Ivan, ID: 123456789"})
    second, action = await service.upsert_order({
        "main_ID": str(CORRELATION_ID),
        "tg_amo": "Ivan, ID: 123456789",
        "status": "negotiation",
    })

    assert action == "updated"
    assert second.id == first.id
    assert second.status == "negotiation"
    assert second.partner_status_id == "50201002"
    assert dispatcher.triggers == [ORDER_CREATED, ORDER_STATUS_CHANGED]


async def test_upsert_order_update_without_status_keeps_status_and_title(service, dispatcher):
    created, _ = await service.upsert_order({
        "main_ID": str(CORRELATION_ID),
        "tg_amo": "Ivan, ID: 123456789",
        "status": "Completed",
        "OrderName": "EUR->USDT",
    })
    assert created.status == "completed"

    updated, action = await service.upsert_order({
        "main_ID": str(CORRELATION_ID),
        "Comment": "Client asked for a receipt",
    })

    assert action == "updated"
    assert updated.id == created.id
    assert updated.contact_id == created.contact_id
    assert updated.status == "completed"
    assert updated.partner_status_id == "142"
    assert updated.title == "EUR->USDT"
    assert updated.description == "Client asked for a receipt"
    assert dispatcher.triggers == [ORDER_CREATED]


async def test_upsert_order_status_change_is_audited(service, dispatcher, db_session):
    order, _ = await service.upsert_order({
        "main_ID": str(CORRELATION_ID),
        "tg_amo": "Ivan, ID: 123456789",
        "status": "New",
    })

    updated, _ = await service.upsert_order({"main_ID": str(CORRELATION_ID), "status": "Lost"})

    assert updated.status == "lost"
    assert updated.partner_status_id == "143"
    assert dispatcher.triggers == [ORDER_CREATED, ORDER_STATUS_CHANGED]
    entries = await InternalMessageRepository(db_session).list_page([order.id], [], limit=10)
    assert [e.content for e in entries] == ["Status changed by partner: New -> Lost"]
    assert entries[0].is_system


async def test_upsert_order_same_status_is_not_audited(service, dispatcher, db_session):
    order, _ = await service.upsert_order({
        "main_ID": str(CORRELATION_ID),
        "tg_amo": "Ivan, ID: 123456789",
        "status": "negotiation",
    })

    await service.upsert_order({"main_ID": str(CORRELATION_ID), "status": "Negotiation"})

    assert dispatcher.triggers == [ORDER_CREATED]
    assert await InternalMessageRepository(db_session).list_page([order.id], [], limit=10) == []


async def test_upsert_order_without_main_id_gets_fresh_correlation_id(service):
    order, _ = await service.upsert_order({"tg_amo": "Ivan, ID: 123456789"})

    assert order.correlation_id is not None
    assert order.status == "unsorted"


async def test_note_to_user(service):
    await service.upsert_order({"main_ID": str(CORRELATION_ID), "tg_amo": "Ivan, ID: 123456789"})
    await service.upsert_order({"main_ID": str(CORRELATION_ID + 1), "tg_amo": "Ivan, ID: 123456789"})

    entries = await service.note_to_user("123456789", "Paid in full")

    assert len(entries) == 2
    assert all(e.is_system for e in entries)
    assert entries[0].content.startswith("Note: Paid in full")


async def test_note_to_unknown_user(service):
    with pytest.raises(NotFoundError):
        await service.note_to_user("987654321", "hello")


async def test_note_to_order(service):
    order, _ = await service.upsert_order({"main_ID": str(CORRELATION_ID), "tg_amo": "Ivan, ID: 123456789"})

    entry = await service.note_to_order(str(CORRELATION_ID), "Shipped")

    assert entry.order_id == order.id
    assert entry.correlation_id == CORRELATION_ID


async def test_note_to_order_errors(service):
    with pytest.raises(ValidationError):
        await service.note_to_order("null", "x")
    with pytest.raises(ValidationError):
        await service.note_to_order(CORRELATION_ID, " ")
    with pytest.raises(NotFoundError):
        await service.note_to_order(CORRELATION_ID, "x")
