"""Tests for internal (team-only) messages."""

import pytest

from convocrm.core.errors import NotFoundError, ValidationError
from convocrm.domain.services.internal_message_service import InternalMessageService
from convocrm.persistence.models.order import Order


@pytest.fixture
async def order(db_session):
    order = Order(correlation_id=1718000000000417, status="new")
    db_session.add(order)
    await db_session.commit()
    return order


@pytest.fixture
def service(db_session, cache):
    return InternalMessageService(db_session, cache=cache)


async def test_send_note(service, order):
    note = await service.send_note(order.id, sender_id=1, content="  Call back tomorrow  ")

    assert note.order_id == order.id
    assert note.correlation_id == order.correlation_id
    assert note.content == "Call back tomorrow"
    assert not note.is_system


async def test_attachment_only_note(service, order):
    note = await service.send_note(
        order.id, sender_id=1, content="", attachment_url="https://storage.test/a.png",
        attachment_type="image", attachment_name="a.png",
    )

    assert note.attachment_type == "image"


async def test_invalid_notes(service, order):
    with pytest.raises(ValidationError):
        await service.send_note(order.id, sender_id=1, content=" ")
    with pytest.raises(ValidationError):
        await service.send_note(order.id, sender_id=1, content="x", attachment_type="system")
    with pytest.raises(NotFoundError):
        await service.send_note(999, sender_id=1, content="x")


async def test_unread_counts_exclude_own_messages(service, order):
    await service.send_note(order.id, sender_id=1, content="from 1")
    await service.send_note(order.id, sender_id=2, content="from 2")
    await service.record_system_event(order, "Status changed")

    assert await service.unread_count(order.id, reader_id=1) == 2
    assert await service.unread_count(order.id, reader_id=2) == 2

    assert await service.mark_read(order.id, reader_id=1) == 2
    assert await service.unread_count(order.id, reader_id=1) == 0
    # The system entry is now read for everyone; the note from 1 is not
    assert await service.unread_count(order.id, reader_id=2) == 1
