"""Tests for the HTTP surface."""

import pytest

from convocrm.persistence.models.contact import Contact
from convocrm.persistence.models.order import Order
from convocrm.settings import settings

API = "/api/v1"
CORRELATION_ID = 1718000000000417


@pytest.fixture
async def order(db_session):
    contact = Contact(name="Ivan", channel_user_id="123456789")
    db_session.add(contact)
    await db_session.commit()
    order = Order(contact_id=contact.id, correlation_id=CORRELATION_ID, status="new")
    db_session.add(order)
    await db_session.commit()
    return order


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_request_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


async def test_telegram_webhook_ingests_message(client, dispatcher):
    response = await client.post(
        f"{API}/telegram/webhook",
        json={
            "update_id": 1,
            "message": {"message_id": 9, "from": {"id": 555000111, "first_name": "Olga"}, "text": "hello"},
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["action"] == "ingested"
    assert body["created"] is True
    assert dispatcher.triggers == ["order_created", "message_received"]


async def test_telegram_webhook_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "telegram_webhook_secret", "s3cret")
    update = {"update_id": 1, "edited_message": {}}

    rejected = await client.post(f"{API}/telegram/webhook", json=update)
    accepted = await client.post(
        f"{API}/telegram/webhook", json=update, headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"}
    )

    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert accepted.json()["action"] == "ignored"


async def test_partner_message_with_malformed_json(client, order):
    response = await client.post(
        f"{API}/partner/message",
        content=f"{{main_ID: '{CORRELATION_ID}', content: 'Manager here', author_type: 'manager',}}",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["created"] is True
    assert body["order_id"] == order.id


async def test_partner_message_without_identity_is_400(client):
    response = await client.post(f"{API}/partner/message", json={"content": "anyone?"})

    assert response.status_code == 400


async def test_partner_webhook_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "partner_webhook_secret", "s3cret")

    rejected = await client.post(f"{API}/partner/contact", json={"name": "Ivan"})
    accepted = await client.post(
        f"{API}/partner/contact", json={"name": "Ivan", "phone": "+79123456789"},
        headers={"Authorization": "Bearer s3cret"},
    )

    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert accepted.json()["action"] == "created"


async def test_partner_status_batch(client, order, partner_client):
    response = await client.post(
        f"{API}/partner/status",
        json={"leads": {"status": [{"id": str(CORRELATION_ID), "status_id": "50201003"}]}},
    )

    assert response.status_code == 200
    assert response.json()["updates"] == [{"id": order.id, "old": "new", "new": "waiting"}]
    assert partner_client.pushes == []


async def test_partner_status_requires_leads(client):
    response = await client.post(f"{API}/partner/status", json={"foo": 1})

    assert response.status_code == 400


async def test_partner_note_to_order_not_found(client):
    response = await client.post(f"{API}/partner/note_to_order", json={"main_id": "42", "note": "hi"})

    assert response.status_code == 404


async def test_send_message_and_read_timeline(client, order, telegram):
    sent = await client.post(f"{API}/orders/{order.id}/messages", json={"content": "Hello Ivan", "manager_id": 2})
    assert sent.status_code == 201
    assert sent.json()["delivery_status"] == "delivered"
    assert telegram.sent[0]["chat_id"] == "123456789"

    note = await client.post(f"{API}/orders/{order.id}/notes", json={"sender_id": 2, "content": "VIP"})
    assert note.status_code == 201

    timeline = await client.get(f"{API}/orders/{CORRELATION_ID}/timeline", params={"limit": 10})
    assert timeline.status_code == 200
    items = timeline.json()["items"]
    assert {(i["source"], i["content"]) for i in items} == {("client", "Hello Ivan"), ("internal", "VIP")}


async def test_timeline_for_unknown_order_is_404(client):
    response = await client.get(f"{API}/orders/999/timeline")

    assert response.status_code == 404


async def test_send_empty_message_is_400(client, order):
    response = await client.post(f"{API}/orders/{order.id}/messages", json={"content": " "})

    assert response.status_code == 400


async def test_send_file_upload(client, order, storage, telegram):
    response = await client.post(
        f"{API}/orders/{order.id}/files",
        files={"file": ("pic.jpg", b"\xff\xd8jpeg", "image/jpeg")},
        data={"caption": "Photo of the item"},
    )

    assert response.status_code == 201
    assert response.json()["message_kind"] == "image"
    assert len(storage.objects) == 1
    assert telegram.sent[0]["method"] == "sendPhoto"


async def test_change_status_route(client, order, partner_client):
    response = await client.post(f"{API}/orders/{order.id}/status", json={"status": "completed", "actor_id": 2})

    assert response.status_code == 200
    body = response.json()
    assert body["changed"] is True
    assert body["partner_synced"] is True
    assert partner_client.pushes == [(CORRELATION_ID, "completed", "new")]


async def test_change_status_to_unknown_is_400(client, order):
    response = await client.post(f"{API}/orders/{order.id}/status", json={"status": "bogus"})

    assert response.status_code == 400


async def test_list_statuses(client):
    response = await client.get(f"{API}/orders/statuses")

    assert response.status_code == 200
    keys = [s["key"] for s in response.json()]
    assert keys[0] == "unsorted"
    assert "completed" in keys


async def test_summaries_and_mark_read(client, order):
    await client.post(
        f"{API}/telegram/webhook",
        json={"update_id": 1, "message": {"message_id": 9, "from": {"id": 123456789}, "text": "hello"}},
    )

    summaries = await client.get(f"{API}/orders/summaries", params={"ids": [CORRELATION_ID]})
    assert summaries.status_code == 200
    assert summaries.json()[0]["unread_count"] == 1

    marked = await client.post(f"{API}/orders/{order.id}/read")
    assert marked.json() == {"updated": 1}
