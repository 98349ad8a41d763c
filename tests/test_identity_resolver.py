"""Tests for identity resolution."""

import pytest

from convocrm.domain.services.automation_dispatcher import ORDER_CREATED
from convocrm.domain.services.identity_resolver import (
    IdentityResolver,
    channel_id_from_ref,
    first_real_name,
    is_placeholder_name,
    looks_like_opaque_ref,
)
from convocrm.persistence.models.contact import Contact
from convocrm.persistence.models.order import Order

OPAQUE_REF = "1693218411238x742013345791642600"


class TestReferenceHelpers:
    """Tests for partner user reference parsing."""

    def test_opaque_ref(self):
        assert looks_like_opaque_ref(OPAQUE_REF)
        assert not looks_like_opaque_ref("123456789012345678")
        assert not looks_like_opaque_ref("short1x")

    def test_channel_id_from_ref(self):
        assert channel_id_from_ref("123456789") == "123456789"
        assert channel_id_from_ref("tg:123456789") == "123456789"
        assert channel_id_from_ref("1234") is None
        assert channel_id_from_ref(OPAQUE_REF) is None

    def test_placeholder_names(self):
        assert is_placeholder_name(None)
        assert is_placeholder_name("User 123")
        assert is_placeholder_name("Пользователь 123")
        assert is_placeholder_name("123", channel_user_id="123")
        assert not is_placeholder_name("Ivan")

    def test_first_real_name(self):
        assert first_real_name([None, " ", "User 5", " Ivan "]) == "Ivan"
        assert first_real_name(["User 5"]) is None


@pytest.fixture
def resolver(db_session, dispatcher):
    return IdentityResolver(db_session, dispatcher=dispatcher)


async def test_creates_contact_with_placeholder_name(resolver):
    contact = await resolver.resolve_contact(channel_user_id="123456789")

    assert contact.id is not None
    assert contact.name == "User 123456789"
    assert contact.channel_user_id == "123456789"


async def test_second_lookup_upgrades_placeholder_name(resolver):
    first = await resolver.resolve_contact(channel_user_id="123456789")
    second = await resolver.resolve_contact(
        channel_user_id="123456789", name_hints=["Ivan Petrov"], telegram_username="ivan"
    )

    assert second.id == first.id
    assert second.name == "Ivan Petrov"
    assert second.telegram_username == "ivan"


async def test_real_name_is_not_overwritten(resolver):
    await resolver.resolve_contact(channel_user_id="123456789", name_hints=["Ivan"])
    contact = await resolver.resolve_contact(channel_user_id="123456789", name_hints=["Someone Else"])

    assert contact.name == "Ivan"


async def test_finds_contact_by_phone_and_learns_channel_id(resolver):
    created = await resolver.resolve_contact(phone="+7 912 345-67-89", name_hints=["Ivan"])
    assert created.phone == "+79123456789"
    assert created.channel_user_id is None

    found = await resolver.resolve_contact(channel_user_id="555000111", phone="+79123456789")

    assert found.id == created.id
    assert found.channel_user_id == "555000111"


async def test_email_lookup_is_case_insensitive(resolver):
    created = await resolver.resolve_contact(email="Ivan@Example.com")
    found, _ = await resolver.find_contact(email="ivan@example.com")

    assert found is not None
    assert found.id == created.id


async def test_partner_ref_with_digits_is_the_channel_id(resolver):
    created = await resolver.resolve_contact(channel_user_id="123456789")
    found = await resolver.resolve_contact(partner_user_ref="123456789")

    assert found.id == created.id


async def test_opaque_partner_ref_uses_partner_lookup(db_session, dispatcher, partner_client):
    partner_client.users[OPAQUE_REF] = "123456789"
    resolver = IdentityResolver(db_session, dispatcher=dispatcher, partner_client=partner_client)
    created = await resolver.resolve_contact(channel_user_id="123456789")

    found = await resolver.resolve_contact(partner_user_ref=OPAQUE_REF)

    assert partner_client.lookups == [OPAQUE_REF]
    assert found.id == created.id


async def test_opaque_partner_ref_without_lookup_is_remembered(resolver):
    created = await resolver.resolve_contact(partner_user_ref=OPAQUE_REF)
    assert created.partner_external_id == OPAQUE_REF

    found = await resolver.resolve_contact(partner_user_ref=OPAQUE_REF)
    assert found.id == created.id


async def test_resolve_or_create_order(resolver, dispatcher):
    contact = await resolver.resolve_contact(channel_user_id="123456789")

    order, created = await resolver.resolve_or_create_order(contact, source="telegram_bot")
    assert created
    assert order.correlation_id is not None
    assert order.status == "unsorted"
    assert order.partner_status_id is None
    assert dispatcher.calls == [(ORDER_CREATED, "order", order)]

    again, created_again = await resolver.resolve_or_create_order(contact)
    assert not created_again
    assert again.id == order.id
    assert len(dispatcher.calls) == 1


async def test_terminal_order_is_not_reused(resolver, db_session):
    contact = await resolver.resolve_contact(channel_user_id="123456789")
    order, _ = await resolver.resolve_or_create_order(contact)
    order.status = "completed"
    await db_session.commit()

    new_order, created = await resolver.resolve_or_create_order(contact)

    assert created
    assert new_order.id != order.id


async def test_open_order_without_correlation_id_gets_one(resolver, db_session):
    contact = Contact(name="Ivan", channel_user_id="123456789")
    db_session.add(contact)
    await db_session.commit()
    legacy = Order(contact_id=contact.id, status="new")
    db_session.add(legacy)
    await db_session.commit()

    order, created = await resolver.resolve_or_create_order(contact)

    assert not created
    assert order.id == legacy.id
    assert order.correlation_id is not None
