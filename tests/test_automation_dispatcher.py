"""Tests for the automation dispatcher."""

import pytest
from sqlalchemy import select

from convocrm.domain.services.automation_dispatcher import (
    MESSAGE_RECEIVED,
    ORDER_CREATED,
    ORDER_STATUS_CHANGED,
    AutomationDispatcher,
    conditions_match,
)
from convocrm.persistence.models.automation import Automation
from convocrm.persistence.models.contact import Contact
from convocrm.persistence.models.internal_message import InternalMessage
from convocrm.persistence.models.message import Message
from convocrm.persistence.models.order import Order


class TestConditions:
    """Tests for condition evaluation."""

    order = {"status": "New", "title": "Big Wholesale order", "amount": "150"}

    def test_empty_conditions_match(self):
        assert conditions_match(None, self.order)
        assert conditions_match({}, self.order)
        assert conditions_match("", self.order)
        assert conditions_match({"field": "status"}, self.order)

    def test_equals_is_exact(self):
        assert conditions_match({"field": "status", "operator": "equals", "value": "New"}, self.order)
        assert not conditions_match({"field": "status", "operator": "equals", "value": "Lost"}, self.order)
        assert conditions_match({"field": "status", "operator": "not_equals", "value": "Lost"}, self.order)

    def test_contains_ignores_case(self):
        condition = {"field": "title", "operator": "contains", "value": "wholesale"}
        assert conditions_match(condition, self.order)

    def test_numeric_comparisons(self):
        assert conditions_match({"field": "amount", "operator": "greater_than", "value": 100}, self.order)
        assert not conditions_match({"field": "amount", "operator": "less_than", "value": "100"}, self.order)
        assert not conditions_match({"field": "title", "operator": "greater_than", "value": 1}, self.order)

    def test_json_string_conditions(self):
        assert conditions_match('{"field": "status", "operator": "equals", "value": "New"}', self.order)

    def test_malformed_json_raises(self):
        with pytest.raises(ValueError):
            conditions_match("{broken", self.order)

    def test_unknown_operator_matches(self):
        assert conditions_match({"field": "status", "operator": "regex", "value": "x"}, self.order)

    def test_attribute_access(self):
        assert conditions_match(
            {"field": "status", "operator": "equals", "value": "waiting"},
            Order(status="waiting"),
        )


@pytest.fixture
async def order(db_session):
    contact = Contact(name="Ivan", channel_user_id="123456789")
    db_session.add(contact)
    await db_session.commit()
    order = Order(contact_id=contact.id, correlation_id=1718000000000417, status="unsorted", title="Wholesale")
    db_session.add(order)
    await db_session.commit()
    return order


async def add_automation(session, **fields):
    automation = Automation(**fields)
    session.add(automation)
    await session.commit()
    return automation


@pytest.fixture
def dispatcher(session_factory):
    return AutomationDispatcher(session_factory)


async def test_assign_manager_on_order_created(db_session, dispatcher, order):
    await add_automation(
        db_session,
        trigger_type=ORDER_CREATED,
        action_type="assign_manager",
        action_config={"manager_id": 7},
    )

    executed = await dispatcher.dispatch(ORDER_CREATED, "order", order)

    assert executed == 1
    await db_session.refresh(order)
    assert order.manager_id == 7


async def test_conditions_filter_automations(db_session, dispatcher, order):
    await add_automation(
        db_session,
        trigger_type=ORDER_CREATED,
        trigger_conditions={"field": "title", "operator": "contains", "value": "retail"},
        action_type="assign_manager",
        action_config={"manager_id": 7},
    )

    assert await dispatcher.dispatch(ORDER_CREATED, "order", order) == 0


async def test_inactive_and_other_triggers_are_ignored(db_session, dispatcher, order):
    await add_automation(
        db_session, trigger_type=ORDER_CREATED, action_type="assign_manager",
        action_config={"manager_id": 7}, is_active=False,
    )
    await add_automation(
        db_session, trigger_type=ORDER_STATUS_CHANGED, action_type="assign_manager",
        action_config={"manager_id": 8},
    )

    assert await dispatcher.dispatch(ORDER_CREATED, "order", order) == 0


async def test_create_note_from_message_trigger(db_session, dispatcher, order):
    await add_automation(
        db_session,
        trigger_type=MESSAGE_RECEIVED,
        action_type="create_note",
        action_config='{"content": "Customer wrote in"}',
    )
    message = Message(correlation_id=order.correlation_id, content="hi")
    db_session.add(message)
    await db_session.commit()

    assert await dispatcher.dispatch(MESSAGE_RECEIVED, "message", message) == 1

    notes = (await db_session.execute(select(InternalMessage))).scalars().all()
    assert [(n.order_id, n.content, n.is_system) for n in notes] == [(order.id, "Customer wrote in", True)]


async def test_update_status(db_session, dispatcher, order):
    await add_automation(
        db_session, trigger_type=ORDER_CREATED, action_type="update_status",
        action_config={"status": "new"},
    )
    await add_automation(
        db_session, trigger_type=ORDER_CREATED, action_type="update_status",
        action_config={"status": "not-a-status"},
    )

    assert await dispatcher.dispatch(ORDER_CREATED, "order", order) == 1
    await db_session.refresh(order)
    assert order.status == "new"
    assert order.partner_status_id == "50201001"


async def test_failing_automation_does_not_stop_others(db_session, dispatcher, order):
    await add_automation(
        db_session, trigger_type=ORDER_CREATED, action_type="assign_manager",
        action_config={"manager_id": "not-a-number"},
    )
    await add_automation(
        db_session, trigger_type=ORDER_CREATED, action_type="send_notification",
        action_config={"message": "New order"},
    )
    await add_automation(
        db_session, trigger_type=ORDER_CREATED, action_type="teleport",
    )

    assert await dispatcher.dispatch(ORDER_CREATED, "order", order) == 1
    await db_session.refresh(order)
    assert order.manager_id is None


async def test_malformed_json_config_is_skipped(db_session, dispatcher, order):
    await add_automation(
        db_session, trigger_type=ORDER_CREATED, action_type="assign_manager",
        trigger_conditions="{oops",
        action_config={"manager_id": 7},
    )

    assert await dispatcher.dispatch(ORDER_CREATED, "order", order) == 0


async def test_contact_entity_assign_manager(db_session, dispatcher, order):
    contact = await db_session.get(Contact, order.contact_id)
    await add_automation(
        db_session, trigger_type="contact_created", action_type="assign_manager",
        action_config={"manager_id": 3},
    )

    assert await dispatcher.dispatch("contact_created", "contact", contact) == 1
    await db_session.refresh(contact)
    assert contact.manager_id == 3
