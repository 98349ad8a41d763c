"""Automation dispatcher.

Invoked at trigger points (``order_created``, ``message_received``,
``order_status_changed``) after the triggering write has been committed.
Each automation runs in its own session so one failing rule can be rolled
back without touching the caller's unit of work or the other rules.
"""

import json
import logging
from typing import Any, Callable, Literal

from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.core.status_taxonomy import is_known_status, to_partner_id
from convocrm.persistence.models.automation import Automation
from convocrm.persistence.models.contact import Contact
from convocrm.persistence.models.internal_message import SYSTEM_ATTACHMENT_TYPE, InternalMessage
from convocrm.persistence.models.order import Order
from convocrm.persistence.repositories.automation_repository import AutomationRepository
from convocrm.persistence.repositories.order_repository import OrderRepository
from convocrm.settings import settings

logger = logging.getLogger(__name__)

EntityKind = Literal["order", "contact", "message"]

ORDER_CREATED = "order_created"
MESSAGE_RECEIVED = "message_received"
ORDER_STATUS_CHANGED = "order_status_changed"

DEFAULT_NOTE = "Automatic note"


def _parse_json_field(value: Any) -> Any:
    """Decode JSON stored as a string (older rows) into Python values."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        return json.loads(text)
    return value


def _entity_value(entity: Any, field: str) -> Any:
    if isinstance(entity, dict):
        return entity.get(field)
    return getattr(entity, field, None)


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def conditions_match(conditions: Any, entity: Any) -> bool:
    """Evaluate a single ``{field, operator, value}`` condition.

    Empty conditions, or conditions missing ``field`` or ``operator``,
    always match. ``greater_than``/``less_than`` compare as floats and fail
    when either side is not numeric.

    Raises:
        ValueError: Conditions arrived as a string that is not valid JSON
    """
    conditions = _parse_json_field(conditions)
    if not conditions or not isinstance(conditions, dict):
        return True

    field = conditions.get("field")
    operator = conditions.get("operator")
    expected = conditions.get("value")
    if not field or not operator:
        return True

    actual = _entity_value(entity, field)

    if operator == "equals":
        return _as_text(actual) == _as_text(expected)
    if operator == "not_equals":
        return _as_text(actual) != _as_text(expected)
    if operator == "contains":
        return _as_text(expected).lower() in _as_text(actual).lower()
    if operator in ("greater_than", "less_than"):
        left, right = _as_float(actual), _as_float(expected)
        if left is None or right is None:
            return False
        return left > right if operator == "greater_than" else left < right

    logger.warning(f"Unknown automation operator {operator!r}, treating as match")
    return True


class AutomationDispatcher:
    """Runs active automations for a trigger. Never raises."""

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        """Initialize dispatcher.

        Args:
            session_factory: Creates a fresh AsyncSession per automation
        """
        self.session_factory = session_factory

    async def dispatch(self, trigger_type: str, entity_kind: EntityKind, entity: Any) -> int:
        """Run every matching automation for the trigger.

        Args:
            trigger_type: Trigger name, e.g. ``order_created``
            entity_kind: What ``entity`` is; never inferred from its fields
            entity: The committed Order, Contact or Message

        Returns:
            Number of automations whose action completed
        """
        try:
            async with self.session_factory() as session:
                automations = await AutomationRepository(session).list_active_for_trigger(
                    trigger_type
                )
        except Exception:
            logger.exception(f"Failed to load automations for trigger {trigger_type}")
            return 0

        executed = 0
        for automation in automations:
            try:
                if not conditions_match(automation.trigger_conditions, entity):
                    continue
                config = _parse_json_field(automation.action_config) or {}
            except ValueError as e:
                logger.error(f"Automation {automation.id} has malformed JSON: {e}")
                continue

            async with self.session_factory() as session:
                try:
                    if await self._execute(session, automation, config, entity_kind, entity):
                        await session.commit()
                        executed += 1
                except Exception:
                    await session.rollback()
                    logger.exception(
                        f"Automation {automation.id} ({automation.action_type}) failed",
                        extra={"trigger_type": trigger_type, "entity_kind": entity_kind},
                    )
        return executed

    async def _execute(
        self,
        session: AsyncSession,
        automation: Automation,
        config: dict[str, Any],
        entity_kind: EntityKind,
        entity: Any,
    ) -> bool:
        action = automation.action_type

        if action == "assign_manager":
            return await self._assign_manager(session, config, entity_kind, entity)
        if action == "update_status":
            return await self._update_status(session, config, entity_kind, entity)
        if action == "create_note":
            return await self._create_note(session, config, entity_kind, entity)
        if action == "send_notification":
            logger.info(
                f"Automation notification: {config.get('message') or config.get('title') or ''}",
                extra={
                    "automation_id": automation.id,
                    "entity_kind": entity_kind,
                    "entity_id": _entity_value(entity, "id"),
                    "recipients": config.get("manager_ids") or config.get("manager_id"),
                },
            )
            return True

        logger.warning(f"Automation {automation.id} has unsupported action {action!r}, skipped")
        return False

    async def _order_for(self, session: AsyncSession, entity_kind: EntityKind, entity: Any) -> Order | None:
        repo = OrderRepository(session)
        if entity_kind == "order":
            return await repo.get_by_id(_entity_value(entity, "id"))
        if entity_kind == "message":
            correlation_id = _entity_value(entity, "correlation_id")
            return await repo.get_by_correlation_id(correlation_id) if correlation_id else None
        contact_id = _entity_value(entity, "id")
        orders = await repo.list_for_contact(contact_id)
        return orders[0] if orders else None

    async def _assign_manager(self, session, config, entity_kind, entity) -> bool:
        manager_id = config.get("manager_id")
        if not manager_id:
            return False
        if entity_kind == "contact":
            contact = await session.get(Contact, _entity_value(entity, "id"))
            if contact is None:
                return False
            contact.manager_id = int(manager_id)
            return True
        order = await self._order_for(session, entity_kind, entity)
        if order is None:
            return False
        order.manager_id = int(manager_id)
        return True

    async def _update_status(self, session, config, entity_kind, entity) -> bool:
        status = config.get("status")
        if not is_known_status(status):
            logger.warning(f"update_status automation names unknown status {status!r}")
            return False
        order = await self._order_for(session, entity_kind, entity)
        if order is None or order.status == status:
            return False
        order.status = status
        order.partner_status_id = to_partner_id(status)
        return True

    async def _create_note(self, session, config, entity_kind, entity) -> bool:
        order = await self._order_for(session, entity_kind, entity)
        if order is None:
            return False
        session.add(
            InternalMessage(
                order_id=order.id,
                correlation_id=order.correlation_id,
                sender_id=config.get("manager_id") or settings.system_sender_id,
                content=config.get("content") or DEFAULT_NOTE,
                attachment_type=SYSTEM_ATTACHMENT_TYPE,
            )
        )
        return True
