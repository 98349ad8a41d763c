"""Contact, order and note payloads pushed by the partner platform."""

import logging
from typing import Any, Literal

from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.core.correlation import generate_correlation_id, parse_numeric_id
from convocrm.core.errors import NotFoundError, ValidationError
from convocrm.core.phone import normalize_phone
from convocrm.core.status_taxonomy import label_for, map_loose_status, to_partner_id
from convocrm.core.timeutils import utc_now
from convocrm.domain.services.automation_dispatcher import (
    ORDER_CREATED,
    ORDER_STATUS_CHANGED,
    AutomationDispatcher,
)
from convocrm.domain.services.identity_resolver import IdentityResolver, placeholder_name
from convocrm.domain.services.internal_message_service import InternalMessageService
from convocrm.domain.services.message_normalizer import clean_null, extract_tg_amo_id
from convocrm.infrastructure.cache import QueryCache, invalidate_conversation_caches
from convocrm.infrastructure.partner_client import PartnerClient
from convocrm.persistence.models.contact import Contact
from convocrm.persistence.models.internal_message import InternalMessage
from convocrm.persistence.models.order import Order
from convocrm.persistence.repositories.contact_repository import ContactRepository
from convocrm.persistence.repositories.order_repository import OrderRepository

logger = logging.getLogger(__name__)

UpsertAction = Literal["created", "updated"]


def unwrap_partner_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Partner data API responses nest the record under ``response.results[0]``."""
    response = payload.get("response")
    results = response.get("results") if isinstance(response, dict) else None
    if isinstance(results, list) and results and isinstance(results[0], dict):
        return results[0]
    return payload


def _first(data: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = clean_null(data.get(key))
        if value:
            return value
    return None


def note_text(note: str) -> str:
    return f"Note: {note} ({utc_now().strftime('%Y-%m-%d %H:%M UTC')})"


class PartnerSyncService:
    """Applies partner-side contact/order records and notes locally."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: AutomationDispatcher | None = None,
        partner_client: PartnerClient | None = None,
        cache: QueryCache | None = None,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher
        self.cache = cache
        self.contact_repo = ContactRepository(session)
        self.order_repo = OrderRepository(session)
        self.resolver = IdentityResolver(session, dispatcher=dispatcher, partner_client=partner_client)
        self.notes = InternalMessageService(session, cache=cache)

    async def upsert_contact(self, payload: dict[str, Any]) -> tuple[Contact, UpsertAction]:
        """Create or update a Contact from a partner contact record.

        Matches by chat user id (``telegram_user_id`` or the ``tg_amo``
        ``"ID: 123"`` field), then phone, then email.
        """
        data = unwrap_partner_payload(payload)
        channel_user_id = parse_numeric_id(data.get("telegram_user_id"))
        channel_user_id = str(channel_user_id) if channel_user_id else extract_tg_amo_id(data.get("tg_amo"))
        phone = normalize_phone(data.get("phone"))
        email = _first(data, "email")

        existing, _ = await self.resolver.find_contact(
            channel_user_id=channel_user_id, phone=phone, email=email
        )

        name = _first(data, "name") or " ".join(
            p for p in (_first(data, "first_name"), _first(data, "last_name")) if p
        )
        manager_id = parse_numeric_id(data.get("manager_id"))
        fields = {
            "name": name or (existing.name if existing else None)
            or placeholder_name(channel_user_id or phone or "Unknown"),
            "phone": phone,
            "email": email,
            "channel_user_id": channel_user_id,
            "telegram_username": _first(data, "telegram_username"),
            "partner_external_id": _first(data, "_id", "User", "bubbleUser"),
            "comment": _first(data, "comment"),
            "status": _first(data, "status") or "active",
            "manager_id": manager_id,
        }

        if existing is None:
            contact = await self.contact_repo.create(**fields)
            logger.info(f"Partner created contact {contact.id}")
            return contact, "created"

        for key, value in fields.items():
            # Never blank out identifiers the partner did not send
            if value is None:
                continue
            setattr(existing, key, value)
        await self.session.commit()
        await self.session.refresh(existing)
        logger.info(f"Partner updated contact {existing.id}")
        return existing, "updated"

    async def upsert_order(self, payload: dict[str, Any]) -> tuple[Order, UpsertAction]:
        """Create or update an Order from a partner order record.

        The partner's ``main_ID`` becomes the correlation id; a record
        without one gets a fresh id. ``order_created`` is dispatched on
        creation. An update only touches the fields the record carries;
        a status it carries that differs from the current one is audited
        on the timeline and dispatched as ``order_status_changed``.
        """
        data = unwrap_partner_payload(payload)
        user_ref = _first(data, "User", "bubbleUser")
        channel_user_id = extract_tg_amo_id(data.get("tg_amo"))
        phone = _first(data, "mobilePhone", "client_phone", "MobilePhone")
        name_hints = [
            _first(data, "client_name"),
            (clean_null(data.get("tg_amo")) or "").split(",")[0].strip() or None,
        ]

        correlation_id = parse_numeric_id(data.get("main_ID") or data.get("main_id"))
        partner_id = _first(data, "_id", "order_id", "ID", "external_id")
        raw_status = _first(data, "status", "OrderStatus")
        title = _first(data, "OrderName", "title")

        existing = None
        if correlation_id is not None:
            existing = await self.order_repo.get_by_correlation_id(correlation_id)
        if existing is None and partner_id:
            existing = await self.order_repo.get_by_partner_id(partner_id)

        contact_id = existing.contact_id if existing is not None else None
        if existing is None or channel_user_id or user_ref or phone:
            contact = await self.resolver.resolve_contact(
                channel_user_id=channel_user_id,
                partner_user_ref=user_ref,
                phone=phone,
                name_hints=name_hints,
            )
            contact_id = contact.id

        fields = {
            "contact_id": contact_id,
            "partner_id": partner_id,
            "description": _first(data, "Comment", "description", "comment"),
            "source": "partner",
        }

        if existing is not None:
            return await self._update_order(existing, fields, title, raw_status, correlation_id), "updated"

        status = map_loose_status(raw_status)
        order = await self.order_repo.create(
            correlation_id=correlation_id or generate_correlation_id(),
            status=status,
            partner_status_id=to_partner_id(status),
            title=title or f"Order {partner_id or correlation_id or ''}".strip(),
            **fields,
        )
        logger.info(f"Partner created order {order.id} (correlation id {order.correlation_id})")
        await invalidate_conversation_caches(self.cache)
        if self.dispatcher is not None:
            await self.dispatcher.dispatch(ORDER_CREATED, "order", order)
        return order, "created"

    async def _update_order(
        self,
        order: Order,
        fields: dict[str, Any],
        title: str | None,
        raw_status: str | None,
        correlation_id: int | None,
    ) -> Order:
        for key, value in fields.items():
            if value is not None:
                setattr(order, key, value)
        if title:
            order.title = title
        if order.correlation_id is None:
            order.correlation_id = correlation_id or generate_correlation_id()

        old_status = order.status
        new_status = map_loose_status(raw_status) if raw_status else old_status
        if new_status != old_status:
            order.status = new_status
            order.partner_status_id = to_partner_id(new_status)

        await self.session.commit()
        await self.session.refresh(order)
        logger.info(f"Partner updated order {order.id}")

        if new_status != old_status:
            await self.notes.record_system_event(
                order,
                f"Status changed by partner: {label_for(old_status)} -> {label_for(new_status)}",
            )
            if self.dispatcher is not None:
                await self.dispatcher.dispatch(ORDER_STATUS_CHANGED, "order", order)
        await invalidate_conversation_caches(self.cache)
        return order

    async def note_to_user(self, user_ref: str, note: str) -> list[InternalMessage]:
        """Write a system note on every Order of the referenced Contact.

        Raises:
            ValidationError: Empty note
            NotFoundError: No Contact matches the reference
        """
        if not note or not str(note).strip():
            raise ValidationError("Note cannot be empty")
        contact, _ = await self.resolver.find_contact(partner_user_ref=str(user_ref).strip())
        if contact is None:
            raise NotFoundError("Contact not found")

        entries = []
        for order in await self.order_repo.list_for_contact(contact.id):
            entries.append(
                await self.notes.record_system_event(
                    order, note_text(note), sender_id=contact.manager_id
                )
            )
        logger.info(f"Partner note added to {len(entries)} orders of contact {contact.id}")
        return entries

    async def note_to_order(self, correlation_id: object, note: str) -> InternalMessage:
        """Write a system note on the Order with this correlation id.

        Raises:
            ValidationError: Empty note or unusable id
            NotFoundError: No such Order
        """
        if not note or not str(note).strip():
            raise ValidationError("Note cannot be empty")
        parsed = parse_numeric_id(correlation_id)
        if parsed is None:
            raise ValidationError("Missing main_id")
        order = await self.order_repo.get_by_correlation_id(parsed)
        if order is None:
            raise NotFoundError("Order not found")
        return await self.notes.record_system_event(order, note_text(note), sender_id=order.manager_id)
