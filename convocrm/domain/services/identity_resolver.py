"""Identity resolution: partial identifiers -> Contact -> open Order."""

import logging
import re
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.core.correlation import generate_correlation_id
from convocrm.core.phone import normalize_phone
from convocrm.core.status_taxonomy import DEFAULT_STATUS, TERMINAL_STATUSES, to_partner_id
from convocrm.domain.services.automation_dispatcher import ORDER_CREATED, AutomationDispatcher
from convocrm.infrastructure.partner_client import PartnerClient
from convocrm.persistence.models.contact import PLACEHOLDER_NAME_PREFIXES, Contact
from convocrm.persistence.models.order import Order
from convocrm.persistence.repositories.contact_repository import ContactRepository
from convocrm.persistence.repositories.order_repository import OrderRepository

logger = logging.getLogger(__name__)

MIN_CHANNEL_ID_DIGITS = 5
MIN_OPAQUE_REF_LENGTH = 16
_HEX_LETTER = re.compile(r"[a-f]", re.IGNORECASE)


def placeholder_name(identifier: object) -> str:
    return f"User {identifier}"


def is_placeholder_name(name: str | None, channel_user_id: str | None = None) -> bool:
    if not name:
        return True
    if channel_user_id and name == channel_user_id:
        return True
    return name.startswith(PLACEHOLDER_NAME_PREFIXES)


def channel_id_from_ref(ref: str) -> str | None:
    """A partner user ref carrying 5+ digits is the chat user id itself."""
    digits = re.sub(r"\D", "", ref)
    if len(digits) >= MIN_CHANNEL_ID_DIGITS and not looks_like_opaque_ref(ref):
        return digits
    return None


def looks_like_opaque_ref(ref: str) -> bool:
    """Partner-native ids look like ``1693218411238x742013345791642600``."""
    return (
        len(ref) >= MIN_OPAQUE_REF_LENGTH
        and not ref.isdigit()
        and ("x" in ref or bool(_HEX_LETTER.search(ref)))
    )


def first_real_name(name_hints: Iterable[str | None]) -> str | None:
    for hint in name_hints:
        if hint and hint.strip() and not is_placeholder_name(hint.strip()):
            return hint.strip()
    return None


class IdentityResolver:
    """Maps partial identifier bundles onto Contacts and their open Order."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: AutomationDispatcher | None = None,
        partner_client: PartnerClient | None = None,
    ) -> None:
        self.session = session
        self.contact_repo = ContactRepository(session)
        self.order_repo = OrderRepository(session)
        self.dispatcher = dispatcher
        self.partner_client = partner_client

    async def find_contact(
        self,
        channel_user_id: str | None = None,
        partner_user_ref: str | None = None,
        phone: str | None = None,
        email: str | None = None,
    ) -> tuple[Contact | None, str | None]:
        """Look up a Contact without creating one.

        Returns:
            (contact or None, the chat user id learned along the way)
        """
        if not channel_user_id and partner_user_ref:
            channel_user_id = channel_id_from_ref(partner_user_ref)
            if channel_user_id is None and looks_like_opaque_ref(partner_user_ref):
                if self.partner_client is not None:
                    channel_user_id = await self.partner_client.lookup_channel_user_id(
                        partner_user_ref
                    )
                if channel_user_id is None:
                    contact = await self.contact_repo.get_by_partner_external_id(partner_user_ref)
                    if contact is not None:
                        return contact, contact.channel_user_id

        if channel_user_id:
            contact = await self.contact_repo.get_by_channel_user_id(channel_user_id)
            if contact is not None:
                return contact, channel_user_id

        normalized_phone = normalize_phone(phone)
        if normalized_phone:
            contact = await self.contact_repo.get_by_phone(normalized_phone)
            if contact is not None:
                return contact, channel_user_id

        if email and email.strip():
            contact = await self.contact_repo.get_by_email(email)
            if contact is not None:
                return contact, channel_user_id

        return None, channel_user_id

    async def resolve_contact(
        self,
        channel_user_id: str | None = None,
        partner_user_ref: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        name_hints: Iterable[str | None] = (),
        telegram_username: str | None = None,
    ) -> Contact:
        """Find or create the Contact an inbound event belongs to.

        Lookup order: chat user id, partner user ref (directly when it
        carries the chat id, else through the partner user lookup), phone,
        email. A hit gets its placeholder name upgraded when a real name
        hint is available; a miss creates a Contact.
        """
        name_hints = list(name_hints)
        contact, channel_user_id = await self.find_contact(
            channel_user_id, partner_user_ref, phone, email
        )

        if contact is not None:
            await self._enrich(contact, channel_user_id, name_hints, telegram_username)
            return contact

        real_name = first_real_name(name_hints)
        identifier = channel_user_id or normalize_phone(phone) or email or partner_user_ref or "Unknown"
        data = {
            "name": real_name or placeholder_name(identifier),
            "phone": normalize_phone(phone),
            "email": email.strip() if email else None,
            "channel_user_id": channel_user_id,
            "partner_external_id": (
                partner_user_ref
                if partner_user_ref and looks_like_opaque_ref(partner_user_ref)
                else None
            ),
            "telegram_username": telegram_username,
            "status": "active",
        }

        try:
            contact = await self.contact_repo.create(**data)
        except IntegrityError:
            # Lost a first-contact race on the unique chat id
            await self.session.rollback()
            if not channel_user_id:
                raise
            contact = await self.contact_repo.get_by_channel_user_id(channel_user_id)
            if contact is None:
                raise
            logger.info(f"Contact for chat user {channel_user_id} created concurrently, reusing {contact.id}")
            return contact

        logger.info(
            f"Created contact {contact.id}",
            extra={"contact_id": contact.id, "channel_user_id": channel_user_id},
        )
        return contact

    async def _enrich(
        self,
        contact: Contact,
        channel_user_id: str | None,
        name_hints: list[str | None],
        telegram_username: str | None,
    ) -> None:
        changed = False
        real_name = first_real_name(name_hints)
        if real_name and is_placeholder_name(contact.name, contact.channel_user_id):
            logger.info(f"Upgrading contact {contact.id} name from {contact.name!r} to {real_name!r}")
            contact.name = real_name
            changed = True
        if channel_user_id and not contact.channel_user_id:
            contact.channel_user_id = channel_user_id
            changed = True
        if telegram_username and contact.telegram_username != telegram_username:
            contact.telegram_username = telegram_username
            changed = True
        if changed:
            await self.session.commit()

    async def resolve_or_create_order(
        self, contact: Contact, source: str | None = None
    ) -> tuple[Order, bool]:
        """Newest non-terminal Order of the contact, or a fresh one.

        An open Order without a correlation id gets one synthesized and
        persisted. Creating an Order dispatches ``order_created`` after
        the commit.

        Returns:
            (order, created)
        """
        order = await self.order_repo.get_latest_open_for_contact(contact.id, TERMINAL_STATUSES)
        if order is not None:
            if order.correlation_id is None:
                order.correlation_id = generate_correlation_id()
                await self.session.commit()
                logger.info(f"Assigned correlation id {order.correlation_id} to order {order.id}")
            return order, False

        order = await self.order_repo.create(
            contact_id=contact.id,
            correlation_id=generate_correlation_id(),
            status=DEFAULT_STATUS,
            partner_status_id=to_partner_id(DEFAULT_STATUS),
            title=f"Request from {contact.name}",
            source=source,
        )
        logger.info(
            f"Created order {order.id}",
            extra={"order_id": order.id, "correlation_id": order.correlation_id, "contact_id": contact.id},
        )
        if self.dispatcher is not None:
            await self.dispatcher.dispatch(ORDER_CREATED, "order", order)
        return order, True
