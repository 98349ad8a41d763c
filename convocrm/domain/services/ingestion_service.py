"""Message ingestion and deduplication pipeline."""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.core.errors import ValidationError
from convocrm.core.timeutils import utc_now
from convocrm.domain.services.automation_dispatcher import MESSAGE_RECEIVED, AutomationDispatcher
from convocrm.domain.services.identity_resolver import IdentityResolver
from convocrm.domain.services.message_normalizer import (
    CHAT_CLIENT_AUTHOR,
    ChatAttachment,
    NormalizedMessage,
    SourceChannel,
    normalize_chat_update,
    normalize_partner_event,
)
from convocrm.infrastructure.cache import QueryCache, invalidate_conversation_caches
from convocrm.persistence.models.contact import Contact
from convocrm.persistence.models.message import Message
from convocrm.persistence.models.order import Order
from convocrm.persistence.repositories.contact_repository import ContactRepository
from convocrm.persistence.repositories.message_repository import MessageRepository
from convocrm.persistence.repositories.order_repository import OrderRepository

logger = logging.getLogger(__name__)

_CLIENT_REACTION_AUTHORS = {CHAT_CLIENT_AUTHOR, "Клиент"}

# Fields copied from an inbound duplicate onto the stored row when non-null
_MERGE_FIELDS = (
    "author_kind",
    "message_kind",
    "chat_message_id",
    "partner_message_id",
    "reply_to_chat_message_id",
    "file_url",
    "file_name",
    "caption",
    "author_name",
)


class AttachmentFetcher(Protocol):
    async def fetch(self, attachment: ChatAttachment, order_id: int) -> str | None:
        ...


@dataclass
class IngestionResult:
    """What a single ingest call did."""

    message: Message | None
    created: bool
    order: Order | None = None
    contact: Contact | None = None
    order_created: bool = False
    dropped: bool = False


def merge_reactions(
    current: list[dict[str, Any]] | None,
    incoming: list[dict[str, Any]],
    source: SourceChannel,
) -> list[dict[str, Any]]:
    """Combine stored and inbound reactions.

    Chat-channel updates carry the customer's complete reaction set and
    replace the customer's earlier entries; partner reactions are appended.
    """
    stamp = utc_now().isoformat()
    stamped = [{**r, "created_at": r.get("created_at") or stamp} for r in incoming]
    existing = [r for r in (current or []) if isinstance(r, dict)]
    if source == SourceChannel.CHAT:
        existing = [r for r in existing if r.get("author") not in _CLIENT_REACTION_AUTHORS]
    return existing + stamped


class MessageIngestionService:
    """Turns inbound events from either channel into stored, linked messages."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: AutomationDispatcher | None = None,
        resolver: IdentityResolver | None = None,
        attachment_fetcher: AttachmentFetcher | None = None,
        cache: QueryCache | None = None,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher
        self.resolver = resolver or IdentityResolver(session, dispatcher=dispatcher)
        self.attachment_fetcher = attachment_fetcher
        self.cache = cache
        self.message_repo = MessageRepository(session)
        self.order_repo = OrderRepository(session)
        self.contact_repo = ContactRepository(session)

    async def ingest(self, raw_event: dict[str, Any], source_channel: SourceChannel) -> IngestionResult:
        """Normalize and ingest one inbound event.

        Args:
            raw_event: Partner webhook payload or Telegram update
            source_channel: Which channel the event came from

        Raises:
            ValidationError: Unusable event (no correlation id and no identity)
        """
        if source_channel == SourceChannel.PARTNER:
            normalized = normalize_partner_event(raw_event)
        else:
            normalized = normalize_chat_update(raw_event)
            if normalized is None:
                raise ValidationError("Unsupported chat update")
        return await self.ingest_normalized(normalized)

    async def ingest_normalized(self, msg: NormalizedMessage) -> IngestionResult:
        """Ingest an already normalized message."""
        if msg.is_reaction:
            return await self._apply_reaction(msg)

        order, contact, order_created, correlation_id = await self._resolve_target(msg)

        if msg.attachment and not msg.file_url and order is not None and self.attachment_fetcher:
            msg.file_url = await self.attachment_fetcher.fetch(msg.attachment, order.id)

        existing = await self._find_existing(msg)
        if existing is not None:
            self._merge_into(existing, msg, correlation_id)
            await self.session.commit()
            await self.session.refresh(existing)
            logger.info(
                f"Updated message {existing.id} from duplicate {msg.source.value} event",
                extra={"message_id": existing.id, "correlation_id": correlation_id},
            )
            message, created = existing, False
        else:
            message = await self.message_repo.create(
                correlation_id=correlation_id,
                content=msg.content or "",
                author_kind=msg.author_kind,
                message_kind=msg.message_kind,
                chat_message_id=msg.chat_message_id,
                partner_message_id=msg.partner_message_id,
                reply_to_chat_message_id=msg.reply_to_chat_message_id,
                file_url=msg.file_url,
                file_name=msg.file_name,
                caption=msg.caption,
                author_name=msg.author_name,
                reactions=msg.reactions,
                created_at=msg.created_at or utc_now(),
            )
            if order is not None:
                await self.message_repo.link_to_order(order.id, message.id)
            created = True
            logger.info(
                f"Stored {msg.source.value} message {message.id}",
                extra={"message_id": message.id, "correlation_id": correlation_id},
            )

        if contact is not None:
            await self.contact_repo.touch_last_activity(contact.id, msg.created_at or utc_now())

        await invalidate_conversation_caches(self.cache)

        if created and self.dispatcher is not None:
            await self.dispatcher.dispatch(MESSAGE_RECEIVED, "message", message)

        return IngestionResult(
            message=message,
            created=created,
            order=order,
            contact=contact,
            order_created=order_created,
        )

    async def _resolve_target(
        self, msg: NormalizedMessage
    ) -> tuple[Order | None, Contact | None, bool, int | None]:
        """Find the Order (and Contact) the message belongs to.

        Returns:
            (order, contact, order_created, correlation id to store)
        """
        if msg.correlation_id is not None:
            order = await self.order_repo.get_by_correlation_id(msg.correlation_id)
            if order is not None:
                contact = (
                    await self.contact_repo.get_by_id(order.contact_id) if order.contact_id else None
                )
                return order, contact, False, order.correlation_id

        if not msg.has_identity_hints:
            if msg.correlation_id is not None:
                logger.info(f"No order for correlation id {msg.correlation_id}, storing unlinked")
                return None, None, False, msg.correlation_id
            raise ValidationError("Event carries neither a correlation id nor any identity hint")

        contact = await self.resolver.resolve_contact(
            channel_user_id=msg.channel_user_id,
            partner_user_ref=msg.partner_user_ref,
            phone=msg.phone,
            email=msg.email,
            name_hints=msg.name_hints,
            telegram_username=msg.telegram_username,
        )
        source = "telegram_bot" if msg.source == SourceChannel.CHAT else "partner"
        order, order_created = await self.resolver.resolve_or_create_order(contact, source=source)
        return order, contact, order_created, order.correlation_id

    async def _find_existing(self, msg: NormalizedMessage) -> Message | None:
        if msg.partner_message_id and msg.partner_message_id != "null":
            existing = await self.message_repo.get_by_partner_message_id(msg.partner_message_id)
            if existing is not None:
                return existing
        if msg.chat_message_id:
            return await self.message_repo.get_by_chat_message_id(msg.chat_message_id)
        return None

    def _merge_into(self, existing: Message, msg: NormalizedMessage, correlation_id: int | None) -> None:
        for name in _MERGE_FIELDS:
            value = getattr(msg, name)
            if value is not None:
                setattr(existing, name, value)
        if msg.content or not existing.content:
            existing.content = msg.content or ""
        if existing.correlation_id is None and correlation_id is not None:
            existing.correlation_id = correlation_id

    async def _apply_reaction(self, msg: NormalizedMessage) -> IngestionResult:
        existing = await self._find_existing(msg)
        if existing is None:
            logger.info(
                f"Dropping reaction for unknown message "
                f"(chat={msg.chat_message_id}, partner={msg.partner_message_id})"
            )
            return IngestionResult(message=None, created=False, dropped=True)

        existing.reactions = merge_reactions(existing.reactions, msg.reactions or [], msg.source)
        await self.session.commit()
        await self.session.refresh(existing)
        await invalidate_conversation_caches(self.cache)
        logger.info(f"Updated reactions on message {existing.id}")
        return IngestionResult(message=existing, created=False)
