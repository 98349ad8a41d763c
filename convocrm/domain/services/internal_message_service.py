"""Team-only notes and system audit entries on orders."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.core.errors import NotFoundError, ValidationError
from convocrm.infrastructure.cache import QueryCache, invalidate_conversation_caches
from convocrm.persistence.models.internal_message import SYSTEM_ATTACHMENT_TYPE, InternalMessage
from convocrm.persistence.models.order import Order
from convocrm.persistence.repositories.internal_message_repository import (
    InternalMessageRepository,
)
from convocrm.persistence.repositories.order_repository import OrderRepository
from convocrm.settings import settings

logger = logging.getLogger(__name__)


class InternalMessageService:
    """Service for internal messages."""

    def __init__(self, session: AsyncSession, cache: QueryCache | None = None) -> None:
        """Initialize internal message service."""
        self.session = session
        self.cache = cache
        self.internal_repo = InternalMessageRepository(session)
        self.order_repo = OrderRepository(session)

    async def send_note(
        self,
        order_id: int,
        sender_id: int,
        content: str,
        reply_to_id: int | None = None,
        attachment_url: str | None = None,
        attachment_type: str | None = None,
        attachment_name: str | None = None,
    ) -> InternalMessage:
        """Post a manager note on an order.

        Args:
            order_id: Order row id
            sender_id: Manager posting the note
            content: Note text
            reply_to_id: Internal message being replied to
            attachment_url: Already uploaded attachment
            attachment_type: image, file or voice
            attachment_name: Original file name

        Returns:
            Created internal message

        Raises:
            ValidationError: Empty note without attachment
            NotFoundError: Unknown order
        """
        if not (content and content.strip()) and not attachment_url:
            raise ValidationError("Note cannot be empty")
        if attachment_type == SYSTEM_ATTACHMENT_TYPE:
            raise ValidationError("Managers cannot post system entries")

        order = await self.order_repo.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")

        note = await self.internal_repo.create(
            order_id=order.id,
            correlation_id=order.correlation_id,
            sender_id=sender_id,
            content=(content or "").strip(),
            reply_to_id=reply_to_id,
            attachment_url=attachment_url,
            attachment_type=attachment_type,
            attachment_name=attachment_name,
        )
        await invalidate_conversation_caches(self.cache)
        return note

    async def record_system_event(
        self, order: Order, content: str, sender_id: int | None = None
    ) -> InternalMessage:
        """Write an audit entry (status change, partner note) to the order timeline."""
        entry = await self.internal_repo.create(
            order_id=order.id,
            correlation_id=order.correlation_id,
            sender_id=sender_id if sender_id is not None else settings.system_sender_id,
            content=content,
            attachment_type=SYSTEM_ATTACHMENT_TYPE,
        )
        logger.debug(f"System entry {entry.id} on order {order.id}: {content}")
        await invalidate_conversation_caches(self.cache)
        return entry

    async def mark_read(self, order_id: int, reader_id: int) -> int:
        """Mark the order's internal messages read, except the reader's own."""
        changed = await self.internal_repo.mark_read(order_id, reader_id)
        if changed:
            await invalidate_conversation_caches(self.cache)
        return changed

    async def unread_count(self, order_id: int, reader_id: int) -> int:
        return await self.internal_repo.count_unread(order_id, reader_id)
