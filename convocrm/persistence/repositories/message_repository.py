"""Client-facing message repository."""

from datetime import datetime
from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.persistence.models.message import Message, OrderMessage
from convocrm.persistence.repositories.base import BaseRepository


class MessageRepository(BaseRepository[Message]):
    """Repository for Message entities."""

    def __init__(self, session: AsyncSession):
        """Initialize message repository."""
        super().__init__(Message, session)

    async def get_by_partner_message_id(self, partner_message_id: str) -> Message | None:
        """Get the oldest message carrying this partner message id."""
        stmt = (
            select(Message)
            .where(Message.partner_message_id == partner_message_id)
            .order_by(Message.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_chat_message_id(self, chat_message_id: int) -> Message | None:
        """Get the oldest message carrying this chat-platform message id."""
        stmt = (
            select(Message)
            .where(Message.chat_message_id == chat_message_id)
            .order_by(Message.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_page(
        self,
        correlation_ids: Sequence[int],
        limit: int,
        before: datetime | None = None,
    ) -> list[Message]:
        """Newest-first page of messages for any of the correlation ids.

        Args:
            correlation_ids: Correlation ids (and legacy channel user ids)
            limit: Maximum rows to return
            before: Exclusive upper bound on created_at

        Returns:
            Messages ordered by created_at desc, id desc
        """
        if not correlation_ids:
            return []
        stmt = select(Message).where(Message.correlation_id.in_(list(correlation_ids)))
        if before is not None:
            stmt = stmt.where(Message.created_at < before)
        stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def latest_messages_for(
        self, correlation_ids: Sequence[int], only_client: bool = False
    ) -> dict[int, Message]:
        """Latest message per correlation id.

        Args:
            correlation_ids: Correlation ids to look up
            only_client: Restrict to messages authored by the client

        Returns:
            Mapping of correlation id to its newest message
        """
        if not correlation_ids:
            return {}
        ranked = select(
            Message.id.label("message_id"),
            func.row_number()
            .over(
                partition_by=Message.correlation_id,
                order_by=(Message.created_at.desc(), Message.id.desc()),
            )
            .label("rank"),
        ).where(Message.correlation_id.in_(list(correlation_ids)))
        if only_client:
            ranked = ranked.where(Message.author_kind == "client")
        ranked = ranked.subquery()

        stmt = (
            select(Message)
            .join(ranked, ranked.c.message_id == Message.id)
            .where(ranked.c.rank == 1)
        )
        result = await self.session.execute(stmt)
        return {message.correlation_id: message for message in result.scalars().all()}

    async def unread_client_counts(self, correlation_ids: Sequence[int]) -> dict[int, int]:
        """Count unread client messages per correlation id."""
        if not correlation_ids:
            return {}
        stmt = (
            select(Message.correlation_id, func.count(Message.id))
            .where(
                Message.correlation_id.in_(list(correlation_ids)),
                Message.author_kind == "client",
                Message.is_read.is_(False),
            )
            .group_by(Message.correlation_id)
        )
        result = await self.session.execute(stmt)
        return {correlation_id: count for correlation_id, count in result.all()}

    async def mark_client_messages_read(self, correlation_ids: Sequence[int]) -> int:
        """Mark all unread client messages as read. Returns rows changed."""
        if not correlation_ids:
            return 0
        result = await self.session.execute(
            update(Message)
            .where(
                Message.correlation_id.in_(list(correlation_ids)),
                Message.author_kind == "client",
                Message.is_read.is_(False),
            )
            .values(is_read=True)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def link_to_order(self, order_id: int, message_id: int) -> OrderMessage:
        """Record the order/message association."""
        link = OrderMessage(order_id=order_id, message_id=message_id)
        self.session.add(link)
        await self.session.commit()
        return link
