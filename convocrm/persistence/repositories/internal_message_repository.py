"""Internal (team-only) message repository."""

from datetime import datetime
from typing import Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.persistence.models.internal_message import InternalMessage
from convocrm.persistence.repositories.base import BaseRepository


class InternalMessageRepository(BaseRepository[InternalMessage]):
    """Repository for InternalMessage entities."""

    def __init__(self, session: AsyncSession):
        """Initialize internal message repository."""
        super().__init__(InternalMessage, session)

    def _scope(self, order_ids: Sequence[int], correlation_ids: Sequence[int]):
        clauses = []
        if order_ids:
            clauses.append(InternalMessage.order_id.in_(list(order_ids)))
        if correlation_ids:
            clauses.append(InternalMessage.correlation_id.in_(list(correlation_ids)))
        return or_(*clauses)

    async def list_page(
        self,
        order_ids: Sequence[int],
        correlation_ids: Sequence[int],
        limit: int,
        before: datetime | None = None,
    ) -> list[InternalMessage]:
        """Newest-first page matched by order id or legacy correlation id."""
        if not order_ids and not correlation_ids:
            return []
        stmt = select(InternalMessage).where(self._scope(order_ids, correlation_ids))
        if before is not None:
            stmt = stmt.where(InternalMessage.created_at < before)
        stmt = stmt.order_by(
            InternalMessage.created_at.desc(), InternalMessage.id.desc()
        ).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_unread(self, order_id: int, reader_id: int) -> int:
        """Unread messages on an order not sent by the reader."""
        stmt = select(func.count(InternalMessage.id)).where(
            InternalMessage.order_id == order_id,
            InternalMessage.is_read.is_(False),
            or_(InternalMessage.sender_id.is_(None), InternalMessage.sender_id != reader_id),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def mark_read(self, order_id: int, reader_id: int) -> int:
        """Mark messages read for a reader, excluding the reader's own."""
        result = await self.session.execute(
            update(InternalMessage)
            .where(
                InternalMessage.order_id == order_id,
                InternalMessage.is_read.is_(False),
                or_(
                    InternalMessage.sender_id.is_(None),
                    InternalMessage.sender_id != reader_id,
                ),
            )
            .values(is_read=True)
        )
        await self.session.commit()
        return result.rowcount or 0
