"""Order repository."""

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.persistence.models.order import Order
from convocrm.persistence.repositories.base import BaseRepository


class OrderRepository(BaseRepository[Order]):
    """Repository for Order entities."""

    def __init__(self, session: AsyncSession):
        """Initialize order repository."""
        super().__init__(Order, session)

    async def get_by_correlation_id(self, correlation_id: int) -> Order | None:
        """Get order by its external correlation id."""
        stmt = select(Order).where(Order.correlation_id == correlation_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_partner_id(self, partner_id: str) -> Order | None:
        """Get order by the partner platform's native id."""
        stmt = select(Order).where(Order.partner_id == partner_id).order_by(Order.id).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_contact(self, contact_id: int) -> list[Order]:
        """All orders of a contact, newest first."""
        stmt = (
            select(Order)
            .where(Order.contact_id == contact_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_latest_open_for_contact(
        self, contact_id: int, terminal_statuses: Iterable[str]
    ) -> Order | None:
        """Newest order of the contact whose status is not terminal."""
        stmt = (
            select(Order)
            .where(
                Order.contact_id == contact_id,
                Order.status.not_in(list(terminal_statuses)),
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
