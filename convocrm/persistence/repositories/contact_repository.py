"""Contact repository."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.persistence.models.contact import Contact
from convocrm.persistence.repositories.base import BaseRepository


class ContactRepository(BaseRepository[Contact]):
    """Repository for Contact entities."""

    def __init__(self, session: AsyncSession):
        """Initialize contact repository."""
        super().__init__(Contact, session)

    async def get_by_channel_user_id(self, channel_user_id: str) -> Contact | None:
        """Get contact by chat-platform user id."""
        stmt = select(Contact).where(Contact.channel_user_id == channel_user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_phone(self, phone: str) -> Contact | None:
        """Get the oldest contact with this normalized phone."""
        stmt = select(Contact).where(Contact.phone == phone).order_by(Contact.id).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Contact | None:
        """Get the oldest contact with this email (case-insensitive)."""
        stmt = (
            select(Contact)
            .where(Contact.email.ilike(email.strip()))
            .order_by(Contact.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_partner_external_id(self, partner_external_id: str) -> Contact | None:
        """Get contact by the partner platform's user id."""
        stmt = (
            select(Contact)
            .where(Contact.partner_external_id == partner_external_id)
            .order_by(Contact.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def touch_last_activity(self, contact_id: int, when: datetime) -> None:
        """Set last_activity_at and commit."""
        await self.session.execute(
            update(Contact).where(Contact.id == contact_id).values(last_activity_at=when)
        )
        await self.session.commit()
