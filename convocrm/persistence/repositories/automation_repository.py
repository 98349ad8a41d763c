"""Automation rule repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.persistence.models.automation import Automation
from convocrm.persistence.repositories.base import BaseRepository


class AutomationRepository(BaseRepository[Automation]):
    """Repository for Automation entities."""

    def __init__(self, session: AsyncSession):
        """Initialize automation repository."""
        super().__init__(Automation, session)

    async def list_active_for_trigger(self, trigger_type: str) -> list[Automation]:
        """Active automations for a trigger, in creation order."""
        stmt = (
            select(Automation)
            .where(Automation.trigger_type == trigger_type, Automation.is_active.is_(True))
            .order_by(Automation.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
