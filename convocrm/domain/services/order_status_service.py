"""Order status transitions in both directions."""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.core.correlation import parse_numeric_id
from convocrm.core.errors import NotFoundError, ValidationError
from convocrm.core.status_taxonomy import is_known_status, label_for, to_internal_status, to_partner_id
from convocrm.domain.services.automation_dispatcher import ORDER_STATUS_CHANGED, AutomationDispatcher
from convocrm.domain.services.internal_message_service import InternalMessageService
from convocrm.infrastructure.cache import QueryCache, invalidate_conversation_caches
from convocrm.infrastructure.partner_client import PartnerClient, StatusSyncResult
from convocrm.persistence.models.order import Order
from convocrm.persistence.repositories.order_repository import OrderRepository

logger = logging.getLogger(__name__)


@dataclass
class StatusChangeResult:
    order: Order
    changed: bool
    old_status: str | None = None
    partner_sync: StatusSyncResult | None = None


@dataclass
class PartnerStatusUpdateReport:
    """Per-item outcome of an inbound partner status batch."""

    updates: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)


class OrderStatusService:
    """Local status changes (pushed to the partner) and partner-driven ones."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: AutomationDispatcher | None = None,
        partner_client: PartnerClient | None = None,
        cache: QueryCache | None = None,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher
        self.partner_client = partner_client
        self.cache = cache
        self.order_repo = OrderRepository(session)
        self.notes = InternalMessageService(session, cache=cache)

    async def change_status(
        self, order_id: int, new_status: str, actor_id: int | None = None
    ) -> StatusChangeResult:
        """Move an order to a new status.

        The change is committed first, then the audit entry is written,
        ``order_status_changed`` is dispatched and the partner webhook is
        pushed when the order has a correlation id. Failures of the
        side effects never undo the change.

        Raises:
            ValidationError: Unknown status
            NotFoundError: Unknown order
        """
        if not is_known_status(new_status):
            raise ValidationError(f"Unknown status: {new_status}")

        order = await self.order_repo.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")

        old_status = order.status
        if old_status == new_status:
            return StatusChangeResult(order=order, changed=False, old_status=old_status)

        order.status = new_status
        order.partner_status_id = to_partner_id(new_status)
        await self.session.commit()
        await self.session.refresh(order)
        logger.info(
            f"Order {order.id} status {old_status} -> {new_status}",
            extra={"order_id": order.id, "actor_id": actor_id},
        )

        await self.notes.record_system_event(
            order,
            f"Status changed: {label_for(old_status)} -> {label_for(new_status)}",
            sender_id=actor_id,
        )
        await invalidate_conversation_caches(self.cache)

        if self.dispatcher is not None:
            await self.dispatcher.dispatch(ORDER_STATUS_CHANGED, "order", order)

        sync = None
        if order.correlation_id is not None and self.partner_client is not None:
            sync = await self.partner_client.push_status_change(
                order.correlation_id, new_status, old_status
            )
            if not sync.success:
                logger.warning(f"Partner status sync failed for order {order.id}: {sync.error}")

        return StatusChangeResult(order=order, changed=True, old_status=old_status, partner_sync=sync)

    async def apply_partner_status_updates(
        self, items: Iterable[dict[str, Any]]
    ) -> PartnerStatusUpdateReport:
        """Apply ``leads.status`` items received from the partner.

        Never pushes the change back to the partner.
        """
        report = PartnerStatusUpdateReport()
        for item in items:
            correlation_id = parse_numeric_id(item.get("id"))
            partner_status_id = item.get("status_id")
            if correlation_id is None or partner_status_id in (None, ""):
                report.errors.append({"item": item, "error": "Missing id/status_id"})
                continue

            internal_status = to_internal_status(partner_status_id)
            if internal_status is None:
                logger.warning(f"Unknown partner status id {partner_status_id}")
                report.errors.append({"item": item, "error": "Unknown mapping"})
                continue

            order = await self.order_repo.get_by_correlation_id(correlation_id)
            if order is None:
                report.errors.append({"item": item, "error": "Not found"})
                continue

            if order.status == internal_status:
                report.updates.append({"id": order.id, "status": "skipped"})
                continue

            old_status = order.status
            order.status = internal_status
            order.partner_status_id = str(partner_status_id)
            await self.session.commit()
            await self.session.refresh(order)
            await self.notes.record_system_event(
                order,
                f"Status changed by partner: {label_for(old_status)} -> {label_for(internal_status)}",
            )

            if self.dispatcher is not None:
                await self.dispatcher.dispatch(ORDER_STATUS_CHANGED, "order", order)
            report.updates.append({"id": order.id, "old": old_status, "new": internal_status})

        if report.updates:
            await invalidate_conversation_caches(self.cache)
        return report
