"""Unified conversation timeline.

Client-facing messages and internal (team-only) messages live in separate
tables with separate pagination. The timeline fetches one page from each,
merges them newest-first and truncates, so the caller sees one feed that
can be paged with a ``before`` cursor.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable, Literal

from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.core.correlation import is_correlation_id, parse_numeric_id
from convocrm.core.timeutils import ensure_utc
from convocrm.infrastructure.cache import MESSAGES_PREFIX, QueryCache, cache_key
from convocrm.persistence.models.internal_message import InternalMessage
from convocrm.persistence.models.message import Message
from convocrm.persistence.models.order import Order
from convocrm.persistence.repositories.contact_repository import ContactRepository
from convocrm.persistence.repositories.internal_message_repository import (
    InternalMessageRepository,
)
from convocrm.persistence.repositories.message_repository import MessageRepository
from convocrm.persistence.repositories.order_repository import OrderRepository
from convocrm.settings import settings

logger = logging.getLogger(__name__)

SOURCE_CLIENT = "client"
SOURCE_INTERNAL = "internal"

# Lower sorts first among items with the same timestamp
_SOURCE_PRIORITY = {SOURCE_CLIENT: 0, SOURCE_INTERNAL: 1}


@dataclass(frozen=True)
class TimelineRef:
    """What the timeline is for: an Order (row id or correlation id) or a Contact."""

    kind: Literal["order", "contact"]
    value: int


@dataclass
class TimelineItem:
    source: str
    id: int
    sort_date: datetime
    content: str
    author_kind: str
    message_kind: str
    is_system: bool = False
    is_read: bool = False
    correlation_id: int | None = None
    order_id: int | None = None
    sender_id: int | None = None
    manager_id: int | None = None
    file_url: str | None = None
    file_name: str | None = None
    caption: str | None = None
    reactions: list[dict[str, Any]] | None = None
    delivery_status: str | None = None
    error_message: str | None = None
    chat_message_id: int | None = None
    reply_to_chat_message_id: int | None = None
    reply_to_id: int | None = None


@dataclass
class TimelinePage:
    items: list[TimelineItem]
    has_more: bool
    limit: int

    @property
    def next_before(self) -> datetime | None:
        """Cursor for the next (older) page."""
        return self.items[-1].sort_date if self.items else None


@dataclass
class ConversationScope:
    """Every id reachable from a timeline reference."""

    correlation_ids: list[int] = field(default_factory=list)
    order_ids: list[int] = field(default_factory=list)
    internal_correlation_ids: list[int] = field(default_factory=list)


@dataclass
class OrderSummary:
    correlation_id: int
    unread_count: int = 0
    last_message_id: int | None = None
    last_message_content: str | None = None
    last_message_author: str | None = None
    last_message_at: str | None = None


def item_from_message(message: Message) -> TimelineItem:
    return TimelineItem(
        source=SOURCE_CLIENT,
        id=message.id,
        sort_date=ensure_utc(message.created_at),
        content=message.content or "",
        author_kind=message.author_kind,
        message_kind=message.message_kind,
        is_read=bool(message.is_read),
        correlation_id=message.correlation_id,
        manager_id=message.manager_id,
        file_url=message.file_url,
        file_name=message.file_name,
        caption=message.caption,
        reactions=message.reactions,
        delivery_status=message.delivery_status,
        error_message=message.error_message,
        chat_message_id=message.chat_message_id,
        reply_to_chat_message_id=message.reply_to_chat_message_id,
    )


def item_from_internal(message: InternalMessage) -> TimelineItem:
    return TimelineItem(
        source=SOURCE_INTERNAL,
        id=message.id,
        sort_date=ensure_utc(message.created_at),
        content=message.content or "",
        author_kind="system" if message.is_system else "manager",
        message_kind="system" if message.is_system else (message.attachment_type or "text"),
        is_system=message.is_system,
        is_read=bool(message.is_read),
        correlation_id=message.correlation_id,
        order_id=message.order_id,
        sender_id=message.sender_id,
        file_url=message.attachment_url,
        file_name=message.attachment_name,
        reply_to_id=message.reply_to_id,
    )


def merge_timeline(
    client_items: Iterable[TimelineItem],
    internal_items: Iterable[TimelineItem],
    limit: int,
) -> list[TimelineItem]:
    """Merge newest-first, client before internal on equal timestamps, then higher id."""
    merged = sorted(
        [*client_items, *internal_items],
        key=lambda item: (-item.sort_date.timestamp(), _SOURCE_PRIORITY[item.source], -item.id),
    )
    return merged[:limit]


class TimelineService:
    """Read side of the conversation: timeline pages and per-order summaries."""

    def __init__(self, session: AsyncSession, cache: QueryCache | None = None) -> None:
        self.session = session
        self.cache = cache
        self.order_repo = OrderRepository(session)
        self.contact_repo = ContactRepository(session)
        self.message_repo = MessageRepository(session)
        self.internal_repo = InternalMessageRepository(session)

    async def resolve_order(self, value: int) -> Order | None:
        """Order by row id, or by correlation id when the value is that large."""
        if is_correlation_id(value):
            return await self.order_repo.get_by_correlation_id(value)
        return await self.order_repo.get_by_id(value)

    async def resolve_scope(self, ref: TimelineRef) -> ConversationScope | None:
        """Collect correlation ids, order ids and legacy chat ids for a reference.

        Returns None when the referenced Order or Contact does not exist.
        """
        scope = ConversationScope()
        if ref.kind == "order":
            order = await self.resolve_order(ref.value)
            if order is None:
                return None
            contact_id = order.contact_id
            scope.order_ids.append(order.id)
            if order.correlation_id is not None:
                scope.correlation_ids.append(order.correlation_id)
                scope.internal_correlation_ids.append(order.correlation_id)
        else:
            contact_id = ref.value
            if await self.contact_repo.get_by_id(contact_id) is None:
                return None

        if contact_id is not None:
            contact = await self.contact_repo.get_by_id(contact_id)
            siblings = await self.order_repo.list_for_contact(contact_id)
            for sibling in siblings:
                if sibling.correlation_id is not None and sibling.correlation_id not in scope.correlation_ids:
                    scope.correlation_ids.append(sibling.correlation_id)
                if ref.kind == "contact":
                    scope.order_ids.append(sibling.id)
                    if sibling.correlation_id is not None:
                        scope.internal_correlation_ids.append(sibling.correlation_id)
            # Older messages were keyed by the chat user id itself
            legacy_id = parse_numeric_id(contact.channel_user_id) if contact else None
            if legacy_id and legacy_id not in scope.correlation_ids:
                scope.correlation_ids.append(legacy_id)

        return scope

    async def get_timeline(
        self, ref: TimelineRef, limit: int = 50, before: datetime | None = None
    ) -> TimelinePage:
        """One page of the merged timeline, newest first.

        Args:
            ref: Order or Contact reference
            limit: Page size
            before: Only items strictly older than this

        Returns:
            TimelinePage; empty when the reference does not resolve
        """
        if limit < 1:
            limit = 1
        scope = await self.resolve_scope(ref)
        if scope is None:
            logger.info(f"Timeline requested for unknown {ref.kind} {ref.value}")
            return TimelinePage(items=[], has_more=False, limit=limit)

        before = ensure_utc(before)
        client_rows = await self.message_repo.list_page(scope.correlation_ids, limit, before)
        internal_rows = await self.internal_repo.list_page(
            scope.order_ids, scope.internal_correlation_ids, limit, before
        )

        client_items = [item_from_message(m) for m in client_rows]
        internal_items = [item_from_internal(m) for m in internal_rows]
        items = merge_timeline(client_items, internal_items, limit)

        has_more = (
            len(client_rows) == limit
            or len(internal_rows) == limit
            or len(client_items) + len(internal_items) > limit
        )
        return TimelinePage(items=items, has_more=has_more, limit=limit)

    async def get_order_summaries(self, correlation_ids: Iterable[int]) -> dict[int, OrderSummary]:
        """Latest client message and unread client count per correlation id."""
        ids = sorted({cid for cid in correlation_ids if cid is not None})
        if not ids:
            return {}

        key = cache_key(MESSAGES_PREFIX, {"summaries": ",".join(str(i) for i in ids)})
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                return {int(cid): OrderSummary(**data) for cid, data in cached.items()}

        latest = await self.message_repo.latest_messages_for(ids, only_client=True)
        unread = await self.message_repo.unread_client_counts(ids)

        summaries = {}
        for cid in ids:
            summary = OrderSummary(correlation_id=cid, unread_count=unread.get(cid, 0))
            message = latest.get(cid)
            if message is not None:
                summary.last_message_id = message.id
                summary.last_message_content = message.content
                summary.last_message_author = message.author_kind
                summary.last_message_at = ensure_utc(message.created_at).isoformat()
            summaries[cid] = summary

        if self.cache is not None:
            await self.cache.set(
                key,
                {str(cid): asdict(s) for cid, s in summaries.items()},
                settings.cache_ttl_messages_seconds,
            )
        return summaries

    async def mark_client_messages_read(self, ref: TimelineRef) -> int:
        """Mark every unread client message in the conversation as read."""
        scope = await self.resolve_scope(ref)
        if scope is None:
            return 0
        changed = await self.message_repo.mark_client_messages_read(scope.correlation_ids)
        if changed and self.cache is not None:
            await self.cache.invalidate(MESSAGES_PREFIX)
        return changed
