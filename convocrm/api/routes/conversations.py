"""Conversation read routes: merged timelines and per-order summaries."""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from convocrm.api.deps import get_timeline_service
from convocrm.domain.services.timeline_service import TimelinePage, TimelineRef, TimelineService

router = APIRouter()


class TimelineItemResponse(BaseModel):
    """One entry of the merged timeline."""

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

    class Config:
        from_attributes = True


class TimelineResponse(BaseModel):
    """Timeline page response."""

    items: list[TimelineItemResponse]
    has_more: bool
    limit: int
    next_before: datetime | None = None


class OrderSummaryResponse(BaseModel):
    """Latest client message and unread count for one order."""

    correlation_id: int
    unread_count: int = 0
    last_message_id: int | None = None
    last_message_content: str | None = None
    last_message_author: str | None = None
    last_message_at: str | None = None

    class Config:
        from_attributes = True


class MarkReadResponse(BaseModel):
    """Mark-read response."""

    updated: int


def _page_response(page: TimelinePage) -> TimelineResponse:
    return TimelineResponse(
        items=[TimelineItemResponse.model_validate(item) for item in page.items],
        has_more=page.has_more,
        limit=page.limit,
        next_before=page.next_before,
    )


@router.get("/orders/{order_ref}/timeline", response_model=TimelineResponse)
async def get_order_timeline(
    order_ref: int,
    service: Annotated[TimelineService, Depends(get_timeline_service)],
    limit: int = Query(50, ge=1, le=200),
    before: datetime | None = Query(None),
) -> TimelineResponse:
    """Timeline of an order's conversation.

    ``order_ref`` is the order row id or its correlation id. Messages from
    the customer's other orders are included, so the chat reads as one
    continuous thread.
    """
    if await service.resolve_order(order_ref) is None:
        raise HTTPException(status_code=404, detail="Order not found")
    page = await service.get_timeline(TimelineRef("order", order_ref), limit=limit, before=before)
    return _page_response(page)


@router.get("/contacts/{contact_id}/timeline", response_model=TimelineResponse)
async def get_contact_timeline(
    contact_id: int,
    service: Annotated[TimelineService, Depends(get_timeline_service)],
    limit: int = Query(50, ge=1, le=200),
    before: datetime | None = Query(None),
) -> TimelineResponse:
    """Timeline across every order of a contact."""
    ref = TimelineRef("contact", contact_id)
    if await service.resolve_scope(ref) is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    page = await service.get_timeline(ref, limit=limit, before=before)
    return _page_response(page)


@router.get("/orders/summaries", response_model=list[OrderSummaryResponse])
async def get_order_summaries(
    service: Annotated[TimelineService, Depends(get_timeline_service)],
    correlation_ids: list[int] = Query(..., alias="ids"),
) -> list[OrderSummaryResponse]:
    """Inbox data for a list of correlation ids."""
    summaries = await service.get_order_summaries(correlation_ids)
    return [OrderSummaryResponse.model_validate(s) for s in summaries.values()]


@router.post("/orders/{order_ref}/read", response_model=MarkReadResponse)
async def mark_order_read(
    order_ref: int,
    service: Annotated[TimelineService, Depends(get_timeline_service)],
) -> MarkReadResponse:
    """Mark the customer's unread messages in this conversation as read."""
    if await service.resolve_order(order_ref) is None:
        raise HTTPException(status_code=404, detail="Order not found")
    updated = await service.mark_client_messages_read(TimelineRef("order", order_ref))
    return MarkReadResponse(updated=updated)
