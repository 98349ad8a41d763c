"""Manager-side order routes: outbound messages, reactions, status and notes."""

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel

from convocrm.api.deps import (
    get_delivery_service,
    get_internal_message_service,
    get_order_status_service,
)
from convocrm.core.errors import NotFoundError, ValidationError
from convocrm.core.status_taxonomy import STATUS_REGISTRY, is_terminal
from convocrm.domain.services.delivery_service import DeliveryService
from convocrm.domain.services.internal_message_service import InternalMessageService
from convocrm.domain.services.order_status_service import OrderStatusService

logger = logging.getLogger(__name__)

router = APIRouter()


class SendMessageRequest(BaseModel):
    """Outbound text message request."""

    content: str
    manager_id: int | None = None
    reply_to_message_id: int | None = None


class ReactionRequest(BaseModel):
    """Reaction request; a null emoji removes the manager's reaction."""

    emoji: str | None = None
    manager_id: int | None = None


class StatusChangeRequest(BaseModel):
    """Status change request."""

    status: str
    actor_id: int | None = None


class NoteRequest(BaseModel):
    """Internal note request."""

    sender_id: int | None
    content: str = ""
    reply_to_id: int | None = None
    attachment_url: str | None = None
    attachment_type: str | None = None
    attachment_name: str | None = None


class MessageResponse(BaseModel):
    """Client-channel message response."""

    id: int
    correlation_id: int | None
    content: str
    author_kind: str
    message_kind: str
    chat_message_id: int | None = None
    reply_to_chat_message_id: int | None = None
    delivery_status: str | None = None
    error_message: str | None = None
    file_url: str | None = None
    file_name: str | None = None
    caption: str | None = None
    reactions: list[dict[str, Any]] | None = None
    manager_id: int | None = None
    voice_duration: int | None = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class InternalMessageResponse(BaseModel):
    """Internal note response."""

    id: int
    order_id: int | None
    correlation_id: int | None
    sender_id: int | None
    content: str
    is_read: bool
    reply_to_id: int | None = None
    attachment_url: str | None = None
    attachment_type: str | None = None
    attachment_name: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class StatusChangeResponse(BaseModel):
    """Status change response."""

    order_id: int
    status: str
    old_status: str | None
    changed: bool
    partner_synced: bool | None = None
    partner_error: str | None = None


class StatusOption(BaseModel):
    """One entry of the status registry."""

    key: str
    label: str
    partner_id: str | None
    terminal: bool


class CountResponse(BaseModel):
    """Count response."""

    count: int


def _http_error(e: NotFoundError | ValidationError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/statuses", response_model=list[StatusOption])
async def list_statuses() -> list[StatusOption]:
    """The order status registry in display order."""
    return [
        StatusOption(key=s.key, label=s.label, partner_id=s.partner_id, terminal=is_terminal(s.key))
        for s in STATUS_REGISTRY
    ]


@router.post("/{order_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    order_id: int,
    request: SendMessageRequest,
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
) -> MessageResponse:
    """Send a text message to the customer.

    The message is stored even when delivery fails; check ``delivery_status``.
    """
    try:
        message = await service.send_text(
            order_id,
            request.content,
            manager_id=request.manager_id,
            reply_to_message_id=request.reply_to_message_id,
        )
    except (NotFoundError, ValidationError) as e:
        raise _http_error(e)
    return MessageResponse.model_validate(message)


@router.post("/{order_id}/files", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_file(
    order_id: int,
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    file: UploadFile = File(...),
    caption: Annotated[str | None, Form()] = None,
    manager_id: Annotated[int | None, Form()] = None,
    reply_to_message_id: Annotated[int | None, Form()] = None,
) -> MessageResponse:
    """Upload a file and send it as a photo or document."""
    data = await file.read()
    try:
        message = await service.send_file(
            order_id,
            data,
            file.filename or "file",
            file.content_type or "application/octet-stream",
            caption=caption,
            manager_id=manager_id,
            reply_to_message_id=reply_to_message_id,
        )
    except (NotFoundError, ValidationError) as e:
        logger.warning(f"File send to order {order_id} failed: {e}")
        raise _http_error(e)
    return MessageResponse.model_validate(message)


@router.post("/{order_id}/voice", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_voice(
    order_id: int,
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    file: UploadFile = File(...),
    duration: Annotated[int | None, Form()] = None,
    manager_id: Annotated[int | None, Form()] = None,
    reply_to_message_id: Annotated[int | None, Form()] = None,
) -> MessageResponse:
    """Upload an OGG/Opus voice note and send it."""
    data = await file.read()
    try:
        message = await service.send_voice(
            order_id,
            data,
            content_type=file.content_type,
            duration=duration,
            manager_id=manager_id,
            reply_to_message_id=reply_to_message_id,
        )
    except (NotFoundError, ValidationError) as e:
        logger.warning(f"Voice send to order {order_id} failed: {e}")
        raise _http_error(e)
    return MessageResponse.model_validate(message)


@router.post("/messages/{message_id}/reaction", response_model=MessageResponse)
async def react_to_message(
    message_id: int,
    request: ReactionRequest,
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
) -> MessageResponse:
    """Set or clear the manager's reaction on a message."""
    try:
        message = await service.react(message_id, request.emoji, manager_id=request.manager_id)
    except NotFoundError as e:
        raise _http_error(e)
    return MessageResponse.model_validate(message)


@router.post("/{order_id}/status", response_model=StatusChangeResponse)
async def change_status(
    order_id: int,
    request: StatusChangeRequest,
    service: Annotated[OrderStatusService, Depends(get_order_status_service)],
) -> StatusChangeResponse:
    """Change the order status and push it to the partner platform."""
    try:
        result = await service.change_status(order_id, request.status, actor_id=request.actor_id)
    except (NotFoundError, ValidationError) as e:
        raise _http_error(e)

    return StatusChangeResponse(
        order_id=result.order.id,
        status=result.order.status,
        old_status=result.old_status,
        changed=result.changed,
        partner_synced=result.partner_sync.success if result.partner_sync else None,
        partner_error=result.partner_sync.error if result.partner_sync else None,
    )


@router.post("/{order_id}/notes", response_model=InternalMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_note(
    order_id: int,
    request: NoteRequest,
    service: Annotated[InternalMessageService, Depends(get_internal_message_service)],
) -> InternalMessageResponse:
    """Post an internal note visible to managers only."""
    try:
        note = await service.send_note(
            order_id,
            request.sender_id,
            request.content,
            reply_to_id=request.reply_to_id,
            attachment_url=request.attachment_url,
            attachment_type=request.attachment_type,
            attachment_name=request.attachment_name,
        )
    except (NotFoundError, ValidationError) as e:
        raise _http_error(e)
    return InternalMessageResponse.model_validate(note)


@router.post("/{order_id}/notes/read", response_model=CountResponse)
async def mark_notes_read(
    order_id: int,
    service: Annotated[InternalMessageService, Depends(get_internal_message_service)],
    reader_id: int,
) -> CountResponse:
    """Mark the order's notes read for a manager (their own notes excluded)."""
    return CountResponse(count=await service.mark_read(order_id, reader_id))


@router.get("/{order_id}/notes/unread", response_model=CountResponse)
async def unread_notes(
    order_id: int,
    service: Annotated[InternalMessageService, Depends(get_internal_message_service)],
    reader_id: int,
) -> CountResponse:
    """Unread note count for a manager."""
    return CountResponse(count=await service.unread_count(order_id, reader_id))
