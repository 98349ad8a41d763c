"""Inbound webhooks from the partner workflow platform.

Bodies are parsed with :func:`loads_lenient` because the partner's
templated requests are frequently not strict JSON.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request

from convocrm.api.deps import (
    get_ingestion_service,
    get_order_status_service,
    get_partner_sync_service,
    verify_partner_webhook,
)
from convocrm.api.lenient_json import loads_lenient
from convocrm.core.errors import NotFoundError, ValidationError
from convocrm.domain.services.ingestion_service import MessageIngestionService
from convocrm.domain.services.message_normalizer import SourceChannel
from convocrm.domain.services.order_status_service import OrderStatusService
from convocrm.domain.services.partner_sync_service import PartnerSyncService

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_partner_webhook)])


async def _read_body(request: Request) -> dict[str, Any]:
    try:
        body = loads_lenient(await request.body())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return body


@router.post("/message")
async def partner_message(
    request: Request,
    service: Annotated[MessageIngestionService, Depends(get_ingestion_service)],
) -> dict:
    """Ingest a message (or reaction) mirrored from the partner platform."""
    body = await _read_body(request)
    try:
        result = await service.ingest(body, SourceChannel.PARTNER)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if result.dropped:
        return {"success": True, "dropped": True}
    return {
        "success": True,
        "created": result.created,
        "message_id": result.message.id,
        "correlation_id": result.message.correlation_id,
        "order_id": result.order.id if result.order else None,
    }


@router.post("/order")
async def partner_order(
    request: Request,
    service: Annotated[PartnerSyncService, Depends(get_partner_sync_service)],
) -> dict:
    """Create or update an order from a partner record."""
    body = await _read_body(request)
    order, action = await service.upsert_order(body)
    return {
        "success": True,
        "action": action,
        "order_id": order.id,
        "correlation_id": order.correlation_id,
        "status": order.status,
    }


@router.post("/contact")
async def partner_contact(
    request: Request,
    service: Annotated[PartnerSyncService, Depends(get_partner_sync_service)],
) -> dict:
    """Create or update a contact from a partner record."""
    body = await _read_body(request)
    contact, action = await service.upsert_contact(body)
    return {"success": True, "action": action, "contact_id": contact.id}


@router.post("/status")
async def partner_status(
    request: Request,
    service: Annotated[OrderStatusService, Depends(get_order_status_service)],
) -> dict:
    """Apply ``{"leads": {"status": [...]}}`` status changes made on the partner side."""
    body = await _read_body(request)
    leads = body.get("leads")
    items = leads.get("status") if isinstance(leads, dict) else None
    if not isinstance(items, list):
        raise HTTPException(status_code=400, detail="Invalid payload")

    report = await service.apply_partner_status_updates(items)
    if report.errors:
        logger.warning(f"Partner status batch had {len(report.errors)} errors")
    return {"success": True, "updates": report.updates, "errors": report.errors}


@router.post("/note_to_user")
async def partner_note_to_user(
    request: Request,
    service: Annotated[PartnerSyncService, Depends(get_partner_sync_service)],
) -> dict:
    """Attach a note to every order of a partner user."""
    body = await _read_body(request)
    user, note = body.get("user"), body.get("note")
    if not user or not note:
        raise HTTPException(status_code=400, detail="Missing user or note")
    try:
        entries = await service.note_to_user(str(user), str(note))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "messages_created": len(entries)}


@router.post("/note_to_order")
async def partner_note_to_order(
    request: Request,
    service: Annotated[PartnerSyncService, Depends(get_partner_sync_service)],
) -> dict:
    """Attach a note to one order by its correlation id."""
    body = await _read_body(request)
    main_id, note = body.get("main_id") or body.get("main_ID"), body.get("note")
    if not main_id or not note:
        raise HTTPException(status_code=400, detail="Missing main_id or note")
    try:
        entry = await service.note_to_order(main_id, str(note))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "order_id": entry.order_id, "message_id": entry.id}
