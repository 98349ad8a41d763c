"""Telegram bot webhook endpoint."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException

from convocrm.api.deps import get_chat_update_service, verify_telegram_webhook
from convocrm.core.errors import ValidationError
from convocrm.domain.services.chat_update_service import ChatUpdateService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/webhook")
async def telegram_webhook_check() -> dict:
    """Reachability check used when registering the webhook."""
    return {"status": "ok", "message": "Telegram webhook endpoint"}


@router.post("/webhook", dependencies=[Depends(verify_telegram_webhook)])
async def telegram_webhook(
    update: Annotated[dict[str, Any], Body()],
    service: Annotated[ChatUpdateService, Depends(get_chat_update_service)],
) -> dict:
    """Receive one bot update.

    Customer messages, inline-button presses and reactions are ingested;
    ``/start`` gets the greeting. Database errors surface as 500 so that
    Telegram redelivers the update.
    """
    try:
        outcome = await service.handle_update(update)
    except ValidationError as e:
        logger.warning(f"Rejected Telegram update {update.get('update_id')}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    response: dict[str, Any] = {"ok": True, "action": outcome.action}
    if outcome.ingestion is not None and outcome.ingestion.message is not None:
        response["message_id"] = outcome.ingestion.message.id
        response["created"] = outcome.ingestion.created
    return response
