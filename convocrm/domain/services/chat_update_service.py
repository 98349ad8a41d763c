"""Handling of Telegram bot webhook updates."""

import logging
from dataclasses import dataclass
from typing import Any

from convocrm.domain.services.ingestion_service import IngestionResult, MessageIngestionService
from convocrm.domain.services.message_normalizer import normalize_chat_update
from convocrm.infrastructure.telegram_client import TelegramClient
from convocrm.settings import settings

logger = logging.getLogger(__name__)

START_COMMAND = "/start"


@dataclass
class ChatUpdateOutcome:
    action: str  # ingested, command, ignored
    ingestion: IngestionResult | None = None


class ChatUpdateService:
    """Routes one bot update to ingestion, command handling or the echo path."""

    def __init__(self, ingestion: MessageIngestionService, telegram: TelegramClient) -> None:
        self.ingestion = ingestion
        self.telegram = telegram

    async def handle_update(self, update: dict[str, Any]) -> ChatUpdateOutcome:
        normalized = normalize_chat_update(update)
        if normalized is None:
            logger.debug(f"Ignoring update {update.get('update_id')} with no customer event")
            return ChatUpdateOutcome(action="ignored")

        if normalized.is_command:
            if normalized.content.strip().split()[0] == START_COMMAND and normalized.channel_user_id:
                await self.telegram.send_message(
                    normalized.channel_user_id, settings.telegram_start_greeting
                )
            return ChatUpdateOutcome(action="command")

        callback = update.get("callback_query")
        if callback:
            # Stop the button spinner and show the pressed option in the chat
            await self.telegram.answer_callback_query(callback["id"])
            if normalized.channel_user_id and normalized.content:
                await self.telegram.send_message(normalized.channel_user_id, normalized.content)

        result = await self.ingestion.ingest_normalized(normalized)
        return ChatUpdateOutcome(action="ingested", ingestion=result)
