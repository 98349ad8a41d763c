"""Outbound delivery of manager messages to the chat channel."""

import logging
import os

from sqlalchemy.ext.asyncio import AsyncSession

from convocrm.core.errors import NotFoundError, ValidationError
from convocrm.core.timeutils import utc_now
from convocrm.domain.services.attachment_service import attachment_path
from convocrm.infrastructure.cache import QueryCache, invalidate_conversation_caches
from convocrm.infrastructure.object_storage import ObjectStorage
from convocrm.infrastructure.telegram_client import (
    ChatSendResult,
    TelegramClient,
    parse_button_content,
)
from convocrm.persistence.models.message import Message
from convocrm.persistence.models.order import Order
from convocrm.persistence.repositories.contact_repository import ContactRepository
from convocrm.persistence.repositories.message_repository import MessageRepository
from convocrm.persistence.repositories.order_repository import OrderRepository

logger = logging.getLogger(__name__)

MISSING_CHANNEL_ID = "Client has no chat user id"
DELIVERED = "delivered"
ERROR = "error"


class DeliveryService:
    """Sends manager messages, files and reactions and records the outcome.

    Every send is stored, delivered or not; failures show up on the
    timeline with ``delivery_status == "error"``.
    """

    def __init__(
        self,
        session: AsyncSession,
        telegram: TelegramClient,
        storage: ObjectStorage | None = None,
        cache: QueryCache | None = None,
    ) -> None:
        self.session = session
        self.telegram = telegram
        self.storage = storage
        self.cache = cache
        self.order_repo = OrderRepository(session)
        self.contact_repo = ContactRepository(session)
        self.message_repo = MessageRepository(session)

    async def _load_target(self, order_id: int) -> tuple[Order, str | None]:
        order = await self.order_repo.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        channel_user_id = None
        if order.contact_id:
            contact = await self.contact_repo.get_by_id(order.contact_id)
            channel_user_id = contact.channel_user_id if contact else None
        return order, channel_user_id

    async def _store(
        self, order: Order, result: ChatSendResult | None, error: str | None = None, **fields
    ) -> Message:
        delivered = result is not None and result.ok
        message = await self.message_repo.create(
            correlation_id=order.correlation_id,
            author_kind="manager",
            is_read=True,
            chat_message_id=result.message_id if delivered else None,
            delivery_status=DELIVERED if delivered else ERROR,
            error_message=None if delivered else (error or (result.error if result else None)),
            **fields,
        )
        await self.message_repo.link_to_order(order.id, message.id)
        await invalidate_conversation_caches(self.cache)
        return message

    async def send_text(
        self,
        order_id: int,
        content: str,
        manager_id: int | None = None,
        reply_to_message_id: int | None = None,
    ) -> Message:
        """Send a text message to the order's customer.

        JSON content of the form ``{"text": ..., "buttons": [...]}`` is
        rendered with an inline URL keyboard.

        Raises:
            ValidationError: Empty content
            NotFoundError: Unknown order
        """
        if not content or not content.strip():
            raise ValidationError("Message cannot be empty")

        order, channel_user_id = await self._load_target(order_id)

        result = None
        error = None
        if not channel_user_id:
            logger.warning(f"Cannot deliver to order {order.id}: contact has no chat user id")
            error = MISSING_CHANNEL_ID
        else:
            text, reply_markup = parse_button_content(content)
            result = await self.telegram.send_message(
                channel_user_id,
                text or content,
                reply_to_message_id=reply_to_message_id,
                reply_markup=reply_markup,
            )

        return await self._store(
            order,
            result,
            error,
            content=content,
            message_kind="text",
            manager_id=manager_id,
            reply_to_chat_message_id=reply_to_message_id,
        )

    async def _upload(self, order: Order, data: bytes, extension: str, content_type: str, stem: str) -> str:
        if self.storage is None:
            raise ValidationError("Attachment storage is not configured")
        return await self.storage.put(attachment_path(order.id, extension, stem), data, content_type)

    async def send_file(
        self,
        order_id: int,
        data: bytes,
        filename: str,
        content_type: str,
        caption: str | None = None,
        manager_id: int | None = None,
        reply_to_message_id: int | None = None,
    ) -> Message:
        """Upload a file, then send it as a photo or document.

        The upload happens first so the stored message keeps its URL even
        when chat delivery fails.
        """
        if not data:
            raise ValidationError("File is empty")
        order, channel_user_id = await self._load_target(order_id)

        extension = os.path.splitext(filename)[1] or ".bin"
        file_url = await self._upload(order, data, extension, content_type, "file")
        is_image = (content_type or "").startswith("image")

        result = None
        error = None
        if not channel_user_id:
            error = MISSING_CHANNEL_ID
        else:
            text, reply_markup = parse_button_content(caption)
            send = self.telegram.send_photo if is_image else self.telegram.send_document
            result = await send(
                channel_user_id,
                data,
                filename,
                content_type,
                caption=text,
                reply_to_message_id=reply_to_message_id,
                reply_markup=reply_markup,
            )

        return await self._store(
            order,
            result,
            error,
            content=caption or ("[Image]" if is_image else "[File]"),
            message_kind="image" if is_image else "file",
            manager_id=manager_id,
            reply_to_chat_message_id=reply_to_message_id,
            file_url=file_url,
            file_name=filename,
            caption=caption,
        )

    async def send_voice(
        self,
        order_id: int,
        data: bytes,
        content_type: str | None = None,
        duration: int | None = None,
        manager_id: int | None = None,
        reply_to_message_id: int | None = None,
    ) -> Message:
        """Upload a voice note (OGG/Opus) and send it with sendVoice."""
        if not data:
            raise ValidationError("Voice message is empty")
        order, channel_user_id = await self._load_target(order_id)

        content_type = content_type or "audio/ogg"
        file_url = await self._upload(order, data, "ogg", content_type, "voice")

        result = None
        error = None
        if not channel_user_id:
            error = MISSING_CHANNEL_ID
        else:
            result = await self.telegram.send_voice(
                channel_user_id,
                data,
                "voice.ogg",
                content_type,
                duration=duration,
                reply_to_message_id=reply_to_message_id,
            )

        return await self._store(
            order,
            result,
            error,
            content="[Voice message]",
            message_kind="voice",
            manager_id=manager_id,
            reply_to_chat_message_id=reply_to_message_id,
            file_url=file_url,
            voice_duration=duration,
        )

    async def react(self, message_id: int, emoji: str | None, manager_id: int | None = None) -> Message:
        """Set the manager's reaction on a client message.

        The stored reactions keep other authors' entries; the manager's
        previous reaction is replaced (or removed when emoji is None).
        """
        message = await self.message_repo.get_by_id(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")

        author = f"manager:{manager_id}" if manager_id is not None else "manager"
        reactions = [
            r for r in (message.reactions or []) if isinstance(r, dict) and r.get("author") != author
        ]
        if emoji:
            reactions.append({"emoji": emoji, "author": author, "created_at": utc_now().isoformat()})
        message.reactions = reactions
        await self.session.commit()
        await self.session.refresh(message)

        if message.chat_message_id:
            order = (
                await self.order_repo.get_by_correlation_id(message.correlation_id)
                if message.correlation_id
                else None
            )
            if order is not None:
                _, channel_user_id = await self._load_target(order.id)
                if channel_user_id:
                    await self.telegram.set_message_reaction(
                        channel_user_id, message.chat_message_id, emoji
                    )

        await invalidate_conversation_caches(self.cache)
        return message
