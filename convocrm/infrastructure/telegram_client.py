"""Telegram Bot API client."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from convocrm.core.errors import ConfigurationError, TransientUpstreamError
from convocrm.settings import settings

logger = logging.getLogger(__name__)

_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown_v2(text: str | None) -> str | None:
    """Escape every MarkdownV2 control character with a backslash."""
    if not text:
        return text
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


def parse_button_content(content: str | None) -> tuple[str | None, dict[str, Any] | None]:
    """Split ``{"text": ..., "buttons": [...]}`` content into text and keyboard.

    Only ``type == "url"`` buttons are rendered, one per keyboard row. Content
    that is not such a JSON object is returned unchanged with no keyboard.
    """
    if not content or not content.strip().startswith("{"):
        return content, None
    try:
        parsed = json.loads(content)
    except ValueError:
        return content, None
    if not isinstance(parsed, dict) or not (parsed.get("text") or parsed.get("buttons")):
        return content, None

    text = parsed.get("text") or ""
    buttons = parsed.get("buttons")
    reply_markup = None
    if isinstance(buttons, list):
        rows = [
            [{"text": b.get("text", ""), "url": b.get("url", "")}]
            for b in buttons
            if isinstance(b, dict) and b.get("type") == "url"
        ]
        if rows:
            reply_markup = {"inline_keyboard": rows}
    return text, reply_markup


class TelegramApiError(TransientUpstreamError):
    """Bot API replied with ``ok: false``."""

    def __init__(self, description: str, status_code: int | None = None):
        super().__init__(description, status_code=status_code)
        self.description = description

    @property
    def is_parse_error(self) -> bool:
        return "parse" in self.description.lower()


@dataclass
class ChatSendResult:
    """Result of a chat-channel send."""

    ok: bool
    message_id: int | None = None
    error: str | None = None
    used_plain_text: bool = False


class TelegramClient:
    """Thin async wrapper around the Bot API methods the CRM uses."""

    def __init__(
        self,
        bot_token: str | None = None,
        api_base: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            bot_token: Bot token, defaults to TELEGRAM_BOT_TOKEN
            api_base: API root, defaults to https://api.telegram.org
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.bot_token = bot_token if bot_token is not None else settings.telegram_bot_token
        self.api_base = (api_base or settings.telegram_api_base).rstrip("/")
        self.timeout = timeout or settings.telegram_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.bot_token)

    def _get_client(self) -> httpx.AsyncClient:
        """Create HTTP client bound to the bot endpoint."""
        if not self.bot_token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN is not configured")
        return httpx.AsyncClient(
            base_url=f"{self.api_base}/bot{self.bot_token}",
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> Any:
        """Invoke a Bot API method and return its ``result``.

        Raises:
            ConfigurationError: No bot token
            TelegramApiError: API answered ``ok: false``
            TransientUpstreamError: Transport failure or non-JSON reply
        """
        try:
            async with self._get_client() as client:
                if files:
                    data = {
                        k: json.dumps(v) if isinstance(v, (dict, list)) else str(v)
                        for k, v in (payload or {}).items()
                        if v is not None
                    }
                    response = await client.post(f"/{method}", data=data, files=files)
                else:
                    response = await client.post(f"/{method}", json=payload or {})
        except httpx.TimeoutException as e:
            raise TransientUpstreamError(f"Telegram {method} timed out") from e
        except httpx.HTTPError as e:
            raise TransientUpstreamError(f"Telegram {method} failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise TransientUpstreamError(
                f"Telegram {method} returned non-JSON response",
                status_code=response.status_code,
            ) from e

        if not body.get("ok"):
            raise TelegramApiError(
                body.get("description") or f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return body.get("result")

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        reply_to_message_id: int | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> ChatSendResult:
        """Send text as MarkdownV2, retrying once as plain text on a parse error.

        Never raises; failures are reported in the result.
        """
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": escape_markdown_v2(text),
            "parse_mode": "MarkdownV2",
        }
        if reply_markup:
            payload["reply_markup"] = reply_markup
        if reply_to_message_id:
            payload["reply_to_message_id"] = reply_to_message_id

        try:
            result = await self._call("sendMessage", payload)
            return ChatSendResult(ok=True, message_id=result.get("message_id"))
        except ConfigurationError as e:
            logger.error(f"Telegram send skipped: {e}")
            return ChatSendResult(ok=False, error=str(e))
        except TelegramApiError as e:
            if not e.is_parse_error:
                logger.warning(f"Telegram sendMessage to {chat_id} failed: {e.description}")
                return ChatSendResult(ok=False, error=e.description)
            logger.info(f"MarkdownV2 rejected for chat {chat_id}, retrying as plain text")
        except TransientUpstreamError as e:
            logger.warning(f"Telegram sendMessage to {chat_id} failed: {e}")
            return ChatSendResult(ok=False, error=str(e))

        plain_payload = {k: v for k, v in payload.items() if k != "parse_mode"}
        plain_payload["text"] = text
        try:
            result = await self._call("sendMessage", plain_payload)
        except TransientUpstreamError as e:
            logger.warning(f"Plain-text retry to {chat_id} failed: {e}")
            return ChatSendResult(ok=False, error=str(e), used_plain_text=True)
        return ChatSendResult(ok=True, message_id=result.get("message_id"), used_plain_text=True)

    async def send_file(
        self,
        method: str,
        field: str,
        chat_id: int | str,
        data: bytes,
        filename: str,
        content_type: str,
        caption: str | None = None,
        reply_to_message_id: int | None = None,
        reply_markup: dict[str, Any] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ChatSendResult:
        """Upload a file through sendPhoto / sendDocument / sendVoice."""
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "caption": caption or None,
            "reply_to_message_id": reply_to_message_id,
            "reply_markup": reply_markup,
            **(extra or {}),
        }
        try:
            result = await self._call(
                method, payload, files={field: (filename, data, content_type)}
            )
        except ConfigurationError as e:
            logger.error(f"Telegram {method} skipped: {e}")
            return ChatSendResult(ok=False, error=str(e))
        except TransientUpstreamError as e:
            logger.warning(f"Telegram {method} to {chat_id} failed: {e}")
            return ChatSendResult(ok=False, error=str(e))
        return ChatSendResult(ok=True, message_id=result.get("message_id"))

    async def send_photo(self, chat_id, data: bytes, filename: str, content_type: str, **kwargs) -> ChatSendResult:
        return await self.send_file("sendPhoto", "photo", chat_id, data, filename, content_type, **kwargs)

    async def send_document(self, chat_id, data: bytes, filename: str, content_type: str, **kwargs) -> ChatSendResult:
        return await self.send_file("sendDocument", "document", chat_id, data, filename, content_type, **kwargs)

    async def send_voice(
        self, chat_id, data: bytes, filename: str, content_type: str, duration: int | None = None, **kwargs
    ) -> ChatSendResult:
        extra = {"duration": duration} if duration else None
        return await self.send_file(
            "sendVoice", "voice", chat_id, data, filename, content_type, extra=extra, **kwargs
        )

    async def get_file_path(self, file_id: str) -> str | None:
        """Resolve a file id to its download path via getFile."""
        result = await self._call("getFile", {"file_id": file_id})
        return (result or {}).get("file_path")

    async def download_file(self, file_path: str) -> bytes:
        """Download a file previously resolved with getFile."""
        if not self.bot_token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN is not configured")
        url = f"{self.api_base}/file/bot{self.bot_token}/{file_path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientUpstreamError(f"Telegram file download failed: {e}") from e
        if len(response.content) > settings.telegram_max_download_bytes:
            raise TransientUpstreamError(
                f"Telegram file {file_path} exceeds {settings.telegram_max_download_bytes} bytes"
            )
        return response.content

    async def set_message_reaction(self, chat_id: int | str, message_id: int, emoji: str | None) -> bool:
        """Set (or clear, with emoji=None) the bot's reaction on a message."""
        reaction = [{"type": "emoji", "emoji": emoji}] if emoji else []
        try:
            await self._call(
                "setMessageReaction",
                {"chat_id": chat_id, "message_id": message_id, "reaction": reaction},
            )
        except ConfigurationError as e:
            logger.error(f"Telegram reaction skipped: {e}")
            return False
        except TransientUpstreamError as e:
            logger.warning(f"setMessageReaction on {chat_id}/{message_id} failed: {e}")
            return False
        return True

    async def answer_callback_query(self, callback_query_id: str) -> bool:
        """Acknowledge an inline button press so the client stops spinning."""
        try:
            await self._call("answerCallbackQuery", {"callback_query_id": callback_query_id})
        except TransientUpstreamError as e:
            logger.warning(f"answerCallbackQuery {callback_query_id} failed: {e}")
            return False
        except ConfigurationError as e:
            logger.error(f"answerCallbackQuery skipped: {e}")
            return False
        return True
