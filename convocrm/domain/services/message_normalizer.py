"""Normalization of inbound events into one canonical message shape.

Partner payloads are loosely typed (numbers as strings, the literal string
``"null"`` for missing values, free-form author labels). Telegram updates
are strict but nest the interesting parts differently per content type.
Both end up as a :class:`NormalizedMessage`.
"""

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from convocrm.core.correlation import parse_numeric_id
from convocrm.core.phone import normalize_phone
from convocrm.core.timeutils import parse_timestamp


class SourceChannel(str, enum.Enum):
    CHAT = "chat"
    PARTNER = "partner"


AUTHOR_CLIENT = "client"
AUTHOR_MANAGER = "manager"
AUTHOR_SYSTEM = "system"

# Checked in order; first substring hit wins
_AUTHOR_TOKENS = (
    (AUTHOR_MANAGER, ("manager", "operator", "менеджер", "оператор")),
    (AUTHOR_SYSTEM, ("system", "bot", "система", "бот")),
    (AUTHOR_CLIENT, ("client", "user", "клиент", "пользователь")),
)

MESSAGE_KINDS = frozenset({"text", "image", "file", "voice", "video", "system"})

_KIND_ALIASES = {
    "photo": "image",
    "sticker": "image",
    "document": "file",
    "audio": "voice",
    "video_note": "video",
}

REACTION_KIND = "reaction"

_MEDIA_EXTENSION = re.compile(r"\.(jpg|jpeg|png|gif|webp|pdf|mp4|webm|mov|ogg|wav)$", re.IGNORECASE)
_PURE_LINK = re.compile(r"^https?://\S+$", re.IGNORECASE)
_TG_AMO_ID = re.compile(r"ID:\s*(\d+)")

CHAT_CLIENT_AUTHOR = "Client"


@dataclass
class ChatAttachment:
    """A Telegram file that still has to be downloaded and re-hosted."""

    file_id: str
    kind: str
    mime_type: str
    extension: str
    file_name: str | None = None


@dataclass
class NormalizedMessage:
    """Canonical inbound message, independent of the source channel."""

    source: SourceChannel
    content: str = ""
    author_kind: str = AUTHOR_CLIENT
    message_kind: str = "text"
    correlation_id: int | None = None
    channel_user_id: str | None = None
    partner_user_ref: str | None = None
    phone: str | None = None
    email: str | None = None
    name_hints: list[str] = field(default_factory=list)
    telegram_username: str | None = None
    author_name: str | None = None
    chat_message_id: int | None = None
    partner_message_id: str | None = None
    reply_to_chat_message_id: int | None = None
    file_url: str | None = None
    file_name: str | None = None
    caption: str | None = None
    created_at: datetime | None = None
    is_reaction: bool = False
    reactions: list[dict[str, Any]] | None = None
    attachment: ChatAttachment | None = None
    is_command: bool = False

    @property
    def has_identity_hints(self) -> bool:
        return bool(self.channel_user_id or self.partner_user_ref or self.phone or self.email)


def clean_null(value: Any) -> str | None:
    """Strip a value to text; empty strings and ``"null"`` become None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    return text


def normalize_author(value: Any) -> str:
    """Map a free-form author label to client, manager or system."""
    text = clean_null(value)
    if not text:
        return AUTHOR_CLIENT
    lowered = text.lower()
    for author, tokens in _AUTHOR_TOKENS:
        if any(token in lowered for token in tokens):
            return author
    return AUTHOR_CLIENT


def normalize_kind(value: Any) -> str:
    text = (clean_null(value) or "text").lower()
    text = _KIND_ALIASES.get(text, text)
    return text if text in MESSAGE_KINDS else "text"


def extract_tg_amo_id(value: Any) -> str | None:
    """Pull the chat user id out of a ``"Name, ID: 123"`` style field."""
    text = clean_null(value)
    if not text:
        return None
    match = _TG_AMO_ID.search(text)
    return match.group(1) if match else None


def _channel_user_id(value: Any) -> str | None:
    numeric = parse_numeric_id(value)
    return str(numeric) if numeric else None


def normalize_partner_event(payload: dict[str, Any]) -> NormalizedMessage:
    """Normalize a partner-platform message webhook payload.

    Args:
        payload: Decoded JSON body

    Returns:
        NormalizedMessage with source PARTNER
    """
    raw_kind = (clean_null(payload.get("message_type")) or "text").lower()
    is_reaction = raw_kind == REACTION_KIND

    content = clean_null(payload.get("content")) or ""
    file_url = clean_null(payload.get("file_url"))
    message_kind = "text" if is_reaction else normalize_kind(raw_kind)

    if file_url and raw_kind == "text":
        message_kind = "file"

    stripped = content.strip()
    if (
        not is_reaction
        and not file_url
        and _PURE_LINK.match(stripped)
        and _MEDIA_EXTENSION.search(stripped)
    ):
        file_url = stripped
        message_kind = "file"
        content = ""

    correlation_id = parse_numeric_id(payload.get("main_ID") or payload.get("main_id"))
    if correlation_id is None:
        correlation_id = parse_numeric_id(payload.get("lead_id"))

    channel_user_id = _channel_user_id(payload.get("telegram_user_id"))
    if channel_user_id is None:
        channel_user_id = extract_tg_amo_id(payload.get("tg_amo"))

    author_kind = normalize_author(payload.get("author_type"))
    author_name = clean_null(payload.get("user")) or clean_null(payload.get("author_name"))

    name_hints = [
        hint
        for hint in (clean_null(payload.get("client_name")), clean_null(payload.get("name")))
        if hint
    ]

    reactions = None
    if is_reaction:
        reactions = [
            {
                "emoji": content,
                "author": author_name or CHAT_CLIENT_AUTHOR,
                "created_at": None,
            }
        ]

    return NormalizedMessage(
        source=SourceChannel.PARTNER,
        content=content,
        author_kind=author_kind,
        message_kind=message_kind,
        correlation_id=correlation_id,
        channel_user_id=channel_user_id,
        partner_user_ref=clean_null(payload.get("User") or payload.get("bubbleUser")),
        phone=normalize_phone(payload.get("client_phone") or payload.get("phone")),
        email=clean_null(payload.get("email")),
        name_hints=name_hints,
        author_name=author_name,
        chat_message_id=parse_numeric_id(payload.get("message_id_tg")) or None,
        partner_message_id=clean_null(payload.get("message_id_amo")),
        reply_to_chat_message_id=parse_numeric_id(payload.get("reply_to_mess_id_tg")) or None,
        file_url=file_url,
        file_name=clean_null(payload.get("file_name")),
        caption=clean_null(payload.get("caption")),
        created_at=parse_timestamp(payload.get("Created Date") or payload.get("created_at")),
        is_reaction=is_reaction,
        reactions=reactions,
    )


def display_name(user: dict[str, Any] | None) -> str | None:
    """Best human name for a Telegram user object, or None."""
    if not user:
        return None
    full = " ".join(p for p in (user.get("first_name"), user.get("last_name")) if p).strip()
    if full:
        return full
    if user.get("username"):
        return f"@{user['username']}"
    return None


def _chat_identity(user: dict[str, Any]) -> dict[str, Any]:
    name = display_name(user)
    return {
        "channel_user_id": _channel_user_id(user.get("id")),
        "name_hints": [name] if name else [],
        "telegram_username": user.get("username"),
        "author_name": name,
    }


def _attachment_for(message: dict[str, Any]) -> tuple[str, str, ChatAttachment | None]:
    """Return (kind, fallback text, attachment) for a Telegram message."""
    if message.get("voice"):
        voice = message["voice"]
        return "voice", "[Voice message]", ChatAttachment(
            voice["file_id"], "voice", voice.get("mime_type") or "audio/ogg", "ogg"
        )
    if message.get("photo"):
        best = message["photo"][-1]
        return "image", "[Photo]", ChatAttachment(best["file_id"], "photo", "image/jpeg", "jpg")
    if message.get("document"):
        doc = message["document"]
        name = doc.get("file_name")
        ext = name.rsplit(".", 1)[-1] if name and "." in name else "bin"
        return "file", "[File]", ChatAttachment(
            doc["file_id"], "document", doc.get("mime_type") or "application/octet-stream", ext, name
        )
    if message.get("sticker"):
        return "image", "[Sticker]", ChatAttachment(
            message["sticker"]["file_id"], "sticker", "image/webp", "webp"
        )
    if message.get("video"):
        video = message["video"]
        return "video", "[Video]", ChatAttachment(
            video["file_id"], "video", video.get("mime_type") or "video/mp4", "mp4"
        )
    if message.get("video_note"):
        return "video", "[Video message]", ChatAttachment(
            message["video_note"]["file_id"], "video_note", "video/mp4", "mp4"
        )
    return "text", "", None


def normalize_chat_message(message: dict[str, Any]) -> NormalizedMessage:
    """Normalize a Telegram ``message`` object sent by the customer."""
    user = message.get("from") or message.get("chat") or {}
    kind, fallback, attachment = _attachment_for(message)
    text = message.get("text") or message.get("caption") or ""
    # Stickers and round videos never carry user text worth keeping
    if kind == "image" and attachment and attachment.kind == "sticker":
        text = fallback
    elif attachment and attachment.kind == "video_note":
        text = fallback
    elif not text:
        text = fallback

    reply_to = message.get("reply_to_message") or {}

    return NormalizedMessage(
        source=SourceChannel.CHAT,
        content=text,
        author_kind=AUTHOR_CLIENT,
        message_kind=kind,
        chat_message_id=message.get("message_id"),
        reply_to_chat_message_id=reply_to.get("message_id"),
        caption=message.get("caption"),
        file_name=attachment.file_name if attachment else None,
        created_at=parse_timestamp(message.get("date")),
        attachment=attachment,
        is_command=bool(message.get("text", "").startswith("/")),
        **_chat_identity(user),
    )


def normalize_callback_query(callback_query: dict[str, Any]) -> NormalizedMessage:
    """Normalize an inline-button press into a client text message."""
    return NormalizedMessage(
        source=SourceChannel.CHAT,
        content=callback_query.get("data") or "",
        author_kind=AUTHOR_CLIENT,
        message_kind="text",
        **_chat_identity(callback_query.get("from") or {}),
    )


def normalize_chat_reaction(reaction: dict[str, Any]) -> NormalizedMessage:
    """Normalize a ``message_reaction`` update.

    The update carries the customer's full current reaction set, which
    replaces whatever the customer had on that message before.
    """
    user = reaction.get("user") or {}
    return NormalizedMessage(
        source=SourceChannel.CHAT,
        chat_message_id=reaction.get("message_id"),
        is_reaction=True,
        reactions=[
            {
                "emoji": r.get("emoji"),
                "type": r.get("type"),
                "author": CHAT_CLIENT_AUTHOR,
                "created_at": None,
            }
            for r in reaction.get("new_reaction") or []
        ],
        **_chat_identity(user),
    )


def normalize_chat_update(update: dict[str, Any]) -> NormalizedMessage | None:
    """Normalize whichever customer event a Telegram update carries.

    Returns None for update types the CRM does not ingest.
    """
    if update.get("message"):
        return normalize_chat_message(update["message"])
    if update.get("callback_query"):
        return normalize_callback_query(update["callback_query"])
    if update.get("message_reaction"):
        return normalize_chat_reaction(update["message_reaction"])
    return None
