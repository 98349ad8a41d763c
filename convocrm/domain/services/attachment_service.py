"""Re-hosting of chat-channel attachments in object storage."""

import logging
import time

from convocrm.core.errors import ConvoCrmError
from convocrm.domain.services.message_normalizer import ChatAttachment
from convocrm.infrastructure.object_storage import ObjectStorage
from convocrm.infrastructure.telegram_client import TelegramClient

logger = logging.getLogger(__name__)

_VIDEO_MIME_TYPES = {
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
}


def attachment_path(order_id: int, extension: str, stem: str = "file") -> str:
    """Blob path for an order attachment: ``order_files/<order>/<millis>_<stem>.<ext>``."""
    extension = extension.lstrip(".") or "bin"
    return f"order_files/{order_id}/{int(time.time() * 1000)}_{stem}.{extension}"


class ChatAttachmentFetcher:
    """Downloads a Telegram file via getFile and uploads it to the bucket."""

    def __init__(self, telegram: TelegramClient, storage: ObjectStorage) -> None:
        self.telegram = telegram
        self.storage = storage

    async def fetch(self, attachment: ChatAttachment, order_id: int) -> str | None:
        """Return the public URL of the re-hosted file, or None on any failure."""
        try:
            file_path = await self.telegram.get_file_path(attachment.file_id)
            if not file_path:
                logger.warning(f"getFile returned no path for {attachment.kind} {attachment.file_id}")
                return None

            detected = file_path.rsplit(".", 1)[-1] if "." in file_path else None
            extension = detected or attachment.extension
            mime_type = attachment.mime_type
            if attachment.kind in ("video", "video_note") and extension in _VIDEO_MIME_TYPES:
                mime_type = _VIDEO_MIME_TYPES[extension]

            data = await self.telegram.download_file(file_path)
            url = await self.storage.put(attachment_path(order_id, extension), data, mime_type)
        except ConvoCrmError as e:
            logger.warning(f"Could not re-host {attachment.kind} {attachment.file_id}: {e}")
            return None

        logger.info(f"Re-hosted {attachment.kind} for order {order_id}: {url}")
        return url
