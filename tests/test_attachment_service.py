"""Tests for attachment re-hosting and the GCS wrapper."""

import threading
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.cloud.exceptions import GoogleCloudError

from convocrm.core.errors import ConfigurationError, TransientUpstreamError
from convocrm.domain.services.attachment_service import ChatAttachmentFetcher, attachment_path
from convocrm.domain.services.message_normalizer import ChatAttachment
from convocrm.infrastructure.object_storage import ObjectStorage


def test_attachment_path_layout():
    path = attachment_path(7, ".ogg", stem="voice")

    assert path.startswith("order_files/7/")
    assert path.endswith("_voice.ogg")


async def test_fetch_uploads_with_detected_extension():
    telegram = MagicMock()
    telegram.get_file_path = AsyncMock(return_value="videos/file_3.mov")
    telegram.download_file = AsyncMock(return_value=b"movie")
    storage = MagicMock()
    storage.put = AsyncMock(return_value="https://storage.test/x.mov")

    fetcher = ChatAttachmentFetcher(telegram, storage)
    url = await fetcher.fetch(ChatAttachment("f-1", "video", "video/mp4", "mp4"), order_id=3)

    assert url == "https://storage.test/x.mov"
    path, data, mime_type = storage.put.await_args.args
    assert path.startswith("order_files/3/") and path.endswith(".mov")
    assert data == b"movie"
    assert mime_type == "video/quicktime"


async def test_fetch_returns_none_when_download_fails():
    telegram = MagicMock()
    telegram.get_file_path = AsyncMock(return_value="photos/file_1.jpg")
    telegram.download_file = AsyncMock(side_effect=TransientUpstreamError("boom"))
    storage = MagicMock()
    storage.put = AsyncMock()

    fetcher = ChatAttachmentFetcher(telegram, storage)
    url = await fetcher.fetch(ChatAttachment("f-1", "photo", "image/jpeg", "jpg"), order_id=3)

    assert url is None
    storage.put.assert_not_awaited()


async def test_fetch_returns_none_without_file_path():
    telegram = MagicMock()
    telegram.get_file_path = AsyncMock(return_value=None)
    telegram.download_file = AsyncMock()

    fetcher = ChatAttachmentFetcher(telegram, MagicMock())
    url = await fetcher.fetch(ChatAttachment("f-1", "photo", "image/jpeg", "jpg"), order_id=3)

    assert url is None
    telegram.download_file.assert_not_awaited()


async def test_object_storage_put_makes_blob_public():
    client = MagicMock()
    blob = client.bucket.return_value.blob.return_value

    storage = ObjectStorage(bucket_name="attachments", client=client)
    url = await storage.put("order_files/1/a.jpg", b"data", "image/jpeg")

    assert url == "https://storage.googleapis.com/attachments/order_files/1/a.jpg"
    client.bucket.assert_called_once_with("attachments")
    blob.upload_from_string.assert_called_once_with(b"data", content_type="image/jpeg")
    blob.make_public.assert_called_once()


async def test_object_storage_upload_runs_off_the_event_loop_thread():
    client = MagicMock()
    upload_threads = []
    client.bucket.return_value.blob.return_value.upload_from_string.side_effect = (
        lambda *args, **kwargs: upload_threads.append(threading.get_ident())
    )

    storage = ObjectStorage(bucket_name="attachments", client=client)
    await storage.put("order_files/1/a.jpg", b"data", "image/jpeg")

    assert len(upload_threads) == 1
    assert upload_threads[0] != threading.get_ident()


async def test_object_storage_upload_error_is_transient():
    client = MagicMock()
    client.bucket.return_value.blob.return_value.upload_from_string.side_effect = GoogleCloudError("down")

    storage = ObjectStorage(bucket_name="attachments", client=client)

    with pytest.raises(TransientUpstreamError):
        await storage.put("order_files/1/a.jpg", b"data", "image/jpeg")


async def test_object_storage_requires_bucket(monkeypatch):
    monkeypatch.setattr("convocrm.infrastructure.object_storage.settings.gcs_attachments_bucket", None)
    storage = ObjectStorage(client=MagicMock())

    with pytest.raises(ConfigurationError):
        await storage.put("order_files/1/a.jpg", b"data", "image/jpeg")
