"""Tests for the Telegram Bot API client."""

import json

import httpx
import pytest

from convocrm.core.errors import ConfigurationError
from convocrm.infrastructure.telegram_client import (
    TelegramClient,
    escape_markdown_v2,
    parse_button_content,
)


def make_client(handler, token="123:ABC"):
    return TelegramClient(bot_token=token, api_base="https://tg.test", transport=httpx.MockTransport(handler))


def test_escape_markdown_v2():
    assert escape_markdown_v2("Price: 1.5 (approx) - ok!") == r"Price: 1\.5 \(approx\) \- ok\!"
    assert escape_markdown_v2("a_b*c") == r"a\_b\*c"
    assert escape_markdown_v2("") == ""
    assert escape_markdown_v2(None) is None


def test_escape_does_not_double_escape_backslashes():
    assert escape_markdown_v2("\\.") == "\\\\\\."


def test_parse_button_content():
    content = json.dumps({
        "text": "Pay here",
        "buttons": [
            {"type": "url", "text": "Pay", "url": "https://pay.test"},
            {"type": "callback", "text": "Ignored"},
        ],
    })

    text, markup = parse_button_content(content)

    assert text == "Pay here"
    assert markup == {"inline_keyboard": [[{"text": "Pay", "url": "https://pay.test"}]]}


@pytest.mark.parametrize("content", ["plain text", "{not json", '{"other": 1}', None])
def test_parse_button_content_passthrough(content):
    assert parse_button_content(content) == (content, None)


async def test_send_message_uses_markdown():
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 77}})

    client = make_client(handler)
    result = await client.send_message(42, "Hi.", reply_to_message_id=5)

    assert result.ok
    assert result.message_id == 77
    assert requests[0]["parse_mode"] == "MarkdownV2"
    assert requests[0]["text"] == r"Hi\."
    assert requests[0]["reply_to_message_id"] == 5


async def test_parse_error_falls_back_to_plain_text():
    requests = []

    def handler(request):
        body = json.loads(request.content)
        requests.append(body)
        if "parse_mode" in body:
            return httpx.Response(
                400, json={"ok": False, "description": "Bad Request: can't parse entities"}
            )
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 78}})

    client = make_client(handler)
    result = await client.send_message(42, "Hi.")

    assert result.ok
    assert result.used_plain_text
    assert len(requests) == 2
    assert requests[1]["text"] == "Hi."
    assert "parse_mode" not in requests[1]


async def test_other_api_errors_are_reported_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked by the user"})

    client = make_client(handler)
    result = await client.send_message(42, "Hi")

    assert not result.ok
    assert "blocked" in result.error
    assert len(calls) == 1


async def test_transport_error_is_reported():
    def handler(request):
        raise httpx.ConnectTimeout("timed out")

    result = await make_client(handler).send_message(42, "Hi")

    assert not result.ok
    assert "timed out" in result.error


async def test_missing_token_is_reported_not_raised():
    client = TelegramClient(bot_token="", api_base="https://tg.test")
    result = await client.send_message(42, "Hi")

    assert not result.ok
    assert "TELEGRAM_BOT_TOKEN" in result.error


async def test_get_file_path_requires_token():
    client = TelegramClient(bot_token="", api_base="https://tg.test")
    with pytest.raises(ConfigurationError):
        await client.get_file_path("file-1")


async def test_send_document_multipart():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 90}})

    client = make_client(handler)
    result = await client.send_document(42, b"%PDF", "a.pdf", "application/pdf", caption="contract")

    assert result.ok
    assert seen[0].url.path.endswith("/sendDocument")
    assert b'name="document"; filename="a.pdf"' in seen[0].content
    assert b"contract" in seen[0].content


async def test_download_file():
    def handler(request):
        if request.url.path.endswith("/getFile"):
            return httpx.Response(200, json={"ok": True, "result": {"file_path": "photos/f.jpg"}})
        assert request.url.path.endswith("/photos/f.jpg")
        return httpx.Response(200, content=b"jpeg-bytes")

    client = make_client(handler)
    path = await client.get_file_path("file-1")

    assert path == "photos/f.jpg"
    assert await client.download_file(path) == b"jpeg-bytes"


async def test_set_message_reaction():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": True})

    client = make_client(handler)
    assert await client.set_message_reaction(42, 7, "👍")
    assert await client.set_message_reaction(42, 7, None)

    assert bodies[0]["reaction"] == [{"type": "emoji", "emoji": "👍"}]
    assert bodies[1]["reaction"] == []
