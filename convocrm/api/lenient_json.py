"""Best-effort decoding of malformed JSON webhook bodies.

The partner platform builds request bodies from templates, so bodies
regularly arrive with unquoted keys, single-quoted strings, trailing
commas or bare ``yes``/``no`` values. Strict JSON is tried first, then
JSON5, then JSON5 again after rewriting the bare words into literals.
"""

import json
import logging
import re
from typing import Any

import json5

from convocrm.core.errors import ValidationError

logger = logging.getLogger(__name__)

_BARE_WORDS = (
    (re.compile(r":\s*no\b"), ": false"),
    (re.compile(r":\s*yes\b"), ": true"),
    (re.compile(r":\s*нет\b"), ': "нет"'),
    (re.compile(r":\s*да\b"), ': "да"'),
)


def patch_bare_words(text: str) -> str:
    """Turn ``key: no`` / ``key: yes`` into booleans and quote the Russian forms."""
    for pattern, replacement in _BARE_WORDS:
        text = pattern.sub(replacement, text)
    return text


def loads_lenient(body: bytes | str) -> Any:
    """Parse a request body, tolerating common template mistakes.

    Raises:
        ValidationError: Empty body or not parseable even as JSON5
    """
    if isinstance(body, bytes):
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError("Request body is not UTF-8") from e
    else:
        text = body
    if not text.strip():
        raise ValidationError("Request body is empty")

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    try:
        return json5.loads(text)
    except ValueError:
        pass

    try:
        parsed = json5.loads(patch_bare_words(text))
    except ValueError as e:
        logger.warning(f"Could not parse webhook body as JSON5: {e}")
        raise ValidationError(f"Malformed JSON body: {e}") from e
    logger.info("Parsed webhook body after bare yes/no patch")
    return parsed
