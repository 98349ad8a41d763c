"""Tests for lenient webhook body parsing."""

import pytest

from convocrm.api.lenient_json import loads_lenient, patch_bare_words
from convocrm.core.errors import ValidationError


def test_strict_json_passes_through():
    assert loads_lenient(b'{"a": 1, "b": [true, null]}') == {"a": 1, "b": [True, None]}


def test_single_quotes_and_unquoted_keys():
    assert loads_lenient("{main_ID: '123', content: 'hi'}") == {"main_ID": "123", "content": "hi"}


def test_trailing_commas():
    assert loads_lenient('{"a": [1, 2,], "b": 3,}') == {"a": [1, 2], "b": 3}


def test_yes_no_values():
    assert loads_lenient("{urgent: yes, archived: no}") == {"urgent": True, "archived": False}


def test_russian_yes_no_values_stay_strings():
    assert loads_lenient("{paid: да, shipped: нет}") == {"paid": "да", "shipped": "нет"}


def test_non_ascii_is_preserved():
    assert loads_lenient("{content: 'Привет'}") == {"content": "Привет"}


def test_patch_bare_words_leaves_longer_words_alone():
    assert patch_bare_words("{a: yes, b: nobody, c:no}") == "{a: true, b: nobody, c: false}"


@pytest.mark.parametrize("body", [b"", b"   ", b"\xff\xfe", "{a: [1, 2}", '{"content": "He said "hi""}'])
def test_unrecoverable_bodies_raise(body):
    with pytest.raises(ValidationError):
        loads_lenient(body)
