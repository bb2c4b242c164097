#!/usr/bin/env python3

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from llm_client import chat_json, safe_json_loads


class _FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(content):
    completions = _FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_safe_json_loads_tolerates_fences_and_prose() -> None:
    assert safe_json_loads('{"a": 1}') == {"a": 1}
    assert safe_json_loads('```json\n{"a": 2}\n```') == {"a": 2}
    assert safe_json_loads('Here you go: {"a": {"b": "}"}} thanks') == {"a": {"b": "}"}}
    assert safe_json_loads("not json") is None
    assert safe_json_loads("") is None
    assert safe_json_loads(None) is None


def test_chat_json_without_client_is_not_configured() -> None:
    meta, text = asyncio.run(chat_json(None, system="s", user="u", model="m"))
    assert meta["error_kind"] == "not_configured"
    assert text == ""


def test_chat_json_sends_json_mode_request_and_parses_payload() -> None:
    client, completions = _client('{"sentiment": 0.5}')
    meta, text = asyncio.run(
        chat_json(client, system="sys", user="usr", model="gpt-4-turbo-preview", max_tokens=321, temperature=0.3)
    )
    assert meta["error_kind"] == "none"
    assert meta["payload"] == {"sentiment": 0.5}
    assert text == '{"sentiment": 0.5}'

    call = completions.calls[0]
    assert call["model"] == "gpt-4-turbo-preview"
    assert call["max_tokens"] == 321
    assert call["temperature"] == 0.3
    assert call["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in call["messages"]] == ["system", "user"]


def test_chat_json_reports_empty_and_invalid_output() -> None:
    client, _ = _client("")
    meta, _ = asyncio.run(chat_json(client, system="s", user="u", model="m"))
    assert meta["error_kind"] == "empty_output"

    client, _ = _client("I cannot answer that")
    meta, text = asyncio.run(chat_json(client, system="s", user="u", model="m"))
    assert meta["error_kind"] == "invalid_json"
    assert text == "I cannot answer that"
