"""Tests for the LLM wrapper, tolerant JSON parsing and the Nia client."""

from __future__ import annotations

import asyncio
import time
import urllib.error
from unittest.mock import MagicMock, patch

import anthropic
import httpx

from ambit.llm.client import LLMClient, LLMResponse
from ambit.llm.parsing import extract_json, validate_items, validate_object
from ambit.memory.nia import NiaClient
from ambit.models import CleanupDecision, ExtractedEntity, MemoryContext


# --- JSON extraction ---


def test_extract_plain_json():
    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json("[1, 2]") == [1, 2]


def test_extract_from_prose():
    text = 'Here you go:\n```json\n{"entities": [{"label": "Rust"}]}\n```\nAnything else?'
    assert extract_json(text) == {"entities": [{"label": "Rust"}]}


def test_prefer_array_falls_back_to_object():
    assert extract_json('note: {"keep": "x"}', prefer="array") == {"keep": "x"}
    assert extract_json('result [1, 2] done', prefer="array") == [1, 2]


def test_extract_nothing():
    assert extract_json(None) is None
    assert extract_json("") is None
    assert extract_json("no json { here") is None


def test_validate_items_drops_bad_entries():
    items = [
        {"label": "Rust", "type": "skill"},
        {"label": "R", "type": "skill"},
        {"label": "Rocket", "type": "spaceship"},
        "Rust",
    ]
    valid = validate_items(items, ExtractedEntity)
    assert [e.label for e in valid] == ["Rust"]
    assert validate_items({"label": "Rust"}, ExtractedEntity) == []


def test_validate_object():
    decision = validate_object({"keep": ["a"], "merge": [{"into": "a", "from": ["b"]}]}, CleanupDecision)
    assert decision.merge[0].from_ids == ["b"]
    assert validate_object([], CleanupDecision) is None
    assert validate_object({"keep": "a"}, CleanupDecision) is None


# --- LLMClient ---


def test_client_unavailable_without_key():
    client = LLMClient(api_key="")
    assert client.available is False
    assert asyncio.run(client.complete("sys", "prompt")) is None


def test_chat_tracks_tokens():
    client = LLMClient(api_key="sk-test", model="test-model")
    response = MagicMock()
    response.content = [MagicMock(type="text", text="hello "), MagicMock(type="text", text="world")]
    response.usage = MagicMock(input_tokens=12, output_tokens=3)
    client._client = MagicMock()
    client._client.messages.create.return_value = response

    result = client.chat([{"role": "user", "content": "hi"}], system="be brief")

    assert result.content == "hello world"
    assert (client.total_input_tokens, client.total_output_tokens) == (12, 3)
    kwargs = client._client.messages.create.call_args.kwargs
    assert kwargs["system"] == "be brief"
    assert kwargs["model"] == "test-model"


def test_complete_returns_text():
    client = LLMClient(api_key="sk-test")
    with patch.object(client, "chat", return_value=LLMResponse(content='{"ok": true}')):
        assert asyncio.run(client.complete("sys", "prompt")) == '{"ok": true}'


def test_complete_empty_text_is_none():
    client = LLMClient(api_key="sk-test")
    with patch.object(client, "chat", return_value=LLMResponse(content="")):
        assert asyncio.run(client.complete("sys", "prompt")) is None


def test_complete_times_out():
    client = LLMClient(api_key="sk-test", timeout=0.05)

    def slow(*args, **kwargs):
        time.sleep(0.3)
        return LLMResponse(content="late")

    with patch.object(client, "chat", side_effect=slow):
        assert asyncio.run(client.complete("sys", "prompt")) is None


def test_complete_api_error_is_none():
    client = LLMClient(api_key="sk-test")
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    error = anthropic.APIError("overloaded", request=request, body=None)

    with patch.object(client, "chat", side_effect=error):
        assert asyncio.run(client.complete("sys", "prompt")) is None


# --- NiaClient ---


def test_nia_unavailable_without_key():
    nia = NiaClient(api_key="")
    assert nia.available is False
    assert asyncio.run(nia.semantic_search("ambit")) == []


def test_nia_search_unwraps_envelope():
    nia = NiaClient(api_key="nk-test", base_url="https://nia.example/")
    payload = {"contexts": [{"id": "c1", "title": "Graph notes", "extra": 1}, "junk"]}
    with patch.object(nia, "_get", return_value=payload) as get:
        results = nia.search("graph", tags="work", limit=3)
    assert results == [MemoryContext(id="c1", title="Graph notes")]
    get.assert_called_once_with("/contexts/semantic-search", {"q": "graph", "limit": 3, "tags": "work"})
    assert nia.base_url == "https://nia.example"


def test_nia_semantic_search_swallows_transport_errors():
    nia = NiaClient(api_key="nk-test")
    with patch.object(nia, "search", side_effect=urllib.error.URLError("down")):
        assert asyncio.run(nia.semantic_search("ambit")) == []
