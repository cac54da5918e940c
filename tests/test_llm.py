import asyncio
from types import SimpleNamespace

import pytest
from openai import OpenAIError

import config
from utils import llm
from utils.errors import GenerationUnavailable


def _client(create) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def test_missing_api_key_is_generation_unavailable(monkeypatch) -> None:
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
    monkeypatch.setattr(llm, "_client", None)
    with pytest.raises(GenerationUnavailable):
        llm.get_client()


def test_sdk_errors_are_translated(monkeypatch) -> None:
    def create(**kwargs):
        raise OpenAIError("connection reset")

    monkeypatch.setattr(llm, "get_client", lambda: _client(create))
    with pytest.raises(GenerationUnavailable) as excinfo:
        asyncio.run(llm.OpenAIGenerator().generate("instructions", "prompt"))
    assert "connection reset" in excinfo.value.detail


def test_generate_requests_json_mode(monkeypatch) -> None:
    seen = {}

    def create(**kwargs):
        seen.update(kwargs)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"ok": true}'))])

    monkeypatch.setattr(llm, "get_client", lambda: _client(create))
    text = asyncio.run(llm.OpenAIGenerator(model="test-model").generate("sys", "user"))

    assert text == '{"ok": true}'
    assert seen["model"] == "test-model"
    assert seen["response_format"] == {"type": "json_object"}
    assert seen["messages"][0] == {"role": "system", "content": "sys"}
