# tests/unit/test_openai_adapter.py

from __future__ import annotations
import sys, asyncio
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

# Import the module, then monkeypatch its AsyncOpenAI class
import askai.providers.openai_adapter as oa  # type: ignore
from askai.core.errors import (
    ProviderClientError,
    ProviderTransientError,
    ProviderUnavailable,
)
from askai.core.events import Data, Done, Error
from askai.core.types import LLMConfig, Message
from askai.providers.classify import classify_exception
from askai.providers.registry import ProviderRegistry


# -------- Fakes to replace the OpenAI SDK --------

class _HTTPError(Exception):
    def __init__(self, msg: str, status_code: int) -> None:
        super().__init__(msg)
        self.status_code = status_code


def _chunk(content: Any, finish_reason=None):
    delta = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)], usage=None)


def _usage_chunk(p: int, c: int):
    return SimpleNamespace(choices=[], usage=SimpleNamespace(prompt_tokens=p, completion_tokens=c, total_tokens=p + c))


class _FakeStream:
    def __init__(self, items: List[Any]) -> None:
        self._items = list(items)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._items:
            raise StopAsyncIteration
        item = self._items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class _FakeCompletions:
    def __init__(self, parent) -> None:
        self.parent = parent

    async def create(self, **kwargs):
        self.parent.calls.append(kwargs)
        if self.parent.raise_on_create is not None:
            raise self.parent.raise_on_create
        if kwargs.get("stream"):
            return _FakeStream(self.parent.stream_items)
        msg = SimpleNamespace(content="hello world")
        return SimpleNamespace(
            choices=[SimpleNamespace(message=msg, finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=4, completion_tokens=2, total_tokens=6),
        )


class _FakeAsyncOpenAI:
    instances: List["_FakeAsyncOpenAI"] = []

    def __init__(self, **kwargs) -> None:
        self.kwargs: Dict[str, Any] = kwargs
        self.calls: List[Dict[str, Any]] = []
        self.stream_items: List[Any] = [_chunk("Hi"), _chunk(" there", "stop"), _usage_chunk(5, 2)]
        self.raise_on_create = None
        self.chat = SimpleNamespace(completions=_FakeCompletions(self))
        _FakeAsyncOpenAI.instances.append(self)


@pytest.fixture(autouse=True)
def fake_sdk(monkeypatch):
    _FakeAsyncOpenAI.instances.clear()
    monkeypatch.setattr(oa, "AsyncOpenAI", _FakeAsyncOpenAI, raising=True)
    yield


def _adapter(**kw) -> oa.OpenAIAdapter:
    cfg = LLMConfig(provider="openai", model_name="gpt-test", max_tokens=64, temperature=0.2, api_key="sk-test")
    return oa.OpenAIAdapter(cfg, **kw)


def _collect(adapter, messages=None):
    async def run():
        em = adapter.send_stream(messages or [Message("user", "hi")])
        seen = []
        for kind in ("data", "done", "error"):
            em.on(kind, seen.append)
        await em.wait()
        await asyncio.sleep(0.01)  # anything late would show up here
        return seen
    return asyncio.run(run())


def test_stream_emits_data_then_done_with_usage():
    adapter = _adapter()
    seen = _collect(adapter)
    assert seen[:2] == [Data("Hi"), Data(" there")]
    assert len(seen) == 3
    done = seen[2]
    assert isinstance(done, Done)
    assert done.final_text == "Hi there"
    assert done.finish_reason == "stop"
    assert done.usage.prompt_tokens == 5 and done.usage.completion_tokens == 2

    call = _FakeAsyncOpenAI.instances[0].calls[0]
    assert call["stream"] is True
    assert call["stream_options"] == {"include_usage": True}
    assert call["model"] == "gpt-test"
    assert call["messages"] == [{"role": "user", "content": "hi"}]


def test_stream_without_usage_request():
    adapter = _adapter(stream_usage=False)
    _FakeAsyncOpenAI.instances[0].stream_items = [_chunk("ok")]
    seen = _collect(adapter)
    assert "stream_options" not in _FakeAsyncOpenAI.instances[0].calls[0]
    assert seen[-1] == Done("ok", usage=None, finish_reason="stop")


def test_unavailable_client_emits_exactly_one_error():
    adapter = oa.OpenAIAdapter(LLMConfig(provider="openai", model_name="gpt-test"))
    assert adapter.is_available() is False
    assert _FakeAsyncOpenAI.instances == []

    seen = _collect(adapter)
    assert len(seen) == 1
    assert isinstance(seen[0], Error)
    assert isinstance(seen[0].cause, ProviderUnavailable)

    with pytest.raises(ProviderUnavailable):
        asyncio.run(adapter.send([Message("user", "hi")]))


def test_error_mid_stream_after_data():
    adapter = _adapter()
    _FakeAsyncOpenAI.instances[0].stream_items = [_chunk("Hi"), _HTTPError("server exploded", 500)]
    seen = _collect(adapter)
    assert seen[0] == Data("Hi")
    assert len(seen) == 2
    assert isinstance(seen[1], Error)
    assert isinstance(seen[1].cause, ProviderTransientError)


def test_error_on_create_is_classified():
    adapter = _adapter()
    _FakeAsyncOpenAI.instances[0].raise_on_create = _HTTPError("invalid api key", 401)
    seen = _collect(adapter)
    assert len(seen) == 1 and isinstance(seen[0].cause, ProviderClientError)


def test_non_string_content_is_literal_text():
    adapter = _adapter()
    _FakeAsyncOpenAI.instances[0].stream_items = [_chunk(42), _chunk(None), _chunk("!")]
    seen = _collect(adapter)
    assert seen[:2] == [Data("42"), Data("!")]
    assert seen[2].final_text == "42!"


def test_send_whole_response_and_override():
    adapter = _adapter()
    resp = asyncio.run(adapter.send([Message("user", "hi")], {"max_tokens": 8}))
    assert resp.content == "hello world"
    assert resp.finish_reason == "stop"
    assert resp.usage.total_tokens == 6
    call = _FakeAsyncOpenAI.instances[0].calls[0]
    assert call["max_tokens"] == 8 and call["stream"] is False
    # conversation default untouched
    assert adapter.config.max_tokens == 64


def test_send_wraps_sdk_errors():
    adapter = _adapter()
    _FakeAsyncOpenAI.instances[0].raise_on_create = _HTTPError("slow down", 429)
    with pytest.raises(ProviderTransientError):
        asyncio.run(adapter.send([Message("user", "hi")]))


def test_empty_messages_rejected():
    adapter = _adapter()
    with pytest.raises(ValueError):
        asyncio.run(adapter.send([]))


@pytest.mark.parametrize("exc,expected", [
    (_HTTPError("x", 429), ProviderTransientError),
    (_HTTPError("x", 503), ProviderTransientError),
    (_HTTPError("x", 400), ProviderClientError),
    (Exception("Request timed out"), ProviderTransientError),
    (Exception("Unsupported parameter: temperature"), ProviderClientError),
    (Exception("Overloaded"), ProviderTransientError),
    (_HTTPError("x", 529), ProviderTransientError),
])
def test_classify(exc, expected):
    assert isinstance(classify_exception(exc), expected)


class _Secrets:
    def __init__(self, value):
        self.value = value
        self.asked = []

    def secret(self, provider, name="api_key"):
        self.asked.append((provider, name))
        return self.value


def test_registry_create_uses_provider_base_url_and_secret():
    ProviderRegistry.ensure_imports()
    secrets = _Secrets("sk-xai")
    adapter = ProviderRegistry.create(
        "xai",
        llm_config=LLMConfig(provider="xai", model_name="grok-3-mini"),
        provider_cfg={"timeout": 30},
        secrets=secrets,
    )
    assert adapter.is_available()
    assert secrets.asked == [("xai", "api_key")]
    kwargs = _FakeAsyncOpenAI.instances[-1].kwargs
    assert kwargs["base_url"] == "https://api.x.ai/v1/"
    assert kwargs["api_key"] == "sk-xai"
    assert adapter.timeout == 30


def test_missing_secret_leaves_client_unavailable():
    adapter = ProviderRegistry.create(
        "openai",
        llm_config=LLMConfig(provider="openai", model_name="gpt-test"),
        provider_cfg={},
        secrets=_Secrets(None),
    )
    assert adapter.is_available() is False


def test_ollama_needs_no_key():
    adapter = ProviderRegistry.create(
        "ollama",
        llm_config=LLMConfig(provider="ollama", model_name="llama3.2"),
        provider_cfg={},
        secrets=_Secrets(None),
    )
    assert adapter.is_available()
    assert _FakeAsyncOpenAI.instances[-1].kwargs["base_url"] == "http://localhost:11434/v1/"


def test_google_uses_openai_compatible_endpoint():
    ProviderRegistry.ensure_imports()
    adapter = ProviderRegistry.create(
        "google",
        llm_config=LLMConfig(provider="google", model_name="gemini-2.0-flash"),
        provider_cfg={},
        secrets=_Secrets("g-key"),
    )
    assert isinstance(adapter, oa.OpenAIAdapter) and adapter.is_available()
    assert _FakeAsyncOpenAI.instances[-1].kwargs["base_url"] == "https://generativelanguage.googleapis.com/v1beta/openai/"
