# tests/unit/test_echo_provider.py

from __future__ import annotations
import sys, asyncio
from pathlib import Path

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from askai.core.events import Data, Done
from askai.core.types import LLMConfig, Message
from askai.providers.echo import EchoProvider


def _stream(provider, config=None):
    async def run():
        em = provider.send_stream([Message("user", "hi")], config)
        seen = []
        em.on("data", seen.append)
        em.on("done", seen.append)
        await em.wait()
        return seen
    return asyncio.run(run())


def test_echo_streams_words_then_done():
    p = EchoProvider(token_delay=0, words=["a", "b", "c"])
    seen = _stream(p)
    assert seen[:3] == [Data("a "), Data("b "), Data("c")]
    assert seen[3] == Done("a b c", usage=None, finish_reason="stop")


def test_echo_max_tokens_caps_words():
    p = EchoProvider(LLMConfig(provider="echo", model_name="echo", max_tokens=2), token_delay=0, words=["a", "b", "c"])
    seen = _stream(p)
    assert seen[-1].final_text == "a b"
    # per-request override
    seen = _stream(p, {"max_tokens": 1})
    assert seen[-1].final_text == "a"


def test_echo_send_reports_completion_tokens():
    p = EchoProvider(token_delay=0)
    resp = asyncio.run(p.send([Message("user", "hi")]))
    assert resp.content.startswith("Lorem ipsum")
    assert resp.usage.completion_tokens == len(resp.content.split())
    assert p.is_available()


def test_echo_create_reads_provider_settings():
    p = EchoProvider.create(
        provider_name="echo",
        llm_config=LLMConfig(provider="echo", model_name="echo-lorem"),
        provider_cfg={"token_delay": 0.0, "words": ["x"]},
        secrets=None,
    )
    assert p.token_delay == 0.0
    assert p.words == ["x"]
    assert p.config.model_name == "echo-lorem"
