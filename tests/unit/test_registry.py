# tests/unit/test_registry.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from askai.providers.registry import ProviderRegistry  # type: ignore
from askai.core.types import LLMConfig


def test_registry_register_and_get():
    @ProviderRegistry.register("Dummy", greeting="hi")
    class DummyProvider:
        def __init__(self, settings):
            self.settings = settings

        @classmethod
        def create(cls, *, provider_name, llm_config, provider_cfg, secrets):
            return cls({"name": provider_name, **provider_cfg})

    # Case-insensitive lookup
    assert ProviderRegistry.get("dummy") is DummyProvider
    assert ProviderRegistry.get("DUMMY") is DummyProvider

    # registration defaults merge under explicit settings
    p = ProviderRegistry.create("Dummy", llm_config=LLMConfig("dummy", "m"), provider_cfg={"extra": 1})
    assert p.settings == {"name": "dummy", "greeting": "hi", "extra": 1}
    p = ProviderRegistry.create("dummy", llm_config=LLMConfig("dummy", "m"), provider_cfg={"greeting": "yo"})
    assert p.settings["greeting"] == "yo"


def test_registry_unknown_raises():
    with pytest.raises(KeyError):
        ProviderRegistry.get("does-not-exist")


def test_builtins_registered():
    ProviderRegistry.ensure_imports()
    names = ProviderRegistry.names()
    for n in ("openai", "xai", "deepseek", "google", "ollama", "anthropic", "echo"):
        assert n in names
