# src/askai/core/types.py
from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Literal, Mapping, Optional, Union

Role = Literal["system", "user", "assistant"]
ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class Message:
    role: Role
    content: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None

    def as_chat(self) -> Dict[str, str]:
        # OpenAI-style shape the providers send over the wire
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Usage:
    """Token counts; every field is optional because not every provider/mode reports them."""
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


@dataclass(frozen=True)
class LLMResponse:
    content: str
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class LLMConfig:
    """
    Per-request model settings. Immutable: a request-level override produces a
    new value via merged() and never touches the conversation default.
    """
    provider: str
    model_name: str
    max_tokens: int = 512
    temperature: float = 0.7
    api_key: Optional[str] = field(default=None, repr=False)

    def merged(self, override: Union["LLMConfig", Mapping[str, Any], None] = None) -> "LLMConfig":
        if override is None:
            return self
        if isinstance(override, LLMConfig):
            changes = {f.name: getattr(override, f.name) for f in fields(override)}
        else:
            known = {f.name for f in fields(self)}
            unknown = sorted(k for k in override if k not in known)
            if unknown:
                raise ValueError(f"Unknown LLMConfig override keys: {unknown}")
            changes = dict(override)
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
