# src/askai/providers/openai_adapter.py
from __future__ import annotations
import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from openai import AsyncOpenAI

from askai.providers.classify import classify_exception
from askai.providers.registry import ProviderRegistry
from askai.core.errors import ProviderUnavailable
from askai.core.events import StreamEmitter
from askai.core.types import LLMConfig, LLMResponse, Message, Usage

LOGGER = logging.getLogger(__name__)


def _as_chat(m: Any) -> Dict[str, str]:
    if isinstance(m, Message):
        return m.as_chat()
    return {"role": str(m["role"]), "content": str(m["content"])}


def _usage(raw: Any) -> Optional[Usage]:
    if raw is None:
        return None
    return Usage(
        prompt_tokens=getattr(raw, "prompt_tokens", None),
        completion_tokens=getattr(raw, "completion_tokens", None),
        total_tokens=getattr(raw, "total_tokens", None),
    )


def _delta(chunk: Any) -> Tuple[Optional[str], Optional[str]]:
    try:
        choice = chunk.choices[0]
    except (AttributeError, IndexError, TypeError):
        # usage-only trailer or a chunk we can't read
        return None, None
    delta = getattr(choice, "delta", None)
    piece = getattr(delta, "content", None) if delta is not None else None
    if piece is not None and not isinstance(piece, str):
        piece = str(piece)
    return piece, getattr(choice, "finish_reason", None)


@ProviderRegistry.register("openai")
@ProviderRegistry.register("xai", base_url="https://api.x.ai/v1/")
@ProviderRegistry.register("deepseek", base_url="https://api.deepseek.com/v1/")
@ProviderRegistry.register("google", base_url="https://generativelanguage.googleapis.com/v1beta/openai/")
@ProviderRegistry.register("ollama", base_url="http://localhost:11434/v1/", requires_key=False)
class OpenAIAdapter:
    """
    Adapter for any OpenAI-compatible chat-completions endpoint:
    - built without a client when no API key resolves; is_available() then reports False
    - maps SDK errors to neutral ProviderClientError / ProviderTransientError
    - streams through a StreamEmitter fed by a task on the running loop
    """

    def __init__(
        self,
        config: LLMConfig,
        *,
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        stream_usage: bool = True,
    ):
        self.config = config
        self.timeout = timeout
        self.stream_usage = stream_usage
        self._tasks: Set[asyncio.Task] = set()

        self.client: Optional[AsyncOpenAI] = None
        if config.api_key:
            client_kwargs: Dict[str, Any] = {"api_key": config.api_key}
            if base_url:
                client_kwargs["base_url"] = base_url
            if organization:
                client_kwargs["organization"] = organization
            self.client = AsyncOpenAI(**client_kwargs)

    @classmethod
    def create(cls, *, provider_name: str, llm_config: LLMConfig, provider_cfg: Dict[str, Any], secrets) -> "OpenAIAdapter":
        provider_cfg = provider_cfg or {}
        api_key = llm_config.api_key or (secrets.secret(provider_name, "api_key") if secrets else None)
        if not api_key and not provider_cfg.get("requires_key", True):
            # local servers ignore the key but the SDK insists on one
            api_key = provider_name
        if not api_key:
            LOGGER.warning("No API key for '%s'; client will be unavailable", provider_name)

        return cls(
            replace(llm_config, api_key=api_key),
            timeout=provider_cfg.get("timeout"),
            base_url=provider_cfg.get("base_url"),
            organization=provider_cfg.get("organization"),
            stream_usage=bool(provider_cfg.get("stream_usage", True)),
        )

    def is_available(self) -> bool:
        return self.client is not None

    def _unavailable(self) -> ProviderUnavailable:
        return ProviderUnavailable(
            f"{self.config.provider} client not initialized. API key may be missing."
        )

    def _build_args(self, messages: Sequence[Any], config: LLMConfig, *, stream: bool) -> Dict[str, Any]:
        if not messages:
            raise ValueError("messages must be a non-empty sequence")
        args: Dict[str, Any] = {
            "model": config.model_name,
            "messages": [_as_chat(m) for m in messages],
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "stream": stream,
        }
        if stream and self.stream_usage:
            args["stream_options"] = {"include_usage": True}
        if self.timeout is not None:
            args["timeout"] = self.timeout
        return args

    async def send(self, messages: Sequence[Any], config=None) -> LLMResponse:
        if self.client is None:
            raise self._unavailable()
        args = self._build_args(messages, self.config.merged(config), stream=False)
        try:
            resp = await self.client.chat.completions.create(**args)
        except Exception as e:
            raise classify_exception(e) from e

        choice = resp.choices[0] if resp.choices else None
        content = (choice.message.content if choice is not None else None) or ""
        return LLMResponse(
            content=content,
            finish_reason=getattr(choice, "finish_reason", None),
            usage=_usage(getattr(resp, "usage", None)),
        )

    def send_stream(self, messages: Sequence[Any], config=None) -> StreamEmitter:
        emitter = StreamEmitter()
        loop = asyncio.get_running_loop()
        if self.client is None:
            loop.call_soon(emitter.emit_error, self._unavailable())
            return emitter

        args = self._build_args(messages, self.config.merged(config), stream=True)
        task = loop.create_task(self._pump(emitter, args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return emitter

    async def _pump(self, emitter: StreamEmitter, args: Dict[str, Any]) -> None:
        parts: List[str] = []
        usage: Optional[Usage] = None
        finish_reason: Optional[str] = None
        try:
            stream = await self.client.chat.completions.create(**args)
            async for chunk in stream:
                chunk_usage = _usage(getattr(chunk, "usage", None))
                if chunk_usage is not None:
                    usage = chunk_usage
                piece, reason = _delta(chunk)
                if reason:
                    finish_reason = reason
                if piece:
                    parts.append(piece)
                    emitter.emit_data(piece)
            emitter.emit_done("".join(parts), usage=usage, finish_reason=finish_reason or "stop")
        except Exception as e:
            err = classify_exception(e)
            if err is not e:
                err.__cause__ = e
            if emitter.closed:
                LOGGER.error("Error after stream completed (%s): %s", args.get("model"), e)
                return
            LOGGER.error("Stream failed (%s): %s", args.get("model"), e)
            emitter.emit_error(err)
