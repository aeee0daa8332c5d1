# src/askai/providers/anthropic_adapter.py
from __future__ import annotations
import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from anthropic import AsyncAnthropic

from askai.providers.classify import classify_exception
from askai.providers.registry import ProviderRegistry
from askai.core.errors import ProviderUnavailable
from askai.core.events import StreamEmitter
from askai.core.types import LLMConfig, LLMResponse, Message, Usage

LOGGER = logging.getLogger(__name__)


def _split_system(messages: Sequence[Any]) -> Tuple[str, List[Dict[str, str]]]:
    """Messages API takes the system prompt as its own parameter, not as a turn."""
    system: List[str] = []
    turns: List[Dict[str, str]] = []
    for m in messages:
        chat = m.as_chat() if isinstance(m, Message) else {"role": str(m["role"]), "content": str(m["content"])}
        if chat["role"] == "system":
            system.append(chat["content"])
        else:
            turns.append(chat)
    return "\n".join(system), turns


def _usage(input_tokens: Optional[int], output_tokens: Optional[int]) -> Optional[Usage]:
    if input_tokens is None and output_tokens is None:
        return None
    total = (input_tokens or 0) + (output_tokens or 0)
    return Usage(prompt_tokens=input_tokens, completion_tokens=output_tokens, total_tokens=total)


@ProviderRegistry.register("anthropic")
class AnthropicAdapter:
    """
    Adapter for the Anthropic Messages API. Same contract as OpenAIAdapter:
    no client without a key, neutral errors, and streaming through a
    StreamEmitter fed by a task on the running loop.
    """

    def __init__(
        self,
        config: LLMConfig,
        *,
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
    ):
        self.config = config
        self.timeout = timeout
        self._tasks: Set[asyncio.Task] = set()

        self.client: Optional[AsyncAnthropic] = None
        if config.api_key:
            client_kwargs: Dict[str, Any] = {"api_key": config.api_key}
            if base_url:
                client_kwargs["base_url"] = base_url
            self.client = AsyncAnthropic(**client_kwargs)

    @classmethod
    def create(cls, *, provider_name: str, llm_config: LLMConfig, provider_cfg: Dict[str, Any], secrets) -> "AnthropicAdapter":
        provider_cfg = provider_cfg or {}
        api_key = llm_config.api_key or (secrets.secret(provider_name, "api_key") if secrets else None)
        if not api_key:
            LOGGER.warning("No API key for '%s'; client will be unavailable", provider_name)
        return cls(
            replace(llm_config, api_key=api_key),
            timeout=provider_cfg.get("timeout"),
            base_url=provider_cfg.get("base_url"),
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
        system, turns = _split_system(messages)
        args: Dict[str, Any] = {
            "model": config.model_name,
            "messages": turns,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "stream": stream,
        }
        if system:
            args["system"] = system
        if self.timeout is not None:
            args["timeout"] = self.timeout
        return args

    async def send(self, messages: Sequence[Any], config=None) -> LLMResponse:
        if self.client is None:
            raise self._unavailable()
        args = self._build_args(messages, self.config.merged(config), stream=False)
        try:
            resp = await self.client.messages.create(**args)
        except Exception as e:
            raise classify_exception(e) from e

        text = "".join(
            getattr(block, "text", "") or ""
            for block in (getattr(resp, "content", None) or [])
            if getattr(block, "type", None) == "text"
        )
        usage = getattr(resp, "usage", None)
        return LLMResponse(
            content=text,
            finish_reason=getattr(resp, "stop_reason", None),
            usage=_usage(getattr(usage, "input_tokens", None), getattr(usage, "output_tokens", None))
            if usage is not None else None,
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
        input_tokens: Optional[int] = None
        output_tokens: Optional[int] = None
        finish_reason: Optional[str] = None
        try:
            stream = await self.client.messages.create(**args)
            async for event in stream:
                kind = getattr(event, "type", None)
                if kind == "message_start":
                    usage = getattr(getattr(event, "message", None), "usage", None)
                    input_tokens = getattr(usage, "input_tokens", input_tokens)
                elif kind == "content_block_delta":
                    delta = getattr(event, "delta", None)
                    if getattr(delta, "type", None) != "text_delta":
                        continue
                    piece = getattr(delta, "text", None)
                    if piece:
                        parts.append(piece)
                        emitter.emit_data(piece)
                elif kind == "message_delta":
                    finish_reason = getattr(getattr(event, "delta", None), "stop_reason", None) or finish_reason
                    output_tokens = getattr(getattr(event, "usage", None), "output_tokens", output_tokens)
            emitter.emit_done(
                "".join(parts),
                usage=_usage(input_tokens, output_tokens),
                finish_reason=finish_reason or "stop",
            )
        except Exception as e:
            err = classify_exception(e)
            if err is not e:
                err.__cause__ = e
            if emitter.closed:
                LOGGER.error("Error after stream completed (%s): %s", args.get("model"), e)
                return
            LOGGER.error("Stream failed (%s): %s", args.get("model"), e)
            emitter.emit_error(err)
