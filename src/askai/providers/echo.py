from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Set

from askai.providers.registry import ProviderRegistry
from askai.core.events import StreamEmitter
from askai.core.types import LLMConfig, LLMResponse, Usage

LOGGER = logging.getLogger(__name__)

_LOREM_50 = (
    "Lorem ipsum dolor sit amet consectetur adipiscing elit sed do eiusmod tempor "
    "incididunt ut labore et dolore magna aliqua Curabitur non nulla sit amet nisl "
    "tempor convallis quis ac lectus Phasellus viverra nulla ut metus varius laoreet "
    "Quisque rutrum Aenean imperdiet Etiam ultricies nisi vel augue Curabitur ullamcorper ultricies nisi"
).split()


@ProviderRegistry.register("echo")
class EchoProvider:
    """
    Offline stub that replies with a fixed 50-word lorem ipsum.
    Streaming emits one word at a time with a small delay to simulate tokens;
    max_tokens caps the number of words.
    """

    def __init__(self, config: Optional[LLMConfig] = None, token_delay: float = 0.125,
                 words: Optional[List[str]] = None):
        self.config = config or LLMConfig(provider="echo", model_name="echo-lorem", temperature=0.0)
        self.token_delay = float(token_delay)
        self.words = list(words) if words is not None else list(_LOREM_50)
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def create(cls, *, provider_name: str, llm_config: LLMConfig, provider_cfg: Dict[str, Any], secrets) -> "EchoProvider":
        provider_cfg = provider_cfg or {}
        return cls(
            llm_config,
            token_delay=float(provider_cfg.get("token_delay", 0.125)),
            words=provider_cfg.get("words"),
        )

    def is_available(self) -> bool:
        return True

    def _words_for(self, config) -> List[str]:
        return self.words[: max(0, self.config.merged(config).max_tokens)]

    async def send(self, messages: Sequence[Any], config=None) -> LLMResponse:
        words = self._words_for(config)
        return LLMResponse(
            content=" ".join(words),
            finish_reason="stop",
            usage=Usage(completion_tokens=len(words)),
        )

    def send_stream(self, messages: Sequence[Any], config=None) -> StreamEmitter:
        emitter = StreamEmitter()
        task = asyncio.get_running_loop().create_task(self._pump(emitter, self._words_for(config)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return emitter

    async def _pump(self, emitter: StreamEmitter, words: List[str]) -> None:
        pieces: List[str] = []
        try:
            last_idx = len(words) - 1
            for i, w in enumerate(words):
                # yield first so the caller has subscribed before any data
                await asyncio.sleep(self.token_delay)
                piece = w + ("" if i == last_idx else " ")
                pieces.append(piece)
                emitter.emit_data(piece)
            # streaming mode reports no usage
            emitter.emit_done("".join(pieces), usage=None, finish_reason="stop")
        except Exception as e:
            if emitter.closed:
                LOGGER.error("Error after echo stream completed: %s", e)
                return
            emitter.emit_error(e)
