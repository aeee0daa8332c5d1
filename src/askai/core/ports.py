from __future__ import annotations
from typing import Protocol, Optional, Sequence, List, Union, Mapping, Any

from .events import StreamEmitter
from .types import LLMConfig, LLMResponse, Message

ConfigOverride = Union[LLMConfig, Mapping[str, Any], None]


class ProviderClient(Protocol):
    """
    Interface the core uses to talk to any LLM backend.
    """

    # Surfaced for status lines and logging
    config: LLMConfig

    async def send(self, messages: Sequence[Message], config: ConfigOverride = None) -> LLMResponse:
        """
        Whole-response call. Raises ProviderUnavailable when no credential was
        configured, ProviderError (wrapping the SDK error) on any call failure.
        """
        ...

    def send_stream(self, messages: Sequence[Message], config: ConfigOverride = None) -> StreamEmitter:
        """
        Returns the emitter immediately; the network call runs as a task on the
        running loop and reports through Data/Done/Error events.
        """
        ...

    def is_available(self) -> bool:
        """True when a usable client was built. Never touches the network."""
        ...


class ConversationStore(Protocol):
    def create_conversation(self, model: str) -> int: ...

    def add_conversation_item(self, conversation_id: int, role: str, content: str,
                              prompt_tokens: Optional[int] = None,
                              completion_tokens: Optional[int] = None) -> None: ...

    def get_messages_for_llm(self, conversation_id: int, limit: int) -> List[Message]: ...


class ConversationView(Protocol):
    @property
    def width(self) -> int: ...

    @property
    def line_count(self) -> int: ...

    def append_line(self, text: str) -> int: ...

    def replace_line(self, index: int, text: str) -> None: ...

    def set_scroll(self, percent: int) -> None: ...

    def set_status(self, text: str) -> None: ...
