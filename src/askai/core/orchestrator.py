from __future__ import annotations
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import List, Optional

from .errors import ConfigurationError
from .events import Done, Error, StreamEvent
from .ports import ConfigOverride, ConversationStore, ConversationView, ProviderClient
from .reflow import (
    DEFAULT_BORDER_ALLOWANCE,
    DEFAULT_MIN_FLUSH,
    LineUpdate,
    ReflowEngine,
    column_budget,
)
from .types import Message, Usage

DEFAULT_CONTEXT_LENGTH = 10
THINKING_STATUS = "AI is thinking..."


class ConversationState(enum.Enum):
    IDLE = "idle"
    AWAITING_FIRST_TURN = "awaiting_first_turn"
    STREAMING = "streaming"
    READY = "ready"


@dataclass(frozen=True)
class TurnResult:
    conversation_id: Optional[int]
    text: Optional[str]
    usage: Optional[Usage] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConversationOrchestrator:
    """
    Runs one conversation: persists the user turn, sends the recent history to
    the provider, reflows the streamed reply into the view and persists the
    assistant turn once the stream is Done. Errors end the turn inline and
    nothing partial is stored for the assistant.
    """

    def __init__(
        self,
        client: ProviderClient,
        store: ConversationStore,
        view: ConversationView,
        *,
        context_length: int = DEFAULT_CONTEXT_LENGTH,
        border_allowance: int = DEFAULT_BORDER_ALLOWANCE,
        min_flush: int = DEFAULT_MIN_FLUSH,
        max_width: Optional[int] = None,
        system_prompt: Optional[str] = None,
        conversation_id: Optional[int] = None,
        request_config: ConfigOverride = None,
        logger: Optional[logging.Logger] = None,
    ):
        if context_length < 1:
            raise ConfigurationError(f"context_length must be >= 1, got {context_length}")
        self.client = client
        self.store = store
        self.view = view
        self.context_length = context_length
        self.border_allowance = border_allowance
        self.min_flush = min_flush
        self.max_width = max_width
        self.system_prompt = system_prompt
        self.conversation_id = conversation_id
        self.request_config = request_config
        self.log = logger or logging.getLogger(__name__)
        self.state = ConversationState.IDLE

    @property
    def model(self) -> str:
        return self.client.config.model_name

    @property
    def busy(self) -> bool:
        return self.state is ConversationState.STREAMING

    def idle_status(self) -> str:
        conv = self.conversation_id if self.conversation_id is not None else "new"
        return f"Model: {self.model} | Conversation: {conv} | /help for commands"

    def start(self) -> None:
        self.state = (ConversationState.AWAITING_FIRST_TURN if self.conversation_id is None
                      else ConversationState.READY)
        self.view.set_status(self.idle_status())

    def switch_client(self, client: ProviderClient) -> None:
        """Swap the provider; the model is bound per conversation so the next turn starts a new one."""
        if self.busy:
            raise RuntimeError("Cannot switch model while a response is streaming")
        self.client = client
        self.conversation_id = None
        self.state = ConversationState.AWAITING_FIRST_TURN
        self.view.set_status(self.idle_status())

    async def submit(self, text: str) -> Optional[TurnResult]:
        if not text or not text.strip():
            return None
        if self.busy:
            self.log.warning("Submission ignored: a response is still streaming")
            return None
        if self.state is ConversationState.IDLE:
            self.start()

        # Width is re-derived every turn so a resized terminal takes effect
        try:
            width = column_budget(self.view.width, self.border_allowance, self.max_width)
            engine = ReflowEngine(width, min_flush=self.min_flush)
        except ConfigurationError as e:
            return self._fail(self.conversation_id, e)

        if self.conversation_id is None:
            self.conversation_id = self.store.create_conversation(self.model)
            self.log.info("Created conversation %s (model=%s)", self.conversation_id, self.model)
        cid = self.conversation_id

        self._show_user_turn(text)
        self.store.add_conversation_item(cid, "user", text)
        messages = self._outgoing_messages(cid)
        self.log.info("Turn start: conversation=%s model=%s context=%d", cid, self.model, len(messages))

        self.state = ConversationState.STREAMING
        self.view.set_status(THINKING_STATUS)
        self.view.append_line("AI:")
        base = self.view.line_count
        parts: List[str] = []
        try:
            event = await self._stream(messages, engine, base, parts)
            if isinstance(event, Error):
                return self._fail(cid, event.cause)
            return self._complete(cid, "".join(parts), event, engine, base)
        finally:
            # a failing view must not leave the conversation stuck in STREAMING
            self.state = ConversationState.READY

    # Internal helpers

    async def _stream(self, messages: List[Message], engine: ReflowEngine, base: int,
                      parts: List[str]) -> StreamEvent:
        finished: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_data(event) -> None:
            if finished.done():
                return
            parts.append(event.fragment)
            try:
                self._apply(engine.feed(event.fragment), base)
            except Exception as e:
                # the view failed; end the turn here instead of in the provider's task
                finished.set_exception(e)

        def on_terminal(event) -> None:
            # resolve only; the final flush runs after the await in _complete
            if not finished.done():
                finished.set_result(event)

        try:
            emitter = self.client.send_stream(messages, self.request_config)
        except Exception as e:
            self.log.exception("send_stream failed before streaming started")
            return Error(cause=e)

        unsubscribe = [
            emitter.on("data", on_data),
            emitter.on("done", on_terminal),
            emitter.on("error", on_terminal),
        ]
        if emitter.closed and not finished.done():
            # stream ended before we subscribed; nothing is replayed
            finished.set_result(emitter.terminal_event)
        try:
            return await finished
        finally:
            for stop in unsubscribe:
                stop()

    def _outgoing_messages(self, conversation_id: int) -> List[Message]:
        history = self.store.get_messages_for_llm(conversation_id, self.context_length)
        if self.system_prompt:
            return [Message(role="system", content=self.system_prompt)] + list(history)
        return list(history)

    def _apply(self, updates: List[LineUpdate], base: int) -> None:
        for u in updates:
            if u.kind == "append":
                self.view.append_line(u.text)
            else:
                self.view.replace_line(base + u.index, u.text)
        if updates:
            self.view.set_scroll(100)

    def _show_user_turn(self, text: str) -> None:
        self.view.append_line("")
        self.view.append_line("You:")
        for line in text.split("\n"):
            self.view.append_line(line)

    def _complete(self, cid: int, text: str, done: Done, engine: ReflowEngine, base: int) -> TurnResult:
        if done.final_text != text:
            self.log.warning("Provider final text differs from streamed fragments; storing fragments")
        usage = done.usage or Usage()
        save_error: Optional[OSError] = None
        try:
            # Absent counts are stored as zero
            self.store.add_conversation_item(
                cid, "assistant", text,
                usage.prompt_tokens or 0,
                usage.completion_tokens or 0,
            )
        except OSError as e:
            self.log.error("Could not persist assistant turn for conversation %s: %s", cid, e)
            save_error = e
        self.log.info(
            "Turn done: conversation=%s prompt_tokens=%s completion_tokens=%s",
            cid, usage.prompt_tokens, usage.completion_tokens,
        )
        self._apply(engine.finish(), base)
        if save_error is not None:
            self.view.append_line(f"Error saving response: {save_error}")
        self.view.append_line("")
        self.view.set_scroll(100)
        self.view.set_status(self.idle_status())
        return TurnResult(conversation_id=cid, text=text, usage=done.usage)

    def _fail(self, cid: Optional[int], cause: BaseException) -> TurnResult:
        self.log.error("Turn failed: conversation=%s error=%s", cid, cause)
        self.view.append_line(f"Error from AI: {cause}")
        self.view.set_scroll(100)
        self.view.set_status(self.idle_status())
        return TurnResult(conversation_id=cid, text=None, error=cause)
