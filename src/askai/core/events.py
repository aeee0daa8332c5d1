# src/askai/core/events.py
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Literal, Optional, Union

from .errors import StreamClosedError
from .types import Usage

LOGGER = logging.getLogger(__name__)

EventKind = Literal["data", "done", "error"]
_KINDS = ("data", "done", "error")


@dataclass(frozen=True)
class Data:
    fragment: str


@dataclass(frozen=True)
class Done:
    final_text: str
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class Error:
    cause: BaseException


StreamEvent = Union[Data, Done, Error]
Listener = Callable[[StreamEvent], None]


class StreamEmitter:
    """
    Typed channel from one streaming call to its consumers.

    - zero or more Data events, then exactly one Done or Error
    - listeners registered after an event fired do not see it (no replay)
    - emitting after the terminal event raises StreamClosedError
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {k: [] for k in _KINDS}
        self._terminal: Optional[StreamEvent] = None
        self._data_count = 0

    @property
    def closed(self) -> bool:
        return self._terminal is not None

    @property
    def terminal_event(self) -> Optional[StreamEvent]:
        return self._terminal

    @property
    def data_count(self) -> int:
        return self._data_count

    def on(self, kind: EventKind, listener: Listener) -> Callable[[], None]:
        """Subscribe; returns a callable that unsubscribes."""
        if kind not in self._listeners:
            raise ValueError(f"Unknown event kind '{kind}'. Expected one of {_KINDS}")
        self._listeners[kind].append(listener)
        return lambda: self.off(kind, listener)

    def off(self, kind: EventKind, listener: Listener) -> None:
        try:
            self._listeners[kind].remove(listener)
        except (KeyError, ValueError):
            pass

    def emit_data(self, fragment: str) -> None:
        self._check_open("data")
        self._data_count += 1
        self._deliver("data", Data(fragment))

    def emit_done(self, final_text: str, usage: Optional[Usage] = None, finish_reason: Optional[str] = None) -> None:
        self._check_open("done")
        event = Done(final_text=final_text, usage=usage, finish_reason=finish_reason)
        self._terminal = event
        self._deliver("done", event)

    def emit_error(self, cause: BaseException) -> None:
        self._check_open("error")
        event = Error(cause=cause)
        self._terminal = event
        self._deliver("error", event)

    async def wait(self) -> StreamEvent:
        """Resolve with the terminal event (Done or Error)."""
        if self._terminal is not None:
            return self._terminal
        fut: asyncio.Future = asyncio.get_running_loop().create_future()

        def _resolve(event: StreamEvent) -> None:
            if not fut.done():
                fut.set_result(event)

        stop_done = self.on("done", _resolve)
        stop_error = self.on("error", _resolve)
        try:
            return await fut
        finally:
            stop_done()
            stop_error()

    # Internal helpers

    def _check_open(self, kind: str) -> None:
        if self._terminal is not None:
            raise StreamClosedError(
                f"Cannot emit '{kind}' after terminal event {type(self._terminal).__name__}"
            )

    def _deliver(self, kind: str, event: StreamEvent) -> None:
        listeners = list(self._listeners[kind])
        if not listeners:
            LOGGER.debug("No listener for %s event; dropped", kind)
            return
        for listener in listeners:
            listener(event)
