# src/askai/core/reflow.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Set, Tuple

from .errors import ConfigurationError

SENTENCE_TERMINATORS = (".", "!", "?")
DEFAULT_MIN_FLUSH = 30
DEFAULT_BORDER_ALLOWANCE = 4


def column_budget(viewport_width: int, border_allowance: int = DEFAULT_BORDER_ALLOWANCE,
                  max_width: Optional[int] = None) -> int:
    """
    Usable text columns for a viewport. Call once per turn so a resized
    terminal is picked up on the next response.
    """
    budget = int(viewport_width) - int(border_allowance)
    if max_width is not None:
        budget = min(budget, int(max_width))
    if budget < 1:
        raise ConfigurationError(
            f"Viewport width {viewport_width} leaves no room for text (border allowance {border_allowance})"
        )
    return budget


@dataclass(frozen=True)
class LineUpdate:
    """A display operation; index is relative to the first line of the response."""
    kind: Literal["append", "replace"]
    index: int
    text: str


@dataclass(frozen=True)
class ReflowState:
    pending: str
    committed_lines: int
    width: int


def _positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
    return value


class ReflowEngine:
    """
    Wraps streamed fragments into display lines no wider than `width`.

    Fragments are buffered until the buffer ends a sentence or reaches
    `min_flush` characters; a flush is merged into the current line when it
    fits and starts a new line otherwise. A line break ends the current line
    and opens an empty one for the text that follows. Nothing is dropped or
    reordered: joining the committed lines (with the hard breaks put back)
    plus the pending buffer gives back exactly the text that was fed in.
    """

    def __init__(self, width: int, *, min_flush: int = DEFAULT_MIN_FLUSH,
                 terminators: Iterable[str] = SENTENCE_TERMINATORS):
        self.width = _positive_int("width", width)
        self.min_flush = _positive_int("min_flush", min_flush)
        self.terminators: Tuple[str, ...] = tuple(terminators)

        self._lines: List[str] = []
        self._hard_breaks: Set[int] = set()
        self._open = False  # last line still accepts merged text
        self._buffer = ""
        self._received: List[str] = []

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    @property
    def pending(self) -> str:
        return self._buffer

    @property
    def text(self) -> str:
        """Every fragment received so far, verbatim."""
        return "".join(self._received)

    @property
    def state(self) -> ReflowState:
        return ReflowState(pending=self._buffer, committed_lines=len(self._lines), width=self.width)

    def rendered_text(self) -> str:
        """Committed lines joined back together, hard breaks restored."""
        return "".join(
            line + ("\n" if i in self._hard_breaks else "")
            for i, line in enumerate(self._lines)
        )

    def feed(self, fragment: str) -> List[LineUpdate]:
        if not fragment:
            return []
        self._received.append(fragment)
        updates: List[LineUpdate] = []

        if "\n" in fragment:
            parts = fragment.split("\n")
            head = self._buffer + parts[0]
            self._buffer = ""
            if head:
                self._place(head, updates)
            self._hard_break(updates)
            for part in parts[1:-1]:
                if part:
                    self._place(part, updates)
                self._hard_break(updates)
            self._buffer = parts[-1]
            return updates

        self._buffer += fragment
        if self._buffer.endswith(self.terminators) or len(self._buffer) >= self.min_flush:
            self._place(self._buffer, updates)
            self._buffer = ""
        return updates

    def finish(self) -> List[LineUpdate]:
        """Stream ended: whatever is still buffered becomes a final line."""
        updates: List[LineUpdate] = []
        if self._buffer:
            if self._open and self._lines[-1] == "":
                self._fill_empty(self._buffer, updates)
            else:
                self._start_lines(self._buffer, updates)
            self._buffer = ""
        self._open = False
        return updates

    # Internal helpers

    def _place(self, text: str, updates: List[LineUpdate]) -> None:
        if self._open and len(self._lines[-1]) + len(text) <= self.width:
            idx = len(self._lines) - 1
            self._lines[idx] += text
            updates.append(LineUpdate("replace", idx, self._lines[idx]))
        elif self._open and self._lines[-1] == "":
            self._fill_empty(text, updates)
        else:
            self._start_lines(text, updates)

    def _fill_empty(self, text: str, updates: List[LineUpdate]) -> None:
        # the blank line opened by a line break takes the first wrapped piece
        first, *rest = self._wrap(text)
        idx = len(self._lines) - 1
        self._lines[idx] = first
        updates.append(LineUpdate("replace", idx, first))
        for piece in rest:
            self._lines.append(piece)
            updates.append(LineUpdate("append", len(self._lines) - 1, piece))
        self._open = True

    def _start_lines(self, text: str, updates: List[LineUpdate]) -> None:
        for piece in self._wrap(text):
            self._lines.append(piece)
            updates.append(LineUpdate("append", len(self._lines) - 1, piece))
        self._open = True

    def _hard_break(self, updates: List[LineUpdate]) -> None:
        # ends the current line and opens an empty one after it
        if not self._open:
            self._lines.append("")
            updates.append(LineUpdate("append", len(self._lines) - 1, ""))
        self._hard_breaks.add(len(self._lines) - 1)
        self._lines.append("")
        updates.append(LineUpdate("append", len(self._lines) - 1, ""))
        self._open = True

    def _wrap(self, text: str) -> List[str]:
        # Break after the last space that fits; with no space in reach the
        # text is cut at the width so no line ever exceeds it.
        pieces: List[str] = []
        while len(text) > self.width:
            space = text.rfind(" ", 0, self.width)
            cut = space + 1 if space >= 0 else self.width
            pieces.append(text[:cut])
            text = text[cut:]
        if text:
            pieces.append(text)
        return pieces
