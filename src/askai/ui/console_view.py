from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

LOGGER = logging.getLogger(__name__)

STATUS_STYLE = "white on blue"


class ConsoleView:
    """
    Line buffer rendered on a rich Console.

    Lines scroll out of a terminal once printed, so only the newest line can
    still change: earlier lines are printed ("settled") as soon as a later
    line exists. While live() is active the newest line and the status bar
    are redrawn in place; outside it every line is printed immediately.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(markup=False, highlight=False)
        self._lines: List[str] = []
        self._settled = 0
        self._status = ""
        self._scroll = 100
        self._live: Optional[Live] = None

    @property
    def width(self) -> int:
        return self.console.width

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    @property
    def status(self) -> str:
        return self._status

    @property
    def scroll(self) -> int:
        return self._scroll

    def get_line(self, index: int) -> str:
        return self._lines[index]

    def append_line(self, text: str) -> int:
        self._lines.append(text)
        if self._live is None:
            self._settle(len(self._lines))
        else:
            self._settle(len(self._lines) - 1)
            self._refresh()
        return len(self._lines) - 1

    def replace_line(self, index: int, text: str) -> None:
        if not 0 <= index < len(self._lines):
            raise IndexError(f"No line {index} (have {len(self._lines)})")
        if index < self._settled:
            # already scrolled out; keep the buffer truthful anyway
            LOGGER.debug("Line %d replaced after it was printed", index)
        self._lines[index] = text
        self._refresh()

    def set_scroll(self, percent: int) -> None:
        self._scroll = max(0, min(100, int(percent)))

    def set_status(self, text: str) -> None:
        self._status = text
        self._refresh()

    def welcome(self, title: str, subtitle: str) -> None:
        self.console.print(Panel(Text(subtitle), title=title, border_style="blue", expand=True))

    def print_status(self) -> None:
        if self._status:
            self.console.print(Text(f" {self._status} ", style=STATUS_STYLE))

    @contextmanager
    def live(self) -> Iterator["ConsoleView"]:
        """Redraw the newest line and the status bar in place until the block exits."""
        self._live = Live(self._render(), console=self.console, auto_refresh=False, transient=True)
        self._live.start(refresh=True)
        try:
            yield self
        finally:
            live, self._live = self._live, None
            live.stop()
            self._settle(len(self._lines))

    # Internal helpers

    def _settle(self, upto: int) -> None:
        while self._settled < upto:
            self.console.print(Text(self._lines[self._settled]), soft_wrap=True)
            self._settled += 1

    def _render(self) -> Group:
        tail = self._lines[-1] if len(self._lines) > self._settled else ""
        return Group(Text(tail), Text(f" {self._status} ", style=STATUS_STYLE))

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self._render(), refresh=True)
