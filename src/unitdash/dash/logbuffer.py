from __future__ import annotations

from collections import deque
from typing import Iterable

from .models import LogLine, LogViewState
from .search import line_matches


DEFAULT_CAPACITY = 10_000


class LogBuffer:
    """Bounded per-unit log history plus the log pane's view state.

    Appends are O(1); the oldest line is dropped once a unit's buffer holds
    ``capacity`` lines. Filtering is computed lazily and cached against the
    unit's append counter, so a burst of appends costs nothing until the next
    render asks for the view.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.active_unit: str | None = None
        self.view = LogViewState()
        self.viewport = 20
        self._lines: dict[str, deque[LogLine]] = {}
        self._appended: dict[str, int] = {}
        self._cache_key: tuple[str | None, str, int] | None = None
        self._cache: list[LogLine] = []

    def _buffer(self, unit_name: str) -> deque[LogLine]:
        buf = self._lines.get(unit_name)
        if buf is None:
            buf = self._lines[unit_name] = deque(maxlen=self.capacity)
            self._appended[unit_name] = 0
        return buf

    def append(self, unit_name: str, line: LogLine) -> None:
        self._buffer(unit_name).append(line)
        self._appended[unit_name] += 1

    def extend(self, unit_name: str, lines: Iterable[LogLine]) -> None:
        for line in lines:
            self.append(unit_name, line)

    def lines(self, unit_name: str | None = None) -> list[LogLine]:
        name = self.active_unit if unit_name is None else unit_name
        if name is None:
            return []
        return list(self._lines.get(name, ()))

    def length(self, unit_name: str) -> int:
        return len(self._lines.get(unit_name, ()))

    def appended_count(self, unit_name: str | None) -> int:
        if unit_name is None:
            return 0
        return self._appended.get(unit_name, 0)

    def appended_since(self, unit_name: str, mark: int) -> list[LogLine]:
        """Lines appended after the counter read ``mark`` (capped at what is still buffered)."""
        buf = self._lines.get(unit_name)
        if not buf:
            return []
        n = self._appended[unit_name] - mark
        if n <= 0:
            return []
        n = min(n, len(buf))
        return list(buf)[-n:]

    def last_cursor(self, unit_name: str) -> str | None:
        for line in reversed(self._lines.get(unit_name, ())):
            if line.cursor:
                return line.cursor
        return None

    def switch_unit(self, unit_name: str | None) -> bool:
        """Make ``unit_name`` the render target; True means a new subscription is needed."""
        if unit_name == self.active_unit:
            return False
        self.active_unit = unit_name
        self.view.scroll_offset = None
        return True

    def filtered_view(self, active_filter: str | None = None) -> list[LogLine]:
        needle = self.view.active_filter if active_filter is None else active_filter
        key = (self.active_unit, needle, self.appended_count(self.active_unit))
        if key == self._cache_key:
            return self._cache
        lines = self.lines()
        if needle:
            lines = [ln for ln in lines if line_matches(ln, needle)]
        self._cache_key = key
        self._cache = lines
        return lines

    def scroll(self, delta: int) -> bool:
        total = len(self.filtered_view())
        bottom = max(0, total - self.viewport)
        before = self.view.scroll_offset
        current = bottom if before is None else before
        target = max(0, min(current + delta, bottom))
        # scrolling back to the bottom re-attaches to the tail
        self.view.scroll_offset = None if target >= bottom else target
        return self.view.scroll_offset != before

    def scroll_home(self) -> bool:
        before = self.view.scroll_offset
        total = len(self.filtered_view())
        self.view.scroll_offset = 0 if total > self.viewport else None
        return self.view.scroll_offset != before

    def scroll_end(self) -> bool:
        before = self.view.scroll_offset
        self.view.scroll_offset = None
        return before is not None

    def set_viewport(self, height: int) -> None:
        self.viewport = max(1, height)
