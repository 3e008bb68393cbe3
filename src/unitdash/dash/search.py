from __future__ import annotations

from typing import TYPE_CHECKING

from .models import LogLine, Pane, Unit

if TYPE_CHECKING:
    from .logbuffer import LogBuffer
    from .store import UnitStore


def matches(haystack: str, needle: str) -> bool:
    """Case-insensitive substring containment; an empty needle matches everything."""
    if not needle:
        return True
    return needle.lower() in haystack.lower()


def unit_matches(unit: Unit, needle: str) -> bool:
    return matches(unit.name, needle) or matches(unit.description, needle)


def line_matches(line: LogLine, needle: str) -> bool:
    return matches(line.raw_text, needle)


class FilterEngine:
    """Per-pane filter text with first-match selection and restore-on-clear.

    The engine only remembers where each pane was before filtering began; the
    store and log buffer it edits are passed in by their owner on every call.
    """

    def __init__(self) -> None:
        # unit pane: (selected name, cursor index) captured when the filter went from "" to text
        self._unit_memory: tuple[str | None, int | None] | None = None
        self._log_memory: int | None = None
        self._log_memory_set = False

    def text(self, pane: Pane, store: "UnitStore", logs: "LogBuffer") -> str:
        if pane is Pane.UNITS:
            return store.selection.active_filter
        return logs.view.active_filter

    def set_filter(self, pane: Pane, text: str, store: "UnitStore", logs: "LogBuffer") -> bool:
        if pane is Pane.UNITS:
            return self.set_unit_filter(store, text)
        return self.set_log_filter(logs, text)

    def set_unit_filter(self, store: "UnitStore", text: str) -> bool:
        previous = store.selection.active_filter
        if text == previous:
            return False
        selected = store.selected()
        if not previous and text:
            self._unit_memory = (selected.name if selected else None, store.selection.cursor_index)

        store.apply_filter(text)

        if not text:
            name, index = self._unit_memory or (None, None)
            self._unit_memory = None
            restored = store.index_of(name)
            if restored is None:
                restored = 0 if index is None else index
            store.select(restored)
            return True

        keep = store.index_of(selected.name) if selected else None
        store.select(0 if keep is None else keep)
        return True

    def set_log_filter(self, logs: "LogBuffer", text: str) -> bool:
        previous = logs.view.active_filter
        if text == previous:
            return False
        if not previous and text:
            self._log_memory = logs.view.scroll_offset
            self._log_memory_set = True
        logs.view.active_filter = text
        if not text:
            logs.view.scroll_offset = self._log_memory if self._log_memory_set else None
            self._log_memory = None
            self._log_memory_set = False
            if logs.view.scroll_offset is not None:
                # clamp against the unfiltered view
                logs.scroll(0)
            return True
        # jump to the first match; an empty or short result just follows the tail
        logs.view.scroll_offset = 0 if len(logs.filtered_view()) > logs.viewport else None
        return True
