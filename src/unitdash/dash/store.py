from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .models import SelectionState, Unit
from .search import unit_matches


@dataclass(slots=True, frozen=True)
class RefreshResult:
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    changed: tuple[str, ...] = ()
    selection_moved: bool = False

    @property
    def changed_any(self) -> bool:
        return bool(self.added or self.removed or self.changed)


class UnitStore:
    """Known units plus the unit list's selection.

    The table is replaced wholesale by ``refresh``; the selection follows the
    selected unit by name and is clamped when that unit disappears.
    """

    def __init__(self, units: Iterable[Unit] = ()) -> None:
        self._units: dict[str, Unit] = {}
        self.selection = SelectionState()
        self.viewport = 20
        self._view: list[Unit] = []
        if units:
            self.refresh(units)

    @property
    def units(self) -> list[Unit]:
        return list(self._units.values())

    @property
    def view(self) -> list[Unit]:
        return self._view

    def __len__(self) -> int:
        return len(self._units)

    def get(self, name: str) -> Unit | None:
        return self._units.get(name)

    def filtered_view(self, active_filter: str | None = None) -> list[Unit]:
        needle = self.selection.active_filter if active_filter is None else active_filter
        return [u for u in self._units.values() if unit_matches(u, needle)]

    def index_of(self, name: str | None) -> int | None:
        if name is None:
            return None
        for i, unit in enumerate(self._view):
            if unit.name == name:
                return i
        return None

    def selected(self) -> Unit | None:
        idx = self.selection.cursor_index
        if idx is None or not (0 <= idx < len(self._view)):
            return None
        return self._view[idx]

    def refresh(self, snapshot: Iterable[Unit]) -> RefreshResult:
        prev = self.selected()
        prev_index = self.selection.cursor_index

        fresh: dict[str, Unit] = {}
        for unit in snapshot:
            # one record per name; a repeated name keeps its first position
            fresh[unit.name] = unit
        added = tuple(n for n in fresh if n not in self._units)
        removed = tuple(n for n in self._units if n not in fresh)
        changed = tuple(n for n, u in fresh.items() if n in self._units and self._units[n] != u)

        self._units = fresh
        self._view = self.filtered_view()
        self._reselect(prev.name if prev else None, prev_index)
        moved = (self.selected().name if self.selected() else None) != (prev.name if prev else None)
        return RefreshResult(added, removed, changed, selection_moved=moved)

    def apply_filter(self, text: str) -> None:
        """Swap the active filter and rebuild the view. Selection is the caller's job."""
        self.selection.active_filter = text
        self._view = self.filtered_view()

    def _reselect(self, name: str | None, fallback: int | None) -> None:
        if not self._view:
            self.select(None)
            return
        idx = self.index_of(name)
        if idx is None:
            idx = 0 if fallback is None else fallback
        self.select(idx)

    def select(self, index: int | None) -> None:
        if index is None or not self._view:
            self.selection.cursor_index = None
            self.selection.scroll_offset = 0
            return
        self.selection.cursor_index = max(0, min(index, len(self._view) - 1))
        self._scroll_into_view()

    def select_name(self, name: str) -> bool:
        idx = self.index_of(name)
        if idx is None:
            return False
        self.select(idx)
        return True

    def move(self, delta: int) -> bool:
        """Move the cursor by ``delta`` rows; returns True when the selection changed."""
        if not self._view:
            return False
        before = self.selection.cursor_index
        current = 0 if before is None else before
        self.select(current + delta)
        return self.selection.cursor_index != before

    def page(self, direction: int) -> bool:
        return self.move(direction * max(1, self.viewport - 1))

    def home(self) -> bool:
        return self.move(-len(self._view))

    def end(self) -> bool:
        return self.move(len(self._view))

    def set_viewport(self, height: int) -> None:
        self.viewport = max(1, height)
        self._scroll_into_view()

    def _scroll_into_view(self) -> None:
        sel = self.selection
        if sel.cursor_index is None:
            sel.scroll_offset = 0
            return
        if sel.cursor_index < sel.scroll_offset:
            sel.scroll_offset = sel.cursor_index
        elif sel.cursor_index >= sel.scroll_offset + self.viewport:
            sel.scroll_offset = sel.cursor_index - self.viewport + 1
        sel.scroll_offset = max(0, min(sel.scroll_offset, max(0, len(self._view) - self.viewport)))
