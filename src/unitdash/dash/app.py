from __future__ import annotations

import asyncio
import logging
import shlex
import subprocess
from asyncio import Task
from contextlib import suppress
from pathlib import Path
from typing import Iterable

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import DataTable, Label, RichLog, Static

from ..config import Settings
from .core import AppCore
from .discovery import BusServiceManager, ServiceManager
from .events import KeyPressed, RefreshTick, Resized, SpinnerTick
from .journal import JournalLogSource, LogSource
from .keymap import KeyPress
from .loop import EventPump
from .models import Pane, Unit
from .render import Frame, compose_frame, log_line_text
from .search import line_matches


logger = logging.getLogger(__name__)

COLUMNS = ("status", "name", "sub")


class UnitDashApp(App):
    CSS_PATH = Path(__file__).with_name("app.tcss")
    TITLE = "unitdash"
    ENABLE_COMMAND_PALETTE = False
    # Every other key goes through on_key into the core; these two would
    # otherwise be swallowed by Textual's own priority bindings.
    BINDINGS = [
        Binding("ctrl+c", "forward_key('ctrl+c')", "Quit", show=False, priority=True),
        Binding("ctrl+q", "forward_key('ctrl+c')", "Quit", show=False, priority=True),
    ]

    def __init__(
        self,
        settings: Settings,
        units: Iterable[Unit] = (),
        manager: ServiceManager | None = None,
        log_source: LogSource | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.core = AppCore(settings)
        self.core.load(units)
        self.manager = manager or BusServiceManager(user=settings.user, pattern=settings.pattern)
        self.log_source = log_source or JournalLogSource(user=settings.user, tail=settings.log_tail)
        self.pump: EventPump | None = None
        self.table: DataTable | None = None
        # Avoid clashing with Textual App.log (read-only property)
        self.log_widget: RichLog | None = None
        self._pump_task: Task | None = None
        self._row_keys: list[str] = []
        self._row_cells: dict[str, tuple[Text, ...]] = {}
        self._log_key: tuple[str | None, str] | None = None
        self._log_mark = 0
        self._placeholder_shown = False

    @property
    def abandoned(self) -> tuple[str, ...]:
        return self.pump.abandoned if self.pump else ()

    def compose(self) -> ComposeResult:
        with Container(id="header"):
            with Horizontal():
                yield Label("unitdash", id="title")
                yield Static(id="search")

        with Horizontal(id="body"):
            with Container(id="content-left"):
                self.table = DataTable(zebra_stripes=True, cursor_type="row", id="units")
                self.table.can_focus = False
                self.table.add_column("", key="status", width=2)
                self.table.add_column("Unit", key="name")
                self.table.add_column("State", key="sub")
                yield self.table

            with Vertical(id="content-right"):
                yield Static(id="details")
                yield Static(id="log-warning")
                self.log_widget = RichLog(
                    id="logs",
                    max_lines=self.settings.log_capacity,
                    highlight=False,
                    markup=False,
                    wrap=False,
                )
                self.log_widget.can_focus = False
                yield self.log_widget

        yield Static(id="banner")
        yield Static(id="hint")
        with Container(id="modal"):
            yield Static(id="modal-body")

    async def on_mount(self) -> None:
        self.pump = EventPump(self.core, self.manager, self.log_source, paint=self.paint, editor=self._edit)
        self._pump_task = asyncio.create_task(self._run_pump())
        self.set_interval(self.settings.refresh_interval, lambda: self.pump.post(RefreshTick()))
        self.set_interval(self.settings.spinner_interval, lambda: self.pump.post(SpinnerTick()))
        self.call_after_refresh(self._post_sizes)

    async def on_unmount(self) -> None:
        if self._pump_task and not self._pump_task.done():
            self._pump_task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await self._pump_task
        close = getattr(self.manager, "close", None)
        if callable(close):
            close()

    async def _run_pump(self) -> None:
        assert self.pump
        try:
            await self.pump.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("event pump crashed")
        self.exit()

    def on_key(self, event: events.Key) -> None:
        if self.pump is None:
            return
        self.pump.post(KeyPressed(KeyPress(event.key, event.character)))
        event.stop()

    def action_forward_key(self, key: str) -> None:
        if self.pump is not None:
            self.pump.post(KeyPressed(KeyPress(key)))

    def on_resize(self, event: events.Resize) -> None:
        self.call_after_refresh(self._post_sizes)

    def _post_sizes(self) -> None:
        if self.pump is None or self.table is None or self.log_widget is None:
            return
        # one row of the table is its header
        self.pump.post(Resized(max(1, self.table.size.height - 1), max(1, self.log_widget.size.height)))

    def _edit(self, path: str) -> None:
        argv = shlex.split(self.settings.editor) + [path]
        logger.info("opening %s", " ".join(argv))
        try:
            with self.suspend():
                subprocess.run(argv, check=False)
        except Exception as e:
            logger.error("could not open editor %s: %s", argv[0], e)
            self.notify(f"Could not open {path}: {e}", severity="error")

    # -- painting -----------------------------------------------------------

    def paint(self, core: AppCore) -> None:
        frame = compose_frame(core)
        self._paint_table(frame)
        self.query_one("#search", Static).update(frame.search)
        self.query_one("#details", Static).update(frame.details)
        self.query_one("#hint", Static).update(frame.hint)

        banner = self.query_one("#banner", Static)
        banner.display = frame.banner is not None
        if frame.banner is not None:
            banner.update(frame.banner)

        warning = self.query_one("#log-warning", Static)
        warning.display = frame.log_warning is not None
        if frame.log_warning is not None:
            warning.update(Text(frame.log_warning, style="bold yellow"))

        modal = self.query_one("#modal", Container)
        modal.display = frame.modal is not None
        if frame.modal is not None:
            self.query_one("#modal-body", Static).update(frame.modal)

        self.query_one("#content-left").set_class(frame.pane is Pane.UNITS, "focused")
        self.query_one("#content-right").set_class(frame.pane is Pane.LOGS, "focused")
        self._paint_logs(core, frame)

    def _paint_table(self, frame: Frame) -> None:
        assert self.table
        keys = [row.key for row in frame.rows]
        if keys != self._row_keys:
            self.table.clear(columns=False)
            for row in frame.rows:
                self.table.add_row(*row.cells, key=row.key)
            self._row_keys = keys
            self._row_cells = {row.key: row.cells for row in frame.rows}
        else:
            for row in frame.rows:
                if self._row_cells.get(row.key) == row.cells:
                    continue
                for column, cell in zip(COLUMNS, row.cells):
                    self.table.update_cell(row.key, column, cell)
                self._row_cells[row.key] = row.cells
        if frame.cursor is not None and self.table.cursor_row != frame.cursor:
            self.table.move_cursor(row=frame.cursor, animate=False)

    def _paint_logs(self, core: AppCore, frame: Frame) -> None:
        assert self.log_widget
        log = self.log_widget
        logs = core.logs
        unit, needle = logs.active_unit, logs.view.active_filter
        log.border_title = frame.log_title

        if (unit, needle) != self._log_key or (self._placeholder_shown and logs.length(unit or "")):
            log.clear()
            lines = logs.filtered_view()
            for line in lines:
                log.write(log_line_text(line), scroll_end=False)
            self._placeholder_shown = not lines and frame.log_placeholder is not None
            if self._placeholder_shown:
                log.write(Text(frame.log_placeholder or "", style="dim"))
            self._log_key = (unit, needle)
        elif unit is not None:
            for line in logs.appended_since(unit, self._log_mark):
                if line_matches(line, needle):
                    log.write(log_line_text(line), scroll_end=False)
        self._log_mark = logs.appended_count(unit)

        offset = logs.view.scroll_offset
        if offset is None:
            log.auto_scroll = True
            log.scroll_end(animate=False)
        else:
            log.auto_scroll = False
            log.scroll_to(y=offset, animate=False)


def run_dash(settings: Settings) -> tuple[str, ...]:
    """Open the dashboard. Returns the units whose actions were abandoned on quit.

    The initial listing happens before the UI starts; if the manager cannot be
    reached at all, its error propagates to the caller instead of opening an
    empty dashboard.
    """
    manager = BusServiceManager(user=settings.user, pattern=settings.pattern)

    async def _init() -> list[Unit]:
        try:
            return await manager.list_units()
        finally:
            manager.close()

    units = asyncio.run(_init())
    logger.info("starting dashboard with %d units", len(units))
    app = UnitDashApp(settings, units)
    app.run()
    return app.abandoned
