from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from rich.text import Text

from ..errors import one_line
from .actions import ActionTracker
from .keymap import Keymap
from .models import ActionRecord, ConfirmModal, HelpModal, LogLine, Mode, Pane, Searching, Unit, STATE_COLORS

if TYPE_CHECKING:
    from .core import AppCore


SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
NO_LOGS = "No logs found/available. Maybe try relaunching with sudo."


class RenderScheduler:
    """Decides when the screen is repainted.

    The core marks the scheduler dirty whenever something visible changes and
    the pump repaints only when ``take()`` reports dirty. The spinner frame is
    the only thing advanced by a timer.
    """

    def __init__(self) -> None:
        self.dirty = True
        self.reasons: set[str] = {"initial"}
        self.frame = 0

    def mark(self, reason: str) -> None:
        self.dirty = True
        self.reasons.add(reason)

    def take(self) -> bool:
        was = self.dirty
        self.dirty = False
        self.reasons = set()
        return was

    def spin(self) -> None:
        self.frame = (self.frame + 1) % len(SPINNER_FRAMES)
        self.mark("spinner")

    @property
    def spinner(self) -> str:
        return SPINNER_FRAMES[self.frame]


@dataclass(slots=True)
class Row:
    key: str
    cells: tuple[Text, Text, Text]


@dataclass(slots=True)
class Frame:
    rows: list[Row] = field(default_factory=list)
    cursor: int | None = None
    pane: Pane = Pane.UNITS
    search: Text = field(default_factory=Text)
    details: Text = field(default_factory=Text)
    banner: Text | None = None
    log_title: str = ""
    log_warning: str | None = None
    log_placeholder: str | None = None
    modal: Text | None = None
    hint: Text = field(default_factory=Text)


def unit_row(unit: Unit, tracker: ActionTracker, spinner: str) -> Row:
    state, sub = tracker.display_state(unit)
    record = tracker.get(unit.name)
    if record is not None and record.pending:
        status = Text(spinner, style="yellow")
    elif record is not None and record.failed:
        status = Text("✗", style="bold red")
    else:
        status = Text("●", style=STATE_COLORS[state])
    name = Text(unit.short_name, style="bold" if state.value == "active" else "")
    return Row(unit.name, (status, name, Text(sub, style=STATE_COLORS[state])))


def details_text(unit: Unit | None, file_path: str | None) -> Text:
    if unit is None:
        return Text("No unit selected", style="dim")
    load_color = {"loaded": "green", "not-found": "yellow", "error": "red"}.get(unit.load_state, "white")
    out = Text()
    out.append("Description: ", style="dim")
    out.append(unit.description or "-")
    out.append("\nLoaded: ", style="dim")
    out.append(unit.load_state, style=load_color)
    out.append("\nActive: ", style="dim")
    out.append(f"{unit.active_state.value} ({unit.sub_state})", style=unit.color)
    out.append("\nUnit file: ", style="dim")
    out.append(file_path or "-")
    return out


def log_line_text(line: LogLine) -> Text:
    out = Text()
    if line.timestamp is not None:
        out.append(line.timestamp.strftime("%Y-%m-%d %H:%M:%S"), style="grey50")
        out.append(" ")
    out.append(line.raw_text)
    return out


def search_text(mode: Mode, unit_filter: str, log_filter: str) -> Text:
    out = Text()
    active = mode.pane if isinstance(mode, Searching) else None
    for pane, value in ((Pane.UNITS, unit_filter), (Pane.LOGS, log_filter)):
        if not value and active is not pane:
            continue
        if out:
            out.append("   ")
        out.append(f"{pane.value}/", style="bold green" if active is pane else "dim")
        out.append(value)
        if active is pane:
            out.append("▏", style="green")
    if not out:
        out.append("Press / to search, ? for help", style="dim")
    return out


def banner_text(banner: str | None, message: str | None, record: ActionRecord | None) -> Text | None:
    if banner:
        return Text(f"⚠ {banner}", style="bold white on red")
    if record is not None and record.failed:
        detail = one_line(record.message or "failed")
        return Text(f"✗ {record.verb.label} of {record.unit_name} failed: {detail}  (c to dismiss)", style="bold red")
    if message:
        return Text(message, style="yellow")
    return None


def help_text(keymap: Keymap) -> Text:
    out = Text("Shortcuts\n\n", style="underline")
    for keys, desc in keymap.describe():
        out.append(f"{keys:>18}", style="bold cyan")
        out.append(f"  {desc}\n")
    out.append("\nIn search: type to filter, enter keeps it, escape clears it.", style="dim")
    return out


def confirm_text(mode: ConfirmModal, pending: list[ActionRecord]) -> Text:
    if mode.is_quit:
        names = ", ".join(f"{r.verb.value} {r.unit_name}" for r in pending) or "none"
        out = Text("Actions still in flight: ", style="bold")
        out.append(names)
        out.append("\n\nQuit anyway? The manager finishes them on its own. [y/n]")
        return out
    out = Text(f"{mode.verb.label} ", style="bold")  # type: ignore[union-attr]
    out.append(mode.unit or "", style="bold cyan")
    out.append("? [y/n]")
    return out


def compose_frame(core: "AppCore") -> Frame:
    """Build the read-only view of the core's state for one repaint."""
    store, logs, tracker = core.store, core.logs, core.tracker
    spinner = core.scheduler.spinner
    selected = store.selected()
    frame = Frame(
        rows=[unit_row(u, tracker, spinner) for u in store.view],
        cursor=store.selection.cursor_index,
        pane=core.pane,
        search=search_text(core.mode, store.selection.active_filter, logs.view.active_filter),
        details=details_text(selected, core.unit_files.get(selected.name) if selected else None),
        banner=banner_text(core.banner, core.message, tracker.get(selected.name) if selected else None),
        log_warning=core.log_warning,
    )
    if logs.active_unit is not None:
        frame.log_title = f" Logs: {logs.active_unit} "
        if logs.length(logs.active_unit) == 0:
            frame.log_placeholder = NO_LOGS
    if isinstance(core.mode, HelpModal):
        frame.modal = help_text(core.keymap)
    elif isinstance(core.mode, ConfirmModal):
        frame.modal = confirm_text(core.mode, tracker.pending())
    pending = len(tracker.pending())
    hint = Text(f"{len(store.view)}/{len(store)} units", style="dim")
    if pending:
        hint.append(f"   {spinner} {pending} in flight", style="yellow")
    for name in ("start", "stop", "restart", "reload", "search", "help", "quit"):
        keys = core.keymap.keys(name)
        if keys:
            hint.append(f"   {keys[0]} {name}", style="dim")
    frame.hint = hint
    return frame
