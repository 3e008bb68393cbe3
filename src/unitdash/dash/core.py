from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from ..config import Settings
from ..errors import ConfigError, ManagerUnavailable, PermissionDenied, UnitdashError, one_line
from .actions import ActionTracker, Rejected
from .events import (
    ActionCompleted,
    Effect,
    Event,
    Exit,
    FollowLogs,
    KeyPressed,
    LogLinesReceived,
    LogStreamFailed,
    OpenEditor,
    RefreshCompleted,
    RefreshTick,
    RequestRefresh,
    Resized,
    ResolveUnitFile,
    RunControl,
    ScheduleRefresh,
    SpinnerTick,
    StopFollowing,
    UnitFileResolved,
)
from .keymap import (
    AcceptSearch,
    Action,
    CloseHelp,
    ConfirmNo,
    ConfirmYes,
    Direction,
    DismissError,
    EnterSearch,
    ExitSearch,
    KeyPress,
    Keymap,
    Navigate,
    OpenHelp,
    OpenUnitFile,
    Quit,
    Refresh,
    RequestControl,
    SearchBackspace,
    SearchInput,
    SwitchPane,
    dispatch,
)
from .logbuffer import LogBuffer
from .models import ConfirmModal, HelpModal, Mode, Normal, Pane, Searching, Unit, Verb
from .render import RenderScheduler
from .search import FilterEngine, line_matches
from .store import UnitStore


logger = logging.getLogger(__name__)

MAX_BACKOFF = 30.0
WARN_AFTER_FAILURES = 3
# extra refreshes after a control command resolves, in seconds from completion
REFRESH_BURST = (1.0, 2.0, 3.0)


def _confirm_verbs(names: Iterable[str]) -> frozenset[Verb]:
    verbs = set()
    for name in names:
        try:
            verbs.add(Verb(name))
        except ValueError:
            raise ConfigError(f"unknown verb in confirm list: {name!r}")
    return frozenset(verbs)


def _describe_error(error: UnitdashError) -> str:
    if isinstance(error, ManagerUnavailable):
        return f"Service manager unavailable: {error}"
    if isinstance(error, PermissionDenied):
        return f"Permission denied while listing units: {one_line(str(error))}"
    return str(error)


class AppCore:
    """The dashboard's state machine.

    Every input arrives as an event through ``handle``, which mutates the
    owned state and returns the effects (I/O) the event pump must perform.
    Nothing here awaits or touches the terminal, so a whole session can be
    replayed synchronously.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        keymap: Keymap | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or Settings()
        if keymap is None:
            keymap = Keymap()
            if self.settings.keys:
                keymap = keymap.with_overrides(self.settings.keys)
        self.keymap = keymap
        self.confirm_verbs = _confirm_verbs(self.settings.confirm)

        self.store = UnitStore()
        self.logs = LogBuffer(self.settings.log_capacity)
        self.tracker = ActionTracker(clock=clock)
        self.filters = FilterEngine()
        self.scheduler = RenderScheduler()

        self.mode: Mode = Normal()
        self.pane = Pane.UNITS
        self.banner: str | None = None
        self.message: str | None = None
        self.log_warning: str | None = None
        self.unit_files: dict[str, str] = {}
        self.running = True

        self._refresh_seq = 0
        self._refresh_in_flight = False
        self._generation = 0
        self._stream_failures = 0

    @property
    def generation(self) -> int:
        return self._generation

    def load(self, units: Iterable[Unit]) -> None:
        self.store.refresh(units)
        self.scheduler.mark("units")

    def start(self) -> list[Effect]:
        effects: list[Effect] = []
        if not len(self.store):
            effects.append(self._request_refresh())
        effects.extend(self._follow_selected())
        return effects

    # -- event handling -----------------------------------------------------

    def handle(self, event: Event) -> list[Effect]:
        if isinstance(event, KeyPressed):
            return self._on_key(event.key)
        if isinstance(event, RefreshTick):
            if self._refresh_in_flight:
                logger.debug("refresh still in flight, skipping tick")
                return []
            return [self._request_refresh()]
        if isinstance(event, RefreshCompleted):
            return self._on_refresh(event)
        if isinstance(event, SpinnerTick):
            if self.tracker.expire():
                self.scheduler.mark("action")
            if self.tracker.has_pending:
                self.scheduler.spin()
            return []
        if isinstance(event, LogLinesReceived):
            return self._on_log_lines(event)
        if isinstance(event, LogStreamFailed):
            return self._on_stream_failed(event)
        if isinstance(event, ActionCompleted):
            return self._on_action_completed(event)
        if isinstance(event, UnitFileResolved):
            return self._on_unit_file(event)
        if isinstance(event, Resized):
            self.store.set_viewport(event.units_height)
            self.logs.set_viewport(event.logs_height)
            self.scheduler.mark("resize")
            return []
        logger.warning("unhandled event %r", event)
        return []

    def _on_key(self, key: KeyPress) -> list[Effect]:
        if self.message is not None:
            self.message = None
            self.scheduler.mark("message")
        return self.perform(dispatch(self.mode, key, self.pane, self.keymap))

    def perform(self, action: Action) -> list[Effect]:
        if isinstance(action, Navigate):
            return self._navigate(action.direction)
        if isinstance(action, SwitchPane):
            self.pane = Pane.LOGS if self.pane is Pane.UNITS else Pane.UNITS
            self.scheduler.mark("pane")
            return []
        if isinstance(action, EnterSearch):
            self._set_mode(Searching(action.pane))
            return []
        if isinstance(action, SearchInput):
            return self._set_filter(self._search_text() + action.char)
        if isinstance(action, SearchBackspace):
            return self._set_filter(self._search_text()[:-1])
        if isinstance(action, AcceptSearch):
            self._set_mode(Normal())
            return []
        if isinstance(action, ExitSearch):
            effects = self._set_filter("")
            self._set_mode(Normal())
            return effects
        if isinstance(action, RequestControl):
            return self._request_control(action.verb)
        if isinstance(action, ConfirmYes):
            return self._confirm()
        if isinstance(action, ConfirmNo):
            self._set_mode(Normal())
            return []
        if isinstance(action, OpenHelp):
            self._set_mode(HelpModal())
            return []
        if isinstance(action, CloseHelp):
            self._set_mode(Normal())
            return []
        if isinstance(action, DismissError):
            unit = self.store.selected()
            if unit is not None and self.tracker.dismiss(unit.name):
                self.scheduler.mark("action")
            return []
        if isinstance(action, OpenUnitFile):
            unit = self.store.selected()
            return [ResolveUnitFile(unit.name, edit=True)] if unit else []
        if isinstance(action, Refresh):
            return [self._request_refresh()]
        if isinstance(action, Quit):
            return self._quit_requested()
        return []

    def _set_mode(self, mode: Mode) -> None:
        if mode != self.mode:
            self.mode = mode
            self.scheduler.mark("mode")

    # -- navigation and search ---------------------------------------------

    def _navigate(self, direction: Direction) -> list[Effect]:
        if self.pane is Pane.UNITS:
            store = self.store
            if direction is Direction.UP:
                moved = store.move(-1)
            elif direction is Direction.DOWN:
                moved = store.move(1)
            elif direction is Direction.PAGE_UP:
                moved = store.page(-1)
            elif direction is Direction.PAGE_DOWN:
                moved = store.page(1)
            elif direction is Direction.HOME:
                moved = store.home()
            else:
                moved = store.end()
            if not moved:
                return []
            self.scheduler.mark("selection")
            return self._follow_selected()

        logs = self.logs
        if direction is Direction.UP:
            moved = logs.scroll(-1)
        elif direction is Direction.DOWN:
            moved = logs.scroll(1)
        elif direction is Direction.PAGE_UP:
            moved = logs.scroll(-logs.viewport)
        elif direction is Direction.PAGE_DOWN:
            moved = logs.scroll(logs.viewport)
        elif direction is Direction.HOME:
            moved = logs.scroll_home()
        else:
            moved = logs.scroll_end()
        if moved:
            self.scheduler.mark("scroll")
        return []

    def _search_pane(self) -> Pane:
        return self.mode.pane if isinstance(self.mode, Searching) else self.pane

    def _search_text(self) -> str:
        return self.filters.text(self._search_pane(), self.store, self.logs)

    def _set_filter(self, text: str) -> list[Effect]:
        pane = self._search_pane()
        if not self.filters.set_filter(pane, text, self.store, self.logs):
            return []
        self.scheduler.mark("filter")
        if pane is Pane.UNITS:
            return self._follow_selected()
        return []

    def _follow_selected(self) -> list[Effect]:
        unit = self.store.selected()
        name = unit.name if unit else None
        if not self.logs.switch_unit(name):
            return []
        self._generation += 1
        self._stream_failures = 0
        self.log_warning = None
        self.scheduler.mark("log target")
        if name is None:
            return [StopFollowing()]
        effects: list[Effect] = [FollowLogs(name, self._generation, self.logs.last_cursor(name))]
        if name not in self.unit_files:
            effects.append(ResolveUnitFile(name))
        return effects

    # -- control actions ----------------------------------------------------

    def _request_control(self, verb: Verb) -> list[Effect]:
        unit = self.store.selected()
        if unit is None:
            return []
        if self.tracker.is_pending(unit.name):
            return self._rejected(verb, Rejected(unit.name))
        if verb in self.confirm_verbs:
            self._set_mode(ConfirmModal(verb, unit.name))
            return []
        return self._issue(unit.name, verb)

    def _issue(self, unit_name: str, verb: Verb) -> list[Effect]:
        result = self.tracker.issue(unit_name, verb)
        if isinstance(result, Rejected):
            return self._rejected(verb, result)
        self.scheduler.mark("action")
        return [RunControl(unit_name, verb)]

    def _rejected(self, verb: Verb, result: Rejected) -> list[Effect]:
        self.message = f"{verb.label} rejected: {result.as_error()}"
        self.scheduler.mark("message")
        return []

    def _confirm(self) -> list[Effect]:
        mode = self.mode
        self._set_mode(Normal())
        if not isinstance(mode, ConfirmModal):
            return []
        if mode.is_quit:
            return self._quit()
        return self._issue(mode.unit, mode.verb)  # type: ignore[arg-type]

    def _on_action_completed(self, event: ActionCompleted) -> list[Effect]:
        if self.tracker.resolve(event.unit_name, event.verb, event.error) is None:
            return []
        self.scheduler.mark("action")
        return [self._request_refresh(), *(ScheduleRefresh(delay) for delay in REFRESH_BURST)]

    def _quit_requested(self) -> list[Effect]:
        if not isinstance(self.mode, (Normal, HelpModal)):
            return []
        if self.tracker.has_pending:
            self._set_mode(ConfirmModal())
            return []
        return self._quit()

    def _quit(self) -> list[Effect]:
        self.running = False
        abandoned = tuple(r.unit_name for r in self.tracker.pending())
        if abandoned:
            logger.warning("quitting with actions in flight for %s", ", ".join(abandoned))
        return [Exit(abandoned)]

    # -- background results -------------------------------------------------

    def _request_refresh(self) -> RequestRefresh:
        self._refresh_seq += 1
        self._refresh_in_flight = True
        return RequestRefresh(self._refresh_seq)

    def _on_refresh(self, event: RefreshCompleted) -> list[Effect]:
        if event.seq != self._refresh_seq:
            logger.debug("dropping stale refresh #%d (latest #%d)", event.seq, self._refresh_seq)
            return []
        self._refresh_in_flight = False
        if event.error is not None:
            banner = _describe_error(event.error)
            if banner != self.banner:
                self.banner = banner
                self.scheduler.mark("banner")
            logger.warning("refresh #%d failed: %s", event.seq, event.error)
            return []
        if self.banner is not None:
            self.banner = None
            self.scheduler.mark("banner")
        result = self.store.refresh(event.units or ())
        if result.changed_any or result.selection_moved:
            self.scheduler.mark("units")
        return self._follow_selected()

    def _on_log_lines(self, event: LogLinesReceived) -> list[Effect]:
        if event.generation != self._generation or event.unit_name != self.logs.active_unit:
            logger.debug("dropping %d lines from stale subscription to %s", len(event.lines), event.unit_name)
            return []
        was_empty = self.logs.length(event.unit_name) == 0
        self.logs.extend(event.unit_name, event.lines)
        if self._stream_failures:
            self._stream_failures = 0
        if self.log_warning is not None:
            self.log_warning = None
            self.scheduler.mark("log warning")
        needle = self.logs.view.active_filter
        if was_empty or not needle or any(line_matches(ln, needle) for ln in event.lines):
            self.scheduler.mark("logs")
        return []

    def _on_stream_failed(self, event: LogStreamFailed) -> list[Effect]:
        if event.generation != self._generation or event.unit_name != self.logs.active_unit:
            return []
        self._stream_failures += 1
        delay = min(MAX_BACKOFF, 2.0 ** min(self._stream_failures - 1, 5))
        logger.warning(
            "log stream for %s interrupted (%s), attempt %d, retrying in %.0fs",
            event.unit_name,
            event.error,
            self._stream_failures,
            delay,
        )
        if self._stream_failures >= WARN_AFTER_FAILURES:
            self.log_warning = f"Log stream keeps failing: {event.error} (retrying in {delay:.0f}s)"
            self.scheduler.mark("log warning")
        self._generation += 1
        return [FollowLogs(event.unit_name, self._generation, self.logs.last_cursor(event.unit_name), delay)]

    def _on_unit_file(self, event: UnitFileResolved) -> list[Effect]:
        if event.path:
            self.unit_files[event.unit_name] = event.path
            selected = self.store.selected()
            if selected is not None and selected.name == event.unit_name:
                self.scheduler.mark("details")
        if not event.edit:
            if event.error:
                logger.info("no unit file for %s: %s", event.unit_name, event.error)
            return []
        if event.path:
            return [OpenEditor(event.path)]
        self.message = f"No unit file for {event.unit_name}: {event.error or 'not found'}"
        self.scheduler.mark("message")
        return []
