from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Union

from ..errors import ConfigError
from .models import ConfirmModal, HelpModal, Mode, Pane, Searching, Verb


@dataclass(slots=True, frozen=True)
class KeyPress:
    """A key as delivered by the terminal: Textual's key name plus the printable character, if any."""

    key: str
    char: str | None = None

    @property
    def printable(self) -> bool:
        return self.char is not None and len(self.char) == 1 and self.char.isprintable()


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"
    PAGE_UP = "page_up"
    PAGE_DOWN = "page_down"
    HOME = "home"
    END = "end"


@dataclass(slots=True, frozen=True)
class Navigate:
    direction: Direction


@dataclass(slots=True, frozen=True)
class SwitchPane:
    pass


@dataclass(slots=True, frozen=True)
class EnterSearch:
    pane: Pane


@dataclass(slots=True, frozen=True)
class SearchInput:
    char: str


@dataclass(slots=True, frozen=True)
class SearchBackspace:
    pass


@dataclass(slots=True, frozen=True)
class AcceptSearch:
    pass


@dataclass(slots=True, frozen=True)
class ExitSearch:
    pass


@dataclass(slots=True, frozen=True)
class RequestControl:
    verb: Verb


@dataclass(slots=True, frozen=True)
class ConfirmYes:
    pass


@dataclass(slots=True, frozen=True)
class ConfirmNo:
    pass


@dataclass(slots=True, frozen=True)
class OpenHelp:
    pass


@dataclass(slots=True, frozen=True)
class CloseHelp:
    pass


@dataclass(slots=True, frozen=True)
class DismissError:
    pass


@dataclass(slots=True, frozen=True)
class OpenUnitFile:
    pass


@dataclass(slots=True, frozen=True)
class Refresh:
    pass


@dataclass(slots=True, frozen=True)
class Quit:
    pass


@dataclass(slots=True, frozen=True)
class Noop:
    pass


Action = Union[
    Navigate,
    SwitchPane,
    EnterSearch,
    SearchInput,
    SearchBackspace,
    AcceptSearch,
    ExitSearch,
    RequestControl,
    ConfirmYes,
    ConfirmNo,
    OpenHelp,
    CloseHelp,
    DismissError,
    OpenUnitFile,
    Refresh,
    Quit,
    Noop,
]


# Keys are Textual key names ("up", "ctrl+r") or literal characters ("/", "?").
DEFAULT_BINDINGS: dict[str, tuple[str, ...]] = {
    "up": ("up", "k"),
    "down": ("down", "j"),
    "page_up": ("pageup", "ctrl+u"),
    "page_down": ("pagedown", "ctrl+d"),
    "home": ("home",),
    "end": ("end",),
    "switch_pane": ("tab",),
    "search": ("/", "ctrl+f"),
    "accept": ("enter",),
    "cancel": ("escape",),
    "backspace": ("backspace",),
    "start": ("s",),
    "stop": ("x",),
    "restart": ("r",),
    "reload": ("l",),
    "enable": ("e",),
    "disable": ("d",),
    "dismiss": ("c",),
    "open_file": ("o",),
    "refresh": ("ctrl+r",),
    "help": ("?", "f1"),
    "quit": ("q", "ctrl+c"),
    "yes": ("y", "enter"),
    "no": ("n", "escape"),
}

DESCRIPTIONS: dict[str, str] = {
    "up": "move up",
    "down": "move down",
    "page_up": "page up",
    "page_down": "page down",
    "home": "jump to top",
    "end": "jump to bottom",
    "switch_pane": "switch between units and logs",
    "search": "filter the focused pane",
    "start": "start unit",
    "stop": "stop unit",
    "restart": "restart unit",
    "reload": "reload unit",
    "enable": "enable unit",
    "disable": "disable unit",
    "dismiss": "dismiss error",
    "open_file": "open unit file in $EDITOR",
    "refresh": "refresh now",
    "help": "toggle this help",
    "quit": "quit",
}

VERB_BINDINGS = {verb.value: verb for verb in Verb}

_NAVIGATION = {
    "up": Direction.UP,
    "down": Direction.DOWN,
    "page_up": Direction.PAGE_UP,
    "page_down": Direction.PAGE_DOWN,
    "home": Direction.HOME,
    "end": Direction.END,
}


@dataclass(slots=True, frozen=True)
class Keymap:
    bindings: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_BINDINGS))

    def keys(self, name: str) -> tuple[str, ...]:
        return tuple(self.bindings.get(name, ()))

    def matches(self, name: str, key: KeyPress) -> bool:
        bound = self.bindings.get(name, ())
        return key.key in bound or (key.char is not None and key.char in bound)

    def with_overrides(self, overrides: str) -> "Keymap":
        """Apply ``name=key[,key];name=key`` overrides (the ``UNITDASH_KEYS`` format)."""
        merged = dict(self.bindings)
        for chunk in overrides.split(";"):
            chunk = chunk.strip()
            if not chunk:
                continue
            name, sep, keys = chunk.partition("=")
            name = name.strip()
            if not sep or name not in DEFAULT_BINDINGS:
                raise ConfigError(f"unknown key binding {chunk!r}")
            bound = tuple(k.strip() for k in keys.split(",") if k.strip())
            if not bound:
                raise ConfigError(f"no keys given for {name!r}")
            merged[name] = bound
        return Keymap(merged)

    def describe(self) -> list[tuple[str, str]]:
        return [(" / ".join(self.keys(name)), text) for name, text in DESCRIPTIONS.items() if self.keys(name)]


def dispatch(mode: Mode, key: KeyPress, pane: Pane, keymap: Keymap) -> Action:
    """Map a key to an action for the active mode.

    Each mode only sees its own subset of the keymap, so text typed into the
    search line never reaches the control or quit bindings.
    """
    if isinstance(mode, Searching):
        if keymap.matches("accept", key):
            return AcceptSearch()
        if keymap.matches("cancel", key):
            return ExitSearch()
        if keymap.matches("backspace", key):
            return SearchBackspace()
        if key.printable:
            return SearchInput(key.char)  # type: ignore[arg-type]
        return Noop()

    if isinstance(mode, ConfirmModal):
        if keymap.matches("yes", key):
            return ConfirmYes()
        if keymap.matches("no", key):
            return ConfirmNo()
        return Noop()

    if isinstance(mode, HelpModal):
        if keymap.matches("quit", key):
            return Quit()
        if keymap.matches("help", key) or keymap.matches("cancel", key) or keymap.matches("accept", key):
            return CloseHelp()
        return Noop()

    for name, direction in _NAVIGATION.items():
        if keymap.matches(name, key):
            return Navigate(direction)
    if keymap.matches("switch_pane", key):
        return SwitchPane()
    if keymap.matches("search", key):
        return EnterSearch(pane)
    for name, verb in VERB_BINDINGS.items():
        if keymap.matches(name, key):
            return RequestControl(verb)
    if keymap.matches("dismiss", key):
        return DismissError()
    if keymap.matches("open_file", key):
        return OpenUnitFile()
    if keymap.matches("refresh", key):
        return Refresh()
    if keymap.matches("help", key):
        return OpenHelp()
    if keymap.matches("quit", key):
        return Quit()
    return Noop()
