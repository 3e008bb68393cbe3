from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Sequence, Union


class ActiveState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"
    ACTIVATING = "activating"
    DEACTIVATING = "deactivating"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str | None) -> "ActiveState":
        value = (raw or "").strip().lower()
        if value == "reloading":
            return cls.ACTIVATING
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


STATE_COLORS = {
    ActiveState.ACTIVE: "green",
    ActiveState.INACTIVE: "red",
    ActiveState.FAILED: "red",
    ActiveState.ACTIVATING: "yellow",
    ActiveState.DEACTIVATING: "yellow",
    ActiveState.UNKNOWN: "white",
}


@dataclass(slots=True, frozen=True)
class Unit:
    name: str
    active_state: ActiveState = ActiveState.UNKNOWN
    sub_state: str = ""
    description: str = ""
    load_state: str = "loaded"

    @property
    def short_name(self) -> str:
        if self.name.endswith(".service"):
            return self.name[: -len(".service")]
        return self.name

    @property
    def color(self) -> str:
        return STATE_COLORS[self.active_state]

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "Unit":
        # ListUnits* rows: name, description, load_state, active_state, sub_state, following, path, ...
        return cls(
            name=str(row[0]),
            description=str(row[1]),
            load_state=str(row[2]),
            active_state=ActiveState.parse(row[3]),
            sub_state=str(row[4]),
        )


@dataclass(slots=True, frozen=True)
class LogLine:
    raw_text: str
    timestamp: datetime | None = None
    cursor: str | None = None


class Verb(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    RELOAD = "reload"
    ENABLE = "enable"
    DISABLE = "disable"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ActionState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class ActionRecord:
    unit_name: str
    verb: Verb
    started_at: float
    state: ActionState = ActionState.PENDING
    message: str | None = None
    finished_at: float | None = None

    @property
    def pending(self) -> bool:
        return self.state is ActionState.PENDING

    @property
    def failed(self) -> bool:
        return self.state is ActionState.FAILED


class Pane(str, Enum):
    UNITS = "units"
    LOGS = "logs"


@dataclass(slots=True)
class SelectionState:
    cursor_index: int | None = None
    scroll_offset: int = 0
    active_filter: str = ""


@dataclass(slots=True)
class LogViewState:
    # scroll_offset None means the view follows the tail
    scroll_offset: int | None = None
    active_filter: str = ""


@dataclass(slots=True, frozen=True)
class Normal:
    pass


@dataclass(slots=True, frozen=True)
class Searching:
    pane: Pane = Pane.UNITS


@dataclass(slots=True, frozen=True)
class HelpModal:
    pass


@dataclass(slots=True, frozen=True)
class ConfirmModal:
    verb: Verb | None = None
    unit: str | None = None

    @property
    def is_quit(self) -> bool:
        return self.verb is None


Mode = Union[Normal, Searching, HelpModal, ConfirmModal]
