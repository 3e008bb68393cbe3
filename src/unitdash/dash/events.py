"""Messages exchanged between the event pump and the application core.

Events flow into the core through the single inbound queue; effects flow out
of it and are carried out by the pump as background tasks.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..errors import UnitdashError
from .keymap import KeyPress
from .models import LogLine, Unit, Verb


# -- events -----------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class KeyPressed:
    key: KeyPress


@dataclass(slots=True, frozen=True)
class RefreshTick:
    pass


@dataclass(slots=True, frozen=True)
class SpinnerTick:
    pass


@dataclass(slots=True, frozen=True)
class Resized:
    units_height: int
    logs_height: int


@dataclass(slots=True, frozen=True)
class RefreshCompleted:
    seq: int
    units: tuple[Unit, ...] | None = None
    error: UnitdashError | None = None


@dataclass(slots=True, frozen=True)
class LogLinesReceived:
    unit_name: str
    generation: int
    lines: tuple[LogLine, ...]


@dataclass(slots=True, frozen=True)
class LogStreamFailed:
    unit_name: str
    generation: int
    error: str


@dataclass(slots=True, frozen=True)
class ActionCompleted:
    unit_name: str
    verb: Verb
    error: str | None = None


@dataclass(slots=True, frozen=True)
class UnitFileResolved:
    unit_name: str
    path: str | None
    error: str | None = None
    edit: bool = False


Event = Union[
    KeyPressed,
    RefreshTick,
    SpinnerTick,
    Resized,
    RefreshCompleted,
    LogLinesReceived,
    LogStreamFailed,
    ActionCompleted,
    UnitFileResolved,
]


# -- effects ----------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RequestRefresh:
    seq: int


@dataclass(slots=True, frozen=True)
class ScheduleRefresh:
    delay: float


@dataclass(slots=True, frozen=True)
class RunControl:
    unit_name: str
    verb: Verb


@dataclass(slots=True, frozen=True)
class FollowLogs:
    unit_name: str
    generation: int
    after_cursor: str | None = None
    delay: float = 0.0


@dataclass(slots=True, frozen=True)
class StopFollowing:
    pass


@dataclass(slots=True, frozen=True)
class ResolveUnitFile:
    unit_name: str
    edit: bool = False


@dataclass(slots=True, frozen=True)
class OpenEditor:
    path: str


@dataclass(slots=True, frozen=True)
class Exit:
    abandoned: tuple[str, ...] = ()


Effect = Union[
    RequestRefresh,
    ScheduleRefresh,
    RunControl,
    FollowLogs,
    StopFollowing,
    ResolveUnitFile,
    OpenEditor,
    Exit,
]
