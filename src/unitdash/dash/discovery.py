from __future__ import annotations

import logging
import time
from contextlib import suppress
from typing import Protocol

from dbus_next.aio import MessageBus

from ..errors import UnitdashError
from ..systemd_bus import (
    connect_bus,
    disable_unit,
    enable_unit,
    get_manager,
    get_unit_file_path,
    list_units,
    reload_unit,
    restart_unit,
    start_unit,
    stop_unit,
    translate_error,
)
from .models import Unit, Verb


logger = logging.getLogger(__name__)


class ServiceManager(Protocol):
    async def list_units(self) -> list[Unit]: ...

    async def control(self, unit_name: str, verb: Verb) -> None: ...

    async def unit_file_path(self, unit_name: str) -> str: ...


_VERBS = {
    Verb.START: start_unit,
    Verb.STOP: stop_unit,
    Verb.RESTART: restart_unit,
    Verb.RELOAD: reload_unit,
    Verb.ENABLE: enable_unit,
    Verb.DISABLE: disable_unit,
}


class BusServiceManager:
    """ServiceManager backed by systemd's D-Bus API.

    The connection and manager proxy are created lazily and dropped after a
    connection-level failure so the next call reconnects.
    """

    def __init__(self, user: bool = False, pattern: str = "*.service") -> None:
        self.user = user
        self.patterns = [p.strip() for p in pattern.split(",") if p.strip()] or ["*.service"]
        self._bus: MessageBus | None = None
        self._manager = None

    async def _connect(self):
        if self._bus is None or not self._bus.connected:
            self._bus = await connect_bus(user=self.user)
            self._manager = None
        if self._manager is None:
            self._manager = await get_manager(self._bus)
        return self._bus, self._manager

    def _reset(self) -> None:
        if self._bus is not None:
            with suppress(Exception):
                self._bus.disconnect()
        self._bus = None
        self._manager = None

    def _fail(self, e: Exception) -> UnitdashError:
        err = translate_error(e)
        if self._bus is None or not self._bus.connected:
            self._reset()
        return err

    async def list_units(self) -> list[Unit]:
        start = time.monotonic()
        try:
            _, manager = await self._connect()
            rows = await list_units(manager, self.patterns)
        except UnitdashError:
            raise
        except Exception as e:
            raise self._fail(e) from e
        units = [Unit.from_row(row) for row in rows]
        # sort by name case-insensitive
        units.sort(key=lambda u: u.name.lower())
        logger.debug("listed %d units in %.1f ms", len(units), (time.monotonic() - start) * 1000)
        return units

    async def control(self, unit_name: str, verb: Verb) -> None:
        try:
            _, manager = await self._connect()
            await _VERBS[verb](manager, unit_name)
        except UnitdashError:
            raise
        except Exception as e:
            raise self._fail(e) from e

    async def unit_file_path(self, unit_name: str) -> str:
        try:
            bus, manager = await self._connect()
            return await get_unit_file_path(bus, manager, unit_name)
        except UnitdashError:
            raise
        except Exception as e:
            raise self._fail(e) from e

    def close(self) -> None:
        self._reset()
