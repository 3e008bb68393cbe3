from __future__ import annotations

import asyncio
import logging
from asyncio import Task
from contextlib import suppress
from typing import Awaitable, Callable, Optional

from ..errors import LogStreamInterrupted, ManagerUnavailable, UnitdashError
from .core import AppCore
from .discovery import ServiceManager
from .events import (
    ActionCompleted,
    Effect,
    Event,
    Exit,
    FollowLogs,
    LogLinesReceived,
    LogStreamFailed,
    OpenEditor,
    RefreshCompleted,
    RefreshTick,
    RequestRefresh,
    ResolveUnitFile,
    RunControl,
    ScheduleRefresh,
    StopFollowing,
    UnitFileResolved,
)
from .journal import LogSource
from .models import Verb


logger = logging.getLogger(__name__)

Painter = Callable[[AppCore], None]
Editor = Callable[[str], Optional[Awaitable[None]]]


class EventPump:
    """Single consumer of the dashboard's inbound events.

    Keys, timers, and results of background work are all posted onto one
    queue. ``run`` applies them to the core strictly one at a time, performs
    the effects the core returns, and repaints once per drained batch when the
    render scheduler reports a change.
    """

    def __init__(
        self,
        core: AppCore,
        manager: ServiceManager,
        log_source: LogSource,
        paint: Painter | None = None,
        editor: Editor | None = None,
    ) -> None:
        self.core = core
        self.manager = manager
        self.log_source = log_source
        self._paint = paint
        self._editor = editor
        self.queue: asyncio.Queue[Event] = asyncio.Queue()
        self._refresh_task: Task | None = None
        self._follow_task: Task | None = None
        self._follow_unit: str | None = None
        self._control_tasks: dict[str, Task] = {}
        self._aux_tasks: set[Task] = set()
        self.abandoned: tuple[str, ...] = ()

    def post(self, event: Event) -> None:
        self.queue.put_nowait(event)

    async def run(self) -> None:
        try:
            await self.perform(self.core.start())
            self._maybe_paint()
            while self.core.running:
                event = await self.queue.get()
                await self.perform(self.core.handle(event))
                # coalesce whatever else is already queued into the same repaint
                while self.core.running and not self.queue.empty():
                    await self.perform(self.core.handle(self.queue.get_nowait()))
                self._maybe_paint()
        finally:
            await self.shutdown()

    def _maybe_paint(self) -> None:
        if self.core.scheduler.take() and self._paint is not None:
            self._paint(self.core)

    async def perform(self, effects: list[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, RequestRefresh):
                self._start_refresh(effect.seq)
            elif isinstance(effect, ScheduleRefresh):
                self._spawn(self._later(effect.delay, RefreshTick()))
            elif isinstance(effect, RunControl):
                self._start_control(effect.unit_name, effect.verb)
            elif isinstance(effect, FollowLogs):
                await self._start_follow(effect)
            elif isinstance(effect, StopFollowing):
                await self._stop_follow()
            elif isinstance(effect, ResolveUnitFile):
                self._spawn(self._resolve_unit_file(effect.unit_name, effect.edit))
            elif isinstance(effect, OpenEditor):
                await self._open_editor(effect.path)
            elif isinstance(effect, Exit):
                self.abandoned = effect.abandoned

    # -- refresh ------------------------------------------------------------

    def _start_refresh(self, seq: int) -> None:
        # a newer refresh supersedes whatever is still outstanding
        if self._refresh_task and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = asyncio.create_task(self._refresh(seq))

    async def _refresh(self, seq: int) -> None:
        try:
            units = await self.manager.list_units()
        except asyncio.CancelledError:
            raise
        except UnitdashError as e:
            self.post(RefreshCompleted(seq, error=e))
            return
        except Exception as e:
            logger.exception("unexpected failure listing units")
            self.post(RefreshCompleted(seq, error=ManagerUnavailable(str(e))))
            return
        self.post(RefreshCompleted(seq, units=tuple(units)))

    # -- control ------------------------------------------------------------

    def _start_control(self, unit_name: str, verb: Verb) -> None:
        task = asyncio.create_task(self._control(unit_name, verb))
        self._control_tasks[unit_name] = task
        task.add_done_callback(lambda t, name=unit_name: self._forget_control(name, t))

    def _forget_control(self, unit_name: str, task: Task) -> None:
        if self._control_tasks.get(unit_name) is task:
            del self._control_tasks[unit_name]

    async def _control(self, unit_name: str, verb: Verb) -> None:
        try:
            await self.manager.control(unit_name, verb)
        except asyncio.CancelledError:
            raise
        except UnitdashError as e:
            self.post(ActionCompleted(unit_name, verb, error=str(e)))
            return
        except Exception as e:
            logger.exception("unexpected failure during %s of %s", verb.value, unit_name)
            self.post(ActionCompleted(unit_name, verb, error=str(e) or type(e).__name__))
            return
        self.post(ActionCompleted(unit_name, verb))

    # -- log follow ---------------------------------------------------------

    async def _start_follow(self, effect: FollowLogs) -> None:
        # cancel first so two units' lines never reach the queue together
        await self._stop_follow()
        self._follow_unit = effect.unit_name
        self._follow_task = asyncio.create_task(self._follow(effect))

    async def _stop_follow(self) -> None:
        task, self._follow_task = self._follow_task, None
        if task is not None and not task.done():
            logger.debug("cancelling log follow for %s", self._follow_unit)
            task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await task
        self._follow_unit = None

    async def _follow(self, effect: FollowLogs) -> None:
        unit, gen = effect.unit_name, effect.generation
        if effect.delay > 0:
            await asyncio.sleep(effect.delay)
        stream = self.log_source.follow(unit, after_cursor=effect.after_cursor)
        try:
            async for line in stream:
                self.post(LogLinesReceived(unit, gen, (line,)))
        except asyncio.CancelledError:
            raise
        except LogStreamInterrupted as e:
            self.post(LogStreamFailed(unit, gen, str(e)))
            return
        except Exception as e:
            logger.exception("log stream for %s failed", unit)
            self.post(LogStreamFailed(unit, gen, str(e) or type(e).__name__))
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                with suppress(Exception):
                    await aclose()
        self.post(LogStreamFailed(unit, gen, "log stream ended"))

    # -- unit files and editor ---------------------------------------------

    async def _resolve_unit_file(self, unit_name: str, edit: bool) -> None:
        try:
            path = await self.manager.unit_file_path(unit_name)
        except UnitdashError as e:
            self.post(UnitFileResolved(unit_name, None, error=str(e), edit=edit))
            return
        except Exception as e:
            logger.exception("unexpected failure resolving unit file of %s", unit_name)
            self.post(UnitFileResolved(unit_name, None, error=str(e) or type(e).__name__, edit=edit))
            return
        self.post(UnitFileResolved(unit_name, path, edit=edit))

    async def _open_editor(self, path: str) -> None:
        if self._editor is None:
            logger.info("no editor hook configured, not opening %s", path)
            return
        result = self._editor(path)
        if result is not None:
            await result

    # -- helpers ------------------------------------------------------------

    async def _later(self, delay: float, event: Event) -> None:
        await asyncio.sleep(delay)
        self.post(event)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._aux_tasks.add(task)
        task.add_done_callback(self._aux_tasks.discard)

    async def shutdown(self) -> None:
        await self._stop_follow()
        tasks = [t for t in (self._refresh_task, *self._aux_tasks) if t is not None and not t.done()]
        for name, task in list(self._control_tasks.items()):
            if not task.done():
                # the manager keeps running the job; we only stop waiting for its reply
                logger.warning("abandoning in-flight action for %s", name)
                tasks.append(task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
