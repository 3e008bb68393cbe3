"""Event pump: background tasks, cancellation and repaint batching."""

import asyncio

import pytest

from unitdash.dash.core import AppCore
from unitdash.dash.events import KeyPressed, LogLinesReceived
from unitdash.dash.keymap import KeyPress
from unitdash.dash.loop import EventPump
from unitdash.dash.models import ActionState, ConfirmModal, Verb
from unitdash.errors import LogStreamInterrupted, PermissionDenied

from conftest import FakeLogSource, FakeServiceManager, make_lines, make_unit, wait_for


def press(pump, name, char=None):
    if char is None and len(name) == 1:
        char = name
    pump.post(KeyPressed(KeyPress(name, char)))


@pytest.fixture
def source():
    return FakeLogSource()


def make_pump(settings, units, manager, source, **kw):
    core = AppCore(settings)
    core.load(units)
    return EventPump(core, manager, source, **kw)


@pytest.mark.asyncio
async def test_initial_paint_and_quit(settings, units, source):
    painted = []
    pump = make_pump(settings, units, FakeServiceManager(units), source, paint=painted.append)
    task = asyncio.create_task(pump.run())
    await wait_for(lambda: painted)
    press(pump, "q")
    await asyncio.wait_for(task, 2)
    assert painted[0] is pump.core
    assert pump.abandoned == ()


@pytest.mark.asyncio
async def test_switching_units_cancels_previous_follow(settings, units, source):
    pump = make_pump(settings, units, FakeServiceManager(units), source)
    task = asyncio.create_task(pump.run())
    await wait_for(lambda: source.calls == [("nginx", None)])
    source.push("nginx", make_lines(1)[0])
    await wait_for(lambda: pump.core.logs.length("nginx") == 1)

    press(pump, "j")
    await wait_for(lambda: len(source.calls) == 2)
    assert source.calls[1] == ("redis", None)
    assert "nginx" in source.closed

    source.push("redis", make_lines(1, prefix="redis")[0])
    await wait_for(lambda: pump.core.logs.length("redis") == 1)
    assert pump.core.logs.length("nginx") == 1

    press(pump, "q")
    await asyncio.wait_for(task, 2)
    assert "redis" in source.closed


@pytest.mark.asyncio
async def test_newer_refresh_cancels_outstanding_one(settings, source):
    manager = FakeServiceManager([make_unit("a"), make_unit("b")])
    manager.gates = [asyncio.Event()]
    core = AppCore(settings)
    pump = EventPump(core, manager, source)
    task = asyncio.create_task(pump.run())
    await wait_for(lambda: manager.list_calls == 1)

    press(pump, "ctrl+r")
    await wait_for(lambda: len(core.store) == 2)
    assert manager.cancelled == 1
    assert core.store.selected().name == "a"
    await wait_for(lambda: source.calls == [("a", None)])

    press(pump, "q")
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_interrupted_stream_resubscribes_after_cursor(settings, units, source):
    pump = make_pump(settings, units, FakeServiceManager(units), source)
    task = asyncio.create_task(pump.run())
    await wait_for(lambda: source.calls)
    for line in make_lines(2):
        source.push("nginx", line)
    await wait_for(lambda: pump.core.logs.length("nginx") == 2)

    source.push("nginx", LogStreamInterrupted("journalctl exited with status 1"))
    # first retry waits one second
    await wait_for(lambda: len(source.calls) == 2, timeout=5)
    assert source.calls[1] == ("nginx", "c1")

    press(pump, "q")
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_control_completion_triggers_refresh(settings, units, source):
    manager = FakeServiceManager(units)
    pump = make_pump(settings, units, manager, source)
    task = asyncio.create_task(pump.run())
    await wait_for(lambda: source.calls)

    press(pump, "s")
    await wait_for(lambda: manager.calls == [("nginx", Verb.START)])
    await wait_for(lambda: manager.list_calls >= 1)
    assert pump.core.tracker.get("nginx").state is ActionState.SUCCEEDED

    press(pump, "q")
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_control_failure_is_recorded(settings, units, source):
    manager = FakeServiceManager(units)
    manager.control_errors["nginx"] = PermissionDenied("Access denied")
    pump = make_pump(settings, units, manager, source)
    task = asyncio.create_task(pump.run())
    await wait_for(lambda: source.calls)

    press(pump, "s")
    await wait_for(lambda: pump.core.tracker.get("nginx") is not None and pump.core.tracker.get("nginx").failed)
    assert "sudo" in pump.core.tracker.get("nginx").message

    press(pump, "q")
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_quit_abandons_in_flight_action(settings, units, source):
    manager = FakeServiceManager(units)
    manager.control_gate = asyncio.Event()
    pump = make_pump(settings, units, manager, source)
    task = asyncio.create_task(pump.run())
    await wait_for(lambda: source.calls)

    press(pump, "s")
    await wait_for(lambda: manager.calls)
    press(pump, "q")
    await wait_for(lambda: pump.core.mode == ConfirmModal())
    press(pump, "y")
    await asyncio.wait_for(task, 2)
    assert pump.abandoned == ("nginx",)
    assert not pump._control_tasks


@pytest.mark.asyncio
async def test_open_unit_file_calls_editor(settings, units, source):
    opened = []
    manager = FakeServiceManager(units, files={"nginx": "/etc/systemd/system/nginx.service"})
    pump = make_pump(settings, units, manager, source, editor=opened.append)
    task = asyncio.create_task(pump.run())
    await wait_for(lambda: source.calls)

    press(pump, "o")
    await wait_for(lambda: opened)
    assert opened == ["/etc/systemd/system/nginx.service"]

    press(pump, "q")
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_stale_generation_lines_never_reach_buffer(settings, units, source):
    pump = make_pump(settings, units, FakeServiceManager(units), source)
    task = asyncio.create_task(pump.run())
    await wait_for(lambda: source.calls)
    press(pump, "j")
    await wait_for(lambda: len(source.calls) == 2)
    pump.post(LogLinesReceived("nginx", 1, tuple(make_lines(3))))
    press(pump, "q")
    await asyncio.wait_for(task, 2)
    assert pump.core.logs.length("nginx") == 0
