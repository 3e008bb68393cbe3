import asyncio

import pytest

from unitdash.config import Settings
from unitdash.dash.models import ActiveState, LogLine, Unit
from unitdash.errors import UnitNotFound


def make_unit(name, state="active", sub="running", description=""):
    return Unit(name=name, active_state=ActiveState(state), sub_state=sub, description=description)


def make_lines(count, prefix="line", start=0):
    return [LogLine(raw_text=f"{prefix} {i}", cursor=f"c{i}") for i in range(start, start + count)]


async def wait_for(predicate, timeout=3.0):
    """Poll ``predicate`` until it holds, yielding to the loop in between."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class FakeServiceManager:
    """In-memory ServiceManager.

    ``gates`` holds one optional asyncio.Event per upcoming list_units call;
    a call with a gate waits for it. ``control_gate`` blocks every control
    call the same way.
    """

    def __init__(self, units=(), files=None):
        self.units = list(units)
        self.files = dict(files or {})
        self.error = None
        self.control_errors = {}
        self.gates = []
        self.control_gate = None
        self.list_calls = 0
        self.cancelled = 0
        self.calls = []
        self.closed = False

    async def list_units(self):
        self.list_calls += 1
        gate = self.gates.pop(0) if self.gates else None
        try:
            if gate is not None:
                await gate.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.error is not None:
            raise self.error
        return list(self.units)

    async def control(self, unit_name, verb):
        self.calls.append((unit_name, verb))
        if self.control_gate is not None:
            await self.control_gate.wait()
        error = self.control_errors.get(unit_name)
        if error is not None:
            raise error

    async def unit_file_path(self, unit_name):
        if unit_name in self.files:
            return self.files[unit_name]
        raise UnitNotFound(f"{unit_name} has no unit file")

    def close(self):
        self.closed = True


class FakeLogSource:
    """LogSource whose streams are fed by the test through ``push``."""

    def __init__(self):
        self.calls = []
        self.streams = []
        self.closed = []

    async def follow(self, unit_name, after_cursor=None):
        self.calls.append((unit_name, after_cursor))
        queue = asyncio.Queue()
        self.streams.append((unit_name, queue))
        try:
            while True:
                item = await queue.get()
                if item is None:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed.append(unit_name)

    def push(self, unit_name, item):
        """Feed the most recent stream opened for ``unit_name``."""
        for name, queue in reversed(self.streams):
            if name == unit_name:
                queue.put_nowait(item)
                return
        raise AssertionError(f"no stream for {unit_name}")

    async def tail_lines(self, unit_name, lines):
        return [LogLine(raw_text=f"{unit_name} says hi")][:lines]


@pytest.fixture
def settings(tmp_path):
    return Settings(log_file=tmp_path / "unitdash.log")


@pytest.fixture
def units():
    return [
        make_unit("nginx", description="A high performance web server"),
        make_unit("redis", state="failed", sub="dead", description="Advanced key-value store"),
        make_unit("ngrok", state="inactive", sub="dead"),
    ]
