"""Textual shell driven through the test pilot."""

import pytest

from unitdash.dash.app import UnitDashApp

from conftest import FakeLogSource, FakeServiceManager, make_lines, wait_for


@pytest.mark.asyncio
async def test_app_paints_units_and_follows_selection(settings, units):
    manager, source = FakeServiceManager(units), FakeLogSource()
    app = UnitDashApp(settings, units, manager=manager, log_source=source)
    async with app.run_test() as pilot:
        await wait_for(lambda: source.calls)
        await pilot.pause()
        assert app.table.row_count == 3
        assert app.table.cursor_row == 0

        source.push("nginx", make_lines(1)[0])
        await wait_for(lambda: app.core.logs.length("nginx") == 1)

        await pilot.press("j")
        await wait_for(lambda: source.calls[-1] == ("redis", None))
        await pilot.pause()
        assert app.table.cursor_row == 1

        await pilot.press("q")
        await wait_for(lambda: not app.core.running)
    assert manager.closed
