"""Application core: whole interactions replayed without any I/O."""

import pytest

from unitdash.config import Settings
from unitdash.dash.core import MAX_BACKOFF, AppCore
from unitdash.dash.events import (
    ActionCompleted,
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
from unitdash.dash.keymap import KeyPress
from unitdash.dash.models import ActionState, ActiveState, ConfirmModal, HelpModal, Normal, Pane, Searching, Verb
from unitdash.errors import ConfigError, ManagerUnavailable

from conftest import make_lines, make_unit


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def key(core, name, char=None):
    if char is None and len(name) == 1:
        char = name
    return core.handle(KeyPressed(KeyPress(name, char)))


def follows(effects):
    return [e for e in effects if isinstance(e, FollowLogs)]


@pytest.fixture
def core(settings, units):
    core = AppCore(settings)
    core.load(units)
    return core


def test_start_follows_selected_unit(core):
    assert core.start() == [FollowLogs("nginx", 1, None), ResolveUnitFile("nginx")]
    assert core.logs.active_unit == "nginx"


def test_start_without_units_requests_refresh(settings):
    core = AppCore(settings)
    assert core.start() == [RequestRefresh(1)]


def test_redis_restart_scenario(core):
    core.start()
    key(core, "j")
    assert core.store.selected().name == "redis"

    # restart asks for confirmation by default
    assert key(core, "r") == []
    assert core.mode == ConfirmModal(Verb.RESTART, "redis")
    assert key(core, "y") == [RunControl("redis", Verb.RESTART)]
    assert core.mode == Normal()
    assert core.tracker.get("redis").state is ActionState.PENDING

    # a second command for the same unit is rejected while pending
    assert key(core, "s") == []
    assert "already pending" in core.message
    assert core.tracker.get("redis").verb is Verb.RESTART

    effects = core.handle(ActionCompleted("redis", Verb.RESTART))
    assert effects == [RequestRefresh(1), ScheduleRefresh(1.0), ScheduleRefresh(2.0), ScheduleRefresh(3.0)]
    assert core.tracker.get("redis").state is ActionState.SUCCEEDED

    fresh = [make_unit("nginx"), make_unit("redis"), make_unit("ngrok", state="inactive", sub="dead")]
    core.handle(RefreshCompleted(1, units=tuple(fresh)))
    redis = core.store.get("redis")
    assert redis.active_state is ActiveState.ACTIVE
    assert redis.sub_state == "running"


def test_confirm_can_be_declined(core):
    core.start()
    key(core, "x")
    assert core.mode == ConfirmModal(Verb.STOP, "nginx")
    assert key(core, "n") == []
    assert core.mode == Normal()
    assert core.tracker.get("nginx") is None


def test_verbs_outside_confirm_list_run_immediately(settings, units):
    core = AppCore(Settings(log_file=settings.log_file, confirm=()))
    core.load(units)
    core.start()
    assert key(core, "x") == [RunControl("nginx", Verb.STOP)]


def test_unknown_confirm_verb_is_a_config_error(settings):
    with pytest.raises(ConfigError):
        AppCore(Settings(log_file=settings.log_file, confirm=("explode",)))


def test_failed_action_stays_until_dismissed(core):
    core.start()
    key(core, "s")
    core.handle(ActionCompleted("nginx", Verb.START, error="Job failed"))
    assert core.tracker.get("nginx").failed
    key(core, "c")
    assert core.tracker.get("nginx") is None


def test_search_ng_scenario(core):
    core.start()
    key(core, "slash", "/")
    assert core.mode == Searching(Pane.UNITS)
    key(core, "n")
    key(core, "g")
    assert [u.name for u in core.store.view] == ["nginx", "ngrok"]
    assert core.store.selected().name == "nginx"
    key(core, "enter")
    assert core.mode == Normal()
    assert core.store.selection.active_filter == "ng"


def test_q_while_searching_is_text(core):
    core.start()
    key(core, "slash", "/")
    effects = key(core, "q")
    assert not any(isinstance(e, Exit) for e in effects)
    assert core.running
    assert core.store.selection.active_filter == "q"
    key(core, "backspace")
    assert core.store.selection.active_filter == ""


def test_escape_clears_filter_and_restores_selection(core):
    core.start()
    key(core, "end")
    assert core.store.selected().name == "ngrok"
    key(core, "slash", "/")
    key(core, "r")
    key(core, "e")
    assert core.store.selected().name == "redis"
    effects = key(core, "escape")
    assert core.mode == Normal()
    assert core.store.selected().name == "ngrok"
    assert follows(effects)[0].unit_name == "ngrok"


def test_log_search_filters_log_pane(core):
    core.start()
    core.handle(LogLinesReceived("nginx", core.generation, tuple(make_lines(30))))
    key(core, "tab")
    assert core.pane is Pane.LOGS
    key(core, "slash", "/")
    assert core.mode == Searching(Pane.LOGS)
    for ch in "line 2":
        key(core, "space" if ch == " " else ch, ch)
    assert [ln.raw_text for ln in core.logs.filtered_view()] == ["line 2"] + [f"line {i}" for i in range(20, 30)]
    # unit list is untouched
    assert core.store.selection.active_filter == ""


def test_switching_units_switches_log_buffer(core):
    assert core.start()[0] == FollowLogs("nginx", 1, None)
    core.handle(LogLinesReceived("nginx", 1, tuple(make_lines(50))))
    assert core.logs.length("nginx") == 50

    effects = key(core, "j")
    assert follows(effects) == [FollowLogs("redis", 2, None)]
    assert core.logs.active_unit == "redis"
    assert core.logs.filtered_view() == []

    # lines still in flight from the old subscription are dropped
    core.handle(LogLinesReceived("nginx", 1, tuple(make_lines(5, start=50))))
    assert core.logs.length("nginx") == 50
    core.handle(LogLinesReceived("redis", 2, tuple(make_lines(2, prefix="redis"))))
    assert [ln.raw_text for ln in core.logs.filtered_view()] == ["redis 0", "redis 1"]

    # going back resumes after the last line already buffered
    effects = key(core, "k")
    assert follows(effects) == [FollowLogs("nginx", 3, "c49")]


def test_navigation_in_log_pane_scrolls(core):
    core.start()
    core.handle(Resized(10, 5))
    core.handle(LogLinesReceived("nginx", 1, tuple(make_lines(30))))
    key(core, "tab")
    assert key(core, "k") == []
    assert core.logs.view.scroll_offset == 24
    assert core.store.selected().name == "nginx"
    key(core, "end")
    assert core.logs.view.scroll_offset is None


def test_quit_without_pending_actions(core):
    core.start()
    assert key(core, "q") == [Exit(())]
    assert not core.running


def test_quit_with_pending_action_asks_first(core):
    core.start()
    key(core, "s")
    assert key(core, "q") == []
    assert core.mode == ConfirmModal()
    key(core, "n")
    assert core.running and core.mode == Normal()
    key(core, "q")
    assert key(core, "y") == [Exit(("nginx",))]
    assert not core.running


def test_help_modal_isolates_keys(core):
    core.start()
    key(core, "question_mark", "?")
    assert core.mode == HelpModal()
    assert key(core, "s") == []
    assert core.tracker.get("nginx") is None
    key(core, "escape")
    assert core.mode == Normal()


def test_stale_refresh_is_dropped(core):
    core.start()
    assert key(core, "ctrl+r") == [RequestRefresh(1)]
    assert key(core, "ctrl+r") == [RequestRefresh(2)]
    core.handle(RefreshCompleted(1, units=(make_unit("old"),)))
    assert core.store.get("old") is None
    core.handle(RefreshCompleted(2, units=(make_unit("new"),)))
    assert [u.name for u in core.store.units] == ["new"]


def test_refresh_tick_skipped_while_in_flight(core):
    assert core.handle(RefreshTick()) == [RequestRefresh(1)]
    assert core.handle(RefreshTick()) == []
    core.handle(RefreshCompleted(1, units=tuple(core.store.units)))
    assert core.handle(RefreshTick()) == [RequestRefresh(2)]


def test_refresh_failure_sets_banner_and_keeps_units(core):
    core.start()
    core.handle(RefreshTick())
    core.handle(RefreshCompleted(1, error=ManagerUnavailable("bus gone")))
    assert core.banner == "Service manager unavailable: bus gone"
    assert len(core.store) == 3
    core.handle(RefreshTick())
    core.handle(RefreshCompleted(2, units=tuple(core.store.units)))
    assert core.banner is None


def test_refresh_removing_selected_unit_moves_follow(core):
    core.start()
    core.handle(RefreshTick())
    effects = core.handle(RefreshCompleted(1, units=(make_unit("redis"),)))
    assert follows(effects) == [FollowLogs("redis", 2, None)]


def test_empty_refresh_stops_following(core):
    core.start()
    core.handle(RefreshTick())
    assert core.handle(RefreshCompleted(1, units=())) == [StopFollowing()]


def test_log_stream_backoff(core):
    core.start()
    core.handle(LogLinesReceived("nginx", 1, tuple(make_lines(3))))
    delays = []
    gen = core.generation
    for _ in range(7):
        effects = core.handle(LogStreamFailed("nginx", gen, "journalctl exited"))
        (follow,) = effects
        assert follow.after_cursor == "c2"
        delays.append(follow.delay)
        gen = follow.generation
    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, MAX_BACKOFF, MAX_BACKOFF]
    assert "journalctl exited" in core.log_warning

    # a stale failure is ignored, fresh lines clear the warning and the backoff
    assert core.handle(LogStreamFailed("nginx", gen - 1, "old")) == []
    core.handle(LogLinesReceived("nginx", gen, tuple(make_lines(1, start=3))))
    assert core.log_warning is None
    (follow,) = core.handle(LogStreamFailed("nginx", gen, "again"))
    assert follow.delay == 1.0


def test_backoff_stays_capped_after_many_failures(core):
    core.start()
    gen = core.generation
    for _ in range(1100):
        (follow,) = core.handle(LogStreamFailed("nginx", gen, "journalctl exited"))
        gen = follow.generation
    assert follow.delay == MAX_BACKOFF
    assert core.running


def test_warning_only_after_repeated_failures(core):
    core.start()
    core.handle(LogStreamFailed("nginx", 1, "x"))
    core.handle(LogStreamFailed("nginx", 2, "x"))
    assert core.log_warning is None
    core.handle(LogStreamFailed("nginx", 3, "x"))
    assert core.log_warning is not None


def test_open_unit_file_in_editor(core):
    core.start()
    assert key(core, "o") == [ResolveUnitFile("nginx", edit=True)]
    effects = core.handle(UnitFileResolved("nginx", "/lib/systemd/system/nginx.service", edit=True))
    assert effects == [OpenEditor("/lib/systemd/system/nginx.service")]
    assert core.unit_files["nginx"] == "/lib/systemd/system/nginx.service"


def test_missing_unit_file_shows_message(core):
    core.start()
    assert core.handle(UnitFileResolved("nginx", None, error="no unit file", edit=True)) == []
    assert "No unit file for nginx" in core.message
    # any key clears it
    key(core, "z")
    assert core.message is None


def test_spinner_advances_only_while_pending(settings, units):
    clock = Clock()
    core = AppCore(settings, clock=clock)
    core.load(units)
    core.start()
    core.scheduler.take()
    core.handle(SpinnerTick())
    assert core.scheduler.frame == 0
    key(core, "s")
    core.handle(SpinnerTick())
    assert core.scheduler.frame == 1
    core.handle(ActionCompleted("nginx", Verb.START))
    clock.now += 5
    core.scheduler.take()
    core.handle(SpinnerTick())
    assert core.tracker.get("nginx") is None
    assert core.scheduler.dirty


def test_unchanged_refresh_does_not_repaint(core):
    core.start()
    core.handle(RefreshTick())
    core.scheduler.take()
    core.handle(RefreshCompleted(1, units=tuple(core.store.units)))
    assert not core.scheduler.dirty
