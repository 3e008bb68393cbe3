import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from . import __version__
from .config import Settings
from .dash.discovery import BusServiceManager, ServiceManager
from .dash.journal import JournalLogSource
from .dash.keymap import Keymap
from .dash.models import LogLine, Verb
from .errors import ConfigError, UnitNotFound, UnitdashError
from .logs import setup_logging


T = TypeVar("T")

app = typer.Typer(
    name="unitdash",
    add_completion=False,
    no_args_is_help=True,
    help=(
        "Terminal dashboard for systemd units.\n\n"
        "Usage:\n"
        "  unitdash                         Open the dashboard\n"
        "  unitdash ps                      List units (tab-separated)\n"
        "  unitdash status <unit>           Show unit state and unit file\n"
        "  unitdash start|stop|restart|reload|enable|disable <unit>\n"
        "  unitdash logs <unit> [-n N|-f]   Show journal lines\n\n"
        "Unit names without a suffix get .service appended. Add --user for the user manager."
    ),
    context_settings={"help_option_names": ["-h", "--help"]},
)

_PAST = {
    Verb.START: "started",
    Verb.STOP: "stopped",
    Verb.RESTART: "restarted",
    Verb.RELOAD: "reloaded",
    Verb.ENABLE: "enabled",
    Verb.DISABLE: "disabled",
}


def make_manager(settings: Settings) -> ServiceManager:
    return BusServiceManager(user=settings.user, pattern=settings.pattern)


def make_log_source(settings: Settings) -> JournalLogSource:
    return JournalLogSource(user=settings.user, tail=settings.log_tail)


def unit_name(name: str) -> str:
    name = name.strip()
    return name if "." in name else f"{name}.service"


def format_line(line: LogLine) -> str:
    if line.timestamp is None:
        return line.raw_text
    return f"{line.timestamp:%Y-%m-%d %H:%M:%S} {line.raw_text}"


def _settings(ctx: typer.Context) -> Settings:
    if isinstance(ctx.obj, Settings):
        return ctx.obj
    try:
        return Settings.from_env()
    except ConfigError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2)


def _run(settings: Settings, factory: Callable[[], Awaitable[T]]) -> T:
    setup_logging(settings)
    try:
        return asyncio.run(factory())
    except UnitdashError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)


def _close(manager: ServiceManager) -> None:
    close = getattr(manager, "close", None)
    if callable(close):
        close()


@app.callback()
def _root(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        is_eager=True,
    ),
    user: Optional[bool] = typer.Option(
        None,
        "--user/--system",
        help="Talk to the per-user service manager instead of the system one",
        show_default=False,
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Log at INFO level"),
):
    if version:
        typer.echo(__version__)
        raise typer.Exit()
    try:
        settings = Settings.from_env()
        scope = None if user is None else ("user" if user else "system")
        ctx.obj = settings.merged(scope=scope, verbose=verbose or None)
    except ConfigError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2)


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def version():
    """Show CLI version (semver)."""
    typer.echo(__version__)


@app.command()
def dash(
    ctx: typer.Context,
    refresh: Optional[float] = typer.Option(None, "--refresh", min=0.1, help="Seconds between unit refreshes"),
    capacity: Optional[int] = typer.Option(None, "--capacity", min=1, help="Log lines kept per unit"),
    tail: Optional[int] = typer.Option(None, "--tail", min=1, help="History lines fetched when following a unit"),
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Unit name glob(s), comma separated"),
    keys: Optional[str] = typer.Option(None, "--keys", help="Key overrides: name=key[,key];..."),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Where diagnostics are written"),
    debug: bool = typer.Option(False, "--debug", help="Log at DEBUG level"),
):
    """Open the dashboard (Textual UI) over the manager's units."""
    settings = _settings(ctx).merged(
        refresh_interval=refresh,
        log_capacity=capacity,
        log_tail=tail,
        pattern=pattern,
        keys=keys,
        log_file=log_file,
        debug=debug or None,
    )
    try:
        Keymap().with_overrides(settings.keys)
    except ConfigError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2)
    setup_logging(settings)

    # Lazy import to avoid importing Textual for the plain commands
    from .dash.app import run_dash

    try:
        abandoned = run_dash(settings)
    except UnitdashError as e:
        typer.echo(f"Cannot open dashboard: {e}", err=True)
        raise typer.Exit(code=1)
    if abandoned:
        typer.echo(f"left in flight: {', '.join(abandoned)}", err=True)


@app.command("ps")
def ps(ctx: typer.Context):
    """List units. Prints: name\tactive\tsub\tdescription"""
    settings = _settings(ctx)

    async def _ps():
        manager = make_manager(settings)
        try:
            return await manager.list_units()
        finally:
            _close(manager)

    for u in _run(settings, _ps):
        typer.echo(f"{u.name}\t{u.active_state.value}\t{u.sub_state}\t{u.description}")


@app.command()
def status(ctx: typer.Context, name: str):
    """Show state, description and unit file of one unit."""
    unit = unit_name(name)
    settings = _settings(ctx).merged(pattern=unit)

    async def _status():
        manager = make_manager(settings)
        try:
            found = [u for u in await manager.list_units() if u.name == unit]
            if not found:
                raise UnitNotFound(f"Unit not found: {unit}")
            try:
                path = await manager.unit_file_path(unit)
            except UnitNotFound:
                path = None
            return found[0], path
        finally:
            _close(manager)

    u, path = _run(settings, _status)
    typer.echo(f"name: {u.name}")
    typer.echo(f"description: {u.description or '-'}")
    typer.echo(f"loaded: {u.load_state}")
    typer.echo(f"state: {u.active_state.value} ({u.sub_state})")
    typer.echo(f"unit file: {path or '-'}")


def _control(ctx: typer.Context, name: str, verb: Verb) -> None:
    unit = unit_name(name)
    settings = _settings(ctx)

    async def _do():
        manager = make_manager(settings)
        try:
            await manager.control(unit, verb)
        finally:
            _close(manager)

    _run(settings, _do)
    typer.echo(f"{_PAST[verb]} {unit}")


@app.command()
def start(ctx: typer.Context, name: str):
    """Start a unit."""
    _control(ctx, name, Verb.START)


@app.command()
def stop(ctx: typer.Context, name: str):
    """Stop a unit."""
    _control(ctx, name, Verb.STOP)


@app.command()
def restart(ctx: typer.Context, name: str):
    """Restart a unit (starts if inactive)."""
    _control(ctx, name, Verb.RESTART)


@app.command()
def reload(ctx: typer.Context, name: str):
    """Ask a unit to reload its configuration."""
    _control(ctx, name, Verb.RELOAD)


@app.command()
def enable(ctx: typer.Context, name: str):
    """Enable a unit file."""
    _control(ctx, name, Verb.ENABLE)


@app.command()
def disable(ctx: typer.Context, name: str):
    """Disable a unit file."""
    _control(ctx, name, Verb.DISABLE)


@app.command()
def logs(
    ctx: typer.Context,
    name: str,
    n: int = typer.Option(100, "-n", min=1, help="Number of lines"),
    follow: bool = typer.Option(False, "-f", "--follow", help="Keep printing new lines"),
):
    """Show journal lines for a unit. Use -f to follow."""
    unit = unit_name(name)
    settings = _settings(ctx).merged(log_tail=n)
    source = make_log_source(settings)

    if not follow:
        for line in _run(settings, lambda: source.tail_lines(unit, n)):
            typer.echo(format_line(line))
        return

    async def _follow():
        async for line in source.follow(unit):
            typer.echo(format_line(line))

    try:
        _run(settings, _follow)
    except KeyboardInterrupt:
        raise typer.Exit()
