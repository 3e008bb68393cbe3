import sys
from typing import List

from .cli import app


SUBCOMMANDS = {
    "dash",
    "ps",
    "status",
    "logs",
    "start",
    "stop",
    "restart",
    "reload",
    "enable",
    "disable",
    "version",
    "--version",
    "-V",
    "-h",
    "--help",
}

# root options that may precede the implicit "dash"
ROOT_FLAGS = {"--user", "--system", "-v", "--verbose"}

UNIT_ACTIONS = {"status", "start", "stop", "restart", "reload", "enable", "disable"}


def expand(argv: List[str]) -> List[str]:
    """Rewrite shorthand invocations into regular subcommand form."""
    if not argv or set(argv) <= ROOT_FLAGS:
        # no subcommand: open the dashboard
        return argv + ["dash"]

    # Shorthand: allow "unitdash <unit> <action>" (unit-first)
    # Examples:
    #   unitdash nginx.service restart
    #   unitdash nginx follow
    #   unitdash nginx            (logs)
    first = argv[0]
    if first.startswith("-") or first in SUBCOMMANDS:
        return argv
    action = argv[1] if len(argv) > 1 else None
    rest = argv[2:]
    if action is None or action in {"logs", "log"}:
        return ["logs", first] + rest
    if action in {"follow", "f"}:
        return ["logs", first, "-f"] + rest
    if action in UNIT_ACTIONS:
        return [action, first] + rest
    # unknown action after a unit name; typer prints the usage error
    return argv


def main(argv: List[str] | None = None):
    if argv is None:
        argv = sys.argv[1:]

    # Handle version early to avoid Click group error
    if argv and argv[0] in {"--version", "-V"}:
        from . import __version__
        print(__version__)
        return

    return app(args=expand(list(argv)), prog_name="unitdash")
