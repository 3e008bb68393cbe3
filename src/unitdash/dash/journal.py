from __future__ import annotations

import asyncio
import json
import logging
from asyncio.subprocess import PIPE
from contextlib import suppress
from datetime import datetime, timezone
from typing import AsyncIterator, Protocol

from ..errors import LogStreamInterrupted
from .models import LogLine


logger = logging.getLogger(__name__)


class LogSource(Protocol):
    def follow(self, unit_name: str, after_cursor: str | None = None) -> AsyncIterator[LogLine]: ...


def _message(raw) -> str:
    # journald exports non-UTF-8 or binary messages as a list of byte values
    if isinstance(raw, list):
        try:
            return bytes(raw).decode(errors="replace")
        except (TypeError, ValueError):
            return ""
    if raw is None:
        return ""
    return str(raw)


def parse_entry(raw: bytes | str) -> LogLine | None:
    """Turn one ``journalctl --output=json`` line into a LogLine (None if it is not an entry)."""
    if isinstance(raw, bytes):
        raw = raw.decode(errors="replace")
    raw = raw.strip()
    if not raw:
        return None
    try:
        entry = json.loads(raw)
    except json.JSONDecodeError:
        # journalctl prints a few plain-text notices even in json mode
        return LogLine(raw_text=raw)
    if not isinstance(entry, dict):
        return None
    ts = None
    usec = entry.get("__REALTIME_TIMESTAMP")
    if usec:
        try:
            ts = datetime.fromtimestamp(int(usec) / 1_000_000, tz=timezone.utc).astimezone()
        except (TypeError, ValueError, OverflowError, OSError):
            ts = None
    text = _message(entry.get("MESSAGE")).rstrip("\n")
    ident = entry.get("SYSLOG_IDENTIFIER") or entry.get("_COMM")
    pid = entry.get("_PID") or entry.get("SYSLOG_PID")
    if ident:
        prefix = f"{ident}[{pid}]" if pid else str(ident)
        text = f"{prefix}: {text}"
    return LogLine(raw_text=text, timestamp=ts, cursor=entry.get("__CURSOR"))


class JournalLogSource:
    """LogSource that streams ``journalctl --follow`` output."""

    def __init__(self, user: bool = False, tail: int = 500, binary: str = "journalctl") -> None:
        self.user = user
        self.tail = tail
        self.binary = binary

    def argv(self, unit_name: str, after_cursor: str | None = None, follow: bool = True, lines: int | None = None) -> list[str]:
        argv = [self.binary]
        if self.user:
            argv.append("--user")
        argv += ["--quiet", "--output=json", "-u", unit_name]
        if after_cursor:
            argv += ["--after-cursor", after_cursor]
        else:
            argv.append(f"--lines={self.tail if lines is None else lines}")
        if follow:
            argv.append("--follow")
        return argv

    async def follow(self, unit_name: str, after_cursor: str | None = None) -> AsyncIterator[LogLine]:
        argv = self.argv(unit_name, after_cursor)
        logger.info("following %s: %s", unit_name, " ".join(argv))
        try:
            proc = await asyncio.create_subprocess_exec(*argv, stdout=PIPE, stderr=PIPE)
        except OSError as e:
            raise LogStreamInterrupted(f"cannot run {self.binary}: {e}") from e
        try:
            assert proc.stdout is not None
            while True:
                b = await proc.stdout.readline()
                if not b:
                    break
                line = parse_entry(b)
                if line is not None:
                    yield line
            rc = await proc.wait()
            err = b""
            if proc.stderr is not None:
                err = await proc.stderr.read()
            detail = err.decode(errors="ignore").strip().splitlines()
            raise LogStreamInterrupted(
                f"{self.binary} exited with status {rc}" + (f": {detail[-1]}" if detail else "")
            )
        finally:
            if proc.returncode is None:
                with suppress(ProcessLookupError):
                    proc.terminate()
                with suppress(Exception):
                    await asyncio.wait_for(proc.wait(), timeout=2)

    async def tail_lines(self, unit_name: str, lines: int) -> list[LogLine]:
        argv = self.argv(unit_name, follow=False, lines=lines)
        try:
            proc = await asyncio.create_subprocess_exec(*argv, stdout=PIPE, stderr=PIPE)
        except OSError as e:
            raise LogStreamInterrupted(f"cannot run {self.binary}: {e}") from e
        out, err = await proc.communicate()
        if proc.returncode != 0:
            raise LogStreamInterrupted(err.decode(errors="ignore").strip() or f"{self.binary} failed")
        return [ln for ln in map(parse_entry, out.splitlines()) if ln is not None]
