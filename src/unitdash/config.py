from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError


SCOPES = ("system", "user")
DEFAULT_CONFIRM = ("stop", "restart", "disable")


def default_log_file(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    base = env.get("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return Path(base) / "unitdash" / "unitdash.log"


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def _csv(raw: str) -> tuple[str, ...]:
    # de-dupe while preserving order
    seen: set[str] = set()
    items = [x.strip().lower() for x in raw.split(",") if x.strip()]
    return tuple(x for x in items if not (x in seen or seen.add(x)))


@dataclass(slots=True)
class Settings:
    scope: str = "system"
    refresh_interval: float = 5.0
    spinner_interval: float = 0.2
    log_capacity: int = 10_000
    log_tail: int = 500
    pattern: str = "*.service"
    keys: str = ""
    confirm: tuple[str, ...] = DEFAULT_CONFIRM
    log_file: Path = field(default_factory=default_log_file)
    debug: bool = False
    verbose: bool = False
    editor: str = "vi"

    def __post_init__(self) -> None:
        if self.scope not in SCOPES:
            raise ConfigError(f"scope must be one of {', '.join(SCOPES)}, got {self.scope!r}")

    @property
    def user(self) -> bool:
        return self.scope == "user"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        log_file = env.get("UNITDASH_LOG_FILE", "").strip()
        confirm = env.get("UNITDASH_CONFIRM")
        return cls(
            scope=(env.get("UNITDASH_SCOPE") or "system").strip().lower(),
            refresh_interval=_float(env, "UNITDASH_REFRESH", 5.0),
            spinner_interval=_float(env, "UNITDASH_SPINNER", 0.2),
            log_capacity=_int(env, "UNITDASH_LOG_CAPACITY", 10_000),
            log_tail=_int(env, "UNITDASH_LOG_TAIL", 500),
            pattern=(env.get("UNITDASH_PATTERN") or "*.service").strip(),
            keys=env.get("UNITDASH_KEYS", "").strip(),
            confirm=_csv(confirm) if confirm is not None else DEFAULT_CONFIRM,
            log_file=Path(log_file).expanduser() if log_file else default_log_file(env),
            debug=env.get("UNITDASH_DEBUG", "").strip().lower() in {"1", "true", "yes", "on"},
            editor=(env.get("VISUAL") or env.get("EDITOR") or "vi").strip(),
        )

    def merged(self, **overrides) -> "Settings":
        """Return a copy with every non-None override applied (CLI flags win over env)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)
