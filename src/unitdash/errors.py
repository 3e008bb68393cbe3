from __future__ import annotations


SUDO_HINT = "Try running this tool with sudo."


def one_line(message: str) -> str:
    """Collapse a multi-line error message (hint included) for a status line."""
    return " ".join(part.strip() for part in message.splitlines() if part.strip())


class UnitdashError(Exception):
    """Base class for every error unitdash raises on purpose."""


class ConfigError(UnitdashError):
    pass


class ManagerUnavailable(UnitdashError):
    """The service manager (bus or daemon) cannot be reached."""


class PermissionDenied(UnitdashError):
    def __str__(self) -> str:
        base = super().__str__() or "Permission denied"
        return f"{base}\n\n{SUDO_HINT}"


class UnitNotFound(UnitdashError):
    pass


class ControlFailed(UnitdashError):
    """The manager accepted the request but the control verb failed."""


class LogStreamInterrupted(UnitdashError):
    pass



class ActionRejected(UnitdashError):
    """A control command refused locally; nothing was sent to the manager."""

    def __init__(self, unit_name: str, reason: str = "AlreadyPending") -> None:
        detail = "an action is already pending" if reason == "AlreadyPending" else reason
        super().__init__(f"{detail} for {unit_name}")
        self.unit_name = unit_name
        self.reason = reason
