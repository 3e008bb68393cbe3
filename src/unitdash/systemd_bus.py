from typing import Any, Optional

from dbus_next import BusType, Variant
from dbus_next.aio import MessageBus
from dbus_next.errors import AuthError, DBusError, InvalidMessageError

from .errors import ControlFailed, ManagerUnavailable, PermissionDenied, UnitNotFound, UnitdashError


SYSTEMD_DEST = "org.freedesktop.systemd1"
SYSTEMD_PATH = "/org/freedesktop/systemd1"
IFACE_MANAGER = "org.freedesktop.systemd1.Manager"
IFACE_PROPERTIES = "org.freedesktop.DBus.Properties"
IFACE_UNIT = "org.freedesktop.systemd1.Unit"

_DENIED = {
    "org.freedesktop.DBus.Error.AccessDenied",
    "org.freedesktop.DBus.Error.InteractiveAuthorizationRequired",
    "org.freedesktop.DBus.Error.AuthFailed",
}
_NOT_FOUND = {
    "org.freedesktop.systemd1.NoSuchUnit",
    "org.freedesktop.systemd1.LoadFailed",
    "org.freedesktop.DBus.Error.FileNotFound",
}
_UNAVAILABLE = {
    "org.freedesktop.DBus.Error.ServiceUnknown",
    "org.freedesktop.DBus.Error.NameHasNoOwner",
    "org.freedesktop.DBus.Error.NoReply",
    "org.freedesktop.DBus.Error.Disconnected",
    "org.freedesktop.DBus.Error.NoServer",
    "org.freedesktop.DBus.Error.Timeout",
    "org.freedesktop.DBus.Error.TimedOut",
}


def translate_error(exc: BaseException) -> UnitdashError:
    """Map a dbus-next or socket failure onto the unitdash error taxonomy."""
    if isinstance(exc, UnitdashError):
        return exc
    if isinstance(exc, DBusError):
        name = exc.type or ""
        text = exc.text or name
        if name in _DENIED:
            return PermissionDenied(text)
        if name in _NOT_FOUND:
            return UnitNotFound(text)
        if name in _UNAVAILABLE:
            return ManagerUnavailable(text)
        return ControlFailed(f"{name}: {text}" if text != name else name)
    if isinstance(exc, (AuthError, OSError, EOFError, InvalidMessageError)):
        return ManagerUnavailable(str(exc) or type(exc).__name__)
    return ControlFailed(str(exc) or type(exc).__name__)


async def connect_bus(user: bool = False) -> MessageBus:
    bus_type = BusType.SESSION if user else BusType.SYSTEM
    try:
        return await MessageBus(bus_type=bus_type).connect()
    except Exception as e:
        raise translate_error(e) from e


async def get_manager(bus: MessageBus):
    intro = await bus.introspect(SYSTEMD_DEST, SYSTEMD_PATH)
    obj = bus.get_proxy_object(SYSTEMD_DEST, SYSTEMD_PATH, intro)
    return obj.get_interface(IFACE_MANAGER)


async def get_unit_path(manager, unit_name: str) -> Optional[str]:
    try:
        return await manager.call_load_unit(unit_name)
    except DBusError:
        return None


async def list_units(manager, patterns: Optional[list[str]] = None) -> list[list[Any]]:
    """Raw ListUnitsByPatterns rows.

    Each row is: name, description, load_state, active_state, sub_state,
    following, unit_path, job_id, job_type, job_path.
    """
    return await manager.call_list_units_by_patterns([], list(patterns or ["*.service"]))


async def get_unit_property(bus: MessageBus, unit_path: str, interface: str, name: str) -> Any:
    intro = await bus.introspect(SYSTEMD_DEST, unit_path)
    obj = bus.get_proxy_object(SYSTEMD_DEST, unit_path, intro)
    props = obj.get_interface(IFACE_PROPERTIES)
    value = await props.call_get(interface, name)
    # dbus-next Variant from call_get
    if isinstance(value, Variant):
        return value.value
    return value


async def get_unit_file_path(bus: MessageBus, manager, unit_name: str) -> str:
    path = await get_unit_path(manager, unit_name)
    if not path:
        raise UnitNotFound(f"Unit not found: {unit_name}")
    fragment = await get_unit_property(bus, path, IFACE_UNIT, "FragmentPath")
    if not fragment:
        raise UnitNotFound(f"{unit_name} has no unit file")
    return str(fragment)


async def start_unit(manager, unit_name: str, mode: str = "replace"):
    return await manager.call_start_unit(unit_name, mode)


async def stop_unit(manager, unit_name: str, mode: str = "replace"):
    return await manager.call_stop_unit(unit_name, mode)


async def restart_unit(manager, unit_name: str, mode: str = "replace"):
    return await manager.call_restart_unit(unit_name, mode)


async def reload_unit(manager, unit_name: str, mode: str = "replace"):
    return await manager.call_reload_unit(unit_name, mode)


async def enable_unit(manager, unit_name: str):
    # EnableUnitFiles(files, runtime, force) -> (carries_install_info, changes)
    result = await manager.call_enable_unit_files([unit_name], False, True)
    await manager.call_reload()
    return result


async def disable_unit(manager, unit_name: str):
    result = await manager.call_disable_unit_files([unit_name], False)
    await manager.call_reload()
    return result
