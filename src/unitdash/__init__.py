"""unitdash: terminal dashboard for systemd units."""

from importlib.metadata import PackageNotFoundError, version as _pkg_version

__all__ = ["__version__"]

try:
    __version__ = _pkg_version("unitdash")
except PackageNotFoundError:
    # source checkout without installed metadata
    __version__ = "0.0.0+dev"
