"""
Fleet Dispatch - remote command dispatch coordinator for no-SSH releases.

The package validates release parameters, submits a remote command to a
fleet-management facility, and observes its outcome through a log sink.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fleet-dispatch")
except PackageNotFoundError:  # pragma: no cover - fallback for editable installs
    __version__ = "0.0.0"

__all__ = ["__version__"]
