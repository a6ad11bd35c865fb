"""Agent task execution engine."""

from importlib.metadata import version as _pkg_version

try:
    __version__: str = _pkg_version("taskrunner")
except Exception:
    __version__ = "dev"
