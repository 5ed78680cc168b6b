"""Producers of candidate uploads."""

from .control import ControlInputReader, parse_control_line
from .directory_watch import DirectoryWatcher, ReadinessProbe
from .log_tail import AuthLogTailer, parse_auth_log_line

__all__ = [
    "AuthLogTailer",
    "ControlInputReader",
    "DirectoryWatcher",
    "ReadinessProbe",
    "parse_auth_log_line",
    "parse_control_line",
]
