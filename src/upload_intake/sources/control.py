"""Candidate uploads piped in by the SSH session handler."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from ..core.base import CandidateUpload

if TYPE_CHECKING:
    from collections.abc import Callable

LOG = logging.getLogger(__name__)


def parse_control_line(line: str) -> CandidateUpload | None:
    """Parse ``<key-path> <file-path>``; the file path may contain spaces."""
    parts = line.strip().split(" ", 1)
    if len(parts) != 2 or not parts[0] or not parts[1].strip():
        return None
    return CandidateUpload(file_path=Path(parts[1].strip()), key_path=Path(parts[0]), source="control")


class ControlInputReader:
    """Read control lines from a stream until EOF or ``stop()``."""

    def __init__(self, stream: TextIO, emit: Callable[[CandidateUpload], None]) -> None:
        self.stream = stream
        self.emit = emit
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        try:
            for line in self.stream:
                if self._stop_event.is_set():
                    break
                if not line.strip():
                    continue
                candidate = parse_control_line(line)
                if candidate is None:
                    LOG.warning("Ignoring malformed control line: %s", line.strip())
                    continue
                self.emit(candidate)
        except (OSError, ValueError) as e:
            LOG.warning("Error reading control input: %s", e)
        LOG.info("Control input closed")
