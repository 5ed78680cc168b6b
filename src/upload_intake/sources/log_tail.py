"""
Candidate uploads from the sshd authentication log.

Grammar of a transfer line::

    ... Accepted publickey for <user> ... SHA256:<fingerprint> ... scp: '<path>'

Both markers (``Accepted publickey`` and ``scp``) must be present; the two
capture fields are the key fingerprint token and the quoted destination path.
Every other line is ignored.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from ..config.constants import AUTH_LOG_ACCEPTED_MARKER, AUTH_LOG_SCP_MARKER
from ..core.base import CandidateUpload

if TYPE_CHECKING:
    from collections.abc import Callable

LOG = logging.getLogger(__name__)

TRANSFER_PATTERN = re.compile(r"Accepted publickey for \S+.*SHA256:(\S+).*scp:\s+'([^']+)'")


def parse_auth_log_line(line: str) -> tuple[str, str] | None:
    """
    Extract ``(fingerprint token, file path)`` from a transfer line.

    Returns None for lines that are not transfer sessions. Lines carrying
    both markers but not matching the pattern are logged and skipped.
    """
    if AUTH_LOG_ACCEPTED_MARKER not in line or AUTH_LOG_SCP_MARKER not in line:
        return None

    match = TRANSFER_PATTERN.search(line)
    if match is None or not match.group(1) or not match.group(2):
        LOG.warning("Failed to parse transfer line: %s", line.strip())
        return None

    return match.group(1), match.group(2)


class AuthLogTailer:
    """
    Follow an append-only log file and emit one candidate per transfer line.

    End of file is never terminal: the tailer sleeps for ``poll_interval``
    and keeps reading. A rotated (new inode) or truncated file is reopened
    from the start.
    """

    def __init__(
        self,
        path: Path,
        emit: Callable[[CandidateUpload], None],
        *,
        poll_interval: float = 1.0,
        from_start: bool = False,
    ) -> None:
        self.path = path
        self.emit = emit
        self.poll_interval = poll_interval
        self.from_start = from_start
        self._stop_event = threading.Event()
        self._handle: TextIO | None = None
        self._inode: int | None = None
        self._buffer = ""

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _open(self, *, seek_end: bool) -> bool:
        try:
            handle = self.path.open("r", encoding="utf-8", errors="replace")
        except OSError as e:
            LOG.debug("Auth log %s not available yet: %s", self.path, e)
            return False
        if seek_end:
            handle.seek(0, os.SEEK_END)
        self._handle = handle
        self._inode = os.fstat(handle.fileno()).st_ino
        self._buffer = ""
        LOG.info("Tailing %s", self.path)
        return True

    def _close(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._inode = None
        self._buffer = ""

    def _rotated(self) -> bool:
        """Whether the path now points at a different or truncated file."""
        if self._handle is None:
            return False
        try:
            stat = self.path.stat()
        except OSError:
            return False
        return stat.st_ino != self._inode or stat.st_size < self._handle.tell()

    def _handle_line(self, line: str) -> None:
        parsed = parse_auth_log_line(line)
        if parsed is None:
            return
        token, file_path = parsed
        self.emit(CandidateUpload(file_path=Path(file_path), key_fingerprint=token, source="auth_log"))

    def poll(self) -> int:
        """Read everything appended since the last call; returns lines handled."""
        if self._handle is None:
            opened = self._open(seek_end=not self.from_start)
            # A log that appears later, or a rotated one, is read from the start
            self.from_start = True
            if not opened:
                return 0

        handled = self._drain()

        if self._rotated():
            LOG.info("Auth log %s rotated or truncated, reopening", self.path)
            self._close()
            if self._open(seek_end=False):
                handled += self._drain()

        return handled

    def _drain(self) -> int:
        handled = 0
        if self._handle is None:
            return handled
        while True:
            chunk = self._handle.readline()
            if not chunk:
                break
            self._buffer += chunk
            if not self._buffer.endswith("\n"):
                # Partial line, wait for the writer to finish it
                break
            line, self._buffer = self._buffer, ""
            try:
                self._handle_line(line)
            except Exception:
                LOG.exception("Failed to handle auth log line: %s", line.strip())
            handled += 1
        return handled

    def run(self) -> None:
        """Tail until ``stop()`` is called."""
        try:
            while not self._stop_event.is_set():
                try:
                    handled = self.poll()
                except OSError as e:
                    LOG.warning("Error reading auth log %s: %s", self.path, e)
                    self._close()
                    handled = 0
                if handled == 0:
                    self._stop_event.wait(self.poll_interval)
        finally:
            self._close()
