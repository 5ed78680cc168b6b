"""Candidate uploads from the inbound drop directory."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import psutil

from ..config.constants import PARTIAL_SUFFIX
from ..core.base import CandidateUpload

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

LOG = logging.getLogger(__name__)

_denied_reported = False


def is_open_by_any_process(file_path: Path) -> bool:
    """Check whether any process we can inspect holds the file open."""
    global _denied_reported

    target = str(file_path.resolve())
    denied = 0
    for proc in psutil.process_iter():
        try:
            for open_file in proc.open_files():
                if open_file.path == target:
                    return True
        except psutil.AccessDenied:
            denied += 1
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            continue

    if denied and not _denied_reported:
        LOG.debug(
            "Open-handle check skipped %d processes owned by other users; "
            "writers running as another user are not detected",
            denied,
        )
        _denied_reported = True
    return False


class ReadinessProbe:
    """
    Decide whether a file has been completely written.

    A file is ready once its size is non-zero and unchanged between two
    consecutive observations ``delay`` seconds apart and, optionally, no
    process holds it open. The probe gives up after ``attempts`` tries.
    """

    def __init__(
        self,
        *,
        attempts: int = 5,
        delay: float = 5.0,
        check_open_handles: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.attempts = max(1, attempts)
        self.delay = delay
        self.check_open_handles = check_open_handles
        self._sleep = sleep

    def _size(self, file_path: Path) -> int | None:
        try:
            return file_path.stat().st_size
        except OSError:
            return None

    def is_ready(self, file_path: Path) -> bool:
        previous = self._size(file_path)
        for attempt in range(1, self.attempts + 1):
            self._sleep(self.delay)
            current = self._size(file_path)
            if current is None:
                LOG.debug("%s disappeared while waiting for it", file_path)
                return False

            stable = current > 0 and current == previous
            if stable and self.check_open_handles and is_open_by_any_process(file_path):
                stable = False

            if stable:
                return True

            LOG.debug(
                "%s not ready (attempt %d/%d, size %s -> %s)", file_path.name, attempt, self.attempts, previous, current
            )
            previous = current

        LOG.info("%s still being written after %d attempts, leaving it for a later pass", file_path, self.attempts)
        return False


@dataclass(frozen=True)
class _Signature:
    size: int
    mtime: float


class DirectoryWatcher:
    """
    Poll the inbound directory for uploads.

    Files live in ``<inbound>/<key-name>/<file>``, where ``<key-name>`` is
    the contributor's public key file in the SSH key directory. A file is
    offered again only when it changes or after ``retry_interval`` seconds,
    so files left in place by a quota rejection are not re-judged on every
    pass.
    """

    def __init__(
        self,
        inbound_directory: Path,
        ssh_key_dir: Path,
        emit: Callable[[CandidateUpload], None],
        *,
        probe: ReadinessProbe | None = None,
        poll_interval: float = 1.0,
        retry_interval: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inbound_directory = inbound_directory
        self.ssh_key_dir = ssh_key_dir
        self.emit = emit
        self.probe = probe or ReadinessProbe()
        self.poll_interval = poll_interval
        self.retry_interval = retry_interval
        self._clock = clock
        self._offered: dict[Path, tuple[_Signature, float]] = {}
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def _iter_files(self) -> list[tuple[Path, Path]]:
        """Return ``(key directory entry, file)`` pairs under the inbound tree."""
        pairs: list[tuple[Path, Path]] = []
        try:
            entries = sorted(self.inbound_directory.iterdir())
        except OSError as e:
            LOG.warning("Cannot list inbound directory %s: %s", self.inbound_directory, e)
            return pairs

        for entry in entries:
            if entry.is_file():
                LOG.warning("Ignoring %s: uploads must sit in a contributor subdirectory", entry)
                continue
            if not entry.is_dir():
                continue
            try:
                files = sorted(p for p in entry.iterdir() if p.is_file())
            except OSError as e:
                LOG.warning("Cannot list %s: %s", entry, e)
                continue
            key_path = self._key_path_for(entry.name)
            for file_path in files:
                if file_path.name.startswith(".") or file_path.name.endswith(PARTIAL_SUFFIX):
                    continue
                pairs.append((key_path, file_path))
        return pairs

    def _key_path_for(self, name: str) -> Path:
        key_path = self.ssh_key_dir / name
        if not key_path.exists():
            pub_path = self.ssh_key_dir / f"{name}.pub"
            if pub_path.exists():
                return pub_path
        return key_path

    def _due(self, file_path: Path, signature: _Signature, now: float) -> bool:
        previous = self._offered.get(file_path)
        if previous is None:
            return True
        old_signature, offered_at = previous
        return old_signature != signature or now - offered_at >= self.retry_interval

    def scan(self) -> list[CandidateUpload]:
        """One pass over the inbound tree, returning ready candidates."""
        candidates: list[CandidateUpload] = []
        seen: set[Path] = set()
        now = self._clock()

        for key_path, file_path in self._iter_files():
            seen.add(file_path)
            try:
                stat = file_path.stat()
            except OSError:
                continue
            signature = _Signature(stat.st_size, stat.st_mtime)
            if not self._due(file_path, signature, now):
                continue
            if not self.probe.is_ready(file_path):
                continue
            try:
                stat = file_path.stat()
            except OSError:
                continue
            self._offered[file_path] = (_Signature(stat.st_size, stat.st_mtime), now)
            candidates.append(CandidateUpload(file_path=file_path, key_path=key_path, source="inbound"))

        # Forget files that were stored, deleted or moved away
        for stale in set(self._offered) - seen:
            del self._offered[stale]

        return candidates

    def run(self) -> None:
        """Poll until ``stop()`` is called."""
        while not self._stop_event.is_set():
            try:
                for candidate in self.scan():
                    self.emit(candidate)
            except Exception:
                LOG.exception("Inbound directory pass failed")
            self._stop_event.wait(self.poll_interval)
