"""Append-only audit trail of admission decisions."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ..config.constants import AUDIT_LOG_FILENAME

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

LOG = logging.getLogger(__name__)


class AuditLog:
    """One human-readable line per entry: ``<timestamp> - <identity>: <message>``."""

    def __init__(self, directory: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self.path = directory / AUDIT_LOG_FILENAME
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def record(self, fingerprint: str, message: str) -> bool:
        """
        Append an entry.

        Write failures are logged and reported through the return value; they
        never propagate into the admission decision that triggered them.
        """
        entry = f"{self._clock().isoformat()} - {fingerprint}: {message}\n"
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(entry)
            except OSError as e:
                LOG.warning("Failed to write audit entry for %s (%s): %s", fingerprint, message, e)
                return False
        LOG.debug("Audit: %s: %s", fingerprint, message)
        return True

    def read_entries(self) -> list[str]:
        """Return every entry in insertion order."""
        try:
            with self.path.open("r", encoding="utf-8") as f:
                return [line.rstrip("\n") for line in f if line.strip()]
        except FileNotFoundError:
            return []
