"""Durable per-identity quota and escalation counters."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from .base import LedgerError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

LOG = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS user_stats (
        user TEXT PRIMARY KEY,
        strikes INTEGER NOT NULL DEFAULT 0,
        timeouts INTEGER NOT NULL DEFAULT 0,
        daily_upload INTEGER NOT NULL DEFAULT 0,
        daily_airtime INTEGER NOT NULL DEFAULT 0,
        last_upload TEXT,
        period_start TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS banned_identities (
        user TEXT PRIMARY KEY,
        banned_at TEXT NOT NULL
    )
    """,
)


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_text(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class IdentityRecord:
    """One contributor's ledger row; upload in whole MB, airtime in seconds."""

    strikes: int = 0
    timeouts: int = 0
    daily_upload: int = 0
    daily_airtime: int = 0
    last_upload: datetime | None = None
    period_start: datetime | None = None


@dataclass
class _IdentityLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class IdentityLedger:
    """
    sqlite-backed identity ledger.

    Each operation opens its own connection, so the ledger can be shared by
    threads. Read-modify-write sequences must run inside ``locked(fp)``.
    """

    def __init__(self, path: Path | str, *, timeout: float = 10.0) -> None:
        self.path = str(path)
        self.timeout = timeout
        self._locks: dict[str, _IdentityLock] = {}
        self._locks_guard = threading.Lock()
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout)
        except sqlite3.Error as e:
            msg = f"Cannot open ledger {self.path}: {e}"
            raise LedgerError(msg, cause=e) from e
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            msg = f"Ledger operation failed on {self.path}: {e}"
            raise LedgerError(msg, cause=e) from e
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def locked(self, fingerprint: str) -> Iterator[None]:
        """Serialise read-modify-write sequences for one identity."""
        with self._locks_guard:
            entry = self._locks.get(fingerprint)
            if entry is None:
                entry = self._locks[fingerprint] = _IdentityLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                # Last holder or waiter drops the entry
                if entry.users == 0:
                    del self._locks[fingerprint]

    def get(self, fingerprint: str) -> IdentityRecord | None:
        """Return the identity's row, or None when it does not exist."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT strikes, timeouts, daily_upload, daily_airtime, last_upload, period_start
                FROM user_stats
                WHERE user = ?
                """,
                (fingerprint,),
            ).fetchone()
        if row is None:
            return None
        return IdentityRecord(
            strikes=int(row[0]),
            timeouts=int(row[1]),
            daily_upload=int(row[2]),
            daily_airtime=int(row[3]),
            last_upload=_from_text(row[4]),
            period_start=_from_text(row[5]),
        )

    def load_or_create(self, fingerprint: str) -> IdentityRecord:
        """Select the identity's row, inserting a default one on first sight."""
        record = self.get(fingerprint)
        if record is not None:
            return record

        with self._connect() as conn:
            conn.execute("INSERT OR IGNORE INTO user_stats (user) VALUES (?)", (fingerprint,))
        LOG.info("Created ledger row for new identity %s", fingerprint)

        record = self.get(fingerprint)
        if record is None:
            msg = f"Ledger row for {fingerprint} vanished after insert"
            raise LedgerError(msg)
        return record

    def save(self, fingerprint: str, record: IdentityRecord) -> None:
        """Persist the identity's row, creating it if needed."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_stats (
                    user, strikes, timeouts, daily_upload, daily_airtime, last_upload, period_start
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user) DO UPDATE SET
                    strikes = excluded.strikes,
                    timeouts = excluded.timeouts,
                    daily_upload = excluded.daily_upload,
                    daily_airtime = excluded.daily_airtime,
                    last_upload = excluded.last_upload,
                    period_start = excluded.period_start
                """,
                (
                    fingerprint,
                    record.strikes,
                    record.timeouts,
                    record.daily_upload,
                    record.daily_airtime,
                    _to_text(record.last_upload),
                    _to_text(record.period_start),
                ),
            )

    def delete(self, fingerprint: str) -> bool:
        """Remove the identity's row; returns whether a row existed."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM user_stats WHERE user = ?", (fingerprint,))
            return cursor.rowcount > 0

    def ban(self, fingerprint: str, banned_at: datetime | None = None) -> None:
        """Blacklist a fingerprint and drop its counters."""
        banned_at = banned_at or datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute("DELETE FROM user_stats WHERE user = ?", (fingerprint,))
            conn.execute(
                "INSERT OR REPLACE INTO banned_identities (user, banned_at) VALUES (?, ?)",
                (fingerprint, banned_at.isoformat()),
            )

    def is_banned(self, fingerprint: str) -> bool:
        """Whether the fingerprint is on the permanent blacklist."""
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM banned_identities WHERE user = ?", (fingerprint,)).fetchone()
        return row is not None

    def identities(self) -> list[str]:
        """Return every fingerprint that currently has a ledger row."""
        with self._connect() as conn:
            rows = conn.execute("SELECT user FROM user_stats ORDER BY user").fetchall()
        return [str(row[0]) for row in rows]
