"""Test the sqlite identity ledger."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from upload_intake.core import IdentityLedger, IdentityRecord, LedgerError


def test_load_or_create_inserts_default_row(ledger) -> None:
    assert ledger.get("SHA256:new") is None

    record = ledger.load_or_create("SHA256:new")

    assert record == IdentityRecord()
    assert ledger.identities() == ["SHA256:new"]


def test_save_persists_counters_and_timestamps(ledger) -> None:
    stamp = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    record = IdentityRecord(strikes=1, timeouts=2, daily_upload=30, daily_airtime=400, last_upload=stamp)

    ledger.save("SHA256:a", record)
    # A second instance sees the same data
    reopened = IdentityLedger(ledger.path)

    assert reopened.get("SHA256:a") == record


def test_delete_removes_row(ledger) -> None:
    ledger.load_or_create("SHA256:gone")

    assert ledger.delete("SHA256:gone") is True
    assert ledger.get("SHA256:gone") is None
    assert ledger.delete("SHA256:gone") is False


def test_ban_blacklists_and_drops_counters(ledger) -> None:
    ledger.save("SHA256:bad", IdentityRecord(strikes=2))

    ledger.ban("SHA256:bad")

    assert ledger.is_banned("SHA256:bad")
    assert ledger.get("SHA256:bad") is None
    assert not ledger.is_banned("SHA256:good")


def test_unopenable_ledger_raises(tmp_path) -> None:
    with pytest.raises(LedgerError):
        IdentityLedger(tmp_path / "missing-dir" / "ledger.db")


def test_locked_serialises_same_identity_updates(ledger) -> None:
    """Concurrent read-modify-write on one identity never loses an update."""
    fingerprint = "SHA256:busy"
    ledger.load_or_create(fingerprint)

    def bump() -> None:
        for _ in range(20):
            with ledger.locked(fingerprint):
                record = ledger.get(fingerprint)
                record.daily_airtime += 1
                ledger.save(fingerprint, record)

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert ledger.get(fingerprint).daily_airtime == 80


def test_locks_are_per_identity(ledger) -> None:
    """Holding one identity's lock does not block another identity."""
    acquired = threading.Event()

    def take_other() -> None:
        with ledger.locked("SHA256:two"):
            acquired.set()

    with ledger.locked("SHA256:one"):
        thread = threading.Thread(target=take_other)
        thread.start()
        thread.join(timeout=2.0)

    assert acquired.is_set()


def test_lock_entries_are_released_after_use(ledger) -> None:
    """Per-identity locks exist only while an identity is being updated."""
    with ledger.locked("SHA256:temp"):
        assert "SHA256:temp" in ledger._locks
        with ledger.locked("SHA256:other"):
            assert len(ledger._locks) == 2

    ledger.load_or_create("SHA256:banned")
    with ledger.locked("SHA256:banned"):
        ledger.ban("SHA256:banned")

    assert ledger._locks == {}
