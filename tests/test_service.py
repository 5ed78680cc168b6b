"""Test the intake service wiring."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from conftest import FIXED_NOW, write_public_key, write_sized_file

from upload_intake.config import IntakeConfig
from upload_intake.core import AdmissionDecision, AdmissionEvaluator, CandidateUpload, LedgerError
from upload_intake.service import IntakeService


@pytest.fixture
def service(uploader_config, ledger, audit, probe) -> IntakeService:
    evaluator = AdmissionEvaluator(uploader_config, ledger, audit, probe=probe, clock=lambda: FIXED_NOW)
    return IntakeService(IntakeConfig(uploader=uploader_config), ledger=ledger, audit=audit, evaluator=evaluator)


def test_process_admits_upload_from_known_key(service, uploader_config, ledger) -> None:
    fingerprint = write_public_key(uploader_config.ssh_key_dir / "alice.pub", seed=1)
    upload = write_sized_file(uploader_config.inbound_directory / "alice" / "show.mp3", 2)

    result = service.process(CandidateUpload(file_path=upload, key_path=uploader_config.ssh_key_dir / "alice.pub"))

    assert result.decision is AdmissionDecision.ADMITTED
    assert result.fingerprint == fingerprint
    assert ledger.get(fingerprint).daily_upload == 2


def test_process_resolves_auth_log_token(service, uploader_config) -> None:
    fingerprint = write_public_key(uploader_config.ssh_key_dir / "bob.pub", seed=2)
    upload = write_sized_file(uploader_config.inbound_directory / "bob" / "talk.wav", 1)

    result = service.process(CandidateUpload(file_path=upload, key_fingerprint=fingerprint, source="auth_log"))

    assert result.fingerprint == fingerprint


def test_unreadable_credential_drops_candidate_without_charge(service, uploader_config, ledger) -> None:
    upload = write_sized_file(uploader_config.inbound_directory / "eve" / "x.mp3", 1)

    result = service.process(CandidateUpload(file_path=upload, key_path=uploader_config.ssh_key_dir / "eve.pub"))

    assert result is None
    assert service.stats["dropped"] == 1
    assert ledger.identities() == []
    assert upload.exists()


def test_ledger_outage_does_not_stop_processing(service, uploader_config) -> None:
    write_public_key(uploader_config.ssh_key_dir / "alice.pub", seed=1)
    upload = write_sized_file(uploader_config.inbound_directory / "alice" / "show.mp3", 1)
    service.evaluator.evaluate = Mock(side_effect=LedgerError("database is locked"))

    assert service.process(CandidateUpload(file_path=upload, key_path=uploader_config.ssh_key_dir / "alice.pub")) is None
    assert service.stats["dropped"] == 1


def test_queued_candidates_are_evaluated_by_consumer(service, uploader_config, tmp_path) -> None:
    key = uploader_config.ssh_key_dir / "alice.pub"
    write_public_key(key, seed=1)
    uploads = [write_sized_file(tmp_path / "scp" / f"part{i}.mp3", 1) for i in range(3)]

    service.start()
    try:
        for upload in uploads:
            service.submit(CandidateUpload(file_path=upload, key_path=key))
        service.queue.join()
    finally:
        service.stop()

    assert service.stats[AdmissionDecision.ADMITTED.value] == 3
    assert sorted(p.name for p in uploader_config.storage_directory.iterdir()) == ["part0.mp3", "part1.mp3", "part2.mp3"]


def test_sweep_once_processes_inbound_directory(service, uploader_config, ledger) -> None:
    fingerprint = write_public_key(uploader_config.ssh_key_dir / "carol.pub", seed=3)
    write_sized_file(uploader_config.inbound_directory / "carol" / "a.mp3", 1)
    write_sized_file(uploader_config.inbound_directory / "carol" / "b.txt", 1)

    results = service.sweep_once()

    assert {r.decision for r in results} == {
        AdmissionDecision.ADMITTED,
        AdmissionDecision.REJECTED_UNSUPPORTED_TYPE,
    }
    record = ledger.get(fingerprint)
    assert record.strikes == 1
    assert record.daily_upload == 1


def test_file_reported_by_both_sources_is_charged_once(service, uploader_config, ledger) -> None:
    fingerprint = write_public_key(uploader_config.ssh_key_dir / "alice.pub", seed=1)
    upload = write_sized_file(uploader_config.inbound_directory / "alice" / "big.mp3", 150)

    first = service.process(CandidateUpload(file_path=upload, key_fingerprint=fingerprint, source="auth_log"))
    repeats = [service.process(candidate) for candidate in service.watcher.scan()]

    assert first.decision is AdmissionDecision.REJECTED_SIZE_QUOTA
    assert repeats == [None]
    assert service.stats["duplicate"] == 1
    assert ledger.get(fingerprint).strikes == 1
    assert upload.exists()


def test_changed_file_is_judged_again(service, uploader_config, ledger) -> None:
    key = uploader_config.ssh_key_dir / "alice.pub"
    fingerprint = write_public_key(key, seed=1)
    upload = write_sized_file(uploader_config.inbound_directory / "alice" / "big.mp3", 150)

    service.process(CandidateUpload(file_path=upload, key_path=key, source="inbound"))
    write_sized_file(upload, 160)
    result = service.process(CandidateUpload(file_path=upload, key_path=key, source="inbound"))

    assert result.decision is AdmissionDecision.REJECTED_SIZE_QUOTA
    assert ledger.get(fingerprint).strikes == 2


def test_rejected_file_is_judged_again_after_retry_interval(uploader_config, ledger, audit, probe) -> None:
    now = [0.0]
    evaluator = AdmissionEvaluator(uploader_config, ledger, audit, probe=probe, clock=lambda: FIXED_NOW)
    service = IntakeService(
        IntakeConfig(uploader=uploader_config), ledger=ledger, audit=audit, evaluator=evaluator, clock=lambda: now[0]
    )
    key = uploader_config.ssh_key_dir / "alice.pub"
    fingerprint = write_public_key(key, seed=1)
    upload = write_sized_file(uploader_config.inbound_directory / "alice" / "big.mp3", 150)
    candidate = CandidateUpload(file_path=upload, key_path=key, source="inbound")

    service.process(candidate)
    now[0] = uploader_config.retry_interval - 1
    assert service.process(candidate) is None
    now[0] = uploader_config.retry_interval
    assert service.process(candidate).decision is AdmissionDecision.REJECTED_SIZE_QUOTA

    assert ledger.get(fingerprint).strikes == 2


def test_unfinished_auth_log_upload_is_not_admitted(service, uploader_config, ledger) -> None:
    fingerprint = write_public_key(uploader_config.ssh_key_dir / "alice.pub", seed=1)
    upload = write_sized_file(uploader_config.inbound_directory / "alice" / "live.mp3", 0)

    result = service.process(CandidateUpload(file_path=upload, key_fingerprint=fingerprint, source="auth_log"))

    assert result.decision is AdmissionDecision.SKIPPED
    assert result.stored_path is None
    assert upload.exists()
    assert list(uploader_config.storage_directory.iterdir()) == []
    assert ledger.identities() == []


def test_finished_upload_is_admitted_after_unfinished_report(service, uploader_config, ledger) -> None:
    fingerprint = write_public_key(uploader_config.ssh_key_dir / "alice.pub", seed=1)
    upload = write_sized_file(uploader_config.inbound_directory / "alice" / "live.mp3", 0)
    service.process(CandidateUpload(file_path=upload, key_fingerprint=fingerprint, source="auth_log"))

    write_sized_file(upload, 3)
    results = [service.process(candidate) for candidate in service.watcher.scan()]

    assert [r.decision for r in results] == [AdmissionDecision.ADMITTED]
    assert ledger.get(fingerprint).daily_upload == 3
