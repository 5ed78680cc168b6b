"""Shared fixtures for the upload intake tests."""

from __future__ import annotations

import base64
import hashlib
import struct
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

from upload_intake.config import UploaderConfig
from upload_intake.core import AdmissionEvaluator, AuditLog, FFmpegProbe, IdentityLedger

FIXED_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
MB = 1024 * 1024


def make_key_blob(seed: int, key_type: str = "ssh-ed25519") -> bytes:
    """Build an OpenSSH public key blob with a deterministic key body."""
    type_bytes = key_type.encode("ascii")
    body = bytes([seed % 256]) * 32
    return struct.pack(">I", len(type_bytes)) + type_bytes + struct.pack(">I", len(body)) + body


def write_public_key(path: Path, seed: int = 1, comment: str = "contributor@example") -> str:
    """Write a public key file and return its expected fingerprint."""
    blob = make_key_blob(seed)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"ssh-ed25519 {base64.b64encode(blob).decode('ascii')} {comment}\n", encoding="utf-8")
    return "SHA256:" + base64.b64encode(hashlib.sha256(blob).digest()).decode("ascii").rstrip("=")


def write_sized_file(path: Path, size_mb: float) -> Path:
    """Create a (sparse) file of the given size."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        f.truncate(int(size_mb * MB))
    return path


@pytest.fixture(autouse=True)
def _clear_probe_cache() -> None:
    FFmpegProbe.clear_cache()


@pytest.fixture
def uploader_config(tmp_path: Path) -> UploaderConfig:
    """Uploader settings rooted in a temporary directory."""
    for name in ("keys", "logs", "inbound", "storage"):
        (tmp_path / name).mkdir()
    return UploaderConfig(
        max_user_upload_size=100,
        max_user_airtime=1000,
        ssh_key_dir=tmp_path / "keys",
        access_log=tmp_path / "logs",
        inbound_directory=tmp_path / "inbound",
        storage_directory=tmp_path / "storage",
        strikes_before_timeout=3,
        timeouts_before_ban=2,
        accepted_upload_file_types=[".mp3", ".wav"],
        auth_log=tmp_path / "auth.log",
        ledger_path=tmp_path / "userstats.db",
        poll_interval=0.01,
        readiness_attempts=2,
        readiness_delay=0.0,
        check_open_handles=False,
    )


@pytest.fixture
def ledger(uploader_config: UploaderConfig) -> IdentityLedger:
    return IdentityLedger(uploader_config.ledger_path)


@pytest.fixture
def audit(uploader_config: UploaderConfig) -> AuditLog:
    return AuditLog(uploader_config.access_log, clock=lambda: FIXED_NOW)


@pytest.fixture
def probe() -> Mock:
    """Stand-in for ffprobe reporting a two-minute file."""
    mock_probe = Mock()
    mock_probe.get_duration.return_value = 120.0
    return mock_probe


@pytest.fixture
def evaluator(uploader_config: UploaderConfig, ledger: IdentityLedger, audit: AuditLog, probe: Mock) -> AdmissionEvaluator:
    return AdmissionEvaluator(uploader_config, ledger, audit, probe=probe, clock=lambda: FIXED_NOW)
