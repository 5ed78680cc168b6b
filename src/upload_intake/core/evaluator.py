"""Admission policy: decide whether a candidate upload enters the pipeline."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from ..config.constants import (
    AUDIT_AIRTIME_QUOTA,
    AUDIT_BANNED_REJECTED,
    AUDIT_SIZE_QUOTA,
    AUDIT_UNSUPPORTED_TYPE,
    AUDIT_UPLOADED,
    BYTES_PER_MEGABYTE,
)
from .base import AdmissionDecision, AdmissionResult, IdentityState, LedgerError, StorageError
from .escalation import EscalationController
from .ffmpeg import FFmpegError, FFmpegProbe
from .file_manager import FileManager

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..config import UploaderConfig
    from .audit import AuditLog
    from .base import CandidateUpload
    from .ledger import IdentityLedger, IdentityRecord


class AdmissionEvaluator:
    """
    Run the admission checks for one identity and one file.

    Checks run in a fixed order (type, size, airtime) and the first failure
    wins, so a file with an unsupported type is never sized or probed.
    """

    def __init__(
        self,
        config: UploaderConfig,
        ledger: IdentityLedger,
        audit: AuditLog,
        *,
        probe: type[FFmpegProbe] | FFmpegProbe = FFmpegProbe,
        file_manager: FileManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.audit = audit
        self.probe = probe
        self.file_manager = file_manager or FileManager(config.storage_directory)
        self.escalation = EscalationController(
            ledger,
            audit,
            strike_threshold=config.strikes_before_timeout,
            timeout_threshold=config.timeouts_before_ban,
            permanent_bans=config.permanent_bans,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def evaluate(self, fingerprint: str, candidate: CandidateUpload) -> AdmissionResult:
        """Decide on one candidate upload and apply the consequences."""
        file_path = candidate.file_path

        if not file_path.is_file():
            # Already stored or removed by an earlier decision
            self.logger.info("Skipping %s: file no longer exists", file_path)
            return AdmissionResult(candidate, fingerprint, AdmissionDecision.SKIPPED, "file not found")

        with self.ledger.locked(fingerprint):
            if self.config.permanent_bans and self.ledger.is_banned(fingerprint):
                self.file_manager.discard(file_path)
                self.audit.record(fingerprint, AUDIT_BANNED_REJECTED)
                return AdmissionResult(
                    candidate,
                    fingerprint,
                    AdmissionDecision.REJECTED_BANNED,
                    AUDIT_BANNED_REJECTED,
                    state=IdentityState.BANNED,
                )

            record = self.ledger.load_or_create(fingerprint)
            now = self._clock()
            self._roll_period(fingerprint, record, now)

            if not self.config.accepts(file_path):
                self.file_manager.discard(file_path)
                return self._reject(
                    fingerprint, candidate, record, AdmissionDecision.REJECTED_UNSUPPORTED_TYPE, AUDIT_UNSUPPORTED_TYPE
                )

            try:
                size_mb = file_path.stat().st_size // BYTES_PER_MEGABYTE
            except OSError as e:
                self.logger.warning("Cannot size %s: %s", file_path, e)
                return AdmissionResult(candidate, fingerprint, AdmissionDecision.SKIPPED, f"cannot size file: {e}")

            if record.daily_upload + size_mb > self.config.max_user_upload_size:
                return self._reject(
                    fingerprint, candidate, record, AdmissionDecision.REJECTED_SIZE_QUOTA, AUDIT_SIZE_QUOTA
                )

            try:
                duration = int(self.probe.get_duration(file_path, timeout=self.config.ffprobe_timeout))
            except FFmpegError as e:
                self.logger.warning("Cannot measure duration of %s: %s", file_path, e)
                return AdmissionResult(candidate, fingerprint, AdmissionDecision.SKIPPED, f"probe failed: {e}")

            if record.daily_airtime + duration > self.config.max_user_airtime:
                return self._reject(
                    fingerprint, candidate, record, AdmissionDecision.REJECTED_AIRTIME_QUOTA, AUDIT_AIRTIME_QUOTA
                )

            return self._admit(fingerprint, candidate, record, size_mb, duration, now)

    def _roll_period(self, fingerprint: str, record: IdentityRecord, now: datetime) -> None:
        """Reset the quota counters once the identity's quota period has elapsed."""
        if self.config.quota_period_hours <= 0:
            return
        if record.period_start is None:
            if record.daily_upload or record.daily_airtime:
                record.period_start = now
            return
        if now - record.period_start >= timedelta(hours=self.config.quota_period_hours):
            self.logger.debug("Quota period for %s elapsed, resetting usage", fingerprint)
            record.daily_upload = 0
            record.daily_airtime = 0
            record.period_start = None

    def _reject(
        self,
        fingerprint: str,
        candidate: CandidateUpload,
        record: IdentityRecord,
        decision: AdmissionDecision,
        reason: str,
    ) -> AdmissionResult:
        record.strikes += 1
        self.audit.record(fingerprint, reason)
        self.logger.info("Rejected %s from %s: %s", candidate.file_path, fingerprint, reason)

        state = self.escalation.escalate(fingerprint, record)
        if state is not IdentityState.BANNED:
            self.ledger.save(fingerprint, record)

        return AdmissionResult(candidate, fingerprint, decision, reason, state=state)

    def _admit(
        self,
        fingerprint: str,
        candidate: CandidateUpload,
        record: IdentityRecord,
        size_mb: int,
        duration: int,
        now: datetime,
    ) -> AdmissionResult:
        updated = replace(
            record,
            daily_upload=record.daily_upload + size_mb,
            daily_airtime=record.daily_airtime + duration,
            last_upload=now,
            period_start=record.period_start or now,
        )

        try:
            operation = self.file_manager.move_to_storage(candidate.file_path)
        except StorageError as e:
            # Nothing reached storage, so nothing is charged
            self.logger.error("Storage handoff failed for %s: %s", candidate.file_path, e)
            return AdmissionResult(candidate, fingerprint, AdmissionDecision.SKIPPED, f"storage handoff failed: {e}")

        try:
            self.ledger.save(fingerprint, updated)
        except LedgerError:
            self.logger.exception("Ledger update failed for %s, returning file to inbound", fingerprint)
            try:
                self.file_manager.restore(operation)
            except StorageError:
                self.logger.exception("Could not restore %s after ledger failure", candidate.file_path)
            raise

        self.audit.record(fingerprint, AUDIT_UPLOADED)
        self.logger.info(
            "Admitted %s from %s (%d MB, %d s)", candidate.file_path.name, fingerprint, size_mb, duration
        )
        return AdmissionResult(
            candidate,
            fingerprint,
            AdmissionDecision.ADMITTED,
            AUDIT_UPLOADED,
            stored_path=operation.target_path,
        )
