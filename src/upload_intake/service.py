"""Wiring of the event sources, the candidate queue and the evaluator."""

from __future__ import annotations

import logging
import queue
import sys
import threading
import time
from typing import TYPE_CHECKING, TextIO

from tqdm import tqdm

from .core import (
    AdmissionDecision,
    AdmissionEvaluator,
    AdmissionResult,
    AuditLog,
    CredentialUnreadable,
    FFmpegError,
    FFmpegProbe,
    IdentityLedger,
    IdentityResolver,
    IntakeError,
    KeyDirectory,
)
from .sources import AuthLogTailer, ControlInputReader, DirectoryWatcher, ReadinessProbe

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from .config import IntakeConfig
    from .core import CandidateUpload

LOG = logging.getLogger(__name__)

_SHUTDOWN = None


class IntakeService:
    """
    Run the upload intake.

    Producers (auth log tail, inbound directory watch, optional control
    input) put candidates on one queue; a single consumer thread resolves
    identities and runs the evaluator, which makes the queue the one
    serialisation point for ledger updates.

    An scp upload into the inbound tree is reported by both the auth log
    and the directory watch. The consumer remembers the ``(size, mtime)``
    of every file it judged and left in place, and drops any other report
    of the same unchanged file until ``retry_interval`` has passed.
    """

    def __init__(
        self,
        config: IntakeConfig,
        *,
        ledger: IdentityLedger | None = None,
        audit: AuditLog | None = None,
        evaluator: AdmissionEvaluator | None = None,
        control_stream: TextIO | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        uploader = config.uploader
        self.ledger = ledger or IdentityLedger(uploader.ledger_path)
        self.audit = audit or AuditLog(uploader.access_log)
        self.resolver = IdentityResolver(KeyDirectory(uploader.ssh_key_dir))
        self.evaluator = evaluator or AdmissionEvaluator(uploader, self.ledger, self.audit)
        self.control_stream = control_stream

        self.queue: queue.Queue[CandidateUpload | None] = queue.Queue()
        self.readiness = ReadinessProbe(
            attempts=uploader.readiness_attempts,
            delay=uploader.readiness_delay,
            check_open_handles=uploader.check_open_handles,
        )
        self.tailer = AuthLogTailer(uploader.auth_log, self.submit, poll_interval=uploader.poll_interval)
        self.watcher = DirectoryWatcher(
            uploader.inbound_directory,
            uploader.ssh_key_dir,
            self.submit,
            probe=self.readiness,
            poll_interval=uploader.poll_interval,
            retry_interval=uploader.retry_interval,
        )
        self.control_reader = ControlInputReader(control_stream, self.submit) if control_stream is not None else None

        self.retry_interval = uploader.retry_interval
        self._clock = clock
        self._judged: dict[Path, tuple[tuple[int, float], float]] = {}

        self._threads: list[threading.Thread] = []
        self._consumer: threading.Thread | None = None
        self.stats: dict[str, int] = {decision.value: 0 for decision in AdmissionDecision}
        self.stats["dropped"] = 0
        self.stats["duplicate"] = 0

    def submit(self, candidate: CandidateUpload) -> None:
        """Queue a candidate for evaluation."""
        LOG.debug("Queued %s from %s", candidate.file_path, candidate.source)
        self.queue.put(candidate)

    @staticmethod
    def _signature(file_path: Path) -> tuple[Path, tuple[int, float]] | None:
        try:
            stat = file_path.stat()
            return file_path.resolve(), (stat.st_size, stat.st_mtime)
        except OSError:
            return None

    def _already_judged(self, file_path: Path, now: float) -> bool:
        """Whether this exact file content was judged recently."""
        for path, (_, judged_at) in list(self._judged.items()):
            if now - judged_at >= self.retry_interval:
                del self._judged[path]

        signature = self._signature(file_path)
        if signature is None:
            return False
        path, current = signature
        previous = self._judged.get(path)
        return previous is not None and previous[0] == current

    def _remember(self, file_path: Path, now: float) -> None:
        signature = self._signature(file_path)
        if signature is None:
            return
        path, current = signature
        self._judged[path] = (current, now)

    def process(self, candidate: CandidateUpload) -> AdmissionResult | None:
        """
        Resolve and evaluate one candidate.

        Credential, storage, ledger and probe errors are logged and the
        candidate is dropped; they never stop the intake. Auth log reports
        arrive when the session opens, so their files must first pass the
        same readiness check as inbound files.
        """
        try:
            fingerprint = self.resolver.resolve(candidate)
        except CredentialUnreadable as e:
            LOG.warning("Dropping %s: %s", candidate.file_path, e)
            self.stats["dropped"] += 1
            return None

        now = self._clock()
        if self._already_judged(candidate.file_path, now):
            LOG.debug("Skipping %s from %s: already judged", candidate.file_path, candidate.source)
            self.stats["duplicate"] += 1
            return None

        if (
            candidate.source == "auth_log"
            and candidate.file_path.exists()
            and not self.readiness.is_ready(candidate.file_path)
        ):
            LOG.info("Leaving %s for the inbound watcher: transfer not finished", candidate.file_path)
            self.stats[AdmissionDecision.SKIPPED.value] += 1
            return AdmissionResult(candidate, fingerprint, AdmissionDecision.SKIPPED, "upload still in progress")

        try:
            result = self.evaluator.evaluate(fingerprint, candidate)
        except (IntakeError, OSError) as e:
            LOG.error("Evaluation of %s for %s failed: %s", candidate.file_path, fingerprint, e)
            self.stats["dropped"] += 1
            return None

        if result.decision is not AdmissionDecision.SKIPPED:
            # Rejected files stay in place and must not be charged again
            self._remember(candidate.file_path, now)
        self.stats[result.decision.value] += 1
        return result

    def _consume(self) -> None:
        while True:
            candidate = self.queue.get()
            try:
                if candidate is _SHUTDOWN:
                    return
                self.process(candidate)
            except Exception:
                LOG.exception("Unexpected error processing %s", candidate)
            finally:
                self.queue.task_done()

    def _spawn(self, name: str, target: object) -> threading.Thread:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)
        return thread

    def start(self) -> None:
        """Start the consumer and every producer."""
        if self._consumer is not None:
            return
        self._consumer = threading.Thread(target=self._consume, name="intake-evaluator", daemon=True)
        self._consumer.start()

        self._spawn("intake-auth-log", self.tailer.run)
        self._spawn("intake-inbound", self.watcher.run)
        if self.control_reader is not None:
            self._spawn("intake-control", self.control_reader.run)
        LOG.info("Upload intake started, monitoring %s and %s", self.tailer.path, self.watcher.inbound_directory)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop producers, let the consumer finish the queue, then stop it."""
        self.tailer.stop()
        self.watcher.stop()
        if self.control_reader is not None:
            self.control_reader.stop()
        for thread in self._threads:
            # The control reader may block on its stream; it is a daemon thread
            thread.join(timeout=timeout)
        self._threads.clear()

        if self._consumer is not None:
            self.queue.put(_SHUTDOWN)
            self._consumer.join(timeout=timeout)
            self._consumer = None
        LOG.info("Upload intake stopped")

    def run_forever(self) -> None:
        """Start the service and block until interrupted."""
        self.start()
        try:
            while self._consumer is not None and self._consumer.is_alive():
                self._consumer.join(timeout=1.0)
        finally:
            self.stop()

    def sweep_once(self) -> list[AdmissionResult]:
        """Evaluate everything currently waiting in the inbound directory."""
        candidates = self.watcher.scan()
        results: list[AdmissionResult] = []
        if not candidates:
            LOG.info("No uploads waiting in %s", self.watcher.inbound_directory)
            return results

        with tqdm(
            total=len(candidates),
            desc="Evaluating uploads",
            unit="file",
            file=sys.stderr,
            bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
        ) as progress:
            for candidate in candidates:
                try:
                    result = self.process(candidate)
                    if result is not None:
                        results.append(result)
                    progress.set_description(f"Checked {candidate.file_path.stem[:20]}")
                finally:
                    progress.update(1)

        LOG.info("Sweep complete: %s", ", ".join(f"{k}={v}" for k, v in self.stats.items() if v))
        return results


def check_probe_available() -> bool:
    """Whether ffprobe can be run; logs the reason when it cannot."""
    try:
        FFmpegProbe.check_availability()
    except FFmpegError:
        return False
    return True
