"""Base types and exceptions shared by the intake components."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

LOG = logging.getLogger(__name__)


class AdmissionDecision(Enum):
    """Outcome of evaluating one candidate upload."""

    ADMITTED = "admitted"
    REJECTED_UNSUPPORTED_TYPE = "rejected_unsupported_type"
    REJECTED_SIZE_QUOTA = "rejected_size_quota"
    REJECTED_AIRTIME_QUOTA = "rejected_airtime_quota"
    REJECTED_BANNED = "rejected_banned"
    SKIPPED = "skipped"

    @property
    def is_violation(self) -> bool:
        """Whether the decision counts as a strike against the identity."""
        return self in {
            AdmissionDecision.REJECTED_UNSUPPORTED_TYPE,
            AdmissionDecision.REJECTED_SIZE_QUOTA,
            AdmissionDecision.REJECTED_AIRTIME_QUOTA,
        }


class IdentityState(Enum):
    """Escalation state of an identity after a decision."""

    ACTIVE = "active"
    TIMED_OUT = "timed_out"
    BANNED = "banned"


@dataclass(frozen=True)
class CandidateUpload:
    """
    An unvalidated (identity, file) pair awaiting an admission decision.

    Exactly one of ``key_path`` (a public key file) or ``key_fingerprint``
    (the token sshd wrote to the auth log) identifies the contributor.
    """

    file_path: Path
    key_path: Path | None = None
    key_fingerprint: str | None = None
    source: str = "control"


@dataclass
class AdmissionResult:
    """Result of one admission decision."""

    candidate: CandidateUpload
    fingerprint: str
    decision: AdmissionDecision
    message: str = ""
    state: IdentityState = IdentityState.ACTIVE
    stored_path: Path | None = None


class IntakeError(Exception):
    """Base exception for upload intake errors."""

    def __init__(
        self,
        message: str,
        file_path: Path | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.file_path = file_path
        self.cause = cause


class ConfigError(IntakeError):
    """Configuration is missing, unreadable or invalid."""


class CredentialUnreadable(IntakeError):
    """Key material could not be read or parsed; no identity can be charged."""


class LedgerError(IntakeError):
    """The identity ledger could not be read or written."""


class StorageError(IntakeError):
    """A file could not be handed off to (or restored from) storage."""
