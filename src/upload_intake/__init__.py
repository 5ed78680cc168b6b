"""Upload intake - identity-scoped admission control for contributor audio uploads."""

from __future__ import annotations

__version__ = "0.1.0"
__description__ = "Identity-scoped admission control for contributor audio uploads"

# Public API exports
from .config import IntakeConfig
from .core import (
    AdmissionDecision,
    AdmissionEvaluator,
    AdmissionResult,
    AuditLog,
    CandidateUpload,
    ConfigError,
    CredentialUnreadable,
    EscalationController,
    FFmpegError,
    FFmpegProbe,
    IdentityLedger,
    IdentityRecord,
    IdentityResolver,
    IdentityState,
    IntakeError,
    LedgerError,
    StorageError,
)
from .service import IntakeService

__all__ = [
    # Configuration
    "IntakeConfig",
    # Core functionality
    "AdmissionEvaluator",
    "AuditLog",
    "EscalationController",
    "FFmpegProbe",
    "IdentityLedger",
    "IdentityResolver",
    "IntakeService",
    # Enums and data classes
    "AdmissionDecision",
    "AdmissionResult",
    "CandidateUpload",
    "IdentityRecord",
    "IdentityState",
    # Exceptions
    "ConfigError",
    "CredentialUnreadable",
    "FFmpegError",
    "IntakeError",
    "LedgerError",
    "StorageError",
]
