"""Core admission-control engine for the upload intake."""

from .base import (
    AdmissionDecision,
    AdmissionResult,
    CandidateUpload,
    ConfigError,
    CredentialUnreadable,
    IdentityState,
    IntakeError,
    LedgerError,
    StorageError,
)
from .audit import AuditLog
from .config import RuntimeOptions, apply_runtime_options
from .escalation import EscalationController
from .evaluator import AdmissionEvaluator
from .ffmpeg import FFmpegError, FFmpegProbe
from .file_manager import FileManager, FileOperation
from .identity import IdentityResolver, KeyDirectory, fingerprint_public_key
from .ledger import IdentityLedger, IdentityRecord

__all__ = [
    "AdmissionDecision",
    "AdmissionEvaluator",
    "AdmissionResult",
    "AuditLog",
    "CandidateUpload",
    "ConfigError",
    "CredentialUnreadable",
    "EscalationController",
    "FFmpegError",
    "FFmpegProbe",
    "FileManager",
    "FileOperation",
    "IdentityLedger",
    "IdentityRecord",
    "IdentityResolver",
    "IdentityState",
    "IntakeError",
    "KeyDirectory",
    "LedgerError",
    "RuntimeOptions",
    "StorageError",
    "apply_runtime_options",
    "fingerprint_public_key",
]
