"""
System constants that should never change.

These are technical/protocol values, not policy. Quotas and thresholds
belong in the YAML config file instead.
"""

# Defaults for optional uploader settings
DEFAULT_AUTH_LOG = "/var/log/auth.log"
DEFAULT_LEDGER_PATH = "userstats.db"
DEFAULT_ACCEPTED_FILE_TYPES = (".mp3", ".wav", ".flac", ".ogg", ".m4a")
DEFAULT_READINESS_ATTEMPTS = 5
DEFAULT_READINESS_DELAY = 5.0

# File handling
BYTES_PER_MEGABYTE = 1024 * 1024
AUDIT_LOG_FILENAME = "access.log"
PARTIAL_SUFFIX = ".part"  # Temporary name while a file is copied into storage

# Audit messages
AUDIT_UNSUPPORTED_TYPE = "unsupported file type"
AUDIT_SIZE_QUOTA = "exceeded upload size limit"
AUDIT_AIRTIME_QUOTA = "exceeded airtime limit"
AUDIT_UPLOADED = "uploaded successfully"
AUDIT_TIMED_OUT = "user timed out"
AUDIT_BANNED = "user banned"
AUDIT_BANNED_REJECTED = "upload rejected, identity is banned"

# Log line markers for scp sessions in the sshd auth log
AUTH_LOG_ACCEPTED_MARKER = "Accepted publickey"
AUTH_LOG_SCP_MARKER = "scp"

VERBOSE_LOGGING_THRESHOLD = 2
