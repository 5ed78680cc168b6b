"""Configuration management for the upload intake."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..core.base import ConfigError
from .constants import (
    DEFAULT_ACCEPTED_FILE_TYPES,
    DEFAULT_AUTH_LOG,
    DEFAULT_LEDGER_PATH,
    DEFAULT_READINESS_ATTEMPTS,
    DEFAULT_READINESS_DELAY,
)

LOG = logging.getLogger(__name__)

_REQUIRED_UPLOADER_KEYS = (
    "max_user_upload_size",
    "max_user_airtime",
    "ssh_key_dir",
    "access_log",
    "inbound_directory",
    "storage_directory",
    "strikes_before_timeout",
    "timeouts_before_ban",
)


def _normalize_extension(ext: str) -> str:
    ext = str(ext).strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


@dataclass
class UploaderConfig:
    """Admission policy, quotas and the paths the intake works on."""

    max_user_upload_size: int
    max_user_airtime: int
    ssh_key_dir: Path
    access_log: Path
    inbound_directory: Path
    storage_directory: Path
    strikes_before_timeout: int
    timeouts_before_ban: int
    accepted_upload_file_types: list[str] = field(default_factory=lambda: list(DEFAULT_ACCEPTED_FILE_TYPES))
    auth_log: Path = Path(DEFAULT_AUTH_LOG)
    ledger_path: Path = Path(DEFAULT_LEDGER_PATH)
    quota_period_hours: float = 24.0
    permanent_bans: bool = False
    poll_interval: float = 1.0
    readiness_attempts: int = DEFAULT_READINESS_ATTEMPTS
    readiness_delay: float = DEFAULT_READINESS_DELAY
    check_open_handles: bool = True
    retry_interval: float = 3600.0
    ffprobe_timeout: int = 30

    def accepts(self, file_path: Path) -> bool:
        """Check the file extension against the accepted types, ignoring case."""
        return file_path.suffix.lower() in self.accepted_upload_file_types


@dataclass
class GlobalConfig:
    """Global settings."""

    log_level: str = "INFO"


@dataclass
class IntakeConfig:
    """Main configuration class."""

    uploader: UploaderConfig
    global_: GlobalConfig = field(default_factory=GlobalConfig)

    @classmethod
    def load_from_file(cls, config_path: Path) -> IntakeConfig:
        """Load configuration from YAML file."""
        try:
            with config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            msg = f"Failed to load config from {config_path}: {e}"
            raise ConfigError(msg, file_path=config_path, cause=e) from e

        if not isinstance(data, dict):
            msg = f"Config file {config_path} does not contain a mapping"
            raise ConfigError(msg, file_path=config_path)

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> IntakeConfig:
        """Create config from dictionary."""
        uploader_config = cls._parse_uploader_config(data.get("uploader") or {})
        global_config = cls._parse_global_config(data.get("global") or {})

        return cls(uploader=uploader_config, global_=global_config)

    @classmethod
    def _parse_uploader_config(cls, uploader_data: dict[str, Any]) -> UploaderConfig:
        """Parse and validate the uploader section."""
        missing = [key for key in _REQUIRED_UPLOADER_KEYS if key not in uploader_data]
        if missing:
            msg = f"Missing required uploader settings: {', '.join(missing)}"
            raise ConfigError(msg)

        try:
            config = UploaderConfig(
                max_user_upload_size=int(uploader_data["max_user_upload_size"]),
                max_user_airtime=int(uploader_data["max_user_airtime"]),
                ssh_key_dir=Path(uploader_data["ssh_key_dir"]),
                access_log=Path(uploader_data["access_log"]),
                inbound_directory=Path(uploader_data["inbound_directory"]),
                storage_directory=Path(uploader_data["storage_directory"]),
                strikes_before_timeout=int(uploader_data["strikes_before_timeout"]),
                timeouts_before_ban=int(uploader_data["timeouts_before_ban"]),
                accepted_upload_file_types=[
                    _normalize_extension(ext)
                    for ext in uploader_data.get("accepted_upload_file_types", DEFAULT_ACCEPTED_FILE_TYPES)
                ],
                auth_log=Path(uploader_data.get("auth_log", DEFAULT_AUTH_LOG)),
                ledger_path=Path(uploader_data.get("ledger_path", DEFAULT_LEDGER_PATH)),
                quota_period_hours=float(uploader_data.get("quota_period_hours", 24.0)),
                permanent_bans=bool(uploader_data.get("permanent_bans", False)),
                poll_interval=float(uploader_data.get("poll_interval", 1.0)),
                readiness_attempts=int(uploader_data.get("readiness_attempts", DEFAULT_READINESS_ATTEMPTS)),
                readiness_delay=float(uploader_data.get("readiness_delay", DEFAULT_READINESS_DELAY)),
                check_open_handles=bool(uploader_data.get("check_open_handles", True)),
                retry_interval=float(uploader_data.get("retry_interval", 3600.0)),
                ffprobe_timeout=int(uploader_data.get("ffprobe_timeout", 30)),
            )
        except (TypeError, ValueError) as e:
            msg = f"Invalid uploader setting: {e}"
            raise ConfigError(msg, cause=e) from e

        cls._validate_uploader_config(config)
        return config

    @staticmethod
    def _validate_uploader_config(config: UploaderConfig) -> None:
        if config.strikes_before_timeout < 1:
            msg = "strikes_before_timeout must be at least 1"
            raise ConfigError(msg)
        if config.timeouts_before_ban < 1:
            msg = "timeouts_before_ban must be at least 1"
            raise ConfigError(msg)
        if config.max_user_upload_size < 0 or config.max_user_airtime < 0:
            msg = "Quotas must not be negative"
            raise ConfigError(msg)
        if config.quota_period_hours < 0:
            msg = "quota_period_hours must not be negative"
            raise ConfigError(msg)
        if config.readiness_attempts < 1:
            msg = "readiness_attempts must be at least 1"
            raise ConfigError(msg)
        if not config.accepted_upload_file_types:
            LOG.warning("No accepted upload file types configured; every upload will be rejected")

    @classmethod
    def _parse_global_config(cls, global_data: dict[str, Any]) -> GlobalConfig:
        """Parse global configuration."""
        log_level = str(global_data.get("log_level", "INFO")).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if log_level not in valid_levels:
            LOG.warning(
                "Invalid log level '%s'. Using 'INFO'. Valid options: %s",
                log_level,
                ", ".join(sorted(valid_levels)),
            )
            log_level = "INFO"

        return GlobalConfig(log_level=log_level)
