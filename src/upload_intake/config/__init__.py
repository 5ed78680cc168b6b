"""Configuration management for the upload intake."""

from __future__ import annotations

from .constants import *  # noqa: F403, F401
from .settings import GlobalConfig, IntakeConfig, UploaderConfig

__all__ = [
    "GlobalConfig",
    "IntakeConfig",
    "UploaderConfig",
]
