"""ffprobe integration for measuring candidate airtime."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import TYPE_CHECKING, Any, ClassVar

from .base import IntakeError

if TYPE_CHECKING:
    from pathlib import Path

LOG = logging.getLogger(__name__)


class FFmpegError(IntakeError):
    """FFmpeg-specific error."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        return_code: int | None = None,
        stderr: str | None = None,
        file_path: Path | None = None,
    ) -> None:
        """Initialize FFmpeg error with detailed context."""
        super().__init__(message, file_path=file_path)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class FFmpegProbe:
    """ffprobe wrapper with a small cache keyed by path and modification time."""

    _probe_cache: ClassVar[dict[tuple[Path, float], dict[str, Any]]] = {}

    @staticmethod
    def check_availability() -> None:
        """Check that ffprobe is on the PATH."""
        if not shutil.which("ffprobe"):
            error_msg = "Missing FFmpeg executable: ffprobe"
            LOG.error(error_msg)
            raise FFmpegError(error_msg)

    @classmethod
    def _get_cache_key(cls, file_path: Path) -> tuple[Path, float]:
        """Generate cache key based on file path and modification time."""
        try:
            mtime = file_path.stat().st_mtime
        except OSError:
            # File doesn't exist or other error - return uncacheable key
            return (file_path, -1.0)
        else:
            return (file_path, mtime)

    @classmethod
    def clear_cache(cls) -> None:
        cls._probe_cache.clear()

    @classmethod
    def probe_media(cls, file_path: Path, timeout: int = 30) -> dict[str, Any]:
        """Probe the container format of a media file."""
        cache_key = cls._get_cache_key(file_path)
        if cache_key[1] >= 0 and cache_key in cls._probe_cache:
            return cls._probe_cache[cache_key]

        cls.check_availability()

        cmd = [
            "ffprobe",
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            str(file_path),
        ]

        try:
            result = subprocess.run(  # noqa: S603
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout,
                encoding="utf-8",
                errors="replace",
            )

            probe_data = json.loads(result.stdout)

            if cache_key[1] >= 0:
                cls._probe_cache[cache_key] = probe_data
        except subprocess.CalledProcessError as e:
            error_details = e.stderr or e.stdout or "No error output"
            msg = f"ffprobe failed for {file_path}: {error_details.strip()}"
            raise FFmpegError(
                msg,
                command=cmd,
                return_code=e.returncode,
                file_path=file_path,
                stderr=e.stderr,
            ) from e
        except subprocess.TimeoutExpired as e:
            msg = f"ffprobe timed out for {file_path}"
            raise FFmpegError(msg, command=cmd, file_path=file_path) from e
        except json.JSONDecodeError as e:
            msg = f"Invalid JSON from ffprobe for {file_path}: {e}"
            raise FFmpegError(msg, command=cmd, file_path=file_path) from e
        else:
            return probe_data

    @classmethod
    def get_duration(cls, file_path: Path, timeout: int = 30) -> float:
        """Return the media duration in seconds."""
        data = cls.probe_media(file_path, timeout=timeout)
        raw = data.get("format", {}).get("duration")
        if raw is None:
            msg = f"No duration reported for {file_path}"
            raise FFmpegError(msg, file_path=file_path)
        try:
            return float(raw)
        except (TypeError, ValueError) as e:
            msg = f"Unparseable duration {raw!r} for {file_path}"
            raise FFmpegError(msg, file_path=file_path) from e
