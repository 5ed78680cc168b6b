"""Handoff of admitted files to storage and removal of rejected ones."""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..config.constants import PARTIAL_SUFFIX
from .base import StorageError

if TYPE_CHECKING:
    from pathlib import Path

LOG = logging.getLogger(__name__)


@dataclass
class FileOperation:
    """Represents a file operation that can be rolled back."""

    operation_type: str
    source_path: Path
    target_path: Path | None = None
    success: bool = False
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        """Set timestamp if not provided."""
        if self.timestamp == 0.0:
            self.timestamp = time.time()


class FileManager:
    """Moves files between the inbound location and the storage directory."""

    def __init__(self, storage_directory: Path) -> None:
        self.storage_directory = storage_directory

    def move_to_storage(self, source_path: Path) -> FileOperation:
        """
        Move a file into storage under its original name.

        The file is first copied to a hidden ``.part`` name and then renamed,
        so the converter only ever sees complete files.
        """
        target_path = self.storage_directory / source_path.name
        temp_path = self.storage_directory / f".{source_path.name}{PARTIAL_SUFFIX}"

        if target_path.exists():
            msg = f"Storage already holds {target_path.name}"
            raise StorageError(msg, file_path=source_path)

        try:
            self.storage_directory.mkdir(parents=True, exist_ok=True)
            shutil.move(source_path, temp_path)
            temp_path.replace(target_path)
        except (OSError, shutil.Error) as e:
            # Put back whatever made it to the temporary name
            if temp_path.exists() and not source_path.exists():
                try:
                    shutil.move(temp_path, source_path)
                except (OSError, shutil.Error):
                    LOG.exception("Failed to restore %s after failed move", source_path)
            msg = f"Moving {source_path} to storage failed: {e}"
            raise StorageError(msg, file_path=source_path, cause=e) from e

        LOG.debug("Moved %s -> %s", source_path, target_path)
        return FileOperation(
            operation_type="store",
            source_path=source_path,
            target_path=target_path,
            success=True,
        )

    def restore(self, operation: FileOperation) -> None:
        """Undo a store operation, putting the file back where it came from."""
        if operation.target_path is None or not operation.success:
            return
        try:
            operation.source_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(operation.target_path, operation.source_path)
        except (OSError, shutil.Error) as e:
            msg = f"Restoring {operation.source_path} from storage failed: {e}"
            raise StorageError(msg, file_path=operation.source_path, cause=e) from e
        operation.success = False
        LOG.info("Restored %s from storage", operation.source_path)

    def discard(self, file_path: Path) -> bool:
        """Delete a rejected file. Failures are logged, not raised."""
        try:
            file_path.unlink()
        except FileNotFoundError:
            return False
        except (OSError, PermissionError) as e:
            LOG.warning("Failed to delete rejected file %s: %s", file_path, e)
            return False
        LOG.debug("Deleted rejected file %s", file_path)
        return True
