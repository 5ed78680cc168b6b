"""Resolve contributor key material to a stable identity fingerprint."""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import struct
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from .base import CredentialUnreadable

if TYPE_CHECKING:
    from .base import CandidateUpload

LOG = logging.getLogger(__name__)

FINGERPRINT_PREFIX = "SHA256:"


def _blob_key_type(blob: bytes) -> str:
    """Read the key type string that prefixes an OpenSSH public key blob."""
    if len(blob) < 4:
        msg = "Key blob too short"
        raise ValueError(msg)
    (length,) = struct.unpack(">I", blob[:4])
    if length == 0 or len(blob) < 4 + length:
        msg = "Key blob has an invalid type header"
        raise ValueError(msg)
    return blob[4 : 4 + length].decode("ascii")


def fingerprint_public_key(key_path: Path) -> str:
    """
    Compute the OpenSSH SHA256 fingerprint of a public key file.

    The result matches what sshd logs for an accepted key
    (``SHA256:`` followed by unpadded base64 of the blob digest), so it is
    stable across restarts and comparable with auth log tokens.

    Raises:
        CredentialUnreadable: if the file cannot be read or is not a public key

    """
    try:
        text = key_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        msg = f"Cannot read key material {key_path}: {e}"
        raise CredentialUnreadable(msg, file_path=key_path, cause=e) from e

    for line in text.splitlines():
        parts = line.strip().split()
        if len(parts) < 2 or parts[0].startswith("#"):
            continue
        key_type, encoded = parts[0], parts[1]
        try:
            blob = base64.b64decode(encoded, validate=True)
            blob_type = _blob_key_type(blob)
        except (binascii.Error, ValueError, UnicodeDecodeError) as e:
            msg = f"Malformed public key in {key_path}: {e}"
            raise CredentialUnreadable(msg, file_path=key_path, cause=e) from e
        if blob_type != key_type:
            msg = f"Key type mismatch in {key_path}: {key_type} vs {blob_type}"
            raise CredentialUnreadable(msg, file_path=key_path)

        digest = hashlib.sha256(blob).digest()
        return FINGERPRINT_PREFIX + base64.b64encode(digest).decode("ascii").rstrip("=")

    msg = f"No public key found in {key_path}"
    raise CredentialUnreadable(msg, file_path=key_path)


def normalize_fingerprint(token: str) -> str:
    """Return a log fingerprint token in ``SHA256:<b64>`` form."""
    token = token.strip().rstrip("=")
    if token.startswith(FINGERPRINT_PREFIX):
        return token
    return FINGERPRINT_PREFIX + token


class KeyDirectory:
    """Index of the contributor public keys held in the SSH key directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._index: dict[str, Path] = {}
        self._indexed_mtime: float | None = None
        self._lock = threading.Lock()

    def _directory_mtime(self) -> float | None:
        try:
            return self.directory.stat().st_mtime
        except OSError:
            return None

    def _rebuild(self) -> None:
        index: dict[str, Path] = {}
        try:
            candidates = sorted(p for p in self.directory.iterdir() if p.is_file())
        except OSError as e:
            LOG.warning("Cannot list key directory %s: %s", self.directory, e)
            candidates = []

        for key_file in candidates:
            try:
                index[fingerprint_public_key(key_file)] = key_file
            except CredentialUnreadable as e:
                LOG.debug("Ignoring %s in key directory: %s", key_file, e)

        self._index = index
        self._indexed_mtime = self._directory_mtime()
        LOG.debug("Indexed %d public keys in %s", len(index), self.directory)

    def find(self, token: str) -> Path | None:
        """Find the key file whose fingerprint matches a log token."""
        fingerprint = normalize_fingerprint(token)
        with self._lock:
            if self._indexed_mtime is None or self._indexed_mtime != self._directory_mtime():
                self._rebuild()
            key_file = self._index.get(fingerprint)
            if key_file is None or not key_file.exists():
                # Keys may have been rewritten in place without touching the directory
                self._rebuild()
                key_file = self._index.get(fingerprint)

        if key_file is not None:
            return key_file

        # Fall back to a key file named after the token itself
        bare = fingerprint[len(FINGERPRINT_PREFIX) :]
        if "/" not in bare:
            named = self.directory / bare
            if named.is_file():
                return named
        return None


class IdentityResolver:
    """Turn a candidate's key reference into a ledger fingerprint."""

    def __init__(self, key_directory: KeyDirectory) -> None:
        self.key_directory = key_directory

    def resolve(self, candidate: CandidateUpload) -> str:
        """
        Resolve the identity fingerprint for a candidate upload.

        The fingerprint is always derived from key material on disk, never
        trusted from the log token alone.

        Raises:
            CredentialUnreadable: if no key material can be found or parsed

        """
        if candidate.key_path is not None:
            return fingerprint_public_key(candidate.key_path)

        if candidate.key_fingerprint:
            key_file = self.key_directory.find(candidate.key_fingerprint)
            if key_file is None:
                msg = f"No key material for fingerprint {candidate.key_fingerprint}"
                raise CredentialUnreadable(msg, file_path=candidate.file_path)
            return fingerprint_public_key(key_file)

        msg = f"Candidate {candidate.file_path} carries no key reference"
        raise CredentialUnreadable(msg, file_path=candidate.file_path)
