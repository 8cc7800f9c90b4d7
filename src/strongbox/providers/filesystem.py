"""
filesystem.py — Directory provider

Uses a directory (another disk, a network share, a folder synced by some
other tool) as the remote. An empty STRONGBOX_REPO file marks the directory
as a repository. Each vault is one object file in that directory and its
marker is the SHA-256 of the stored bytes.

Compare-and-swap runs inside the object's exclusive section, so two
processes pushing to the same repository cannot interleave check and write.
"""

from __future__ import annotations
import hashlib
import logging
from pathlib import Path
from typing import Optional, Union

from ..atomic import atomic_write
from ..errors import AtomicCommitError, ConfigurationError, ConflictError, NotFoundError, TransportError
from ..locking import VaultLock
from .base import RemoteSnapshot, call_with_timeout

logger = logging.getLogger(__name__)

REPO_MARKER = "STRONGBOX_REPO"


def init_repository(path: Union[str, Path]) -> Path:
    """Create (if needed) and mark a directory as a strongbox repository."""
    root = Path(path)
    root.mkdir(parents=True, exist_ok=True)
    (root / REPO_MARKER).touch(exist_ok=True)
    return root


def _marker_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FilesystemProvider:
    def __init__(self, root: Union[str, Path], object_name: str, name: str = "filesystem"):
        self.root = Path(root)
        self.object_name = object_name
        self.object_path = self.root / object_name
        self.provider_id = f"filesystem:{name}"

    def _read(self) -> RemoteSnapshot:
        logger.debug("filesystem read %s", self.object_path)
        try:
            data = self.object_path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError("Remote object", str(self.object_path)) from exc
        except OSError as exc:
            raise TransportError(f"{self.object_path}: {exc}") from exc
        return RemoteSnapshot(ciphertext=data, marker=_marker_of(data))

    def _compare_and_swap(self, ciphertext: bytes, expected_marker: Optional[str]) -> str:
        with VaultLock.for_path(self.object_path).exclusive():
            try:
                current: Optional[str] = self._read().marker
            except NotFoundError:
                current = None
            if current != expected_marker:
                raise ConflictError(
                    f"{self.object_path}: expected marker {expected_marker!r}, remote has {current!r}"
                )
            try:
                atomic_write(self.object_path, ciphertext)
            except AtomicCommitError as exc:
                raise TransportError(str(exc)) from exc
        logger.debug("filesystem write %s (%d bytes)", self.object_path, len(ciphertext))
        return _marker_of(ciphertext)

    def fetch(self, timeout: Optional[float] = None) -> RemoteSnapshot:
        return call_with_timeout(self._read, timeout, f"fetch {self.provider_id}")

    def push(self, ciphertext: bytes, expected_marker: Optional[str], timeout: Optional[float] = None) -> str:
        return call_with_timeout(
            lambda: self._compare_and_swap(ciphertext, expected_marker),
            timeout,
            f"push {self.provider_id}",
        )

    def ping(self, timeout: Optional[float] = None) -> None:
        if not self.root.is_dir():
            raise TransportError(f"repository directory {self.root} is not reachable")
        if not (self.root / REPO_MARKER).exists():
            raise ConfigurationError(f"{self.root} is not a strongbox repository (missing {REPO_MARKER})")
