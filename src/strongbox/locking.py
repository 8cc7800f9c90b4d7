"""
locking.py — Per-vault exclusive section

At most one local mutation or sync pass may be in flight for a given vault.
Within a process this is a re-entrant lock shared by every handle on the
same resolved path; across processes an advisory flock on "<vault>.lock"
is held while the outermost section is open (POSIX only).
"""

from __future__ import annotations
import logging
import os
import threading
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

try:
    import fcntl
except ImportError:  # Windows: in-process exclusion only
    fcntl = None

from .errors import LockError

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
# Entries disappear once no handle references the lock.
_registry: "weakref.WeakValueDictionary[str, VaultLock]" = weakref.WeakValueDictionary()


class VaultLock:
    """Re-entrant exclusive section for one vault path."""

    def __init__(self, vault_path: Path):
        self.vault_path = vault_path
        self.lock_path = vault_path.with_name(vault_path.name + ".lock")
        self._lock = threading.RLock()
        self._depth = 0
        self._fd: Optional[int] = None

    @classmethod
    def for_path(cls, vault_path: Path) -> "VaultLock":
        key = str(Path(vault_path).resolve())
        with _registry_guard:
            lock = _registry.get(key)
            if lock is None:
                lock = cls(Path(key))
                _registry[key] = lock
            return lock

    def _acquire_file_lock(self) -> None:
        if fcntl is None:
            return
        try:
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as exc:
            raise LockError(f"{self.lock_path}: {exc}") from exc
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as exc:
            os.close(fd)
            raise LockError(f"{self.lock_path}: {exc}") from exc
        self._fd = fd

    def _release_file_lock(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    @property
    def held(self) -> bool:
        return self._depth > 0

    @contextmanager
    def exclusive(self) -> Iterator["VaultLock"]:
        """Hold the section for the duration of the block, on every exit path."""
        self._lock.acquire()
        try:
            if self._depth == 0:
                self._acquire_file_lock()
                logger.debug("acquired exclusive section for %s", self.vault_path)
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._release_file_lock()
                    logger.debug("released exclusive section for %s", self.vault_path)
        finally:
            self._lock.release()
