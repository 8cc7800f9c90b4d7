"""
vault.py — Strongbox vault handle

The caller-facing surface: open or create a vault with a master secret,
create/update/delete entries, read history, and trigger sync passes.

Every mutation is applied to a copy of the in-memory Book, encoded and
committed with atomic_write(); only after the commit succeeds does the
handle switch to the new Book. A failed commit therefore leaves both the
file and the handle exactly as they were.

Several handles (in this process or another) may share one vault file.
Entering the exclusive section reloads the Book if the file was replaced
since this handle last read or wrote it, so a commit always builds on the
latest snapshot on disk.

Example:
    from strongbox import Vault, MemoryProvider

    vault = Vault.create("personal.sbx", "correct horse battery staple")
    vault.create_entry("github", {"username": "me", "secret": "hunter2"})
    vault.sync(MemoryProvider("personal.sbx"))
"""

from __future__ import annotations
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Mapping, Optional, Tuple, TypeVar, Union

from . import codec
from .atomic import atomic_write, cleanup_orphans
from .book import Book, EntryHistory, EntryMetadata, EntryVersion
from .crypto import KdfParams, VaultKey
from .errors import ConfigurationError, NotFoundError
from .locking import VaultLock
from .merge import TieBreak
from .providers.base import Provider
from .sync import SyncEngine, SyncOutcome
from .sync_state import SyncStateStore

logger = logging.getLogger(__name__)

R = TypeVar("R")

PathLike = Union[str, Path]


def default_state_path(vault_path: Path) -> Path:
    return vault_path.with_name(vault_path.name + ".sync.json")


def _disk_stamp(path: Path) -> Tuple[int, int, int]:
    """Identity of the file currently at ``path``; atomic_write always changes it."""
    st = os.stat(path)
    return (st.st_ino, st.st_size, st.st_mtime_ns)


class Vault:
    """Handle on one vault file and its decrypted Book."""

    def __init__(
        self,
        path: PathLike,
        key: VaultKey,
        book: Book,
        state_store: Optional[SyncStateStore] = None,
        temp_dir: Optional[PathLike] = None,
    ):
        self.path = Path(path)
        self.key = key
        self._book = book
        self.state_store = state_store if state_store is not None else SyncStateStore(default_state_path(self.path))
        self.temp_dir = Path(temp_dir) if temp_dir is not None else None
        self._lock = VaultLock.for_path(self.path)
        self._stamp: Optional[Tuple[int, int, int]] = None

    # -- lifecycle ----------------------------------------------------------

    @classmethod
    def create(
        cls,
        path: PathLike,
        master_secret: str,
        kdf: Optional[KdfParams] = None,
        state_store: Optional[SyncStateStore] = None,
        temp_dir: Optional[PathLike] = None,
    ) -> "Vault":
        """
        Create a new vault holding an empty Book.

        Raises:
            ConfigurationError: a file already exists at ``path``.
        """
        target = Path(path)
        if target.exists():
            raise ConfigurationError(f"vault {target} already exists")
        target.parent.mkdir(parents=True, exist_ok=True)
        key = VaultKey.generate(master_secret, kdf or KdfParams())
        vault = cls(target, key, Book(), state_store, temp_dir)
        with vault._lock.exclusive():
            if target.exists():
                raise ConfigurationError(f"vault {target} already exists")
            vault._commit(vault._book)
        logger.info("created vault %s", target)
        return vault

    @classmethod
    def open(
        cls,
        path: PathLike,
        master_secret: str,
        state_store: Optional[SyncStateStore] = None,
        temp_dir: Optional[PathLike] = None,
    ) -> "Vault":
        """
        Decrypt an existing vault. Leftover temporary files from interrupted
        commits are removed first.

        Raises:
            NotFoundError: no vault at ``path``.
            IntegrityError: wrong master secret or corrupted file.
            FormatVersionError: file written by an unknown format version.
            LockError: the lock file next to the vault cannot be used.
        """
        target = Path(path)
        if not target.is_file():
            raise NotFoundError("Vault", str(target))
        with VaultLock.for_path(target).exclusive():
            cleanup_orphans(target)
            try:
                data = target.read_bytes()
                stamp = _disk_stamp(target)
            except FileNotFoundError as exc:
                raise NotFoundError("Vault", str(target)) from exc
        header = codec.read_header(data)
        key = VaultKey(master_secret, header.salt, header.params)
        book = codec.decode(data, key)
        logger.debug("opened vault %s at revision %d", target, book.revision)
        vault = cls(target, key, book, state_store, temp_dir)
        vault._stamp = stamp
        return vault

    @classmethod
    def clone(
        cls,
        provider: Provider,
        path: PathLike,
        master_secret: str,
        state_store: Optional[SyncStateStore] = None,
        timeout: Optional[float] = None,
    ) -> "Vault":
        """
        Download a vault from ``provider`` into a new local file and record
        the download as the sync baseline for that provider.
        """
        target = Path(path)
        if target.exists():
            raise ConfigurationError(f"vault {target} already exists")
        snapshot = provider.fetch(timeout=timeout)
        header = codec.read_header(snapshot.ciphertext)
        key = VaultKey(master_secret, header.salt, header.params)
        book = codec.decode(snapshot.ciphertext, key)

        target.parent.mkdir(parents=True, exist_ok=True)
        vault = cls(target, key, book, state_store)
        with vault._lock.exclusive():
            atomic_write(target, snapshot.ciphertext)
            vault._stamp = _disk_stamp(target)
            vault.state_store.put(
                book.origin, provider.provider_id, book.revision, book.fingerprint(), snapshot.marker,
            )
        logger.info("cloned vault %s from %s", target, provider.provider_id)
        return vault

    @contextmanager
    def exclusive(self) -> Iterator["Vault"]:
        """
        The vault's exclusive section; re-entrant within a thread.

        On entry the handle picks up any snapshot another handle committed
        since this one last touched the file.
        """
        with self._lock.exclusive():
            self.reload()
            yield self

    def reload(self) -> bool:
        """
        Re-read the vault file if it changed on disk. Returns True when a
        newer snapshot was loaded.

        Raises:
            ConfigurationError: the file now holds a book of another origin.
        """
        with self._lock.exclusive():
            try:
                stamp = _disk_stamp(self.path)
            except FileNotFoundError:
                return False
            if stamp == self._stamp:
                return False
            book = codec.decode(self.path.read_bytes(), self.key)
            if book.origin != self._book.origin:
                raise ConfigurationError(f"{self.path} now holds a different book (origin {book.origin})")
            self._book = book
            self._stamp = stamp
        logger.info("reloaded %s at revision %d after an outside commit", self.path.name, book.revision)
        return True

    # -- commit -------------------------------------------------------------

    def _commit(self, book: Book) -> None:
        data = codec.encode(book, self.key)
        atomic_write(self.path, data, self.temp_dir)
        self._book = book
        self._stamp = _disk_stamp(self.path)
        logger.info("committed %s at revision %d", self.path.name, book.revision)

    def _mutate(self, operation: Callable[[Book], R]) -> R:
        with self.exclusive():
            candidate = self._book.copy()
            result = operation(candidate)
            self._commit(candidate)
            return result

    def replace_book(self, book: Book) -> None:
        """Commit a Book produced elsewhere (a pulled or merged snapshot)."""
        if book.origin != self._book.origin:
            raise ConfigurationError("replacement book has a different origin")
        with self.exclusive():
            self._commit(book.copy())

    # -- entry operations ---------------------------------------------------

    def create_entry(
        self,
        entry_id: str,
        fields: Mapping[str, str],
        tags: Iterable[str] = (),
        timestamp: Optional[int] = None,
    ) -> str:
        tags = tuple(tags)
        return self._mutate(lambda book: book.create_entry(entry_id, fields, tags, timestamp))

    def update_entry(
        self,
        entry_id: str,
        fields: Mapping[str, str],
        tags: Optional[Iterable[str]] = None,
        timestamp: Optional[int] = None,
    ) -> None:
        tags = tuple(tags) if tags is not None else None
        self._mutate(lambda book: book.update_entry(entry_id, fields, tags, timestamp))

    def delete_entry(self, entry_id: str, timestamp: Optional[int] = None) -> None:
        self._mutate(lambda book: book.delete_entry(entry_id, timestamp))

    def rename_entry(self, entry_id: str, new_id: str, timestamp: Optional[int] = None) -> str:
        return self._mutate(lambda book: book.rename_entry(entry_id, new_id, timestamp))

    def get(self, entry_id: str) -> EntryVersion:
        return self._book.get(entry_id)

    def history(self, entry_id: str) -> EntryHistory:
        return self._book.history(entry_id)

    def lineage(self, entry_id: str) -> List[EntryVersion]:
        return self._book.lineage(entry_id)

    def metadata(self, entry_id: str) -> EntryMetadata:
        return self._book.metadata(entry_id)

    def entry_ids(self, include_deleted: bool = False) -> List[str]:
        return self._book.entry_ids(include_deleted)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._book

    def __len__(self) -> int:
        return len(self._book)

    # -- book state ---------------------------------------------------------

    @property
    def book(self) -> Book:
        """A copy of the current Book; mutate through the handle instead."""
        return self._book.copy()

    @property
    def vault_id(self) -> str:
        return self._book.origin

    @property
    def revision(self) -> int:
        return self._book.revision

    def fingerprint(self) -> str:
        return self._book.fingerprint()

    # -- synchronization ----------------------------------------------------

    def sync(
        self,
        provider: Provider,
        timeout: Optional[float] = None,
        tie_break: TieBreak = TieBreak.DETERMINISTIC,
    ) -> SyncOutcome:
        return SyncEngine(self, timeout=timeout, tie_break=tie_break).run(provider)

    def sync_all(
        self,
        providers: Iterable[Provider],
        timeout: Optional[float] = None,
        tie_break: TieBreak = TieBreak.DETERMINISTIC,
    ) -> List[SyncOutcome]:
        return SyncEngine(self, timeout=timeout, tie_break=tie_break).run_all(providers)

    def __repr__(self) -> str:
        return f"Vault({str(self.path)!r}, revision={self.revision}, entries={len(self)})"
