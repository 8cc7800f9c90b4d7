"""
book.py — Strongbox Book Model

A Book is the plaintext, in-memory collection of password entries. Every
entry keeps its full history:

  - Versions are immutable and append-only; an update appends a new version
  - Deletion appends a tombstone version instead of removing anything
  - Renaming appends a tombstone to the old id and a version to the new
    id whose predecessor is the old id's last version, so lineage() can
    follow an entry across names
  - Versions live in one arena (a list) and entries refer to them by index
  - Each version links to its predecessor by version_id (a content hash),
    never by object reference
  - Logical timestamps follow a Lamport clock so histories from two devices
    can be interleaved deterministically

The fingerprint is a SHA-256 over the canonical form of the book's content.
It ignores insertion order, arena layout and the revision counter, so two
books with the same logical content always fingerprint identically.
"""

from __future__ import annotations
import datetime
import uuid
from dataclasses import dataclass, field
from functools import cached_property
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .canonical_json import canonical_hash
from .errors import DuplicateIdError, IntegrityError, NotFoundError
from .validate import validate_entry_id

BOOK_FORMAT = "strongbox-book"

# Field names whose values are masked in repr output.
SECRET_FIELDS = frozenset({"secret", "password", "totp"})


def _utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Versions and entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EntryVersion:
    """One immutable snapshot of an entry."""
    fields: Mapping[str, str]
    tags: Tuple[str, ...]
    timestamp: int
    predecessor: Optional[str] = None
    tombstone: bool = False
    written_at: str = ""
    renamed_from: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))
        object.__setattr__(self, "tags", tuple(sorted(set(self.tags))))

    @cached_property
    def version_id(self) -> str:
        """Content address of this version (wall-clock metadata excluded)."""
        return canonical_hash(self.identity())

    def identity(self) -> Dict[str, Any]:
        """The hashed part of a version: everything except written_at."""
        data: Dict[str, Any] = {
            "fields": dict(self.fields),
            "tags": list(self.tags),
            "timestamp": self.timestamp,
            "predecessor": self.predecessor,
            "tombstone": self.tombstone,
        }
        if self.renamed_from is not None:
            data["renamed_from"] = self.renamed_from
        return data

    def to_dict(self) -> Dict[str, Any]:
        data = self.identity()
        data["written_at"] = self.written_at
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "EntryVersion":
        if not isinstance(data, dict):
            raise IntegrityError("entry version is not an object")
        fields = data.get("fields")
        tags = data.get("tags")
        timestamp = data.get("timestamp")
        predecessor = data.get("predecessor")
        tombstone = data.get("tombstone")
        written_at = data.get("written_at")
        renamed_from = data.get("renamed_from")
        if not isinstance(fields, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in fields.items()
        ):
            raise IntegrityError("entry version fields must map strings to strings")
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise IntegrityError("entry version tags must be a list of strings")
        if not isinstance(timestamp, int) or isinstance(timestamp, bool) or timestamp < 1:
            raise IntegrityError("entry version timestamp must be a positive integer")
        if predecessor is not None and not isinstance(predecessor, str):
            raise IntegrityError("entry version predecessor must be a string or null")
        if not isinstance(tombstone, bool) or not isinstance(written_at, str):
            raise IntegrityError("entry version has malformed metadata")
        if renamed_from is not None and not isinstance(renamed_from, str):
            raise IntegrityError("entry version renamed_from must be a string or null")
        return cls(
            fields=fields,
            tags=tuple(tags),
            timestamp=timestamp,
            predecessor=predecessor,
            tombstone=tombstone,
            written_at=written_at,
            renamed_from=renamed_from,
        )

    def __repr__(self) -> str:
        shown = {
            k: ("****" if k in SECRET_FIELDS else v) for k, v in sorted(self.fields.items())
        }
        kind = "tombstone" if self.tombstone else "version"
        return f"EntryVersion({kind}, t={self.timestamp}, fields={shown}, tags={list(self.tags)})"


@dataclass
class Entry:
    """An entry id and the arena indices of its versions, oldest first."""
    entry_id: str
    version_indices: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class EntryMetadata:
    created: str
    changed: str
    version_count: int
    deleted: bool


class EntryHistory:
    """Lazy, restartable view over one entry's versions."""

    def __init__(self, arena: Sequence[EntryVersion], indices: Sequence[int]):
        self._arena = arena
        self._indices = tuple(indices)

    def __iter__(self) -> Iterator[EntryVersion]:
        for index in self._indices:
            yield self._arena[index]

    def __len__(self) -> int:
        return len(self._indices)

    def __getitem__(self, position: int) -> EntryVersion:
        return self._arena[self._indices[position]]


# ---------------------------------------------------------------------------
# Book
# ---------------------------------------------------------------------------

class Book:
    """Versioned collection of entries, operated on in plaintext in memory."""

    def __init__(self, origin: Optional[str] = None, created_at: Optional[str] = None):
        self.origin = origin or uuid.uuid4().hex
        self.created_at = created_at or _utc_now()
        self.revision = 0
        self.clock = 0
        self._arena: List[EntryVersion] = []
        self._entries: Dict[str, Entry] = {}

    # -- internal helpers ---------------------------------------------------

    def _current(self, entry: Entry) -> EntryVersion:
        return self._arena[entry.version_indices[-1]]

    def _live(self, entry_id: str) -> Optional[Entry]:
        entry = self._entries.get(entry_id)
        if entry is None or self._current(entry).tombstone:
            return None
        return entry

    def _timestamp_for(self, entry: Optional[Entry], timestamp: Optional[int]) -> int:
        if timestamp is None:
            return self.clock + 1
        if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 1:
            raise ValueError(f"timestamp must be a positive integer, got {timestamp!r}")
        if entry is not None and timestamp <= self._current(entry).timestamp:
            raise ValueError(
                f"timestamp {timestamp} does not advance history of {entry.entry_id!r}"
            )
        return timestamp

    def _append(self, entry_id: str, version: EntryVersion) -> None:
        entry = self._entries.get(entry_id)
        if entry is None:
            entry = Entry(entry_id)
            self._entries[entry_id] = entry
        self._arena.append(version)
        entry.version_indices.append(len(self._arena) - 1)
        self.clock = max(self.clock, version.timestamp)

    # -- mutations ----------------------------------------------------------

    def create_entry(
        self,
        entry_id: str,
        fields: Mapping[str, str],
        tags: Iterable[str] = (),
        timestamp: Optional[int] = None,
    ) -> str:
        """
        Create a new entry.

        An id whose entry was deleted can be created again; the new version
        is appended to the old history.

        Raises:
            DuplicateIdError: if a live entry with this id exists.
        """
        validate_entry_id(entry_id)
        if self._live(entry_id) is not None:
            raise DuplicateIdError(entry_id)
        previous = self._entries.get(entry_id)
        ts = self._timestamp_for(previous, timestamp)
        self._append(entry_id, EntryVersion(
            fields=fields,
            tags=tuple(tags),
            timestamp=ts,
            predecessor=self._current(previous).version_id if previous else None,
            written_at=_utc_now(),
        ))
        self.revision += 1
        return entry_id

    def update_entry(
        self,
        entry_id: str,
        fields: Mapping[str, str],
        tags: Optional[Iterable[str]] = None,
        timestamp: Optional[int] = None,
    ) -> None:
        """Append a new version. ``tags=None`` keeps the current tags."""
        entry = self._live(entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        current = self._current(entry)
        ts = self._timestamp_for(entry, timestamp)
        self._append(entry_id, EntryVersion(
            fields=fields,
            tags=current.tags if tags is None else tuple(tags),
            timestamp=ts,
            predecessor=current.version_id,
            written_at=_utc_now(),
        ))
        self.revision += 1

    def delete_entry(self, entry_id: str, timestamp: Optional[int] = None) -> None:
        entry = self._live(entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        current = self._current(entry)
        ts = self._timestamp_for(entry, timestamp)
        self._append(entry_id, EntryVersion(
            fields={},
            tags=(),
            timestamp=ts,
            predecessor=current.version_id,
            tombstone=True,
            written_at=_utc_now(),
        ))
        self.revision += 1

    def rename_entry(self, entry_id: str, new_id: str, timestamp: Optional[int] = None) -> str:
        """
        Move a live entry to ``new_id``.

        The old id gets a tombstone; the new id gets a copy of the current
        fields and tags whose predecessor is the old id's current version.
        Both versions share one timestamp and count as one mutation.

        Raises:
            NotFoundError: no live entry ``entry_id``.
            DuplicateIdError: a live entry ``new_id`` already exists.
        """
        validate_entry_id(new_id)
        entry = self._live(entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        if self._live(new_id) is not None:
            raise DuplicateIdError(new_id)
        current = self._current(entry)
        target = self._entries.get(new_id)
        ts = self._timestamp_for(entry, timestamp)
        if target is not None:
            ts = self._timestamp_for(target, ts)
        written_at = _utc_now()
        self._append(entry_id, EntryVersion(
            fields={},
            tags=(),
            timestamp=ts,
            predecessor=current.version_id,
            tombstone=True,
            written_at=written_at,
        ))
        self._append(new_id, EntryVersion(
            fields=current.fields,
            tags=current.tags,
            timestamp=ts,
            predecessor=current.version_id,
            written_at=written_at,
            renamed_from=entry_id,
        ))
        self.revision += 1
        return new_id

    # -- queries ------------------------------------------------------------

    def get(self, entry_id: str) -> EntryVersion:
        """Current version of a live entry."""
        entry = self._live(entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        return self._current(entry)

    def history(self, entry_id: str) -> EntryHistory:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        return EntryHistory(self._arena, entry.version_indices)

    def lineage(self, entry_id: str) -> List[EntryVersion]:
        """
        Versions reachable from the entry's current version by following
        predecessor links, oldest first. Unlike history() this crosses
        renames.
        """
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        by_id = {v.version_id: v for v in self._arena}
        chain: List[EntryVersion] = []
        seen = set()
        version: Optional[EntryVersion] = self._current(entry)
        while version is not None and version.version_id not in seen:
            seen.add(version.version_id)
            chain.append(version)
            version = by_id.get(version.predecessor) if version.predecessor else None
        chain.reverse()
        return chain

    def metadata(self, entry_id: str) -> EntryMetadata:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        first = self._arena[entry.version_indices[0]]
        last = self._current(entry)
        return EntryMetadata(
            created=first.written_at,
            changed=last.written_at,
            version_count=len(entry.version_indices),
            deleted=last.tombstone,
        )

    def entry_ids(self, include_deleted: bool = False) -> List[str]:
        """Entry ids in display (insertion) order."""
        return [
            entry_id for entry_id, entry in self._entries.items()
            if include_deleted or not self._current(entry).tombstone
        ]

    def __contains__(self, entry_id: object) -> bool:
        return isinstance(entry_id, str) and self._live(entry_id) is not None

    def __len__(self) -> int:
        return len(self.entry_ids())

    def histories(self) -> List[Tuple[str, List[EntryVersion]]]:
        """Every entry (deleted ones included) with its full version list."""
        return [
            (entry_id, [self._arena[i] for i in entry.version_indices])
            for entry_id, entry in self._entries.items()
        ]

    # -- content addressing -------------------------------------------------

    def fingerprint(self) -> str:
        return canonical_hash({
            "origin": self.origin,
            "entries": {
                entry_id: [v.version_id for v in versions]
                for entry_id, versions in self.histories()
            },
        })

    # -- serialization ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": BOOK_FORMAT,
            "origin": self.origin,
            "created_at": self.created_at,
            "revision": self.revision,
            "clock": self.clock,
            "order": self.entry_ids(include_deleted=True),
            "entries": {
                entry_id: [v.to_dict() for v in versions]
                for entry_id, versions in self.histories()
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Book":
        """
        Rebuild a Book from to_dict() output.

        Raises:
            IntegrityError: if the structure is not a well-formed book.
        """
        if not isinstance(data, dict) or data.get("format") != BOOK_FORMAT:
            raise IntegrityError("payload is not a strongbox book")
        origin = data.get("origin")
        created_at = data.get("created_at")
        revision = data.get("revision")
        order = data.get("order")
        entries = data.get("entries")
        if not isinstance(origin, str) or not isinstance(created_at, str):
            raise IntegrityError("book origin/created_at missing")
        if not isinstance(revision, int) or isinstance(revision, bool) or revision < 0:
            raise IntegrityError("book revision must be a non-negative integer")
        if not isinstance(order, list) or not isinstance(entries, dict):
            raise IntegrityError("book entries malformed")
        if sorted(order) != sorted(entries) or len(set(order)) != len(order):
            raise IntegrityError("book entry order does not match entries")

        histories: List[Tuple[str, List[EntryVersion]]] = []
        for entry_id in order:
            raw_versions = entries[entry_id]
            if not isinstance(raw_versions, list) or not raw_versions:
                raise IntegrityError(f"entry {entry_id!r} has no versions")
            histories.append((entry_id, [EntryVersion.from_dict(v) for v in raw_versions]))

        book = cls.assemble(origin, created_at, revision, histories)
        clock = data.get("clock")
        if isinstance(clock, int) and not isinstance(clock, bool):
            book.clock = max(book.clock, clock)
        return book

    @classmethod
    def assemble(
        cls,
        origin: str,
        created_at: str,
        revision: int,
        histories: Iterable[Tuple[str, Sequence[EntryVersion]]],
    ) -> "Book":
        """Build a book directly from ordered histories (used by decode and merge)."""
        book = cls(origin=origin, created_at=created_at)
        for entry_id, versions in histories:
            for version in versions:
                book._append(entry_id, version)
        book.revision = revision
        return book

    def copy(self) -> "Book":
        """Independent copy; versions are immutable and shared."""
        clone = Book.assemble(self.origin, self.created_at, self.revision, self.histories())
        clone.clock = self.clock
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.revision == other.revision and self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"Book(origin={self.origin[:8]}, revision={self.revision}, "
            f"entries={len(self)}, clock={self.clock})"
        )
