"""
merge.py — Entry-granularity merge of two diverged books

Both sides come from the same origin and share a common history prefix.
For every entry id present on either side:

  1. Union the versions, deduplicating by version_id (content addressed,
     so the shared prefix collapses)
  2. Order by logical timestamp; at equal timestamps a tombstone sorts
     last, then version_id decides, so the result does not depend on
     which side is local. TieBreak.REMOTE_WINS / LOCAL_WINS opt into
     treating one side as the later writer before version_id is consulted
  3. The last version is current, so a tombstone wins over any version
     from the other side with an earlier or equal timestamp, while a
     strictly later edit brings the entry back

Renames need no special rule: the old id carries a tombstone and the new
id a version linked to the old one. A concurrent edit of the old id with a
later timestamp revives it next to the renamed entry; an earlier edit stays
in the old id's history.

Nothing is discarded: every version from both sides survives in history.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Set, Tuple

from .book import Book, EntryVersion
from .errors import ConfigurationError

_LOCAL = "local"
_REMOTE = "remote"


class TieBreak(str, enum.Enum):
    """How versions with equal timestamps are ordered."""
    DETERMINISTIC = "deterministic"
    REMOTE_WINS = "remote_wins"
    LOCAL_WINS = "local_wins"


@dataclass
class MergeResult:
    """Result of merging a remote book into a local one."""
    book: Book
    added_versions: int
    conflicts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "revision": self.book.revision,
            "fingerprint": self.book.fingerprint(),
            "added_versions": self.added_versions,
            "conflict_count": len(self.conflicts),
            "conflicts": self.conflicts,
        }


def merge_histories(
    local: Sequence[EntryVersion],
    remote: Sequence[EntryVersion],
    tie_break: TieBreak = TieBreak.DETERMINISTIC,
) -> Tuple[List[EntryVersion], int, bool]:
    """
    Union two histories of the same entry.

    Returns:
        (ordered versions, number of versions new to the local side,
         True if both sides carry versions the other lacks)
    """
    local_ids = {v.version_id for v in local}
    remote_ids = {v.version_id for v in remote}

    tagged: List[Tuple[EntryVersion, str]] = [(v, _LOCAL) for v in local]
    seen: Set[str] = set(local_ids)
    added = 0
    for version in remote:
        if version.version_id not in seen:
            seen.add(version.version_id)
            tagged.append((version, _REMOTE))
            added += 1

    later = {TieBreak.REMOTE_WINS: _REMOTE, TieBreak.LOCAL_WINS: _LOCAL}.get(tie_break)

    def sort_key(item: Tuple[EntryVersion, str]) -> Tuple[int, int, int, str]:
        version, side = item
        return (
            version.timestamp,
            1 if version.tombstone else 0,
            1 if side == later else 0,
            version.version_id,
        )

    tagged.sort(key=sort_key)
    diverged = bool(local_ids - remote_ids) and bool(remote_ids - local_ids)
    return [v for v, _ in tagged], added, diverged


def merge_books(
    local: Book,
    remote: Book,
    tie_break: TieBreak = TieBreak.DETERMINISTIC,
) -> MergeResult:
    """
    Merge ``remote`` into ``local`` without mutating either.

    The merged revision is one greater than the larger input revision.

    Raises:
        ConfigurationError: the books do not share an origin.
    """
    if local.origin != remote.origin:
        raise ConfigurationError(
            f"cannot merge books of different origins ({local.origin} vs {remote.origin})"
        )

    local_histories = dict(local.histories())
    remote_histories = dict(remote.histories())
    order = list(local_histories) + [i for i in remote_histories if i not in local_histories]

    merged_histories: List[Tuple[str, List[EntryVersion]]] = []
    added_total = 0
    conflicts: List[str] = []
    for entry_id in order:
        versions, added, diverged = merge_histories(
            local_histories.get(entry_id, []),
            remote_histories.get(entry_id, []),
            tie_break,
        )
        merged_histories.append((entry_id, versions))
        added_total += added
        if diverged:
            conflicts.append(entry_id)

    book = Book.assemble(
        local.origin,
        min(local.created_at, remote.created_at),
        max(local.revision, remote.revision) + 1,
        merged_histories,
    )
    book.clock = max(book.clock, local.clock, remote.clock)
    return MergeResult(book=book, added_versions=added_total, conflicts=conflicts)
