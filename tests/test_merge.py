"""
test_merge.py — Entry-granularity merge tests

Covers:
  - Disjoint edits on different entries both survive
  - Concurrent edits of one entry: later timestamp is current, both kept
  - Tombstone vs edit ordering
  - Equal timestamps: side-independent by default, TieBreak on request
  - Idempotence, commutativity, no input mutation
  - Renames against unchanged and concurrently edited entries
  - Origin mismatch
"""

import pytest

from strongbox.book import Book
from strongbox.errors import ConfigurationError
from strongbox.merge import MergeResult, TieBreak, merge_books, merge_histories

ORIGIN = "f" * 32


@pytest.fixture
def base():
    book = Book(origin=ORIGIN, created_at="2026-01-01T00:00:00+00:00")
    book.create_entry("site", {"secret": "v1"}, timestamp=1)
    book.create_entry("mail", {"secret": "m1"}, timestamp=2)
    return book


def _fields(book, entry_id):
    return dict(book.get(entry_id).fields)


def test_disjoint_changes_union(base):
    local, remote = base.copy(), base.copy()
    local.update_entry("site", {"secret": "local"}, timestamp=10)
    remote.create_entry("bank", {"secret": "b"}, timestamp=8)

    result = merge_books(local, remote)
    merged = result.book
    assert _fields(merged, "site") == {"secret": "local"}
    assert _fields(merged, "bank") == {"secret": "b"}
    assert merged.entry_ids() == ["site", "mail", "bank"]
    assert result.added_versions == 1
    assert result.conflicts == []


def test_revision_and_clock(base):
    local, remote = base.copy(), base.copy()
    local.update_entry("site", {"secret": "a"}, timestamp=10)
    remote.update_entry("mail", {"secret": "b"}, timestamp=20)
    remote.update_entry("mail", {"secret": "c"}, timestamp=21)
    merged = merge_books(local, remote).book
    assert merged.revision == max(local.revision, remote.revision) + 1
    assert merged.clock == 21


def test_concurrent_edit_later_timestamp_wins(base):
    local, remote = base.copy(), base.copy()
    local.update_entry("site", {"secret": "local"}, timestamp=10)
    remote.update_entry("site", {"secret": "remote"}, timestamp=12)

    result = merge_books(local, remote)
    history = [dict(v.fields) for v in result.book.history("site")]
    assert history == [{"secret": "v1"}, {"secret": "local"}, {"secret": "remote"}]
    assert result.conflicts == ["site"]


def test_local_later_edit_wins_regardless_of_tie_break(base):
    local, remote = base.copy(), base.copy()
    local.update_entry("site", {"secret": "local"}, timestamp=15)
    remote.update_entry("site", {"secret": "remote"}, timestamp=12)
    for tie_break in TieBreak:
        assert _fields(merge_books(local, remote, tie_break).book, "site") == {"secret": "local"}


@pytest.mark.parametrize("tie_break,expected", [
    (TieBreak.REMOTE_WINS, "remote"),
    (TieBreak.LOCAL_WINS, "local"),
])
def test_equal_timestamps_use_tie_break(base, tie_break, expected):
    local, remote = base.copy(), base.copy()
    local.update_entry("site", {"secret": "local"}, timestamp=10)
    remote.update_entry("site", {"secret": "remote"}, timestamp=10)
    merged = merge_books(local, remote, tie_break).book
    assert _fields(merged, "site") == {"secret": expected}
    assert len(merged.history("site")) == 3


def test_equal_timestamps_default_order_is_side_independent(base):
    a, b = base.copy(), base.copy()
    a.update_entry("site", {"secret": "from-a"})
    b.update_entry("site", {"secret": "from-b"})
    assert a.get("site").timestamp == b.get("site").timestamp

    ab = merge_books(a, b).book
    ba = merge_books(b, a).book
    assert ab.fingerprint() == ba.fingerprint()
    assert dict(ab.get("site").fields) == dict(ba.get("site").fields)
    winner = max((a.get("site"), b.get("site")), key=lambda v: v.version_id)
    assert ab.get("site").version_id == winner.version_id
    assert len(ab.history("site")) == 3


def test_tombstone_wins_at_equal_or_earlier_timestamp(base):
    local, remote = base.copy(), base.copy()
    local.delete_entry("site", timestamp=10)
    remote.update_entry("site", {"secret": "remote"}, timestamp=10)
    merged = merge_books(local, remote).book
    assert "site" not in merged
    assert len(merged.history("site")) == 3


def test_later_edit_revives_deleted_entry(base):
    local, remote = base.copy(), base.copy()
    local.delete_entry("site", timestamp=10)
    remote.update_entry("site", {"secret": "remote"}, timestamp=11)
    merged = merge_books(local, remote).book
    assert _fields(merged, "site") == {"secret": "remote"}


def test_merge_is_idempotent(base):
    local = base.copy()
    local.update_entry("site", {"secret": "x"}, timestamp=5)
    result = merge_books(local, local.copy())
    assert result.book.fingerprint() == local.fingerprint()
    assert result.added_versions == 0
    assert result.conflicts == []


def test_merge_commutes_for_distinct_timestamps(base):
    a, b = base.copy(), base.copy()
    a.update_entry("site", {"secret": "a"}, timestamp=10)
    a.create_entry("only-a", {}, timestamp=11)
    b.update_entry("site", {"secret": "b"}, timestamp=12)
    b.delete_entry("mail", timestamp=13)
    ab = merge_books(a, b).book
    ba = merge_books(b, a).book
    assert ab.fingerprint() == ba.fingerprint()
    assert "mail" not in ab and "mail" not in ba


def test_rename_merges_into_unchanged_side(base):
    local, remote = base.copy(), base.copy()
    local.rename_entry("site", "site-new", timestamp=10)
    for merged in (merge_books(local, remote).book, merge_books(remote, local).book):
        assert "site" not in merged
        assert _fields(merged, "site-new") == {"secret": "v1"}
        assert merged.get("site-new").renamed_from == "site"


def test_later_edit_of_renamed_entry_keeps_both(base):
    local, remote = base.copy(), base.copy()
    local.rename_entry("site", "site-new", timestamp=10)
    remote.update_entry("site", {"secret": "edited"}, timestamp=11)
    merged = merge_books(local, remote).book
    assert _fields(merged, "site") == {"secret": "edited"}
    assert _fields(merged, "site-new") == {"secret": "v1"}
    assert len(merged.history("site")) == 3


def test_earlier_edit_of_renamed_entry_stays_in_history(base):
    local, remote = base.copy(), base.copy()
    local.rename_entry("site", "site-new", timestamp=10)
    remote.update_entry("site", {"secret": "edited"}, timestamp=9)
    merged = merge_books(local, remote).book
    assert "site" not in merged
    assert [v.fields.get("secret") for v in merged.history("site")] == ["v1", "edited", None]


def test_inputs_not_mutated(base):
    local, remote = base.copy(), base.copy()
    remote.update_entry("site", {"secret": "r"}, timestamp=9)
    before = (local.fingerprint(), remote.fingerprint(), local.revision, remote.revision)
    merge_books(local, remote)
    assert before == (local.fingerprint(), remote.fingerprint(), local.revision, remote.revision)


def test_origin_mismatch(base):
    with pytest.raises(ConfigurationError):
        merge_books(base, Book())


def test_merge_histories_dedupes_shared_prefix(base):
    shared = list(base.history("site"))
    versions, added, diverged = merge_histories(shared, shared)
    assert versions == shared
    assert added == 0
    assert diverged is False


def test_merge_result_to_dict(base):
    result = merge_books(base, base.copy())
    assert isinstance(result, MergeResult)
    data = result.to_dict()
    assert data["conflict_count"] == 0
    assert data["revision"] == base.revision + 1
    assert data["fingerprint"] == base.fingerprint()
