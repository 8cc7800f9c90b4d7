"""
test_book.py — Book Model tests

Covers:
  - Entry create/update/delete and their error cases
  - Tombstones keep history; recreate appends to it
  - Revision counter increments exactly once per mutation
  - Lamport timestamps, explicit timestamps, predecessor links
  - History views are lazy and restartable
  - Fingerprint: insertion-order independence and change detection
  - Renames: tombstone on the old id, linked version on the new one
  - to_dict/from_dict round trip and malformed input rejection
"""

import pytest

from strongbox.book import Book, EntryVersion
from strongbox.errors import DuplicateIdError, IntegrityError, NameValidationError, NotFoundError


def _book():
    return Book(origin="o" * 32, created_at="2026-01-01T00:00:00+00:00")


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def test_create_and_get():
    book = _book()
    assert book.create_entry("github", {"username": "me", "secret": "pw"}, tags=["dev"]) == "github"
    current = book.get("github")
    assert current.fields["username"] == "me"
    assert current.tags == ("dev",)
    assert current.predecessor is None
    assert "github" in book
    assert len(book) == 1


def test_create_duplicate_rejected():
    book = _book()
    book.create_entry("github", {})
    with pytest.raises(DuplicateIdError):
        book.create_entry("github", {"x": "y"})
    assert book.revision == 1


def test_invalid_entry_id_rejected():
    book = _book()
    with pytest.raises(NameValidationError):
        book.create_entry("", {})
    with pytest.raises(NameValidationError):
        book.create_entry("bad\nid", {})


def test_update_appends_version():
    book = _book()
    book.create_entry("mail", {"secret": "one"}, tags=["personal"])
    first = book.get("mail")
    book.update_entry("mail", {"secret": "two"})
    current = book.get("mail")
    assert current.fields["secret"] == "two"
    assert current.tags == ("personal",)
    assert current.predecessor == first.version_id
    assert [v.fields["secret"] for v in book.history("mail")] == ["one", "two"]


def test_update_can_replace_tags():
    book = _book()
    book.create_entry("mail", {}, tags=["a"])
    book.update_entry("mail", {}, tags=["b", "a", "b"])
    assert book.get("mail").tags == ("a", "b")


def test_update_missing_raises():
    book = _book()
    with pytest.raises(NotFoundError):
        book.update_entry("nope", {})


def test_delete_marks_tombstone_and_keeps_history():
    book = _book()
    book.create_entry("bank", {"secret": "1234"})
    book.delete_entry("bank")
    assert "bank" not in book
    assert book.entry_ids() == []
    assert book.entry_ids(include_deleted=True) == ["bank"]
    history = list(book.history("bank"))
    assert len(history) == 2
    assert history[-1].tombstone
    assert history[-1].fields == {}
    with pytest.raises(NotFoundError):
        book.get("bank")


def test_delete_missing_or_deleted_raises():
    book = _book()
    with pytest.raises(NotFoundError):
        book.delete_entry("nope")
    book.create_entry("bank", {})
    book.delete_entry("bank")
    with pytest.raises(NotFoundError):
        book.delete_entry("bank")
    with pytest.raises(NotFoundError):
        book.update_entry("bank", {})


def test_recreate_after_delete_appends():
    book = _book()
    book.create_entry("bank", {"secret": "old"})
    book.delete_entry("bank")
    book.create_entry("bank", {"secret": "new"})
    history = list(book.history("bank"))
    assert [v.tombstone for v in history] == [False, True, False]
    assert history[2].predecessor == history[1].version_id
    assert book.get("bank").fields["secret"] == "new"


def test_revision_increments_once_per_mutation():
    book = _book()
    book.create_entry("a", {})
    book.update_entry("a", {"k": "v"})
    book.delete_entry("a")
    book.create_entry("a", {})
    assert book.revision == 4


def test_history_unknown_entry():
    with pytest.raises(NotFoundError):
        _book().history("ghost")


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def test_lamport_clock_advances():
    book = _book()
    book.create_entry("a", {})
    book.create_entry("b", {})
    book.update_entry("a", {"k": "v"})
    assert [v.timestamp for v in book.history("a")] == [1, 3]
    assert book.clock == 3


def test_explicit_timestamp_advances_clock():
    book = _book()
    book.create_entry("a", {}, timestamp=10)
    assert book.clock == 10
    book.create_entry("b", {})
    assert book.get("b").timestamp == 11


def test_timestamp_must_advance_entry_history():
    book = _book()
    book.create_entry("a", {}, timestamp=5)
    with pytest.raises(ValueError):
        book.update_entry("a", {}, timestamp=5)
    with pytest.raises(ValueError):
        book.create_entry("b", {}, timestamp=0)
    assert book.revision == 1


# ---------------------------------------------------------------------------
# History views
# ---------------------------------------------------------------------------

def test_history_is_restartable():
    book = _book()
    book.create_entry("a", {"v": "1"})
    book.update_entry("a", {"v": "2"})
    history = book.history("a")
    assert [v.fields["v"] for v in history] == ["1", "2"]
    assert [v.fields["v"] for v in history] == ["1", "2"]
    assert len(history) == 2
    assert history[0].fields["v"] == "1"


def test_history_view_is_a_snapshot():
    book = _book()
    book.create_entry("a", {"v": "1"})
    history = book.history("a")
    book.update_entry("a", {"v": "2"})
    assert len(history) == 1


def test_metadata():
    book = _book()
    book.create_entry("a", {})
    book.update_entry("a", {"x": "y"})
    meta = book.metadata("a")
    assert meta.version_count == 2
    assert meta.created <= meta.changed
    assert meta.deleted is False


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------

def test_fingerprint_independent_of_insertion_order():
    a = _book()
    a.create_entry("x", {"secret": "1"}, timestamp=1)
    a.create_entry("y", {"secret": "2"}, timestamp=2)
    b = _book()
    b.create_entry("y", {"secret": "2"}, timestamp=2)
    b.create_entry("x", {"secret": "1"}, timestamp=1)
    assert a.entry_ids() != b.entry_ids()
    assert a.fingerprint() == b.fingerprint()


def test_fingerprint_ignores_revision_and_wall_clock():
    a = _book()
    a.create_entry("x", {"secret": "1"}, timestamp=1)
    b = a.copy()
    b.revision = 99
    assert a.fingerprint() == b.fingerprint()


def test_fingerprint_changes_on_append_delete_and_field_change():
    book = _book()
    book.create_entry("x", {"secret": "1"})
    seen = {book.fingerprint()}

    book.update_entry("x", {"secret": "1"})
    seen.add(book.fingerprint())
    book.update_entry("x", {"secret": "2"})
    seen.add(book.fingerprint())
    book.delete_entry("x")
    seen.add(book.fingerprint())
    assert len(seen) == 4


def test_fingerprint_depends_on_origin():
    a = Book(origin="a" * 32)
    b = Book(origin="b" * 32)
    assert a.fingerprint() != b.fingerprint()


# ---------------------------------------------------------------------------
# Renames
# ---------------------------------------------------------------------------

def test_rename_moves_entry_and_links_versions():
    book = _book()
    book.create_entry("github", {"secret": "pw"}, tags=["dev"], timestamp=1)
    book.update_entry("github", {"secret": "pw2"}, timestamp=2)
    before = book.get("github")

    assert book.rename_entry("github", "github-work") == "github-work"
    assert book.revision == 3
    assert "github" not in book
    assert book.entry_ids() == ["github-work"]

    moved = book.get("github-work")
    assert dict(moved.fields) == {"secret": "pw2"}
    assert moved.tags == ("dev",)
    assert moved.renamed_from == "github"
    assert moved.predecessor == before.version_id
    assert moved.timestamp == 3

    old = list(book.history("github"))
    assert old[-1].tombstone and old[-1].timestamp == 3
    assert len(book.history("github-work")) == 1
    assert [v.fields.get("secret") for v in book.lineage("github-work")] == ["pw", "pw2", "pw2"]


def test_rename_errors_change_nothing():
    book = _book()
    book.create_entry("a", {})
    book.create_entry("b", {})
    fingerprint = book.fingerprint()
    with pytest.raises(DuplicateIdError):
        book.rename_entry("a", "b")
    with pytest.raises(DuplicateIdError):
        book.rename_entry("a", "a")
    with pytest.raises(NotFoundError):
        book.rename_entry("missing", "c")
    with pytest.raises(NameValidationError):
        book.rename_entry("a", "")
    with pytest.raises(ValueError):
        book.rename_entry("a", "c", timestamp=1)
    assert book.fingerprint() == fingerprint
    assert book.revision == 2


def test_rename_onto_deleted_id_appends_to_its_history():
    book = _book()
    book.create_entry("old", {"secret": "1"})
    book.delete_entry("old")
    book.create_entry("src", {"secret": "2"})
    book.rename_entry("src", "old")
    assert book.get("old").fields["secret"] == "2"
    assert len(book.history("old")) == 3
    assert book.lineage("old")[0].fields["secret"] == "2"


def test_rename_round_trips_through_dict():
    book = _book()
    book.create_entry("a", {"secret": "s"})
    book.rename_entry("a", "b")
    restored = Book.from_dict(book.to_dict())
    assert restored.fingerprint() == book.fingerprint()
    assert restored.get("b").renamed_from == "a"
    assert "renamed_from" not in book.to_dict()["entries"]["a"][0]


def test_lineage_unknown_entry():
    with pytest.raises(NotFoundError):
        _book().lineage("missing")


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def test_dict_round_trip_preserves_everything():
    book = _book()
    book.create_entry("b", {"secret": "1"}, tags=["t"])
    book.create_entry("a", {"secret": "2"})
    book.delete_entry("b")
    restored = Book.from_dict(book.to_dict())
    assert restored == book
    assert restored.entry_ids(include_deleted=True) == ["b", "a"]
    assert restored.clock == book.clock
    assert restored.fingerprint() == book.fingerprint()


def test_copy_is_independent():
    book = _book()
    book.create_entry("a", {})
    clone = book.copy()
    clone.update_entry("a", {"k": "v"})
    assert len(book.history("a")) == 1
    assert clone.revision == book.revision + 1


@pytest.mark.parametrize("mutate", [
    lambda d: d.update(format="other"),
    lambda d: d.update(revision=-1),
    lambda d: d.update(order=["missing"]),
    lambda d: d["entries"].update(a=[]),
    lambda d: d["entries"]["a"][0].update(timestamp=0),
    lambda d: d["entries"]["a"][0].update(fields={"k": 1}),
    lambda d: d["entries"]["a"][0].update(tags="t"),
])
def test_from_dict_rejects_malformed(mutate):
    book = _book()
    book.create_entry("a", {"k": "v"})
    data = book.to_dict()
    mutate(data)
    with pytest.raises(IntegrityError):
        Book.from_dict(data)


def test_version_repr_masks_secrets():
    version = EntryVersion(fields={"username": "me", "secret": "hunter2"}, tags=(), timestamp=1)
    text = repr(version)
    assert "hunter2" not in text
    assert "me" in text
