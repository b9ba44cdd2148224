from sqlalchemy import select
from sqlalchemy.exc import OperationalError
import pytest

from rowledger.db_models import MapEntry
from rowledger.destinations import TableDestination
from rowledger.errors import IdMapError
from rowledger.id_map import IdMap, MapStatus, RollbackAction
from rowledger.row import Row


@pytest.fixture()
def id_map(session_factory) -> IdMap:
    return IdMap(session_factory, "users")


@pytest.fixture()
def destination(session_factory) -> TableDestination:
    return TableDestination({"plugin": "table"}, session_factory=session_factory, migration_id="users")


def test_record_then_lookup_both_directions(id_map: IdMap) -> None:
    id_map.record_status(("u1", 7), (42,), MapStatus.IMPORTED, "hash-1")

    assert id_map.lookup_destination(("u1", 7)) == (42,)
    assert id_map.lookup_source((42,)) == ("u1", 7)
    assert id_map.lookup_destination(("u2", 7)) is None
    assert id_map.lookup_source((43,)) is None


def test_needs_update_follows_hash_and_status(id_map: IdMap) -> None:
    assert id_map.needs_update(("u1",), "hash-1")

    id_map.record_status(("u1",), (1,), MapStatus.IMPORTED, "hash-1")
    assert not id_map.needs_update(("u1",), "hash-1")
    assert id_map.needs_update(("u1",), "hash-2")

    id_map.record_status(("u1",), None, MapStatus.FAILED, "hash-1", message="boom")
    assert id_map.needs_update(("u1",), "hash-1")

    id_map.record_status(("u1",), None, MapStatus.IGNORED, "hash-1")
    assert not id_map.needs_update(("u1",), "hash-1")


def test_record_status_upserts_single_entry(id_map: IdMap, session_factory) -> None:
    id_map.record_status(("u1",), None, MapStatus.FAILED, "hash-1", message="first")
    id_map.record_status(("u1",), (5,), MapStatus.IMPORTED, "hash-2")

    with session_factory() as db:
        entries = db.execute(select(MapEntry).where(MapEntry.migration_id == "users")).scalars().all()
    assert len(entries) == 1

    entry = id_map.get_entry(("u1",))
    assert entry.destination_key == (5,)
    assert entry.status == MapStatus.IMPORTED
    assert entry.rollback_action == RollbackAction.DELETE


def test_maps_are_scoped_per_migration(session_factory) -> None:
    users = IdMap(session_factory, "users")
    articles = IdMap(session_factory, "articles")
    users.record_status(("1",), (10,), MapStatus.IMPORTED, "h")

    assert articles.lookup_destination(("1",)) is None
    assert articles.processed_count() == 0
    assert users.processed_count() == 1


def test_clear_messages_keeps_status(id_map: IdMap) -> None:
    id_map.record_status(("u1",), None, MapStatus.FAILED, "hash-1", message="destination down")
    id_map.record_status(("u2",), None, MapStatus.FAILED, "hash-1", message="other row")

    id_map.clear_messages(("u1",))

    assert [message.message for message in id_map.messages()] == ["other row"]
    assert id_map.get_entry(("u1",)).status == MapStatus.FAILED


def test_status_counts_and_prepare_update(id_map: IdMap) -> None:
    id_map.record_status(("a",), (1,), MapStatus.IMPORTED, "h")
    id_map.record_status(("b",), None, MapStatus.IGNORED, "h")

    assert id_map.status_counts() == {"imported": 1, "needs_update": 0, "ignored": 1, "failed": 0}
    assert id_map.prepare_update() == 2
    assert id_map.status_counts()["needs_update"] == 2
    assert id_map.needs_update(("a",), "h")


def test_rollback_deletes_destination_and_is_idempotent(id_map: IdMap, destination: TableDestination) -> None:
    row = Row({"id": "u1"}, ["id"])
    row.set_destination("name", "Ada")
    destination_key = destination.import_row(row)
    id_map.record_status(("u1",), destination_key, MapStatus.IMPORTED, row.hash())
    id_map.record_status(("u2",), None, MapStatus.IGNORED, "h", message="skipped")

    assert id_map.rollback(destination) == 2
    assert destination.get(destination_key) is None
    assert id_map.lookup_destination(("u1",)) is None
    assert id_map.messages() == []

    assert id_map.rollback(destination) == 0


def test_rollback_preserves_records_marked_preserve(id_map: IdMap, destination: TableDestination) -> None:
    row = Row({"id": "u1"}, ["id"])
    row.set_destination("name", "Ada")
    destination_key = destination.import_row(row)
    id_map.record_status(("u1",), destination_key, MapStatus.IMPORTED, "h", rollback_action=RollbackAction.PRESERVE)

    id_map.rollback(destination)

    assert destination.get(destination_key) == {"name": "Ada"}
    assert id_map.get_entry(("u1",)) is None


def test_persistence_failure_raises_and_keeps_committed_entries(id_map: IdMap, monkeypatch) -> None:
    id_map.record_status(("u1",), (1,), MapStatus.IMPORTED, "h")

    def broken_entry(db, source_key):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(id_map, "_entry", broken_entry)
    with pytest.raises(IdMapError):
        id_map.record_status(("u2",), (2,), MapStatus.IMPORTED, "h")
    monkeypatch.undo()

    assert id_map.lookup_destination(("u1",)) == (1,)
    assert id_map.lookup_destination(("u2",)) is None


@pytest.mark.parametrize(
    ("operation", "args"),
    [
        ("lookup_destination", (("u1",),)),
        ("needs_update", (("u1",), "h")),
    ],
)
def test_read_failures_raise_id_map_error(id_map: IdMap, monkeypatch, operation: str, args) -> None:
    def broken_entry(db, source_key):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(id_map, "_entry", broken_entry)
    with pytest.raises(IdMapError):
        getattr(id_map, operation)(*args)


def test_clear_messages_failure_raises_id_map_error(id_map: IdMap, monkeypatch) -> None:
    original = id_map.session_factory

    def broken_session():
        db = original()

        def broken_execute(*args, **kwargs):
            raise OperationalError("DELETE", {}, Exception("database is locked"))

        db.execute = broken_execute
        return db

    monkeypatch.setattr(id_map, "session_factory", broken_session)
    with pytest.raises(IdMapError):
        id_map.clear_messages(("u1",))


def test_numeric_and_string_keys_share_an_entry(id_map: IdMap) -> None:
    id_map.record_status(("1",), (5,), MapStatus.IMPORTED, "h")

    assert id_map.lookup_destination((1,)) == (5,)
    assert id_map.lookup_destination((1.0,)) == (5,)
    assert not id_map.needs_update((1,), "h")

    id_map.record_status((1,), (6,), MapStatus.IMPORTED, "h2")
    assert id_map.status_counts()["imported"] == 1
    assert id_map.get_entry(("1",)).source_key == ("1",)
