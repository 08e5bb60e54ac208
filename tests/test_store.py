import threading
from datetime import datetime, timedelta, timezone

import pytest
from flask import Flask

from models.passes import PassStatus
from services.errors import PassNotFound, StoreReadFailure, StoreWriteFailure
from services.store import SQLAlchemyPassStore, Subscription
from tests.factories import STUDENT, T0, pass_fields


# ---------- Subscription ----------

def test_subscription_cancel_is_idempotent():
    calls = []
    sub = Subscription(on_cancel=lambda: calls.append("cancel"))
    sub.cancel()
    sub.cancel()
    assert calls == ["cancel"]
    assert not sub.active


def test_cancelled_subscription_delivers_nothing():
    seen = []
    sub = Subscription()
    sub.cancel()
    assert sub.deliver(seen.append, "x") is False
    assert seen == []


def test_callback_errors_stay_inside_the_subscription():
    def boom(_):
        raise RuntimeError("view blew up")

    assert Subscription().deliver(boom, []) is True


# ---------- MemoryPassStore ----------

def test_passes_for_author_newest_first(store):
    store.create_pass(pass_fields(1))
    store.create_pass(pass_fields(3))
    store.create_pass(pass_fields(2))
    store.create_pass(pass_fields(4, author="someone-else"))

    passes = store.passes_for_author(STUDENT)

    assert [p.created_at for p in passes] == [T0 + timedelta(minutes=m) for m in (3, 2, 1)]
    assert all(p.id for p in passes)


def test_create_assigns_store_time(store):
    fields = pass_fields()
    del fields["created_at"]
    store.create_pass(fields)
    assert store.passes_for_author(STUDENT)[0].created_at == T0


def test_watch_delivers_full_snapshots(store):
    snapshots = []
    store.create_pass(pass_fields(1))

    sub = store.watch_author(STUDENT, snapshots.append)
    pass_id = store.create_pass(pass_fields(2, approved="approved", active=True))
    store.update_pass(pass_id, {"active": False})

    assert [len(s) for s in snapshots] == [1, 2, 2]
    assert snapshots[-1][0].active is False
    assert sub.active


def test_watch_ignores_other_authors(store):
    snapshots = []
    store.watch_author(STUDENT, snapshots.append)
    store.create_pass(pass_fields(author="someone-else"))
    assert snapshots == [[]]


def test_cancelled_watch_stops_delivering(store):
    snapshots = []
    sub = store.watch_author(STUDENT, snapshots.append)
    sub.cancel()
    store.create_pass(pass_fields())
    sub.cancel()
    assert snapshots == [[]]


def test_update_unknown_or_foreign_pass_fails(store):
    pass_id = store.create_pass(pass_fields())
    with pytest.raises(PassNotFound):
        store.update_pass("missing", {"active": False})
    with pytest.raises(PassNotFound):
        store.update_pass(pass_id, {"active": False}, author="someone-else")


def test_immutable_fields_cannot_be_updated(store):
    pass_id = store.create_pass(pass_fields())
    with pytest.raises(StoreWriteFailure):
        store.update_pass(pass_id, {"toRoom": "Gym"})


def test_single_active_pass_per_author(store):
    store.create_pass(pass_fields(1, approved="approved", active=True))
    second = store.create_pass(pass_fields(2))
    with pytest.raises(StoreWriteFailure):
        store.update_pass(second, {"approved": PassStatus.APPROVED, "active": True})


def test_malformed_documents_are_dropped(store):
    store.create_pass(pass_fields(approved="lost"))
    store.create_pass(pass_fields(1))
    assert len(store.passes_for_author(STUDENT)) == 1


def test_read_failures_reach_the_error_callback(store):
    errors = []
    sub = store.watch_author(STUDENT, lambda _: None, errors.append)
    store.fail_watchers("permission denied")
    assert isinstance(errors[0], StoreReadFailure)
    assert errors[0].message == "permission denied"
    assert not sub.active


def test_room_names(store):
    store.add_room("Office")
    assert store.room_names() == ["Nurse", "Library", "Gym", "Library", "Office"]


# ---------- SQLAlchemyPassStore ----------

@pytest.fixture
def sql_store(tmp_path):
    from app import PassDocument, Room, db

    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{tmp_path / 'passes.db'}"
    db.init_app(app)
    with app.app_context():
        db.create_all()
    return SQLAlchemyPassStore(app, db, PassDocument, Room, poll_seconds=0.01)


def test_sql_store_round_trip(sql_store):
    sql_store.create_pass(pass_fields(1, duration=10))
    sql_store.create_pass(pass_fields(2, approved="rejected"))

    passes = sql_store.passes_for_author(STUDENT)

    assert [p.approved for p in passes] == [PassStatus.REJECTED, PassStatus.PENDING]
    assert passes[1].duration == 10
    assert passes[0].duration is None
    assert passes[1].created_at.tzinfo is not None


def test_sql_store_uses_server_time(sql_store):
    fields = pass_fields()
    del fields["created_at"]
    sql_store.create_pass(fields)
    created = sql_store.passes_for_author(STUDENT)[0].created_at
    assert abs(created - datetime.now(timezone.utc)) < timedelta(minutes=5)


def test_sql_store_update(sql_store):
    pass_id = sql_store.create_pass(pass_fields(approved="approved", active=True, start_time=T0, duration=5))
    with pytest.raises(PassNotFound):
        sql_store.update_pass(pass_id, {"active": False}, author="someone-else")

    sql_store.update_pass(pass_id, {"active": False}, author=STUDENT)

    assert sql_store.passes_for_author(STUDENT)[0].active is False


def test_sql_store_single_active_pass(sql_store):
    sql_store.create_pass(pass_fields(1, approved="approved", active=True))
    with pytest.raises(StoreWriteFailure):
        sql_store.create_pass(pass_fields(2, approved="approved", active=True))
    # The failed write left the session usable
    assert len(sql_store.passes_for_author(STUDENT)) == 1


def test_sql_store_keeps_offset_times_as_utc(sql_store):
    plus_two = timezone(timedelta(hours=2))
    start = datetime(2025, 9, 8, 11, 0, tzinfo=plus_two)
    pass_id = sql_store.create_pass(pass_fields(
        approved="approved", active=True, start_time=start, duration=10,
        created_at=datetime(2025, 9, 8, 10, 55, tzinfo=plus_two),
    ))

    stored = sql_store.passes_for_author(STUDENT)[0]
    assert stored.start_time == T0
    assert stored.created_at == T0 - timedelta(minutes=5)
    assert stored.ends_at == T0 + timedelta(minutes=10)

    sql_store.update_pass(pass_id, {"start_time": datetime(2025, 9, 8, 11, 30, tzinfo=plus_two)})
    assert sql_store.passes_for_author(STUDENT)[0].start_time == T0 + timedelta(minutes=30)


def test_sql_store_update_missing_pass(sql_store):
    with pytest.raises(PassNotFound) as excinfo:
        sql_store.update_pass("missing", {"active": False})
    assert excinfo.value.status_code == 404


def test_sql_store_rooms(sql_store):
    for name in ("Nurse", "Gym", "Nurse"):
        sql_store.add_room(name)
    assert sorted(sql_store.room_names()) == ["Gym", "Nurse", "Nurse"]


def test_sql_store_live_query(sql_store):
    snapshots = []
    changed = threading.Event()

    def on_snapshot(passes):
        snapshots.append(passes)
        if len(passes) == 2:
            changed.set()

    sql_store.create_pass(pass_fields(1))
    sub = sql_store.watch_author(STUDENT, on_snapshot)
    try:
        sql_store.create_pass(pass_fields(2))
        assert changed.wait(5)
    finally:
        sub.cancel()

    assert len(snapshots[0]) in (1, 2)
    assert [len(s) for s in snapshots][-1] == 2
