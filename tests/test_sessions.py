from datetime import timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from update_server.core.errors import IncompleteUpload, SessionNotFound, ValidationError
from update_server.models import utcnow


def _create(store, **overrides):
    fields = dict(
        file_name="setup.exe",
        file_size=300,
        total_chunks=3,
        current_version="1.2.0",
        min_version="1.0.0",
    )
    fields.update(overrides)
    return store.create(**fields)


def test_create_and_status(session_store):
    session_id = _create(session_store)

    snapshot = session_store.status(session_id)
    assert snapshot.file_name == "setup.exe"
    assert snapshot.received_count == 0
    assert snapshot.total_chunks == 3
    assert snapshot.progress_percent == 0.0
    assert snapshot.missing_indices == [0, 1, 2]


def test_session_ids_are_unique(session_store):
    ids = {_create(session_store) for _ in range(20)}
    assert len(ids) == 20


@pytest.mark.parametrize("overrides, message", [
    ({"file_name": None}, "Missing required fields"),
    ({"current_version": ""}, "Missing required fields"),
    ({"total_chunks": 0}, "totalChunks must be a positive integer"),
    ({"file_size": -1}, "fileSize must be a positive integer"),
    ({"current_version": "1.2"}, "currentVersion: version format must be X.Y.Z"),
    ({"min_version": "latest"}, "minVersion: version format must be X.Y.Z"),
    ({"file_name": "setup.msi"}, "Only .exe files are allowed"),
])
def test_create_rejects_bad_metadata(session_store, overrides, message):
    with pytest.raises(ValidationError, match=message):
        _create(session_store, **overrides)
    assert session_store.list_sessions() == []


def test_create_strips_client_directories(session_store):
    session_id = _create(session_store, file_name="C:\\dist\\Setup.EXE")
    assert session_store.get(session_id).file_name == "Setup.EXE"


def test_record_chunk_is_idempotent_per_index(session_store):
    session_id = _create(session_store)

    assert session_store.record_chunk(session_id, 1, 100) == (1, 3)
    assert session_store.record_chunk(session_id, 1, 100) == (1, 3)
    assert session_store.record_chunk(session_id, 0, 100) == (2, 3)

    snapshot = session_store.status(session_id)
    assert snapshot.received_indices == (0, 1)
    assert snapshot.progress_percent == 66.67


def test_record_chunk_unknown_session(session_store):
    with pytest.raises(SessionNotFound):
        session_store.record_chunk("missing", 0, 10)


def test_record_chunk_rejects_out_of_range_index(session_store):
    session_id = _create(session_store)
    with pytest.raises(ValidationError, match="Invalid chunk index 3"):
        session_store.record_chunk(session_id, 3, 10)


def test_complete_requires_every_chunk(session_store):
    session_id = _create(session_store, total_chunks=2)
    session_store.record_chunk(session_id, 0, 10)

    with pytest.raises(IncompleteUpload) as exc:
        session_store.complete(session_id)
    assert exc.value.to_dict() == {"error": "Not all chunks uploaded", "receivedCount": 1, "totalChunks": 2}

    session_store.record_chunk(session_id, 1, 10)
    snapshot = session_store.complete(session_id)
    assert snapshot.is_complete
    # complete() leaves the session in place
    assert session_store.get(session_id).session_id == session_id


def test_delete_is_safe_to_repeat(session_store):
    session_id = _create(session_store)
    session_store.record_chunk(session_id, 0, 10)

    assert session_store.delete(session_id) is True
    assert session_store.delete(session_id) is False
    with pytest.raises(SessionNotFound):
        session_store.status(session_id)


def test_find_idle_uses_last_activity(session_store):
    session_id = _create(session_store)

    assert session_store.find_idle(utcnow() - timedelta(hours=1)) == []
    assert session_store.find_idle(utcnow() + timedelta(seconds=1)) == [session_id]


def test_find_idle_accepts_non_utc_cutoff(session_store):
    session_id = _create(session_store)
    later = (utcnow() + timedelta(minutes=1)).astimezone(timezone(timedelta(hours=-5)))

    assert session_store.find_idle(later) == [session_id]


def test_record_chunk_retries_after_a_racing_insert(session_store, monkeypatch):
    session_id = _create(session_store)
    original = session_store._upsert_chunk
    calls = []

    def racing_upsert(*args):
        calls.append(args)
        if len(calls) == 1:
            raise IntegrityError("INSERT INTO upload_chunks", {}, Exception("UNIQUE constraint failed"))
        return original(*args)

    monkeypatch.setattr(session_store, "_upsert_chunk", racing_upsert)

    assert session_store.record_chunk(session_id, 0, 10) == (1, 3)
    assert len(calls) == 2


def test_record_chunk_gives_up_after_one_retry(session_store, monkeypatch):
    session_id = _create(session_store)

    def always_racing(*args):
        raise IntegrityError("INSERT INTO upload_chunks", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(session_store, "_upsert_chunk", always_racing)
    with pytest.raises(IntegrityError):
        session_store.record_chunk(session_id, 0, 10)
