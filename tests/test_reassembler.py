import pytest

from update_server.core.errors import CorruptSession
from update_server.services import ChunkReassembler


@pytest.fixture
def reassembler(storage):
    return ChunkReassembler(storage)


def test_merge_uses_index_order_not_arrival_order(storage, reassembler):
    for index, data in [(2, b"C"), (0, b"A"), (1, b"B")]:
        storage.save_chunk("s1", index, data)

    size = reassembler.merge("s1", [2, 0, 1], "out.exe")

    assert size == 3
    assert b"".join(storage.iter_artifact("out.exe")) == b"ABC"
    # merged chunks are removed
    assert not any(storage.has_chunk("s1", i) for i in range(3))


def test_merge_can_defer_cleanup(storage, reassembler):
    storage.save_chunk("s1", 0, b"A")
    storage.save_chunk("s1", 1, b"B")

    reassembler.merge("s1", [0, 1], "out.exe", cleanup_chunks=False)
    assert storage.has_chunk("s1", 0) and storage.has_chunk("s1", 1)

    assert reassembler.cleanup("s1", [0, 1]) == 0
    assert not storage.has_chunk("s1", 0)


def test_missing_chunk_aborts_without_destination(storage, reassembler):
    storage.save_chunk("s1", 0, b"A")
    storage.save_chunk("s1", 2, b"C")

    with pytest.raises(CorruptSession) as exc:
        reassembler.merge("s1", [0, 1, 2], "out.exe")

    assert exc.value.missing_chunks == [1]
    assert exc.value.status_code == 409
    assert not storage.artifact_exists("out.exe")
    assert storage.list_artifacts() == []
    # nothing was cleaned up, so the missing chunk can be re-sent
    assert storage.has_chunk("s1", 0) and storage.has_chunk("s1", 2)


def test_chunk_vanishing_mid_merge_leaves_no_partial(storage, reassembler, monkeypatch):
    for index, data in enumerate([b"A", b"B", b"C"]):
        storage.save_chunk("s1", index, data)

    original_read = storage.read_chunk

    def flaky_read(session_id, chunk_index):
        if chunk_index == 2:
            raise FileNotFoundError(chunk_index)
        return original_read(session_id, chunk_index)

    monkeypatch.setattr(storage, "read_chunk", flaky_read)

    with pytest.raises(CorruptSession):
        reassembler.merge("s1", [0, 1, 2], "out.exe")

    assert not storage.artifact_exists("out.exe")
    assert list(storage.artifact_dir.iterdir()) == []


def test_cleanup_reports_failures(storage, reassembler, monkeypatch):
    def broken_delete(session_id, chunk_index):
        raise OSError("read-only file system")

    monkeypatch.setattr(storage, "delete_chunk", broken_delete)
    assert reassembler.cleanup("s1", [0, 1]) == 2
