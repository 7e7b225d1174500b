"""MinIOStorage against an in-memory stand-in for the minio client"""
from types import SimpleNamespace

import pytest
from minio.error import S3Error

from update_server.core.errors import CorruptSession, StorageFailure
from update_server.services import ChunkReassembler, MinIOStorage


def _no_such_key() -> S3Error:
    # keywords only: the positional order differs between minio releases
    return S3Error(
        code="NoSuchKey",
        message="Object does not exist",
        resource="/update-artifacts",
        request_id="test",
        host_id="test",
        response=None
    )


class _Response:
    def __init__(self, data: bytes):
        self._data = data
        self._offset = 0
        self.closed = False

    def read(self, amt=None):
        end = len(self._data) if amt is None else self._offset + amt
        chunk = self._data[self._offset:end]
        self._offset += len(chunk)
        return chunk

    def close(self):
        self.closed = True

    def release_conn(self):
        pass


class FakeMinio:
    def __init__(self):
        self.buckets = set()
        self.objects = {}

    def bucket_exists(self, bucket):
        return bucket in self.buckets

    def make_bucket(self, bucket):
        self.buckets.add(bucket)

    def put_object(self, bucket, key, data, length):
        self.objects[(bucket, key)] = data.read(length)

    def fput_object(self, bucket, key, file_path):
        with open(file_path, "rb") as handle:
            self.objects[(bucket, key)] = handle.read()

    def stat_object(self, bucket, key):
        if (bucket, key) not in self.objects:
            raise _no_such_key()
        return SimpleNamespace(size=len(self.objects[(bucket, key)]))

    def get_object(self, bucket, key):
        if (bucket, key) not in self.objects:
            raise _no_such_key()
        return _Response(self.objects[(bucket, key)])

    def remove_object(self, bucket, key):
        self.objects.pop((bucket, key), None)

    def list_objects(self, bucket, prefix="", recursive=False):
        for stored_bucket, key in sorted(self.objects):
            if stored_bucket == bucket and key.startswith(prefix):
                yield SimpleNamespace(object_name=key)


@pytest.fixture
def fake():
    return FakeMinio()


@pytest.fixture
def minio_storage(fake):
    storage = MinIOStorage(bucket="update-artifacts", client=fake)
    storage.ensure_ready()
    return storage


def test_ensure_ready_creates_bucket(fake, minio_storage):
    assert fake.buckets == {"update-artifacts"}
    minio_storage.ensure_ready()
    assert fake.buckets == {"update-artifacts"}


def test_chunk_lifecycle(fake, minio_storage):
    minio_storage.save_chunk("s1", 0, b"old")
    minio_storage.save_chunk("s1", 0, b"new")
    minio_storage.save_chunk("s1", 1, b"B")

    assert ("update-artifacts", "chunks/s1/chunk_000000") in fake.objects
    assert minio_storage.read_chunk("s1", 0) == b"new"
    assert minio_storage.has_chunk("s1", 1)
    with pytest.raises(FileNotFoundError):
        minio_storage.read_chunk("s1", 5)

    assert minio_storage.purge_session("s1") == 2
    assert fake.objects == {}


def test_merge_and_stream_artifact(minio_storage):
    for index, data in [(1, b"B"), (0, b"A"), (2, b"C")]:
        minio_storage.save_chunk("s1", index, data)

    size = ChunkReassembler(minio_storage).merge("s1", [0, 1, 2], "1-a-setup.exe")

    assert size == 3
    assert minio_storage.list_artifacts() == ["1-a-setup.exe"]
    assert b"".join(minio_storage.iter_artifact("1-a-setup.exe", chunk_size=2)) == b"ABC"
    assert not minio_storage.has_chunk("s1", 0)


def test_missing_chunk_leaves_no_artifact(minio_storage):
    minio_storage.save_chunk("s1", 0, b"A")

    with pytest.raises(CorruptSession):
        ChunkReassembler(minio_storage).merge("s1", [0, 1], "1-a-setup.exe")
    assert minio_storage.list_artifacts() == []


def test_missing_artifact(minio_storage):
    assert not minio_storage.artifact_exists("nope.exe")
    with pytest.raises(FileNotFoundError):
        minio_storage.iter_artifact("nope.exe")
    minio_storage.delete_artifact("nope.exe")


def test_remove_errors_become_storage_failures(fake, minio_storage, monkeypatch):
    def broken_remove(bucket, key):
        raise _no_such_key()

    monkeypatch.setattr(fake, "remove_object", broken_remove)
    minio_storage.save_chunk("s1", 0, b"A")
    with pytest.raises(StorageFailure):
        minio_storage.delete_chunk("s1", 0)


def test_list_chunk_sessions(minio_storage):
    minio_storage.save_chunk("s1", 0, b"A")
    minio_storage.save_chunk("s1", 3, b"D")
    minio_storage.save_chunk("s2", 0, b"B")
    minio_storage.write_artifact("1-a-setup.exe", [b"X"])

    assert minio_storage.list_chunk_sessions() == ["s1", "s2"]
    minio_storage.purge_session("s1")
    assert minio_storage.list_chunk_sessions() == ["s2"]
