"""ArtifactUploader driven through the in-process TestClient"""
import pytest

from update_server.client import ArtifactUploader, UploadIncomplete


@pytest.fixture
def uploader(client):
    return ArtifactUploader(
        api_url="http://testserver",
        chunk_size=4,
        max_workers=1,
        max_retries=1,
        http=client,
        verbose=False
    )


@pytest.fixture
def installer(tmp_path):
    path = tmp_path / "Setup.exe"
    path.write_bytes(b"0123456789")
    return path


def test_upload_file_publishes_version(uploader, installer, client):
    result = uploader.upload_file(str(installer), "1.4.0", "1.0.0")

    assert result["data"]["currentVersion"] == "1.4.0"
    assert result["data"]["originalName"] == "Setup.exe"

    url = client.get("/api/version").json()["downloadUrl"]
    assert client.get(url).content == b"0123456789"


def test_resume_sends_only_missing_chunks(uploader, installer, client, monkeypatch):
    session_id, total_chunks = uploader.init_upload("Setup.exe", 10, "1.4.0", "1.0.0")
    assert total_chunks == 3
    uploader.upload_chunk(session_id, 1, b"4567")

    sent = []
    original = uploader.upload_chunk

    def recording_upload(sid, index, data):
        sent.append(index)
        return original(sid, index, data)

    monkeypatch.setattr(uploader, "upload_chunk", recording_upload)
    uploader.upload_file(str(installer), "1.4.0", "1.0.0", session_id=session_id)

    assert sorted(sent) == [0, 2]
    url = client.get("/api/version").json()["downloadUrl"]
    assert client.get(url).content == b"0123456789"


def test_failed_chunks_leave_session_resumable(uploader, installer, monkeypatch):
    original = uploader.upload_chunk

    def flaky_upload(sid, index, data):
        if index == 2:
            raise RuntimeError("connection reset")
        return original(sid, index, data)

    monkeypatch.setattr(uploader, "upload_chunk", flaky_upload)
    with pytest.raises(UploadIncomplete) as exc:
        uploader.upload_file(str(installer), "1.4.0", "1.0.0")

    assert exc.value.failed_chunks == [2]
    assert uploader.get_status(exc.value.session_id)["receivedChunks"] == [0, 1]


def test_check_update(uploader, installer):
    uploader.upload_file(str(installer), "2.0.0", "1.5.0")

    result = uploader.check_update("1.8.0")
    assert result["needsUpdate"] is False
    assert result["hasUpdate"] is True
    assert result["downloadUrl"].startswith("/api/download/")


def test_missing_file(uploader, tmp_path):
    with pytest.raises(FileNotFoundError):
        uploader.upload_file(str(tmp_path / "nope.exe"), "1.0.0", "1.0.0")
