import pytest

from update_server.core.errors import NoArtifactPublished, NotFound


def _publish(catalog, storage, version, name):
    storage.write_artifact(name, [version.encode()])
    return catalog.publish(
        current_version=version,
        min_version="1.0.0",
        stored_filename=name,
        original_name="setup.exe",
        file_size=len(version)
    )


def test_empty_catalog(catalog):
    assert catalog.current_or_none() is None
    with pytest.raises(NoArtifactPublished):
        catalog.current()
    assert catalog.history() == []


def test_newest_publish_is_current(catalog, storage):
    _publish(catalog, storage, "1.0.0", "1-a-setup.exe")
    record = _publish(catalog, storage, "1.1.0", "2-b-setup.exe")

    current = catalog.current()
    assert current.id == record.id
    assert current.current_version == "1.1.0"
    assert current.download_url == "/api/download/2-b-setup.exe"


def test_history_is_append_only(catalog, storage):
    for i, version in enumerate(["1.0.0", "1.1.0", "2.0.0"]):
        _publish(catalog, storage, version, f"{i}-x-setup.exe")

    assert [r.current_version for r in catalog.history()] == ["2.0.0", "1.1.0", "1.0.0"]
    assert [r.current_version for r in catalog.history(limit=1)] == ["2.0.0"]


def test_publish_removes_superseded_file(catalog, storage):
    _publish(catalog, storage, "1.0.0", "1-a-setup.exe")
    _publish(catalog, storage, "1.1.0", "2-b-setup.exe")

    assert storage.list_artifacts() == ["2-b-setup.exe"]


def test_superseded_name_is_not_downloadable(catalog, storage):
    _publish(catalog, storage, "1.0.0", "1-a-setup.exe")
    _publish(catalog, storage, "1.1.0", "2-b-setup.exe")

    assert catalog.find_by_stored_filename("2-b-setup.exe").current_version == "1.1.0"
    with pytest.raises(NotFound, match="File not found"):
        catalog.find_by_stored_filename("1-a-setup.exe")


def test_failed_file_removal_keeps_publish(catalog, storage, monkeypatch):
    _publish(catalog, storage, "1.0.0", "1-a-setup.exe")

    def broken_delete(stored_filename):
        raise OSError("busy")

    monkeypatch.setattr(storage, "delete_artifact", broken_delete)
    _publish(catalog, storage, "1.1.0", "2-b-setup.exe")

    assert catalog.current().current_version == "1.1.0"
    assert sorted(storage.list_artifacts()) == ["1-a-setup.exe", "2-b-setup.exe"]
