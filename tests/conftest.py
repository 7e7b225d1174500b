"""Shared fixtures: a throwaway SQLite database and local storage per test"""
import pytest
from fastapi.testclient import TestClient

from update_server.core import Settings, create_db_engine, create_session_factory, init_models
from update_server.main import create_app
from update_server.services import ArtifactCatalog, LocalStorage, SessionStore, UploadService


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        STORAGE_BACKEND="local",
        TEMP_UPLOAD_DIR=str(tmp_path / "temp"),
        ARTIFACT_DIR=str(tmp_path / "uploads"),
        ALLOWED_EXTENSIONS=".exe",
        MAX_CHUNK_SIZE=1024,
        SESSION_TTL_HOURS=24,
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.DATABASE_URL)
    init_models(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def storage(settings):
    storage = LocalStorage(settings.TEMP_UPLOAD_DIR, settings.ARTIFACT_DIR)
    storage.ensure_ready()
    return storage


@pytest.fixture
def session_store(session_factory):
    return SessionStore(session_factory, (".exe",))


@pytest.fixture
def catalog(session_factory, storage):
    return ArtifactCatalog(session_factory, storage)


@pytest.fixture
def service(settings, session_factory, storage):
    return UploadService.from_settings(settings, session_factory, storage)


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def upload_all(service):
    """Init a session and upload ``chunks`` in order. Returns the session id."""

    def _upload(chunks, file_name="setup.exe", current_version="1.0.0", min_version="1.0.0"):
        session_id = service.init_upload(
            file_name, sum(len(c) for c in chunks), len(chunks), current_version, min_version
        )
        for index, data in enumerate(chunks):
            service.upload_chunk(session_id, index, data)
        return session_id

    return _upload
