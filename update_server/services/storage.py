"""
Blob storage for chunk files and merged artifacts

Two interchangeable backends:
- LocalStorage: plain directories (temp dir for chunks, artifact dir for installers)
- MinIOStorage: S3-compatible object store

Both report a missing chunk or artifact as FileNotFoundError and wrap every other
I/O error in StorageFailure.
"""
import logging
import os
import shutil
import tempfile
import uuid
from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import Path
from typing import Iterable, Iterator, List

from minio import Minio
from minio.error import S3Error

from ..core.config import Settings
from ..core.errors import StorageFailure

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"
STREAM_CHUNK_SIZE = 64 * 1024


class StoragePaths:
    """
    Key layout shared by both backends.

        chunks/{session_id}/chunk_000000
        chunks/{session_id}/chunk_000001 ...
        artifacts/{stored_filename}
    """

    @staticmethod
    def chunk_dir(session_id: str) -> str:
        return f"chunks/{session_id}/"

    @staticmethod
    def chunk(session_id: str, chunk_index: int) -> str:
        return f"chunks/{session_id}/chunk_{chunk_index:06d}"

    @staticmethod
    def artifact(stored_filename: str) -> str:
        return f"artifacts/{stored_filename}"


class StorageBackend(ABC):
    """Content store keyed by session/chunk index and by artifact filename."""

    name: str = "abstract"

    def ensure_ready(self) -> None:
        """Create directories/buckets if needed"""

    @abstractmethod
    def save_chunk(self, session_id: str, chunk_index: int, data: bytes) -> None:
        """Store chunk bytes, replacing any previous bytes for that index"""

    @abstractmethod
    def has_chunk(self, session_id: str, chunk_index: int) -> bool:
        ...

    @abstractmethod
    def read_chunk(self, session_id: str, chunk_index: int) -> bytes:
        """Return chunk bytes, FileNotFoundError if absent"""

    @abstractmethod
    def delete_chunk(self, session_id: str, chunk_index: int) -> None:
        ...

    @abstractmethod
    def purge_session(self, session_id: str) -> int:
        """Remove every chunk of a session. Returns the number of chunks removed."""

    @abstractmethod
    def list_chunk_sessions(self) -> List[str]:
        """Session ids that still have chunk data"""

    @abstractmethod
    def write_artifact(self, stored_filename: str, parts: Iterable[bytes]) -> int:
        """
        Write parts sequentially into a new artifact and return its size.

        The artifact only becomes visible once every part is written. If writing
        fails, or iterating ``parts`` raises, nothing is left under the final
        name and the original exception propagates (I/O errors as StorageFailure).
        """

    @abstractmethod
    def artifact_exists(self, stored_filename: str) -> bool:
        ...

    @abstractmethod
    def iter_artifact(self, stored_filename: str, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        """Stream artifact bytes, FileNotFoundError (raised eagerly) if absent"""

    @abstractmethod
    def delete_artifact(self, stored_filename: str) -> None:
        ...

    @abstractmethod
    def list_artifacts(self) -> List[str]:
        ...

    def discard_partial_artifacts(self) -> int:
        """Remove leftovers of interrupted merges. Returns the number removed."""
        return 0


class LocalStorage(StorageBackend):
    """Filesystem backend"""

    name = "local"

    def __init__(self, temp_dir: str | Path, artifact_dir: str | Path):
        self.temp_dir = Path(temp_dir)
        self.artifact_dir = Path(artifact_dir)

    def ensure_ready(self) -> None:
        for directory in (self.temp_dir, self.artifact_dir):
            directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"🗄️  Local storage ready: chunks={self.temp_dir} artifacts={self.artifact_dir}")

    def _chunk_path(self, session_id: str, chunk_index: int) -> Path:
        return self.temp_dir / session_id / f"chunk_{chunk_index:06d}"

    def _artifact_path(self, stored_filename: str) -> Path:
        return self.artifact_dir / stored_filename

    def save_chunk(self, session_id: str, chunk_index: int, data: bytes) -> None:
        path = self._chunk_path(session_id, chunk_index)
        # Write beside the final name, then rename: a re-upload replaces the old
        # bytes without a reader ever seeing a half-written chunk
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("wb") as handle:
                handle.write(data)
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            logger.error(f"❌ Failed to write chunk {chunk_index} of session {session_id}: {e}")
            raise StorageFailure(f"Failed to store chunk {chunk_index}") from e

    def has_chunk(self, session_id: str, chunk_index: int) -> bool:
        return self._chunk_path(session_id, chunk_index).is_file()

    def read_chunk(self, session_id: str, chunk_index: int) -> bytes:
        path = self._chunk_path(session_id, chunk_index)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as e:
            logger.error(f"❌ Failed to read chunk {path}: {e}")
            raise StorageFailure(f"Failed to read chunk {chunk_index}") from e

    def delete_chunk(self, session_id: str, chunk_index: int) -> None:
        path = self._chunk_path(session_id, chunk_index)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageFailure(f"Failed to delete chunk {chunk_index}") from e

    def purge_session(self, session_id: str) -> int:
        session_dir = self.temp_dir / session_id
        if not session_dir.exists():
            return 0
        removed = sum(1 for entry in session_dir.iterdir() if not entry.name.endswith(".tmp"))
        try:
            shutil.rmtree(session_dir)
        except OSError as e:
            raise StorageFailure(f"Failed to remove chunks of session {session_id}") from e
        return removed

    def list_chunk_sessions(self) -> List[str]:
        if not self.temp_dir.exists():
            return []
        return sorted(entry.name for entry in self.temp_dir.iterdir() if entry.is_dir())

    def write_artifact(self, stored_filename: str, parts: Iterable[bytes]) -> int:
        final_path = self._artifact_path(stored_filename)
        partial_path = final_path.with_name(final_path.name + PARTIAL_SUFFIX)
        size = 0
        try:
            self.artifact_dir.mkdir(parents=True, exist_ok=True)
            with partial_path.open("wb") as out:
                for part in parts:
                    out.write(part)
                    size += len(part)
                out.flush()
                os.fsync(out.fileno())
            os.replace(partial_path, final_path)
        except OSError as e:
            partial_path.unlink(missing_ok=True)
            logger.error(f"❌ Failed to write artifact {stored_filename}: {e}")
            raise StorageFailure(f"Failed to write artifact {stored_filename}") from e
        except BaseException:
            partial_path.unlink(missing_ok=True)
            raise
        return size

    def artifact_exists(self, stored_filename: str) -> bool:
        return self._artifact_path(stored_filename).is_file()

    def iter_artifact(self, stored_filename: str, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        handle = self._artifact_path(stored_filename).open("rb")
        return self._stream(handle, chunk_size)

    @staticmethod
    def _stream(handle, chunk_size: int) -> Iterator[bytes]:
        with handle:
            while chunk := handle.read(chunk_size):
                yield chunk

    def delete_artifact(self, stored_filename: str) -> None:
        try:
            self._artifact_path(stored_filename).unlink(missing_ok=True)
        except OSError as e:
            raise StorageFailure(f"Failed to delete artifact {stored_filename}") from e

    def list_artifacts(self) -> List[str]:
        if not self.artifact_dir.exists():
            return []
        return sorted(
            entry.name for entry in self.artifact_dir.iterdir()
            if entry.is_file() and not entry.name.endswith(PARTIAL_SUFFIX)
        )

    def discard_partial_artifacts(self) -> int:
        if not self.artifact_dir.exists():
            return 0
        removed = 0
        for entry in self.artifact_dir.glob(f"*{PARTIAL_SUFFIX}"):
            entry.unlink(missing_ok=True)
            removed += 1
        return removed


class MinIOStorage(StorageBackend):
    """
    Object storage backend using MinIO (S3-compatible).

    Object puts are atomic, so chunk re-uploads simply overwrite. Merged artifacts
    are spooled to a local temp file and uploaded in one call once complete.
    """

    name = "minio"

    def __init__(
        self,
        endpoint: str = "localhost:9000",
        access_key: str = "minioadmin",
        secret_key: str = "minioadmin",
        bucket: str = "update-artifacts",
        secure: bool = False,
        client=None
    ):
        self.client = client or Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure
        )
        self.bucket = bucket
        logger.info(f"🗄️  MinIO client initialized: {endpoint}/{self.bucket}")

    def ensure_ready(self) -> None:
        """Create bucket if it doesn't exist"""
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info(f"✅ Created MinIO bucket: {self.bucket}")
            else:
                logger.info(f"✅ MinIO bucket exists: {self.bucket}")
        except S3Error as e:
            logger.error(f"❌ Failed to create bucket: {e}")
            raise StorageFailure(f"Bucket {self.bucket} unavailable") from e

    def _exists(self, key: str) -> bool:
        try:
            self.client.stat_object(self.bucket, key)
            return True
        except S3Error:
            return False

    def _get(self, key: str) -> bytes:
        response = self.client.get_object(self.bucket, key)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def _remove(self, key: str) -> None:
        try:
            self.client.remove_object(self.bucket, key)
        except S3Error as e:
            logger.error(f"❌ Failed to delete {key}: {e}")
            raise StorageFailure(f"Failed to delete {key}") from e

    def save_chunk(self, session_id: str, chunk_index: int, data: bytes) -> None:
        key = StoragePaths.chunk(session_id, chunk_index)
        try:
            self.client.put_object(self.bucket, key, BytesIO(data), length=len(data))
        except S3Error as e:
            logger.error(f"❌ Failed to upload {key}: {e}")
            raise StorageFailure(f"Failed to store chunk {chunk_index}") from e

    def has_chunk(self, session_id: str, chunk_index: int) -> bool:
        return self._exists(StoragePaths.chunk(session_id, chunk_index))

    def read_chunk(self, session_id: str, chunk_index: int) -> bytes:
        key = StoragePaths.chunk(session_id, chunk_index)
        if not self._exists(key):
            raise FileNotFoundError(key)
        try:
            return self._get(key)
        except S3Error as e:
            logger.error(f"❌ Failed to download {key}: {e}")
            raise StorageFailure(f"Failed to read chunk {chunk_index}") from e

    def delete_chunk(self, session_id: str, chunk_index: int) -> None:
        self._remove(StoragePaths.chunk(session_id, chunk_index))

    def purge_session(self, session_id: str) -> int:
        try:
            keys = [
                obj.object_name
                for obj in self.client.list_objects(self.bucket, prefix=StoragePaths.chunk_dir(session_id), recursive=True)
            ]
        except S3Error as e:
            raise StorageFailure(f"Failed to list chunks of session {session_id}") from e
        for key in keys:
            self._remove(key)
        return len(keys)

    def list_chunk_sessions(self) -> List[str]:
        try:
            return sorted({
                obj.object_name.split("/")[1]
                for obj in self.client.list_objects(self.bucket, prefix="chunks/", recursive=True)
            })
        except S3Error as e:
            raise StorageFailure("Failed to list chunk sessions") from e

    def write_artifact(self, stored_filename: str, parts: Iterable[bytes]) -> int:
        key = StoragePaths.artifact(stored_filename)
        size = 0
        with tempfile.NamedTemporaryFile(delete=False) as tmp:
            tmp_path = Path(tmp.name)
        try:
            with tmp_path.open("wb") as out:
                for part in parts:
                    out.write(part)
                    size += len(part)
            self.client.fput_object(self.bucket, key, str(tmp_path))
            logger.info(f"✅ Uploaded {size} bytes to {key}")
            return size
        except (OSError, S3Error) as e:
            logger.error(f"❌ Failed to write artifact {key}: {e}")
            raise StorageFailure(f"Failed to write artifact {stored_filename}") from e
        finally:
            tmp_path.unlink(missing_ok=True)

    def artifact_exists(self, stored_filename: str) -> bool:
        return self._exists(StoragePaths.artifact(stored_filename))

    def iter_artifact(self, stored_filename: str, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        key = StoragePaths.artifact(stored_filename)
        if not self._exists(key):
            raise FileNotFoundError(key)
        response = self.client.get_object(self.bucket, key)
        return self._stream(response, chunk_size)

    @staticmethod
    def _stream(response, chunk_size: int) -> Iterator[bytes]:
        try:
            while True:
                chunk = response.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            response.close()
            response.release_conn()

    def delete_artifact(self, stored_filename: str) -> None:
        self._remove(StoragePaths.artifact(stored_filename))

    def list_artifacts(self) -> List[str]:
        prefix = StoragePaths.artifact("")
        try:
            return sorted(
                obj.object_name[len(prefix):]
                for obj in self.client.list_objects(self.bucket, prefix=prefix, recursive=True)
            )
        except S3Error as e:
            raise StorageFailure("Failed to list artifacts") from e


def build_storage(settings: Settings) -> StorageBackend:
    """Select the backend named by STORAGE_BACKEND"""
    if settings.STORAGE_BACKEND == "local":
        return LocalStorage(settings.TEMP_UPLOAD_DIR, settings.ARTIFACT_DIR)
    if settings.STORAGE_BACKEND == "minio":
        return MinIOStorage(
            endpoint=settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            bucket=settings.MINIO_BUCKET,
            secure=settings.MINIO_SECURE
        )
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
