"""
Upload orchestration: init -> chunk* -> finalize, plus query/download paths

Finalize order:
1. snapshot the session (must be complete)
2. merge chunks into a new, uniquely named artifact
3. insert the catalog row (the publish point)
4. best-effort: delete the superseded artifact, the session rows, the chunk files

A failure before step 3 leaves the catalog and the session untouched, so the
client can retry finalize (or re-upload chunks after CorruptSession).
"""
import hashlib
import logging
import secrets
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..core.config import Settings
from ..core.errors import ChunkTooLarge, NotFound, SessionNotFound, StorageFailure, ValidationError
from ..models import ArtifactRecord, utcnow
from .catalog import ArtifactCatalog
from .reassembler import ChunkReassembler
from .sessions import SessionSnapshot, SessionStore, as_utc
from .storage import StorageBackend
from .updates import UpdateDecision, decide

logger = logging.getLogger(__name__)


class SessionLocks:
    """
    Per-session mutual exclusion.

    Entries are reference counted and dropped when the last holder leaves, so
    the registry only ever holds sessions with a request in flight.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}  # session_id -> [Lock, holders]

    @contextmanager
    def hold(self, session_id: str):
        with self._guard:
            entry = self._locks.setdefault(session_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[session_id]

    def __len__(self):
        with self._guard:
            return len(self._locks)


@dataclass(frozen=True)
class ChunkReceipt:
    chunk_index: int
    received_count: int
    total_chunks: int
    checksum: str


@dataclass
class RecoveryReport:
    partial_artifacts: int = 0
    superseded_artifacts: List[str] = field(default_factory=list)
    unknown_artifacts: List[str] = field(default_factory=list)
    orphaned_chunk_sessions: List[str] = field(default_factory=list)
    expired_sessions: List[str] = field(default_factory=list)


def make_stored_filename(original_name: str) -> str:
    """<epoch-ms>-<random>-<name>: unique even for concurrent finalizes of the same name"""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}-{original_name}"


class UploadService:
    """Ties the session store, storage backend, reassembler and catalog together"""

    def __init__(
        self,
        sessions: SessionStore,
        catalog: ArtifactCatalog,
        storage: StorageBackend,
        reassembler: Optional[ChunkReassembler] = None,
        max_chunk_size: int = 5 * 1024 * 1024,
        session_ttl_hours: float = 24
    ):
        self.sessions = sessions
        self.catalog = catalog
        self.storage = storage
        self.reassembler = reassembler or ChunkReassembler(storage)
        self.max_chunk_size = max_chunk_size
        self.session_ttl_hours = session_ttl_hours
        self.locks = SessionLocks()

    @classmethod
    def from_settings(cls, settings: Settings, session_factory, storage: StorageBackend) -> "UploadService":
        return cls(
            sessions=SessionStore(session_factory, settings.ALLOWED_EXTENSIONS),
            catalog=ArtifactCatalog(session_factory, storage),
            storage=storage,
            max_chunk_size=settings.MAX_CHUNK_SIZE,
            session_ttl_hours=settings.SESSION_TTL_HOURS
        )

    # ==================== Upload flow ====================

    def init_upload(
        self,
        file_name: Optional[str],
        file_size: Optional[int],
        total_chunks: Optional[int],
        current_version: Optional[str],
        min_version: Optional[str]
    ) -> str:
        return self.sessions.create(file_name, file_size, total_chunks, current_version, min_version)

    def upload_chunk(
        self,
        session_id: Optional[str],
        chunk_index: Optional[int],
        data: Optional[bytes],
        expected_checksum: Optional[str] = None
    ) -> ChunkReceipt:
        """
        Store one chunk and mark its index received.

        Re-sending an index replaces its bytes (last write wins) without changing
        the received count.
        """
        if not data:
            raise ValidationError("No chunk uploaded")
        if not session_id or chunk_index is None:
            raise ValidationError("Missing required fields: sessionId, chunkIndex")
        if len(data) > self.max_chunk_size:
            raise ChunkTooLarge(len(data), self.max_chunk_size)

        checksum = hashlib.md5(data).hexdigest()
        if expected_checksum and expected_checksum.strip().lower() != checksum:
            logger.error(f"❌ Checksum mismatch for chunk {chunk_index} of {session_id}: expected {expected_checksum}, got {checksum}")
            raise ValidationError(f"Checksum mismatch for chunk {chunk_index}")

        with self.locks.hold(session_id):
            snapshot = self.sessions.get(session_id)
            if not 0 <= chunk_index < snapshot.total_chunks:
                raise ValidationError(
                    f"Invalid chunk index {chunk_index}. Must be between 0 and {snapshot.total_chunks - 1}"
                )
            self.storage.save_chunk(session_id, chunk_index, data)
            received, total = self.sessions.record_chunk(session_id, chunk_index, len(data), checksum)

        logger.info(f"📥 Chunk {chunk_index} of session {session_id} stored ({len(data)} bytes, {received}/{total})")
        return ChunkReceipt(chunk_index=chunk_index, received_count=received, total_chunks=total, checksum=checksum)

    def status(self, session_id: str) -> SessionSnapshot:
        return self.sessions.status(session_id)

    def finalize(self, session_id: Optional[str]) -> ArtifactRecord:
        """Merge a complete session and publish it as the current artifact"""
        if not session_id:
            raise ValidationError("Missing required field: sessionId")

        with self.locks.hold(session_id):
            snapshot = self.sessions.complete(session_id)
            stored_filename = make_stored_filename(snapshot.file_name)

            size = self.reassembler.merge(
                session_id,
                snapshot.received_indices,
                stored_filename,
                cleanup_chunks=False
            )
            if size != snapshot.declared_file_size:
                logger.warning(
                    f"⚠️  Session {session_id} declared {snapshot.declared_file_size} bytes, merged {size}"
                )

            try:
                record = self.catalog.publish(
                    current_version=snapshot.current_version,
                    min_version=snapshot.min_version,
                    stored_filename=stored_filename,
                    original_name=snapshot.file_name,
                    file_size=size
                )
            except SQLAlchemyError as e:
                logger.error(f"❌ Failed to record artifact for session {session_id}: {e}")
                self._discard_artifact(stored_filename)
                raise StorageFailure("Failed to record the new artifact") from e

            # Session rows go first; recovery purges chunk files orphaned by a crash here
            self.sessions.delete(session_id)
            self.reassembler.cleanup(session_id, snapshot.received_indices)
            self._purge_chunks(session_id)

        logger.info(f"🎉 Finalized session {session_id}: v{record.current_version} -> {record.stored_filename}")
        return record

    def cancel(self, session_id: str) -> None:
        """Drop a session and its chunks. SessionNotFound if it does not exist."""
        with self.locks.hold(session_id):
            if not self.sessions.delete(session_id):
                raise SessionNotFound(session_id)
            self._purge_chunks(session_id)
        logger.info(f"🚫 Cancelled upload session {session_id}")

    def list_sessions(self) -> List[SessionSnapshot]:
        return self.sessions.list_sessions()

    def _purge_chunks(self, session_id: str) -> None:
        try:
            self.storage.purge_session(session_id)
        except StorageFailure as e:
            logger.warning(f"⚠️  Leftover chunk files for session {session_id}: {e}")

    def _discard_artifact(self, stored_filename: str) -> None:
        try:
            self.storage.delete_artifact(stored_filename)
        except StorageFailure as e:
            logger.warning(f"⚠️  Could not remove unpublished artifact {stored_filename}: {e}")

    # ==================== Housekeeping ====================

    def sweep_idle_sessions(self, now: Optional[datetime] = None) -> List[str]:
        """Delete sessions idle for longer than the TTL, with their chunk files"""
        if self.session_ttl_hours <= 0:
            return []

        cutoff = as_utc(now or utcnow()) - timedelta(hours=self.session_ttl_hours)
        expired = []
        for session_id in self.sessions.find_idle(cutoff):
            with self.locks.hold(session_id):
                try:
                    snapshot = self.sessions.get(session_id)
                except SessionNotFound:
                    continue
                # A chunk may have arrived since the scan
                if snapshot.updated_at >= cutoff:
                    continue
                self.sessions.delete(session_id)
                self._purge_chunks(session_id)
                expired.append(session_id)

        if expired:
            logger.info(f"🧹 Expired {len(expired)} idle upload session(s): {expired}")
        return expired

    def recover(self) -> RecoveryReport:
        """
        Start-up cleanup after a crash.

        Only files the catalog names as superseded are removed. An artifact no
        record mentions may belong to a finalize running in another worker, so
        it is reported and left alone.
        """
        report = RecoveryReport()
        report.partial_artifacts = self.storage.discard_partial_artifacts()

        current = self.catalog.current_or_none()
        superseded = set(self.catalog.superseded_filenames())
        for name in self.storage.list_artifacts():
            if current is not None and name == current.stored_filename:
                continue
            if name not in superseded:
                report.unknown_artifacts.append(name)
                continue
            try:
                self.storage.delete_artifact(name)
                report.superseded_artifacts.append(name)
            except StorageFailure as e:
                logger.warning(f"⚠️  Could not remove superseded artifact {name}: {e}")
        if report.unknown_artifacts:
            logger.warning(f"⚠️  Artifacts with no catalog record left in place: {report.unknown_artifacts}")

        report.orphaned_chunk_sessions = self._purge_orphaned_chunks()
        report.expired_sessions = self.sweep_idle_sessions()
        logger.info(
            f"🩺 Recovery: {report.partial_artifacts} partial merge(s), "
            f"{len(report.superseded_artifacts)} superseded artifact(s), "
            f"{len(report.orphaned_chunk_sessions)} orphaned chunk dir(s), "
            f"{len(report.expired_sessions)} expired session(s)"
        )
        return report

    def _purge_orphaned_chunks(self) -> List[str]:
        """Chunk data whose session rows are gone (finalize interrupted after publish)"""
        purged = []
        for session_id in self.storage.list_chunk_sessions():
            with self.locks.hold(session_id):
                try:
                    self.sessions.get(session_id)
                except SessionNotFound:
                    self._purge_chunks(session_id)
                    purged.append(session_id)
        return purged

    # ==================== Query / download ====================

    def current_artifact(self) -> ArtifactRecord:
        return self.catalog.current()

    def history(self, limit: Optional[int] = None) -> List[ArtifactRecord]:
        return self.catalog.history(limit)

    def check_update(self, client_version: Optional[str]) -> UpdateDecision:
        return decide(client_version, self.catalog.current_or_none())

    def open_download(self, stored_filename: str) -> Tuple[ArtifactRecord, Iterator[bytes]]:
        """Resolve the current artifact by stored name and open its byte stream"""
        record = self.catalog.find_by_stored_filename(stored_filename)
        try:
            stream = self.storage.iter_artifact(stored_filename)
        except FileNotFoundError:
            logger.error(f"❌ Catalog points at {stored_filename} but the file is missing")
            raise NotFound("File not found") from None
        return record, stream
