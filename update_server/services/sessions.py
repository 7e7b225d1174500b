"""
Upload session store

Durable bookkeeping for in-progress chunked uploads. Received chunk indices are
rows keyed by (session_id, chunk_index), so the database keeps them unique and a
snapshot read inside one transaction never sees a torn set.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..core.errors import IncompleteUpload, SessionNotFound, ValidationError
from ..models import UploadChunk, UploadSession, utcnow
from .versioning import require_release_version

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored in UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session and the chunk indices received so far."""
    session_id: str
    file_name: str
    declared_file_size: int
    total_chunks: int
    current_version: str
    min_version: str
    received_indices: Tuple[int, ...]
    created_at: datetime
    updated_at: datetime

    @property
    def received_count(self) -> int:
        return len(self.received_indices)

    @property
    def progress_percent(self) -> float:
        if self.total_chunks <= 0:
            return 0.0
        return round(self.received_count / self.total_chunks * 100, 2)

    @property
    def missing_indices(self) -> List[int]:
        received = set(self.received_indices)
        return [index for index in range(self.total_chunks) if index not in received]

    @property
    def is_complete(self) -> bool:
        return self.received_count == self.total_chunks


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def clean_file_name(file_name: str) -> str:
    """Strip any client-side directory part ("C:\\dist\\setup.exe" -> "setup.exe")"""
    name = os.path.basename(file_name.replace("\\", "/")).strip()
    if not name or name in {".", ".."}:
        raise ValidationError("fileName is not a valid file name")
    return name


class SessionStore:
    """Create/read/update/delete upload sessions by id."""

    def __init__(self, session_factory: sessionmaker, allowed_extensions: Sequence[str] = (".exe",)):
        self._session_factory = session_factory
        self.allowed_extensions = tuple(ext.lower() for ext in allowed_extensions)

    def create(
        self,
        file_name: Optional[str],
        file_size: Optional[int],
        total_chunks: Optional[int],
        current_version: Optional[str],
        min_version: Optional[str]
    ) -> str:
        """Validate init metadata and open a new session. Returns the session id."""
        if any(value is None or value == "" for value in (file_name, file_size, total_chunks, current_version, min_version)):
            raise ValidationError("Missing required fields")

        file_size = _positive_int(file_size, "fileSize")
        total_chunks = _positive_int(total_chunks, "totalChunks")
        require_release_version(current_version, "currentVersion")
        require_release_version(min_version, "minVersion")

        if self.allowed_extensions and not file_name.lower().endswith(self.allowed_extensions):
            raise ValidationError(f"Only {', '.join(self.allowed_extensions)} files are allowed")
        file_name = clean_file_name(file_name)

        session_id = str(uuid.uuid4())
        now = utcnow()
        with self._session_factory() as db, db.begin():
            db.add(UploadSession(
                session_id=session_id,
                file_name=file_name,
                declared_file_size=file_size,
                total_chunks=total_chunks,
                current_version=current_version,
                min_version=min_version,
                created_at=now,
                updated_at=now
            ))

        logger.info(
            f"📝 Initialized upload session {session_id} for {file_name} "
            f"({total_chunks} chunks, v{current_version}, min v{min_version})"
        )
        return session_id

    def _snapshot(self, db: Session, session_id: str) -> SessionSnapshot:
        record = db.get(UploadSession, session_id)
        if record is None:
            raise SessionNotFound(session_id)
        indices = db.scalars(
            select(UploadChunk.chunk_index)
            .where(UploadChunk.session_id == session_id)
            .order_by(UploadChunk.chunk_index)
        ).all()
        return SessionSnapshot(
            session_id=record.session_id,
            file_name=record.file_name,
            declared_file_size=record.declared_file_size,
            total_chunks=record.total_chunks,
            current_version=record.current_version,
            min_version=record.min_version,
            received_indices=tuple(indices),
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at)
        )

    def get(self, session_id: str) -> SessionSnapshot:
        with self._session_factory() as db, db.begin():
            return self._snapshot(db, session_id)

    def record_chunk(
        self,
        session_id: str,
        chunk_index: int,
        size_bytes: int,
        checksum: Optional[str] = None
    ) -> Tuple[int, int]:
        """
        Mark a chunk index as received. Returns (received_count, total_chunks).

        Recording an index again only refreshes its size/checksum; the set of
        received indices does not grow.
        """
        try:
            return self._upsert_chunk(session_id, chunk_index, size_bytes, checksum)
        except IntegrityError:
            # Another process inserted the same index first; the retry updates its row
            logger.info(f"🔁 Chunk {chunk_index} of session {session_id} raced another writer, retrying")
            return self._upsert_chunk(session_id, chunk_index, size_bytes, checksum)

    def _upsert_chunk(
        self,
        session_id: str,
        chunk_index: int,
        size_bytes: int,
        checksum: Optional[str]
    ) -> Tuple[int, int]:
        with self._session_factory() as db, db.begin():
            record = db.get(UploadSession, session_id)
            if record is None:
                raise SessionNotFound(session_id)
            if not 0 <= chunk_index < record.total_chunks:
                raise ValidationError(
                    f"Invalid chunk index {chunk_index}. Must be between 0 and {record.total_chunks - 1}"
                )

            now = utcnow()
            chunk = db.get(UploadChunk, (session_id, chunk_index))
            if chunk is None:
                db.add(UploadChunk(
                    session_id=session_id,
                    chunk_index=chunk_index,
                    size_bytes=size_bytes,
                    checksum=checksum,
                    received_at=now
                ))
            else:
                chunk.size_bytes = size_bytes
                chunk.checksum = checksum
                chunk.received_at = now
            record.updated_at = now
            db.flush()

            received = db.scalar(
                select(func.count()).select_from(UploadChunk).where(UploadChunk.session_id == session_id)
            )
            return received, record.total_chunks

    def status(self, session_id: str) -> SessionSnapshot:
        return self.get(session_id)

    def complete(self, session_id: str) -> SessionSnapshot:
        """
        Return a snapshot for finalize, or raise IncompleteUpload.

        Does not delete anything: the caller purges the session only after the
        artifact is published, so a failed merge can be retried.
        """
        snapshot = self.get(session_id)
        if not snapshot.is_complete:
            logger.info(
                f"⏳ Session {session_id} incomplete: {snapshot.received_count}/{snapshot.total_chunks}, "
                f"missing {snapshot.missing_indices[:20]}"
            )
            raise IncompleteUpload(snapshot.received_count, snapshot.total_chunks)
        return snapshot

    def delete(self, session_id: str) -> bool:
        """Remove session bookkeeping. A missing session counts as already clean."""
        with self._session_factory() as db, db.begin():
            db.execute(delete(UploadChunk).where(UploadChunk.session_id == session_id))
            result = db.execute(delete(UploadSession).where(UploadSession.session_id == session_id))
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"🧹 Purged session {session_id}")
        return deleted

    def list_sessions(self) -> List[SessionSnapshot]:
        with self._session_factory() as db, db.begin():
            ids = db.scalars(select(UploadSession.session_id).order_by(UploadSession.created_at.desc())).all()
            return [self._snapshot(db, session_id) for session_id in ids]

    def find_idle(self, older_than: datetime) -> List[str]:
        """Ids of sessions with no activity since ``older_than``"""
        with self._session_factory() as db, db.begin():
            return list(db.scalars(
                select(UploadSession.session_id)
                .where(UploadSession.updated_at < as_utc(older_than))
                .order_by(UploadSession.updated_at)
            ).all())
