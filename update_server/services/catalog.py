"""
Artifact catalog: append-only history of published installers

"Current" is the newest row, never a mutable singleton. Publishing inserts a row
in one transaction, so a concurrent reader sees either the previous artifact or
the new one, whole.
"""
import logging
import threading
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from ..core.errors import NoArtifactPublished, NotFound
from ..models import ArtifactRecord, utcnow
from .storage import StorageBackend

logger = logging.getLogger(__name__)


class ArtifactCatalog:
    """Durable record of published artifacts"""

    def __init__(self, session_factory: sessionmaker, storage: Optional[StorageBackend] = None):
        self._session_factory = session_factory
        self.storage = storage
        self._publish_lock = threading.Lock()

    def publish(
        self,
        current_version: str,
        min_version: str,
        stored_filename: str,
        original_name: str,
        file_size: int,
        upload_date: Optional[datetime] = None
    ) -> ArtifactRecord:
        """
        Insert a new current artifact, then remove the superseded artifact's file.

        The old file is deleted only after the new row is committed, and that
        deletion is best-effort: a failure there never undoes the publish.
        """
        with self._publish_lock:
            previous = self.current_or_none()

            record = ArtifactRecord(
                current_version=current_version,
                min_version=min_version,
                stored_filename=stored_filename,
                original_name=original_name,
                file_size=file_size,
                upload_date=upload_date or utcnow()
            )
            with self._session_factory() as db, db.begin():
                db.add(record)
            logger.info(f"📦 Published v{current_version} (min v{min_version}) as {stored_filename} ({file_size} bytes)")

            if previous is not None and previous.stored_filename != stored_filename:
                self._discard_file(previous.stored_filename)

        return record

    def _discard_file(self, stored_filename: str) -> None:
        if self.storage is None:
            return
        try:
            self.storage.delete_artifact(stored_filename)
            logger.info(f"🗑️  Removed superseded artifact {stored_filename}")
        except Exception as e:
            logger.warning(f"⚠️  Could not remove superseded artifact {stored_filename}: {e}")

    def current_or_none(self) -> Optional[ArtifactRecord]:
        with self._session_factory() as db:
            return db.scalars(
                select(ArtifactRecord).order_by(ArtifactRecord.id.desc()).limit(1)
            ).first()

    def current(self) -> ArtifactRecord:
        record = self.current_or_none()
        if record is None:
            raise NoArtifactPublished()
        return record

    def find_by_stored_filename(self, stored_filename: str) -> ArtifactRecord:
        """
        Resolve a download name. Only the current artifact is served, so a name
        from a superseded record is NotFound as well.
        """
        record = self.current_or_none()
        if record is None or record.stored_filename != stored_filename:
            raise NotFound("File not found")
        return record

    def superseded_filenames(self) -> List[str]:
        """Stored names of every record older than the current one"""
        newest = select(func.max(ArtifactRecord.id)).scalar_subquery()
        with self._session_factory() as db:
            return list(db.scalars(
                select(ArtifactRecord.stored_filename).where(ArtifactRecord.id < newest)
            ).all())

    def history(self, limit: Optional[int] = None) -> List[ArtifactRecord]:
        """Published artifacts, newest first"""
        stmt = select(ArtifactRecord).order_by(ArtifactRecord.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session_factory() as db:
            return list(db.scalars(stmt).all())
