"""
Database models for chunked upload sessions and the artifact catalog

Sessions are mutable bookkeeping that is deleted once a finalize succeeds.
Artifacts are append-only: publishing a version inserts a row, and the row
with the highest id is the current artifact.
"""
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadSession(Base):
    """One in-progress chunked upload."""
    __tablename__ = "upload_sessions"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    declared_file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_chunks: Mapped[int] = mapped_column(Integer, nullable=False)

    # Candidate metadata for the artifact this session will publish
    current_version: Mapped[str] = mapped_column(String(32), nullable=False)
    min_version: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    # Last chunk arrival; the sweep expires sessions by this column
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )

    def __repr__(self):
        return f"<UploadSession id={self.session_id} file={self.file_name} chunks={self.total_chunks}>"


class UploadChunk(Base):
    """
    One received chunk index.

    The composite primary key makes the received-index set a database-level set:
    recording the same index twice can never produce a second row.
    """
    __tablename__ = "upload_chunks"

    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("upload_sessions.session_id", ondelete="CASCADE"),
        primary_key=True
    )
    chunk_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    checksum: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # MD5 hex
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<UploadChunk session={self.session_id} index={self.chunk_index} size={self.size_bytes}>"


class ArtifactRecord(Base):
    """A published installer. Never mutated after insert."""
    __tablename__ = "artifacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    current_version: Mapped[str] = mapped_column(String(32), nullable=False)
    min_version: Mapped[str] = mapped_column(String(32), nullable=False)
    stored_filename: Mapped[str] = mapped_column(String(600), nullable=False, unique=True)
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_artifacts_upload_date", "upload_date"),
    )

    @property
    def download_url(self) -> str:
        # Original names may carry URL metacharacters ("Setup#2.exe")
        return f"/api/download/{quote(self.stored_filename, safe='')}"

    def __repr__(self):
        return f"<ArtifactRecord #{self.id} v{self.current_version} (min {self.min_version}) {self.stored_filename}>"
