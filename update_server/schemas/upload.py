"""
Pydantic schemas for the chunked upload endpoints

Wire names are camelCase (sessionId, totalChunks, ...) to match the desktop
clients; attributes stay snake_case.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..services.sessions import SessionSnapshot, as_utc


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitUploadRequest(CamelModel):
    """
    Open a chunked upload session.

    Every field is optional at the schema level so a missing field is reported
    as 400 "Missing required fields" by the session store.
    """
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    total_chunks: Optional[int] = None
    current_version: Optional[str] = None
    min_version: Optional[str] = None


class InitUploadResponse(CamelModel):
    session_id: str
    message: str = "Upload session initialized"


class ChunkUploadResponse(CamelModel):
    chunk_index: int
    received_count: int
    total_chunks: int
    checksum: str  # MD5 of the stored chunk


class FinalizeRequest(CamelModel):
    session_id: Optional[str] = None


class UploadStatusResponse(CamelModel):
    session_id: str
    file_name: str
    received_count: int
    total_chunks: int
    progress_percent: float
    received_chunks: List[int]  # lets a client resume by sending only the gaps

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "UploadStatusResponse":
        return cls(
            session_id=snapshot.session_id,
            file_name=snapshot.file_name,
            received_count=snapshot.received_count,
            total_chunks=snapshot.total_chunks,
            progress_percent=snapshot.progress_percent,
            received_chunks=list(snapshot.received_indices)
        )


class SessionListItem(CamelModel):
    session_id: str
    file_name: str
    current_version: str
    min_version: str
    received_count: int
    total_chunks: int
    progress_percent: float
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "SessionListItem":
        return cls(
            session_id=snapshot.session_id,
            file_name=snapshot.file_name,
            current_version=snapshot.current_version,
            min_version=snapshot.min_version,
            received_count=snapshot.received_count,
            total_chunks=snapshot.total_chunks,
            progress_percent=snapshot.progress_percent,
            created_at=as_utc(snapshot.created_at),
            updated_at=as_utc(snapshot.updated_at)
        )


class SessionListResponse(CamelModel):
    total: int
    sessions: List[SessionListItem]


class CancelUploadResponse(CamelModel):
    session_id: str
    status: str = "cancelled"


class SweepResponse(CamelModel):
    expired_sessions: List[str]
