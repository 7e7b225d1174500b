"""
Pydantic schemas for version queries, update checks and finalize results
"""
from datetime import datetime
from typing import List, Optional

from ..models import ArtifactRecord
from ..services.sessions import as_utc
from ..services.updates import UpdateDecision
from .upload import CamelModel


class PublishedArtifact(CamelModel):
    """Summary returned by finalize"""
    current_version: str
    min_version: str
    original_name: str
    upload_date: datetime

    @classmethod
    def from_record(cls, record: ArtifactRecord) -> "PublishedArtifact":
        return cls(
            current_version=record.current_version,
            min_version=record.min_version,
            original_name=record.original_name,
            upload_date=as_utc(record.upload_date)
        )


class FinalizeResponse(CamelModel):
    message: str = "File uploaded successfully"
    data: PublishedArtifact


class VersionResponse(CamelModel):
    current_version: str
    min_version: str
    download_url: str
    upload_date: datetime
    file_size: int

    @classmethod
    def from_record(cls, record: ArtifactRecord) -> "VersionResponse":
        return cls(
            current_version=record.current_version,
            min_version=record.min_version,
            download_url=record.download_url,
            upload_date=as_utc(record.upload_date),
            file_size=record.file_size
        )


class VersionHistoryItem(CamelModel):
    current_version: str
    min_version: str
    original_name: str
    file_size: int
    upload_date: datetime
    is_current: bool

    @classmethod
    def from_record(cls, record: ArtifactRecord, is_current: bool) -> "VersionHistoryItem":
        return cls(
            current_version=record.current_version,
            min_version=record.min_version,
            original_name=record.original_name,
            file_size=record.file_size,
            upload_date=as_utc(record.upload_date),
            is_current=is_current
        )


class VersionHistoryResponse(CamelModel):
    total: int
    versions: List[VersionHistoryItem]


class CheckUpdateRequest(CamelModel):
    client_version: Optional[str] = None


class CheckUpdateResponse(CamelModel):
    needs_update: bool
    has_update: bool
    current_version: str
    min_version: str
    download_url: Optional[str]

    @classmethod
    def from_decision(cls, decision: UpdateDecision) -> "CheckUpdateResponse":
        return cls(
            needs_update=decision.needs_update,
            has_update=decision.has_update,
            current_version=decision.current_version,
            min_version=decision.min_version,
            download_url=decision.download_url
        )
