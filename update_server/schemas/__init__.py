"""Schemas module exports"""
from .upload import (
    CamelModel,
    CancelUploadResponse,
    ChunkUploadResponse,
    FinalizeRequest,
    InitUploadRequest,
    InitUploadResponse,
    SessionListItem,
    SessionListResponse,
    SweepResponse,
    UploadStatusResponse
)
from .version import (
    CheckUpdateRequest,
    CheckUpdateResponse,
    FinalizeResponse,
    PublishedArtifact,
    VersionHistoryItem,
    VersionHistoryResponse,
    VersionResponse
)

__all__ = [
    "CamelModel",
    "CancelUploadResponse",
    "ChunkUploadResponse",
    "FinalizeRequest",
    "InitUploadRequest",
    "InitUploadResponse",
    "SessionListItem",
    "SessionListResponse",
    "SweepResponse",
    "UploadStatusResponse",
    "CheckUpdateRequest",
    "CheckUpdateResponse",
    "FinalizeResponse",
    "PublishedArtifact",
    "VersionHistoryItem",
    "VersionHistoryResponse",
    "VersionResponse"
]
