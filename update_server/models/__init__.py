"""Models module exports"""
from .database import ArtifactRecord, UploadChunk, UploadSession, utcnow

__all__ = ["ArtifactRecord", "UploadChunk", "UploadSession", "utcnow"]
