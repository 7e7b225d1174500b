"""Client module exports"""
from .uploader import ArtifactUploader, UploadIncomplete

__all__ = ["ArtifactUploader", "UploadIncomplete"]
