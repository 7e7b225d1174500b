"""
Typed failures raised by the services.

Every error carries the HTTP status it maps to and a wire body, so the API layer
converts them with a single exception handler.
"""
from typing import Any, Dict, Iterable


class UpdateServerError(Exception):
    """Base class for request-scoped failures."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(UpdateServerError):
    """Malformed or missing input."""

    status_code = 400


class ChunkTooLarge(ValidationError):
    status_code = 413

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Chunk of {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class NotFound(UpdateServerError):
    status_code = 404


class SessionNotFound(NotFound):
    def __init__(self, session_id: str) -> None:
        super().__init__("Upload session not found")
        self.session_id = session_id


class NoArtifactPublished(NotFound):
    def __init__(self) -> None:
        super().__init__("No version available")


class IncompleteUpload(UpdateServerError):
    """Finalize called before every chunk arrived; the client should keep uploading."""

    status_code = 400

    def __init__(self, received_count: int, total_chunks: int) -> None:
        super().__init__("Not all chunks uploaded")
        self.received_count = received_count
        self.total_chunks = total_chunks

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["receivedCount"] = self.received_count
        payload["totalChunks"] = self.total_chunks
        return payload


class CorruptSession(UpdateServerError):
    """
    A chunk marked as received has no bytes in storage.

    The session is left intact so the missing chunks can be uploaded again.
    """

    status_code = 409

    def __init__(self, session_id: str, missing_chunks: Iterable[int]) -> None:
        self.session_id = session_id
        self.missing_chunks = sorted(missing_chunks)
        super().__init__(f"Chunk data missing for indices {self.missing_chunks}")

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["missingChunks"] = self.missing_chunks
        return payload


class StorageFailure(UpdateServerError):
    """Disk or object-store error. Not retried by the server."""

    status_code = 500
