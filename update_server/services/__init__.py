"""Services module exports"""
from .catalog import ArtifactCatalog
from .reassembler import ChunkReassembler
from .sessions import SessionSnapshot, SessionStore
from .storage import LocalStorage, MinIOStorage, StorageBackend, StoragePaths, build_storage
from .updates import UpdateDecision, decide
from .uploads import ChunkReceipt, RecoveryReport, SessionLocks, UploadService, make_stored_filename
from .versioning import compare_versions

__all__ = [
    "ArtifactCatalog",
    "ChunkReassembler",
    "SessionSnapshot",
    "SessionStore",
    "LocalStorage",
    "MinIOStorage",
    "StorageBackend",
    "StoragePaths",
    "build_storage",
    "UpdateDecision",
    "decide",
    "ChunkReceipt",
    "RecoveryReport",
    "SessionLocks",
    "UploadService",
    "make_stored_filename",
    "compare_versions",
]
