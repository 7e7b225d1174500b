"""
FastAPI endpoints for chunked installer uploads
"""
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, Header, Request, UploadFile

from ..schemas import (
    CancelUploadResponse,
    ChunkUploadResponse,
    FinalizeRequest,
    FinalizeResponse,
    InitUploadRequest,
    InitUploadResponse,
    PublishedArtifact,
    SessionListItem,
    SessionListResponse,
    SweepResponse,
    UploadStatusResponse
)
from ..services import UploadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["upload"])


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


UploadServiceDep = Annotated[UploadService, Depends(get_upload_service)]


@router.post("/init", response_model=InitUploadResponse)
def init_upload(request: InitUploadRequest, service: UploadServiceDep):
    """
    Open a chunked upload session.

    The client splits the installer into totalChunks pieces and sends them
    to /upload/chunk with indices 0..totalChunks-1, in any order.
    """
    logger.info(f"📤 Init upload: {request.file_name} v{request.current_version}")
    session_id = service.init_upload(
        request.file_name,
        request.file_size,
        request.total_chunks,
        request.current_version,
        request.min_version
    )
    return InitUploadResponse(session_id=session_id)


@router.post("/chunk", response_model=ChunkUploadResponse)
def upload_chunk(
    service: UploadServiceDep,
    session_id: Annotated[Optional[str], Form(alias="sessionId")] = None,
    chunk_index: Annotated[Optional[int], Form(alias="chunkIndex")] = None,
    chunk: Annotated[Optional[UploadFile], File(description="Chunk bytes")] = None,
    x_chunk_hash: Annotated[Optional[str], Header(description="Optional MD5 of the chunk")] = None
):
    """
    Upload one chunk.

    Idempotent per index: re-sending an index overwrites its bytes and does not
    change receivedCount, so clients can retry freely.
    """
    data = None
    if chunk is not None:
        # One byte over the limit is enough to reject the chunk
        data = chunk.file.read(service.max_chunk_size + 1)

    receipt = service.upload_chunk(session_id, chunk_index, data, x_chunk_hash)
    return ChunkUploadResponse(
        chunk_index=receipt.chunk_index,
        received_count=receipt.received_count,
        total_chunks=receipt.total_chunks,
        checksum=receipt.checksum
    )


@router.post("/finalize", response_model=FinalizeResponse)
def finalize_upload(request: FinalizeRequest, service: UploadServiceDep):
    """Merge all chunks and publish the result as the current version"""
    logger.info(f"🏁 Finalize requested for session {request.session_id}")
    record = service.finalize(request.session_id)
    return FinalizeResponse(data=PublishedArtifact.from_record(record))


@router.get("/status/{session_id}", response_model=UploadStatusResponse)
def get_upload_status(session_id: str, service: UploadServiceDep):
    """Chunks received so far; clients use receivedChunks to resume"""
    return UploadStatusResponse.from_snapshot(service.status(session_id))


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(service: UploadServiceDep):
    """List in-progress upload sessions (operator visibility)"""
    sessions = [SessionListItem.from_snapshot(s) for s in service.list_sessions()]
    return SessionListResponse(total=len(sessions), sessions=sessions)


@router.post("/sweep", response_model=SweepResponse)
def sweep_sessions(service: UploadServiceDep):
    """Expire sessions idle for longer than SESSION_TTL_HOURS"""
    return SweepResponse(expired_sessions=service.sweep_idle_sessions())


@router.delete("/{session_id}", response_model=CancelUploadResponse)
def cancel_upload(session_id: str, service: UploadServiceDep):
    """Cancel an upload session and remove its chunks"""
    service.cancel(session_id)
    return CancelUploadResponse(session_id=session_id)
