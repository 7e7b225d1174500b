"""
FastAPI endpoints for version queries, update checks and installer download
"""
import logging
from urllib.parse import quote

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from ..schemas import (
    CheckUpdateRequest,
    CheckUpdateResponse,
    VersionHistoryItem,
    VersionHistoryResponse,
    VersionResponse
)
from .uploads import UploadServiceDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["versions"])


def content_disposition(file_name: str) -> str:
    """
    Attachment header carrying the original name.

    ``filename`` is a plain ASCII fallback; ``filename*`` (RFC 5987) carries the
    exact name for clients that understand it.
    """
    fallback = "".join(
        ch if 32 <= ord(ch) < 127 and ch not in '"\\' else "_"
        for ch in file_name
    )
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name, safe='')}"


@router.get("/version", response_model=VersionResponse)
def get_current_version(service: UploadServiceDep):
    """Current published version, 404 if nothing was ever published"""
    return VersionResponse.from_record(service.current_artifact())


@router.get("/versions", response_model=VersionHistoryResponse)
def get_version_history(service: UploadServiceDep, limit: int | None = None):
    """Every published version, newest first"""
    records = service.history(limit)
    items = [VersionHistoryItem.from_record(record, is_current=(i == 0)) for i, record in enumerate(records)]
    return VersionHistoryResponse(total=len(items), versions=items)


@router.post("/check-update", response_model=CheckUpdateResponse)
def check_update(request: CheckUpdateRequest, service: UploadServiceDep):
    """
    Tell a client whether it must update (below minVersion) or may update
    (below currentVersion). downloadUrl is only set when an update exists.
    """
    decision = service.check_update(request.client_version)
    logger.info(
        f"🔍 Check update from v{request.client_version}: "
        f"needs_update={decision.needs_update} has_update={decision.has_update}"
    )
    return CheckUpdateResponse.from_decision(decision)


@router.get("/download/{stored_filename}")
def download_artifact(stored_filename: str, service: UploadServiceDep):
    """Stream the current installer under its original file name"""
    record, stream = service.open_download(stored_filename)
    logger.info(f"📥 Download {record.stored_filename} v{record.current_version} ({record.file_size} bytes)")

    return StreamingResponse(
        stream,
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": content_disposition(record.original_name),
            "Content-Length": str(record.file_size),
            "X-Artifact-Version": record.current_version,
        }
    )
