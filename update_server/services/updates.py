"""
Update decision for a client reporting its installed version
"""
from dataclasses import dataclass
from typing import Optional

from ..core.errors import NoArtifactPublished
from ..models import ArtifactRecord
from .versioning import compare_versions, require_client_version


@dataclass(frozen=True)
class UpdateDecision:
    needs_update: bool  # client is below the minimum supported version
    has_update: bool  # a newer version than the client's exists
    current_version: str
    min_version: str
    download_url: Optional[str]


def decide(client_version: str, current: Optional[ArtifactRecord]) -> UpdateDecision:
    """Compare the client's version against the current artifact"""
    if current is None:
        raise NoArtifactPublished()
    require_client_version(client_version)

    needs_update = compare_versions(client_version, current.min_version) < 0
    has_update = compare_versions(client_version, current.current_version) < 0

    return UpdateDecision(
        needs_update=needs_update,
        has_update=has_update,
        current_version=current.current_version,
        min_version=current.min_version,
        download_url=current.download_url if has_update else None
    )
