"""
Chunk reassembly: concatenate a completed session's chunks into one artifact
"""
import logging
from typing import Iterable, Iterator, List

from ..core.errors import CorruptSession
from .storage import StorageBackend

logger = logging.getLogger(__name__)


class ChunkReassembler:
    """
    Merge chunks in ascending index order, never arrival order.

    The destination only appears once every chunk has been written. A chunk
    that is marked received but has no bytes aborts the merge with
    CorruptSession, leaving no destination and every chunk file in place.
    """

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def _missing(self, session_id: str, indices: List[int]) -> List[int]:
        return [index for index in indices if not self.storage.has_chunk(session_id, index)]

    def _chunk_stream(self, session_id: str, indices: List[int]) -> Iterator[bytes]:
        for index in indices:
            try:
                data = self.storage.read_chunk(session_id, index)
            except FileNotFoundError:
                # Vanished between the pre-check and the read
                raise CorruptSession(session_id, [index]) from None
            logger.debug(f"Merging chunk {index} of session {session_id} ({len(data)} bytes)")
            yield data

    def merge(
        self,
        session_id: str,
        received_indices: Iterable[int],
        destination: str,
        cleanup_chunks: bool = True
    ) -> int:
        """
        Write the merged artifact under ``destination``. Returns its size in bytes.

        With ``cleanup_chunks=False`` the chunk files stay until the caller runs
        ``cleanup`` itself, e.g. after the artifact is published.
        """
        indices = sorted(set(received_indices))

        missing = self._missing(session_id, indices)
        if missing:
            logger.error(f"❌ Session {session_id} marks chunks {missing} received but they are not in storage")
            raise CorruptSession(session_id, missing)

        logger.info(f"🔧 Merging {len(indices)} chunks of session {session_id} into {destination}")
        size = self.storage.write_artifact(destination, self._chunk_stream(session_id, indices))
        logger.info(f"✅ Merged {destination} ({size} bytes)")

        if cleanup_chunks:
            self.cleanup(session_id, indices)
        return size

    def cleanup(self, session_id: str, indices: Iterable[int]) -> int:
        """
        Delete merged chunk files. Failures are logged and skipped: the chunks
        are never read again once the artifact exists.
        """
        failed = 0
        for index in indices:
            try:
                self.storage.delete_chunk(session_id, index)
            except Exception as e:
                failed += 1
                logger.warning(f"⚠️  Could not delete chunk {index} of session {session_id}: {e}")
        return failed
