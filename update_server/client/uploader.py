"""Chunked installer upload client with parallel workers and checksum verification."""
import argparse
import hashlib
import math
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, List, Optional, Tuple
from urllib.parse import unquote

import requests

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:5100")
CHUNK_SIZE = 5 * 1024 * 1024  # 5MB, the server's default per-chunk limit
MAX_WORKERS = 4  # Parallel upload threads
MAX_RETRIES = 3  # Attempts per chunk


class UploadIncomplete(RuntimeError):
    """Some chunks could not be uploaded; resume with the session id."""

    def __init__(self, session_id: str, failed_chunks: List[int]):
        super().__init__(f"{len(failed_chunks)} chunk(s) failed for session {session_id}: {failed_chunks}")
        self.session_id = session_id
        self.failed_chunks = failed_chunks


class ArtifactUploader:
    """
    Client for publishing installers with chunked upload, and for update checks.

    ``http`` is anything with requests-style ``get``/``post`` (a requests.Session
    by default).
    """

    def __init__(
        self,
        api_url: str = API_BASE_URL,
        chunk_size: int = CHUNK_SIZE,
        max_workers: int = MAX_WORKERS,
        max_retries: int = MAX_RETRIES,
        http=None,
        verbose: bool = True
    ):
        self.api_url = api_url.rstrip("/")
        self.chunk_size = chunk_size
        self.max_workers = max_workers
        self.max_retries = max_retries
        self.http = http if http is not None else requests.Session()
        self.verbose = verbose

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    @staticmethod
    def calculate_chunk_hash(data: bytes) -> str:
        """MD5 of a chunk, sent as X-Chunk-Hash."""
        return hashlib.md5(data).hexdigest()

    def total_chunks_for(self, file_size: int) -> int:
        return max(1, math.ceil(file_size / self.chunk_size))

    def init_upload(self, file_name: str, file_size: int, current_version: str, min_version: str) -> Tuple[str, int]:
        """Initialize upload session. Returns (session_id, total_chunks)."""
        total_chunks = self.total_chunks_for(file_size)
        self._log(f"Initializing upload for {file_name} ({file_size / (1024 * 1024):.2f} MB, {total_chunks} chunks)...")

        response = self.http.post(
            f"{self.api_url}/api/upload/init",
            json={
                "fileName": file_name,
                "fileSize": file_size,
                "totalChunks": total_chunks,
                "currentVersion": current_version,
                "minVersion": min_version
            }
        )
        response.raise_for_status()

        session_id = response.json()["sessionId"]
        self._log(f"✓ Session initialized: {session_id}")
        return session_id, total_chunks

    def get_status(self, session_id: str) -> dict:
        """Get upload status (receivedCount, totalChunks, progressPercent, receivedChunks)."""
        response = self.http.get(f"{self.api_url}/api/upload/status/{session_id}")
        response.raise_for_status()
        return response.json()

    def upload_chunk(self, session_id: str, chunk_index: int, chunk_data: bytes) -> dict:
        """Upload a single chunk with MD5 checksum, retrying transient failures."""
        chunk_hash = self.calculate_chunk_hash(chunk_data)
        last_error = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.http.post(
                    f"{self.api_url}/api/upload/chunk",
                    data={"sessionId": session_id, "chunkIndex": str(chunk_index)},
                    files={"chunk": (f"chunk_{chunk_index}", chunk_data, "application/octet-stream")},
                    headers={"X-Chunk-Hash": chunk_hash}
                )
                # 4xx will not get better by retrying
                if 400 <= response.status_code < 500:
                    response.raise_for_status()
                if response.status_code < 400:
                    return response.json()
                last_error = RuntimeError(f"HTTP {response.status_code}")
            except requests.ConnectionError as e:
                last_error = e
            self._log(f"  ↻ Chunk {chunk_index} attempt {attempt}/{self.max_retries} failed: {last_error}")
            time.sleep(min(2 ** (attempt - 1) * 0.1, 2.0))

        raise RuntimeError(f"Chunk {chunk_index} failed after {self.max_retries} attempts: {last_error}")

    def finalize(self, session_id: str) -> dict:
        """Merge the chunks on the server and publish the version."""
        self._log("\nFinalizing upload...")
        response = self.http.post(f"{self.api_url}/api/upload/finalize", json={"sessionId": session_id})
        response.raise_for_status()
        return response.json()

    def cancel(self, session_id: str) -> dict:
        response = self.http.delete(f"{self.api_url}/api/upload/{session_id}")
        response.raise_for_status()
        return response.json()

    def _read_chunks(self, file_path: Path, indices: Iterable[int]) -> List[Tuple[int, bytes]]:
        chunks = []
        with open(file_path, "rb") as f:
            for index in indices:
                f.seek(index * self.chunk_size)
                chunks.append((index, f.read(self.chunk_size)))
        return chunks

    def upload_file(
        self,
        file_path: str,
        current_version: str,
        min_version: str,
        session_id: Optional[str] = None
    ) -> dict:
        """
        Upload an installer and publish it.

        With ``session_id`` an earlier session is resumed: only the indices the
        server has not received are sent. Raises UploadIncomplete if any chunk
        still fails after retries; the session stays open for a later resume.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        file_size = file_path.stat().st_size

        if session_id:
            self._log(f"Resuming upload session: {session_id}")
            status = self.get_status(session_id)
            total_chunks = status["totalChunks"]
            received = set(status["receivedChunks"])
            self._log(f"Already received: {len(received)}/{total_chunks} chunks")
        else:
            session_id, total_chunks = self.init_upload(file_path.name, file_size, current_version, min_version)
            received = set()

        pending = [index for index in range(total_chunks) if index not in received]
        self._log(f"\nUploading {len(pending)} chunks using {self.max_workers} parallel workers...")
        start_time = time.time()

        failed: List[int] = []
        done = len(received)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self.upload_chunk, session_id, index, data): index
                for index, data in self._read_chunks(file_path, pending)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    future.result()
                    done += 1
                    self._log(f"  ✓ Chunk {index + 1}/{total_chunks} uploaded ({done / total_chunks * 100:.1f}%)")
                except Exception as e:
                    self._log(f"  ✗ Chunk {index} failed: {e}")
                    failed.append(index)

        if failed:
            self._log(f"\n⚠ Upload incomplete: {len(failed)} chunks failed")
            self._log(f"  Resume with: update-uploader upload {file_path} {current_version} {min_version} --resume {session_id}")
            raise UploadIncomplete(session_id, sorted(failed))

        result = self.finalize(session_id)
        upload_time = max(time.time() - start_time, 1e-6)
        self._log("\n✓ Upload completed successfully!")
        self._log(f"  Version: {result['data']['currentVersion']} (min {result['data']['minVersion']})")
        self._log(f"  Time: {upload_time:.2f} seconds")
        self._log(f"  Speed: {file_size / upload_time / (1024 * 1024):.2f} MB/s")
        return result

    def check_update(self, client_version: str) -> dict:
        response = self.http.post(f"{self.api_url}/api/check-update", json={"clientVersion": client_version})
        response.raise_for_status()
        return response.json()

    def get_current_version(self) -> dict:
        response = self.http.get(f"{self.api_url}/api/version")
        response.raise_for_status()
        return response.json()

    def download_latest(self, destination_dir: str) -> Path:
        """Download the current installer into ``destination_dir``."""
        info = self.get_current_version()
        download_url = info["downloadUrl"]
        stored_filename = unquote(download_url.rsplit("/", 1)[-1])
        target = Path(destination_dir) / stored_filename.split("-", 2)[-1]

        with self.http.get(f"{self.api_url}{download_url}", stream=True) as response:
            response.raise_for_status()
            with open(target, "wb") as f:
                for chunk in response.iter_content(chunk_size=64 * 1024):
                    f.write(chunk)

        self._log(f"✓ Downloaded v{info['currentVersion']} to {target}")
        return target


def main(argv: Optional[List[str]] = None):
    """CLI for the installer uploader."""
    parser = argparse.ArgumentParser(description="Publish installers and check for updates")
    parser.add_argument("--api-url", default=API_BASE_URL)
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Upload and publish an installer")
    upload.add_argument("file_path")
    upload.add_argument("current_version")
    upload.add_argument("min_version")
    upload.add_argument("--resume", metavar="SESSION_ID")
    upload.add_argument("--workers", type=int, default=MAX_WORKERS)

    check = sub.add_parser("check", help="Check whether a client version should update")
    check.add_argument("client_version")

    download = sub.add_parser("download", help="Download the current installer")
    download.add_argument("destination_dir", nargs="?", default=".")

    args = parser.parse_args(argv)
    uploader = ArtifactUploader(api_url=args.api_url, max_workers=getattr(args, "workers", MAX_WORKERS))

    try:
        if args.command == "upload":
            uploader.upload_file(args.file_path, args.current_version, args.min_version, session_id=args.resume)
        elif args.command == "check":
            result = uploader.check_update(args.client_version)
            print(f"needsUpdate={result['needsUpdate']} hasUpdate={result['hasUpdate']} "
                  f"current={result['currentVersion']} min={result['minVersion']}")
            if result["downloadUrl"]:
                print(f"Download: {args.api_url}{result['downloadUrl']}")
        elif args.command == "download":
            uploader.download_latest(args.destination_dir)
    except Exception as e:
        print(f"\n✗ {args.command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
