"""
Local filesystem store for export artifacts.

An artifact is a temp file under ``EXPORT_TMP_DIR`` that is only ever
appended to. The job keeps the byte offset of its last persisted append so
a retried batch can cut off bytes written by a call that crashed before it
saved its cursor.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator
from pathlib import Path

from src.core.config import settings
from src.core.errors import NotFoundError, StorageFailureError

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "ffc-export-"
ARTIFACT_SUFFIX = ".csv"


class LocalArtifactStore:
    """Creates, extends, streams and deletes export files in one directory."""

    def __init__(self, base_dir: str | os.PathLike | None = None, chunk_size: int = 64 * 1024) -> None:
        self.base_dir = Path(base_dir or settings.EXPORT_TMP_DIR).resolve()
        self.chunk_size = chunk_size

    def _path(self, handle: str) -> Path:
        path = Path(handle).resolve()
        if path.parent != self.base_dir or not path.name.startswith(ARTIFACT_PREFIX):
            raise StorageFailureError("Artifact path is outside the export directory.", phase="artifact")
        return path

    def create(self, job_id: str) -> str:
        """Create an empty artifact for a job and return its handle."""
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            path = self.base_dir / f"{ARTIFACT_PREFIX}{job_id}{ARTIFACT_SUFFIX}"
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            os.close(fd)
        except OSError as e:
            raise StorageFailureError("Cannot create temp file.", phase="start", key=job_id) from e
        return str(path)

    def append(self, handle: str, data: bytes) -> int:
        """Append bytes in a single write and return the new size."""
        path = self._path(handle)
        try:
            with open(path, "ab") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
                return fh.tell()
        except OSError as e:
            raise StorageFailureError("Cannot write to temp file.", phase="batch") from e

    def size(self, handle: str) -> int:
        try:
            return self._path(handle).stat().st_size
        except FileNotFoundError as e:
            raise NotFoundError("Export file not found.", phase="artifact") from e

    def truncate(self, handle: str, offset: int) -> None:
        """Cut the artifact back to ``offset`` bytes (no-op when already that size)."""
        path = self._path(handle)
        try:
            if path.stat().st_size > offset:
                logger.warning("Truncating %s to %d bytes after an unfinished batch", path.name, offset)
                os.truncate(path, offset)
        except FileNotFoundError as e:
            raise NotFoundError("Export file not found.", phase="batch") from e
        except OSError as e:
            raise StorageFailureError("Cannot write to temp file.", phase="batch") from e

    def touch(self, handle: str) -> None:
        """Reset the artifact's mtime so ``reap_orphans`` ages it from now."""
        path = self._path(handle)
        try:
            os.utime(path)
        except FileNotFoundError as e:
            raise NotFoundError("Export file not found.", phase="batch") from e
        except OSError as e:
            raise StorageFailureError("Cannot write to temp file.", phase="batch") from e

    def exists(self, handle: str) -> bool:
        return self._path(handle).is_file()

    def stream_and_delete(self, handle: str) -> Iterator[bytes]:
        """
        Yield the artifact in chunks, deleting it once the stream is closed.

        Raises:
            NotFoundError: If the artifact does not exist (checked eagerly)
        """
        path = self._path(handle)
        if not path.is_file():
            raise NotFoundError("Export file not found.", phase="download")
        return self._stream(path)

    def _stream(self, path: Path) -> Iterator[bytes]:
        try:
            with open(path, "rb") as fh:
                while chunk := fh.read(self.chunk_size):
                    yield chunk
        finally:
            path.unlink(missing_ok=True)

    def delete(self, handle: str) -> None:
        self._path(handle).unlink(missing_ok=True)

    def reap_orphans(self, max_age_seconds: float) -> int:
        """
        Delete artifacts untouched for ``max_age_seconds``.

        Every batch touches its artifact when it restarts the job's TTL, so a
        file this old has no live job.

        Returns:
            Number of files removed
        """
        if not self.base_dir.is_dir():
            return 0
        cutoff = time.time() - max_age_seconds
        removed = 0
        for path in self.base_dir.glob(f"{ARTIFACT_PREFIX}*{ARTIFACT_SUFFIX}"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        if removed:
            logger.info("Removed %d orphaned export artifacts", removed)
        return removed
