"""
Job Store: durable, expiring key -> state map for in-flight export jobs.

Every entry records the user that created it. Reads made on behalf of a
caller only return entries that caller owns; anything else (missing,
expired, foreign) is reported as absent. Writes may carry the version that
was read, and fail with ``JobConflictError`` if another writer got there
first.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from src.core.errors import JobConflictError, NotFoundError


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class StoredJob:
    job_id: str
    owner: int
    state: dict[str, Any]
    version: int
    expires_at: datetime


class JobStore(ABC):
    """Interface shared by the SQL and in-memory stores."""

    @abstractmethod
    def put(
        self,
        job_id: str,
        owner: int,
        state: dict[str, Any],
        ttl_seconds: int,
        expected_version: int | None = None,
    ) -> int:
        """
        Create or replace an entry and restart its TTL.

        Args:
            expected_version: Version the caller last read; None creates a new
                entry (or overwrites unconditionally)

        Returns:
            The new version

        Raises:
            NotFoundError: If ``expected_version`` is given but no live entry
                owned by ``owner`` exists
            JobConflictError: If the stored version differs from ``expected_version``
        """

    @abstractmethod
    def get(self, job_id: str, owner: int) -> StoredJob | None:
        """Return the live entry owned by ``owner``, or None."""

    @abstractmethod
    def delete(self, job_id: str) -> None:
        """Remove an entry; deleting a missing entry is a no-op."""

    @abstractmethod
    def purge_expired(self) -> list[StoredJob]:
        """Remove every expired entry and return what was removed."""


class InMemoryJobStore(JobStore):
    """Dict-backed store for tests and single-process development."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._jobs: dict[str, StoredJob] = {}
        self._lock = threading.RLock()

    def put(self, job_id, owner, state, ttl_seconds, expected_version=None) -> int:
        with self._lock:
            current = self._live(job_id)
            if expected_version is not None:
                if current is None or current.owner != owner:
                    raise NotFoundError(
                        "Export job not found or expired.", phase="persist", key=job_id
                    )
                if current.version != expected_version:
                    raise JobConflictError(
                        "Export job was modified by another request.", phase="persist", key=job_id
                    )
            version = (current.version + 1) if current is not None else 1
            self._jobs[job_id] = StoredJob(
                job_id=job_id,
                owner=owner,
                state=dict(state),
                version=version,
                expires_at=self._clock() + timedelta(seconds=ttl_seconds),
            )
            return version

    def get(self, job_id, owner) -> StoredJob | None:
        with self._lock:
            job = self._live(job_id)
            if job is None or job.owner != owner:
                return None
            return replace(job, state=dict(job.state))

    def delete(self, job_id) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def purge_expired(self) -> list[StoredJob]:
        with self._lock:
            now = self._clock()
            expired = [job for job in self._jobs.values() if job.expires_at <= now]
            for job in expired:
                del self._jobs[job.job_id]
            return expired

    def _live(self, job_id: str) -> StoredJob | None:
        job = self._jobs.get(job_id)
        if job is not None and job.expires_at <= self._clock():
            return None
        return job

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
