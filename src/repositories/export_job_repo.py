"""
SQL-backed Job Store on the ``export_jobs`` table.

Expiry is enforced on read: an expired row is reported as absent but kept
until ``purge_expired`` removes it and hands its state back, so the caller
can still release the artifact it points to. Updates use a conditional
``UPDATE ... WHERE version = :expected`` so two concurrent writers cannot
both persist a cursor for the same job.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.errors import JobConflictError, NotFoundError, StorageFailureError
from src.entities.export_job import ExportJobRecord
from src.repositories.base_repo import BaseRepository
from src.repositories.job_store import JobStore, StoredJob, utcnow

logger = logging.getLogger(__name__)


class SqlJobStore(BaseRepository[ExportJobRecord], JobStore):
    """
    Job Store persisted through SQLAlchemy.

    Every write commits immediately; a failed commit is rolled back and
    surfaced as ``StorageFailureError`` with the job left as last persisted.
    """

    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow) -> None:
        super().__init__(session=session, model=ExportJobRecord)
        self._clock = clock

    def put(
        self,
        job_id: str,
        owner: int,
        state: dict[str, Any],
        ttl_seconds: int,
        expected_version: Optional[int] = None,
    ) -> int:
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        try:
            if expected_version is None:
                return self._upsert(job_id, owner, state, expires_at)

            result = self.session.execute(
                update(ExportJobRecord)
                .where(
                    ExportJobRecord.job_id == job_id,
                    ExportJobRecord.owner == owner,
                    ExportJobRecord.version == expected_version,
                    ExportJobRecord.expires_at > self._clock(),
                )
                .values(
                    state=state,
                    version=expected_version + 1,
                    expires_at=expires_at,
                )
            )
            if result.rowcount != 1:
                self.session.rollback()
                if self.get(job_id, owner) is None:
                    raise NotFoundError(
                        "Export job not found or expired.", phase="persist", key=job_id
                    )
                raise JobConflictError(
                    "Export job was modified by another request.", phase="persist", key=job_id
                )
            self.session.commit()
            return expected_version + 1
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Failed to persist export job %s", job_id)
            raise StorageFailureError(
                "Could not persist export job state.", phase="persist", key=job_id
            ) from e

    def _upsert(self, job_id: str, owner: int, state: dict, expires_at: datetime) -> int:
        record = self.get_by_id(job_id)
        if record is None:
            record = ExportJobRecord(
                job_id=job_id,
                owner=owner,
                state=state,
                version=1,
                created_at=self._clock(),
                expires_at=expires_at,
            )
            self.create(record, commit=True)
            return 1

        record.owner = owner
        record.state = state
        record.version += 1
        record.expires_at = expires_at
        self.update(record, commit=True)
        return record.version

    def get(self, job_id: str, owner: int) -> Optional[StoredJob]:
        # populate_existing: another request may have advanced the job since
        # this session loaded it
        record = self.session.execute(
            select(ExportJobRecord)
            .where(ExportJobRecord.job_id == job_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if record is None:
            return None

        if record.expires_at <= self._clock() or record.owner != owner:
            return None
        return self._to_stored(record)

    def delete(self, job_id: str) -> None:  # type: ignore[override]
        self.session.execute(delete(ExportJobRecord).where(ExportJobRecord.job_id == job_id))
        self.session.commit()

    def purge_expired(self) -> list[StoredJob]:
        now = self._clock()
        records = list(
            self.session.execute(
                select(ExportJobRecord).where(ExportJobRecord.expires_at <= now)
            ).scalars().all()
        )
        expired = [self._to_stored(r) for r in records]
        for record in records:
            self.session.delete(record)
        if records:
            self.session.commit()
        return expired

    @staticmethod
    def _to_stored(record: ExportJobRecord) -> StoredJob:
        return StoredJob(
            job_id=record.job_id,
            owner=record.owner,
            state=dict(record.state),
            version=record.version,
            expires_at=record.expires_at,
        )
