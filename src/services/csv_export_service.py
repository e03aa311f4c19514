"""
Service for batched CSV exports of submissions.

Large exports cannot be produced inside one request, so the client drives a
three-phase protocol:

    start    -> discovers dynamic columns, counts rows, writes the header,
                creates the job                      (NONE -> STARTED)
    batch    -> appends the next bounded batch of rows; repeat until
                ``done``                             (-> BATCHING* -> COMPLETE)
    download -> streams the file once, then deletes it and the job
                                                     (-> DOWNLOADED)

A job that is never downloaded expires from the Job Store after its TTL and
its file is reclaimed by ``reap_expired`` (-> EXPIRED).

Architecture:
    CsvExportService -> SubmissionRepository -> submissions table (keyset reads)
    CsvExportService -> JobStore             -> export_jobs table (job state)
    CsvExportService -> LocalArtifactStore   -> temp CSV files

Crash safety: the job stores the artifact's byte size next to the cursor.
Every batch first truncates the file back to that size, so rows appended by
a call that died before saving its cursor are written exactly once on retry.
Concurrent batch calls for one job are serialized by a per-job lock inside
the process and by the Job Store's version check across processes.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum

from sqlalchemy.orm import Session

from src.core.config import settings
from src.core.encryption import EncryptionService, get_encryption_service
from src.core.errors import (
    EmptyResultError,
    JobConflictError,
    NotFoundError,
    PreconditionFailedError,
    StorageFailureError,
    TimeBudgetExceededError,
    UnauthorizedError,
)
from src.core.security import (
    ACTION_DOWNLOAD,
    ACTION_EXPORT,
    Identity,
    SecurityTokenValidator,
    require_authorized,
)
from src.core.time_budget import TimeBudget
from src.dtos.export_dto import (
    ExportBatchResponse,
    ExportFilter,
    ExportJobState,
    ExportParams,
    ExportStartResponse,
)
from src.repositories.cursor import MAX_CURSOR
from src.repositories.export_job_repo import SqlJobStore
from src.repositories.job_store import JobStore, StoredJob, utcnow
from src.repositories.submission_repo import SubmissionRepository
from src.services.artifact_store import LocalArtifactStore
from src.services.csv_format import (
    UTF8_BOM,
    RowFormatter,
    SubmissionRowFormatter,
    extract_dynamic_keys,
    to_csv_bytes,
)

logger = logging.getLogger(__name__)


class ExportPhase(StrEnum):
    NONE = "none"
    STARTED = "started"
    BATCHING = "batching"
    COMPLETE = "complete"
    DOWNLOADED = "downloaded"
    EXPIRED = "expired"


def phase_of(state: ExportJobState | None) -> ExportPhase:
    """Phase of a stored job; DOWNLOADED/EXPIRED jobs are no longer stored."""
    if state is None:
        return ExportPhase.NONE
    if state.done:
        return ExportPhase.COMPLETE
    if state.processed == 0:
        return ExportPhase.STARTED
    return ExportPhase.BATCHING


@dataclass
class ExportDownload:
    """A claimed export file, ready to be streamed exactly once."""

    job_id: str
    filename: str
    size: int
    chunks: Iterator[bytes]


_job_locks: dict[str, threading.Lock] = {}
_job_locks_guard = threading.Lock()


@contextmanager
def _job_lock(job_id: str, timeout: float):
    with _job_locks_guard:
        lock = _job_locks.setdefault(job_id, threading.Lock())
    if not lock.acquire(timeout=timeout):
        raise JobConflictError(
            "Another batch for this export is still running.", phase="batch", key=job_id
        )
    try:
        yield
    finally:
        lock.release()


def _forget_lock(job_id: str) -> None:
    with _job_locks_guard:
        _job_locks.pop(job_id, None)


def _sanitize_filename(value: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", value.strip()).strip("-._")
    return slug.lower() or "export"


class CsvExportService:
    """
    Export Job Controller for submission CSVs.

    Handles:
    - Authorization and per-call security tokens
    - Dynamic column discovery in bounded chunks
    - Keyset-paginated batches with persisted cursor and byte offset
    - One-time download and cleanup of expired jobs
    """

    def __init__(
        self,
        session: Session,
        *,
        job_store: JobStore | None = None,
        artifact_store: LocalArtifactStore | None = None,
        token_validator: SecurityTokenValidator | None = None,
        formatter: RowFormatter | None = None,
        encryption: EncryptionService | None = None,
        batch_size: int | None = None,
        keys_batch_size: int | None = None,
        job_ttl_seconds: int | None = None,
        time_budget_seconds: float | None = None,
    ) -> None:
        self.session = session
        self.repository = SubmissionRepository(session)
        self.job_store = job_store or SqlJobStore(session)
        self.artifacts = artifact_store or LocalArtifactStore()
        self.tokens = token_validator or SecurityTokenValidator()
        self.encryption = encryption if encryption is not None else get_encryption_service()
        self.formatter = formatter or SubmissionRowFormatter(self.encryption)
        self.batch_size = batch_size or settings.EXPORT_BATCH_SIZE
        self.keys_batch_size = keys_batch_size or settings.EXPORT_KEYS_BATCH_SIZE
        self.job_ttl_seconds = job_ttl_seconds or settings.EXPORT_JOB_TTL_SECONDS
        self.time_budget_seconds = time_budget_seconds or settings.CALL_TIME_BUDGET_SECONDS

    # ------------------------------------------------------------------
    # Phase 1: start
    # ------------------------------------------------------------------

    def start(self, identity: Identity, export_filter: ExportFilter, token: str | None) -> ExportStartResponse:
        """
        Create a new export job.

        Args:
            identity: Caller; becomes the job owner
            export_filter: Form and status filter
            token: Per-action security token for ``csv_export``

        Returns:
            ExportStartResponse with the job id and total row count

        Raises:
            UnauthorizedError: Caller lacks permission or the token is invalid
            EmptyResultError: Nothing matches the filter (no job is created)
            TimeBudgetExceededError: Column discovery did not fit in one call
            StorageFailureError: The artifact could not be written
        """
        require_authorized(identity, ACTION_EXPORT, phase="start")
        self.tokens.verify(token, identity, ACTION_EXPORT, phase="start")
        budget = TimeBudget(self.time_budget_seconds)

        self.reap_expired()

        form_ids, status = export_filter.form_ids, export_filter.status
        upper_key = self.repository.max_export_id(form_ids, status)
        total = 0 if upper_key is None else self.repository.count_for_export(form_ids, status, upper_key)
        if total == 0:
            raise EmptyResultError("No records available for export.", phase="start")

        dynamic_keys = self._scan_dynamic_keys(form_ids, status, upper_key, budget)
        include_edit_columns = self.repository.has_edit_info()

        job_id = uuid.uuid4().hex
        artifact_path = self.artifacts.create(job_id)
        try:
            header = self.formatter.headers(dynamic_keys, include_edit_columns)
            offset = self.artifacts.append(artifact_path, UTF8_BOM + to_csv_bytes([header]))

            state = ExportJobState(
                job_id=job_id,
                owner=identity.user_id,
                created_at=utcnow(),
                ttl_seconds=self.job_ttl_seconds,
                params=ExportParams(
                    form_ids=form_ids,
                    status=status,
                    dynamic_keys=dynamic_keys,
                    include_edit_columns=include_edit_columns,
                    upper_key=upper_key,
                ),
                cursor=MAX_CURSOR,
                processed=0,
                total=total,
                artifact_path=artifact_path,
                artifact_offset=offset,
                filename=self._build_filename(form_ids),
                download_token_id=uuid.uuid4().hex,
            )
            self.job_store.put(
                job_id, identity.user_id, state.model_dump(mode="json"), self.job_ttl_seconds
            )
        except Exception:
            self.artifacts.delete(artifact_path)
            raise

        logger.info(
            "Export %s started by user %s: %d rows, %d dynamic columns",
            job_id,
            identity.user_id,
            total,
            len(dynamic_keys),
        )
        return ExportStartResponse(job_id=job_id, total=total)

    def _scan_dynamic_keys(
        self,
        form_ids: list[int] | None,
        status: str | None,
        upper_key: int,
        budget: TimeBudget,
    ) -> list[str]:
        """Collect every JSON payload key of the matching rows, chunk by chunk."""
        keys: set[str] = set()
        cursor = self.repository.export_keys_cursor(form_ids, status, upper_key)
        for rows in cursor.iterate(self.keys_batch_size):
            keys |= extract_dynamic_keys(rows, self.encryption)
            if budget.expired():
                raise TimeBudgetExceededError(
                    "Column discovery exceeded the time budget; narrow the filter.",
                    phase="start",
                )
        return sorted(keys)

    def _build_filename(self, form_ids: list[int] | None) -> str:
        if form_ids and len(form_ids) == 1:
            title = self.formatter.form_title(form_ids[0])
        elif form_ids:
            title = f"{len(form_ids)}-forms"
        else:
            title = "all-forms"
        return f"{_sanitize_filename(title)}-{utcnow():%Y-%m-%d}.csv"

    # ------------------------------------------------------------------
    # Phase 2: batch
    # ------------------------------------------------------------------

    def batch(self, identity: Identity, job_id: str, token: str | None) -> ExportBatchResponse:
        """
        Append the next batch of rows to the export file.

        Returns ``done=True`` (with a one-time download token) once every row
        has been written; calling again after that returns the same answer
        without touching the file or the job.

        Raises:
            UnauthorizedError: Caller lacks permission or the token is invalid
            NotFoundError: Job is missing, expired or owned by someone else
            JobConflictError: Another batch for the same job is in flight
            StorageFailureError: The file or the job state could not be written;
                the job keeps its last persisted cursor so the call can be retried
        """
        require_authorized(identity, ACTION_EXPORT, phase="batch", key=job_id)
        self.tokens.verify(token, identity, ACTION_EXPORT, phase="batch")
        budget = TimeBudget(self.time_budget_seconds)

        with _job_lock(job_id, timeout=self.time_budget_seconds):
            stored = self._load(identity, job_id, phase="batch")
            state = ExportJobState.model_validate(stored.state)

            if state.done:
                return self._done_response(identity, state)

            # Drop bytes left by an append whose cursor was never persisted
            self.artifacts.truncate(state.artifact_path, state.artifact_offset)

            params = state.params
            rows = self.repository.get_export_batch(
                params.form_ids, params.status, state.cursor, self.batch_size, params.upper_key
            )

            records = []
            last_id = state.cursor
            stopped_early = False
            for row in rows:
                if records and budget.expired():
                    stopped_early = True
                    break
                records.append(
                    self.formatter.format(row, params.dynamic_keys, params.include_edit_columns)
                )
                last_id = row.id

            if records:
                state.artifact_offset = self.artifacts.append(state.artifact_path, to_csv_bytes(records))
                state.cursor = last_id
                state.processed += len(records)

            state.done = not stopped_early and len(rows) < self.batch_size
            # The job's TTL restarts on persist; the file's age must follow it
            self.artifacts.touch(state.artifact_path)
            self._persist(state, stored.version)

        logger.info(
            "Export %s batch: +%d rows (%d/%d) phase=%s",
            job_id,
            len(records),
            state.processed,
            state.total,
            phase_of(state),
        )
        if state.done:
            return self._done_response(identity, state)
        return ExportBatchResponse(done=False, processed=state.processed, total=state.total)

    def _done_response(self, identity: Identity, state: ExportJobState) -> ExportBatchResponse:
        download_token = self.tokens.issue(
            identity,
            ACTION_DOWNLOAD,
            job_id=state.job_id,
            token_id=state.download_token_id,
            ttl_seconds=state.ttl_seconds,
        )
        return ExportBatchResponse(
            done=True,
            processed=state.processed,
            total=state.total,
            download_token=download_token,
        )

    # ------------------------------------------------------------------
    # Phase 3: download
    # ------------------------------------------------------------------

    def download(self, identity: Identity, job_id: str, token: str | None) -> ExportDownload:
        """
        Claim a completed export for streaming.

        The job is removed from the Job Store before any byte is sent, which
        makes the download token single-use; the file is deleted when the
        returned stream is exhausted or closed.

        Raises:
            UnauthorizedError: Caller lacks permission or the token is invalid
            NotFoundError: Job or file is missing, expired or foreign
            PreconditionFailedError: The export has not finished yet
        """
        require_authorized(identity, ACTION_EXPORT, phase="download", key=job_id)
        stored = self._load(identity, job_id, phase="download")
        state = ExportJobState.model_validate(stored.state)

        claims = self.tokens.verify(token, identity, ACTION_DOWNLOAD, job_id=job_id, phase="download")
        if claims.get("jti") != state.download_token_id:
            raise UnauthorizedError("Security check failed.", phase="download", key=job_id)
        if not state.done:
            raise PreconditionFailedError(
                "Export is not complete yet.",
                reason="export_incomplete",
                phase="download",
                key=job_id,
            )

        try:
            size = self.artifacts.size(state.artifact_path)
            chunks = self.artifacts.stream_and_delete(state.artifact_path)
        except NotFoundError:
            self.job_store.delete(job_id)
            _forget_lock(job_id)
            raise NotFoundError("Export file not found.", phase="download", key=job_id)

        self.job_store.delete(job_id)
        _forget_lock(job_id)
        logger.info("Export %s downloaded by user %s (%d bytes)", job_id, identity.user_id, size)
        return ExportDownload(job_id=job_id, filename=state.filename, size=size, chunks=chunks)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def reap_expired(self) -> int:
        """
        Delete expired jobs with their files, then orphaned files.

        Returns:
            Number of artifacts removed
        """
        removed = 0
        for job in self.job_store.purge_expired():
            path = job.state.get("artifact_path")
            _forget_lock(job.job_id)
            if not path:
                continue
            try:
                self.artifacts.delete(path)
                removed += 1
            except StorageFailureError:
                logger.warning("Expired export %s points outside the export directory", job.job_id)
        removed += self.artifacts.reap_orphans(self.job_ttl_seconds)
        if removed:
            logger.info("Reaped %d expired export artifacts", removed)
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, identity: Identity, job_id: str, *, phase: str) -> StoredJob:
        stored = self.job_store.get(job_id, identity.user_id)
        if stored is None:
            raise NotFoundError("Export job not found or expired.", phase=phase, key=job_id)
        return stored

    def _persist(self, state: ExportJobState, version: int) -> int:
        return self.job_store.put(
            state.job_id,
            state.owner,
            state.model_dump(mode="json"),
            self.job_ttl_seconds,
            expected_version=version,
        )
