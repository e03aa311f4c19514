"""
Error taxonomy for migrations and export jobs.

Every error carries the phase (``status``, ``run``, ``start``, ``batch``,
``download`` ...) and the job id or migration key it relates to, so the HTTP
layer can report exactly what failed.
"""
from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for all structured engine errors."""

    code = "engine_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        phase: str | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.key = key

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "detail": {"phase": self.phase, "key": self.key},
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, phase={self.phase!r}, key={self.key!r})"


class NotFoundError(EngineError):
    """Unknown migration key, or a missing/expired/foreign export job."""

    code = "not_found"
    status_code = 404


class PreconditionFailedError(EngineError):
    """A strategy's ``can_run`` check failed."""

    code = "precondition_failed"
    status_code = 412

    def __init__(self, message: str, *, reason: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["detail"]["reason"] = self.reason
        return body


class UnauthorizedError(EngineError):
    """Identity, permission or security-token mismatch."""

    code = "unauthorized"
    status_code = 403


class EmptyResultError(EngineError):
    """Export start matched zero rows."""

    code = "empty_result"
    status_code = 422


class StorageFailureError(EngineError):
    """Artifact or dataset write failed; the job keeps its last persisted state."""

    code = "storage_failure"
    status_code = 503


class TimeBudgetExceededError(StorageFailureError):
    """A phase that cannot be split ran out of its per-call time budget."""

    code = "time_budget_exceeded"


class JobConflictError(EngineError):
    """The stored job changed since it was read (concurrent batch call)."""

    code = "job_conflict"
    status_code = 409


class RowProcessingError(EngineError):
    """A single row could not be processed; collected, never raised past a batch."""

    code = "row_failed"
    status_code = 500

    def __init__(self, message: str, *, row_id: int, table: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.row_id = row_id
        self.table = table

    def __str__(self) -> str:
        return f"{self.message} (ID {self.row_id} in {self.table})"
