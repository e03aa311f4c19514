"""
Base class for migration strategies.

A strategy owns one migration's semantics: how progress is measured, when it
may run, and how one bounded batch is processed. Strategies keep no state
between calls; progress always comes from the dataset itself, so an
interrupted run resumes by simply calling ``execute`` again.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.errors import RowProcessingError
from src.core.result import Result
from src.core.time_budget import TimeBudget
from src.dtos.migration_dto import ExecutionResult, StatusSnapshot
from src.services.migrations.registry import MigrationDefinition

logger = logging.getLogger(__name__)


class MigrationStrategy(ABC):
    """Interface implemented by every migration."""

    def __init__(self, session: Session, time_budget_seconds: float | None = None) -> None:
        self.session = session
        self.time_budget_seconds = time_budget_seconds

    @abstractmethod
    def calculate_status(self, key: str, config: MigrationDefinition) -> StatusSnapshot:
        """Count total and pending rows across every table the migration touches."""

    @abstractmethod
    def can_run(self, key: str, config: MigrationDefinition) -> Result[bool]:
        """
        Check preconditions.

        Returns:
            ``Result.success(True)`` or a failure carrying a
            ``PreconditionFailedError`` that names the failed check
        """

    @abstractmethod
    def execute(self, key: str, config: MigrationDefinition, batch_number: int = 0) -> ExecutionResult:
        """
        Process at most ``config.batch_size`` pending rows.

        ``batch_number`` only appears in logs; which rows are processed is
        decided by what is still pending.
        """

    def _budget(self) -> TimeBudget:
        return TimeBudget(self.time_budget_seconds)

    def _apply_row(self, row, table: str, apply) -> str | None:
        """
        Run ``apply(row)`` for one row, rolling back on failure.

        Returns:
            An error message for the batch's ``errors`` list, or None
        """
        row_id = row.id
        try:
            apply(row)
            return None
        except (SQLAlchemyError, ValueError) as e:
            self.session.rollback()
            error = RowProcessingError(f"Failed to migrate row: {e}", row_id=row_id, table=table)
            logger.warning("%s", error)
            return str(error)

    @staticmethod
    def _finish(
        key: str,
        processed: int,
        errors: list[str],
        status: StatusSnapshot,
        verb: str,
    ) -> ExecutionResult:
        has_more = not status.is_complete
        if processed == 0 and errors:
            # Every candidate failed: calling again would pick the same rows
            has_more = False
        message = f"{verb} {processed} records"
        if errors:
            message += f" ({len(errors)} failed)"
        logger.info(
            "Migration %s batch: processed=%d errors=%d pending=%d",
            key,
            processed,
            len(errors),
            status.pending,
        )
        return ExecutionResult(
            success=not errors,
            processed=processed,
            has_more=has_more,
            message=message,
            errors=errors,
        )
