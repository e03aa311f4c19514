"""
Split the legacy combined CPF/RF identifier into dedicated columns.

Older rows store either identifier in ``cpf_rf`` / ``cpf_rf_encrypted`` /
``cpf_rf_hash``. The number of digits tells them apart: a CPF has 11, an RF
has 7. Encrypted values and hashes are moved as-is into ``cpf_*`` or
``rf_*`` and the legacy columns are cleared, which takes the row out of the
pending set.
"""
from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy.orm import Session

from src.core.encryption import EncryptionService, get_encryption_service
from src.core.errors import PreconditionFailedError
from src.core.result import Result
from src.dtos.migration_dto import ExecutionResult, StatusSnapshot
from src.entities.appointment import Appointment
from src.entities.submission import Submission
from src.repositories.legacy_identifier_repo import LegacyIdentifierRepository
from src.services.migrations.registry import MigrationDefinition
from src.services.migrations.strategies.base import MigrationStrategy

logger = logging.getLogger(__name__)

CPF_LENGTH = 11
RF_LENGTH = 7

SPLIT_MODELS = (Submission, Appointment)
SPLIT_COLUMNS = ("cpf_encrypted", "cpf_hash", "rf_encrypted", "rf_hash")


def classify_identifier(digits: str) -> str:
    """Return ``"rf"`` for 7-digit values and ``"cpf"`` for everything else."""
    if len(digits) == RF_LENGTH:
        return "rf"
    return "cpf"


class CpfRfSplitStrategy(MigrationStrategy):
    """Migration ``split_cpf_rf`` over submissions and appointments."""

    def __init__(
        self,
        session: Session,
        encryption: EncryptionService | None = None,
        time_budget_seconds: float | None = None,
    ) -> None:
        super().__init__(session, time_budget_seconds)
        self.encryption = encryption if encryption is not None else get_encryption_service()
        self.repositories = [LegacyIdentifierRepository(session, model) for model in SPLIT_MODELS]

    def _migratable(self) -> list[LegacyIdentifierRepository]:
        """Repositories whose table exists and still has the legacy columns."""
        return [
            repo
            for repo in self.repositories
            if repo.table_exists() and repo.column_exists("cpf_rf_hash")
        ]

    def calculate_status(self, key: str, config: MigrationDefinition) -> StatusSnapshot:
        total = 0
        pending = 0
        for repo in self.repositories:
            if not repo.table_exists():
                continue
            total += repo.count_total()
            if repo.column_exists("cpf_rf_hash"):
                pending += repo.count_pending()
        return StatusSnapshot.from_counts(total, pending)

    def can_run(self, key: str, config: MigrationDefinition) -> Result[bool]:
        if self.encryption is None:
            return Result.failure(
                PreconditionFailedError(
                    "Encryption key is not configured.",
                    reason="encryption_not_configured",
                    phase="can_run",
                    key=key,
                )
            )
        submissions = self.repositories[0]
        missing = [c for c in SPLIT_COLUMNS if not submissions.column_exists(c)]
        if missing:
            return Result.failure(
                PreconditionFailedError(
                    f"Split columns missing from {submissions.table_name}: {', '.join(missing)}.",
                    reason="split_columns_missing",
                    phase="can_run",
                    key=key,
                )
            )
        return Result.success(True)

    def _identifier_digits(self, row: Any) -> str:
        plain = row.cpf_rf
        if not plain and row.cpf_rf_encrypted and self.encryption is not None:
            plain = self.encryption.decrypt(row.cpf_rf_encrypted)
        return re.sub(r"\D", "", plain or "")

    def _split_row(self, repo: LegacyIdentifierRepository, row: Any) -> None:
        digits = self._identifier_digits(row)
        if not digits:
            raise ValueError("could not resolve the plain identifier")
        if len(digits) not in (CPF_LENGTH, RF_LENGTH):
            logger.warning(
                "Row %s in %s has a %d-digit identifier; storing it as CPF",
                row.id,
                repo.table_name,
                len(digits),
            )
        repo.apply_split(row, classify_identifier(digits))

    def execute(self, key: str, config: MigrationDefinition, batch_number: int = 0) -> ExecutionResult:
        budget = self._budget()
        remaining = config.batch_size
        processed = 0
        errors: list[str] = []

        logger.info("Running migration %s batch %d", key, batch_number)
        for repo in self._migratable():
            if remaining <= 0 or (processed and budget.expired()):
                break
            for row in repo.get_pending(remaining):
                if processed and budget.expired():
                    break
                remaining -= 1
                error = self._apply_row(row, repo.table_name, lambda r, repo=repo: self._split_row(repo, r))
                if error:
                    errors.append(error)
                else:
                    processed += 1

        status = self.calculate_status(key, config)
        return self._finish(key, processed, errors, status, "Split")
