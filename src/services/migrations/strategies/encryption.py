"""
Encrypt plaintext sensitive data on submissions.

A submission is pending while it has a plaintext e-mail and no encrypted
e-mail. Migrating it encrypts e-mail, IP, identifier and form data, stores
lookup hashes for e-mail and identifier, and clears the plaintext columns.
Identifiers go straight into the split ``cpf_*`` / ``rf_*`` columns.
"""
from __future__ import annotations

import logging
import re

from sqlalchemy.orm import Session

from src.core.encryption import EncryptionService, get_encryption_service
from src.core.errors import PreconditionFailedError
from src.core.result import Result
from src.dtos.migration_dto import ExecutionResult, StatusSnapshot
from src.entities.submission import Submission
from src.repositories.submission_repo import SubmissionRepository
from src.services.migrations.registry import MigrationDefinition
from src.services.migrations.strategies.base import MigrationStrategy
from src.services.migrations.strategies.cpf_rf_split import classify_identifier

logger = logging.getLogger(__name__)


class EncryptionStrategy(MigrationStrategy):
    """Migration ``encrypt_sensitive_data`` over submissions."""

    def __init__(
        self,
        session: Session,
        encryption: EncryptionService | None = None,
        time_budget_seconds: float | None = None,
    ) -> None:
        super().__init__(session, time_budget_seconds)
        self.encryption = encryption if encryption is not None else get_encryption_service()
        self.repository = SubmissionRepository(session)

    def calculate_status(self, key: str, config: MigrationDefinition) -> StatusSnapshot:
        if not self.repository.table_exists():
            return StatusSnapshot.from_counts(0, 0)
        return StatusSnapshot.from_counts(
            self.repository.count(), self.repository.count_pending_encryption()
        )

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
        return Result.success(True)

    def _encrypt_row(self, row: Submission) -> None:
        enc = self.encryption
        email = row.email.strip()
        row.email_encrypted = enc.encrypt(email)
        row.email_hash = enc.hash(email)

        if row.cpf_rf:
            digits = re.sub(r"\D", "", row.cpf_rf)
            if digits:
                target = classify_identifier(digits)
                setattr(row, f"{target}_encrypted", enc.encrypt(digits))
                setattr(row, f"{target}_hash", enc.hash(digits))

        if row.user_ip:
            row.user_ip_encrypted = enc.encrypt(row.user_ip)
        if row.data:
            row.data_encrypted = enc.encrypt(row.data)

        row.email = None
        row.user_ip = None
        row.data = None
        row.cpf_rf = None
        self.repository.update(row, commit=True)

    def execute(self, key: str, config: MigrationDefinition, batch_number: int = 0) -> ExecutionResult:
        budget = self._budget()
        processed = 0
        errors: list[str] = []

        logger.info("Running migration %s batch %d", key, batch_number)
        for row in self.repository.get_pending_encryption(config.batch_size):
            if processed and budget.expired():
                break
            error = self._apply_row(row, self.repository.table_name, self._encrypt_row)
            if error:
                errors.append(error)
            else:
                processed += 1

        status = self.calculate_status(key, config)
        return self._finish(key, processed, errors, status, "Encrypted")
