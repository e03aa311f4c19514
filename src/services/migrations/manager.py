"""Facade over the migration registry and orchestrator used by the HTTP layer."""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session

from src.core.result import Result
from src.dtos.migration_dto import ExecutionResult, StatusSnapshot
from src.services.migrations.registry import MigrationDefinition, MigrationRegistry
from src.services.migrations.status_calculator import MigrationStatusCalculator


class MigrationManager:
    def __init__(
        self,
        registry: MigrationRegistry,
        session: Session,
        calculator: Optional[MigrationStatusCalculator] = None,
    ) -> None:
        self.registry = registry
        self.calculator = calculator or MigrationStatusCalculator(registry, session)

    def get_migrations(self) -> List[MigrationDefinition]:
        return self.registry.get_all()

    def get_migration(self, key: str) -> Optional[MigrationDefinition]:
        return self.registry.get(key)

    def is_migration_available(self, key: str) -> bool:
        return self.registry.is_available(key)

    def get_migration_status(self, key: str) -> Result[StatusSnapshot]:
        return self.calculator.calculate(key)

    def can_run_migration(self, key: str) -> Result[bool]:
        return self.calculator.can_run(key)

    def run_migration(self, key: str, batch_number: int = 0) -> Result[ExecutionResult]:
        return self.calculator.execute(key, batch_number)
