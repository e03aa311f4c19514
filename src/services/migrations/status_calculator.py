"""
Migration Orchestrator.

Resolves a migration key to its strategy and runs status, precondition and
execute calls through it. Every call returns a ``Result``: unknown keys,
failed preconditions and strategy crashes come back as structured errors
instead of exceptions.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.errors import EngineError, NotFoundError, StorageFailureError
from src.core.result import Result
from src.dtos.migration_dto import ExecutionResult, StatusSnapshot
from src.services.migrations.registry import MigrationDefinition, MigrationRegistry
from src.services.migrations.strategies.base import MigrationStrategy
from src.services.migrations.strategies.cpf_rf_split import CpfRfSplitStrategy
from src.services.migrations.strategies.encryption import EncryptionStrategy

logger = logging.getLogger(__name__)

StrategyFactory = Callable[[Session], MigrationStrategy]

DEFAULT_STRATEGY_FACTORIES: dict[str, StrategyFactory] = {
    "split_cpf_rf": CpfRfSplitStrategy,
    "encrypt_sensitive_data": EncryptionStrategy,
}


class MigrationStatusCalculator:
    """
    Maps migration keys to strategies and guards every call.

    Args:
        registry: Registered migration definitions
        session: Database session handed to each strategy factory
        strategies: Extra or replacement factories keyed by migration key
    """

    def __init__(
        self,
        registry: MigrationRegistry,
        session: Session,
        strategies: Mapping[str, StrategyFactory] | None = None,
    ) -> None:
        self.registry = registry
        self.session = session
        self._strategies: dict[str, MigrationStrategy] = {}
        self._broken: dict[str, str] = {}

        factories = {**DEFAULT_STRATEGY_FACTORIES, **(strategies or {})}
        for key, factory in factories.items():
            try:
                self._strategies[key] = factory(session)
            except (ValueError, TypeError) as e:
                logger.error("Cannot construct strategy for migration %s: %s", key, e)
                self._broken[key] = str(e)

    def _resolve(self, key: str, phase: str) -> tuple[MigrationDefinition, MigrationStrategy]:
        definition = self.registry.get(key)
        if definition is None:
            raise NotFoundError(f"Unknown migration: {key}", phase=phase, key=key)
        if key in self._broken:
            raise NotFoundError(
                f"Migration strategy unavailable: {self._broken[key]}", phase=phase, key=key
            )
        strategy = self._strategies.get(key)
        if strategy is None:
            raise NotFoundError(f"No strategy registered for migration: {key}", phase=phase, key=key)
        return definition, strategy

    def _guard(self, key: str, phase: str, call: Callable[[], Result]) -> Result:
        try:
            return call()
        except EngineError as e:
            return Result.failure(e)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Migration %s failed during %s", key, phase)
            return Result.failure(StorageFailureError(f"Database error: {e}", phase=phase, key=key))
        except Exception as e:
            logger.exception("Migration %s crashed during %s", key, phase)
            return Result.failure(StorageFailureError(f"Migration failed: {e}", phase=phase, key=key))

    def calculate(self, key: str) -> Result[StatusSnapshot]:
        def call():
            definition, strategy = self._resolve(key, "status")
            return Result.success(strategy.calculate_status(key, definition))

        return self._guard(key, "status", call)

    def can_run(self, key: str) -> Result[bool]:
        def call():
            definition, strategy = self._resolve(key, "can_run")
            return strategy.can_run(key, definition)

        return self._guard(key, "can_run", call)

    def execute(self, key: str, batch_number: int = 0) -> Result[ExecutionResult]:
        """Run one batch; preconditions are always checked first."""

        def call():
            definition, strategy = self._resolve(key, "run")
            allowed = strategy.can_run(key, definition)
            if not allowed.ok:
                logger.info("Migration %s blocked: %s", key, allowed.error.message)
                return allowed
            return Result.success(strategy.execute(key, definition, batch_number))

        return self._guard(key, "run", call)
