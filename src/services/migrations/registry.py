"""
Registry of available data migrations.

Definitions are plain data; the strategy that executes a key is resolved by
``MigrationStatusCalculator``. One registry is built at application startup
and handed to every manager explicitly.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationDefinition:
    key: str
    name: str
    description: str
    batch_size: int = 50
    order: int = 100
    requires_precondition: bool = True
    icon: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_DEFINITIONS = (
    MigrationDefinition(
        key="split_cpf_rf",
        name="Split CPF/RF identifiers",
        description=(
            "Moves the combined cpf_rf identifier into separate CPF and RF "
            "columns on submissions and appointments."
        ),
        batch_size=50,
        order=1,
        icon="id-card",
    ),
    MigrationDefinition(
        key="encrypt_sensitive_data",
        name="Encrypt sensitive data",
        description=(
            "Encrypts e-mail, IP address, identifier and form data of "
            "submissions stored in plaintext."
        ),
        batch_size=50,
        order=2,
        icon="lock",
    ),
)


class MigrationRegistry:
    """In-memory catalogue of migration definitions keyed by ``key``."""

    def __init__(self, extra_definitions: Iterable[MigrationDefinition] = ()) -> None:
        self._definitions: dict[str, MigrationDefinition] = {}
        for definition in (*DEFAULT_DEFINITIONS, *extra_definitions):
            self.register(definition)

    def register(self, definition: MigrationDefinition) -> None:
        """
        Add a migration definition.

        Raises:
            ValueError: If the key is empty, already registered, or the batch
                size is not positive
        """
        if not definition.key:
            raise ValueError("Migration key must not be empty")
        if definition.key in self._definitions:
            raise ValueError(f"Migration already registered: {definition.key}")
        if definition.batch_size <= 0:
            raise ValueError(f"Batch size must be positive for {definition.key}")
        self._definitions[definition.key] = definition
        logger.debug("Registered migration %s", definition.key)

    def get_all(self) -> List[MigrationDefinition]:
        """All definitions ordered by ``order``, then key."""
        return sorted(self._definitions.values(), key=lambda d: (d.order, d.key))

    def get(self, key: str) -> Optional[MigrationDefinition]:
        return self._definitions.get(key)

    def exists(self, key: str) -> bool:
        return key in self._definitions

    def is_available(self, key: str) -> bool:
        """Whether the migration is offered to operators."""
        return self.exists(key)

    def __len__(self) -> int:
        return len(self._definitions)
