"""
Repository for the legacy combined CPF/RF identifier columns.

Both ``submissions`` and ``self_scheduling_appointments`` carry the legacy
``cpf_rf`` / ``cpf_rf_encrypted`` / ``cpf_rf_hash`` triple next to the split
``cpf_*`` and ``rf_*`` columns. A row is pending while its legacy hash is
set; migrating a row clears the legacy columns, so it leaves the pending set.
"""

from __future__ import annotations

from typing import Any, List, Type

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from src.repositories.base_repo import BaseRepository

LEGACY_COLUMNS = ("cpf_rf", "cpf_rf_encrypted", "cpf_rf_hash")


class LegacyIdentifierRepository(BaseRepository[Any]):
    """Split-identifier queries for any model carrying the identifier columns."""

    def __init__(self, session: Session, model: Type[Any]) -> None:
        super().__init__(session=session, model=model)

    def _pending_condition(self):
        return and_(self.model.cpf_rf_hash.is_not(None), self.model.cpf_rf_hash != "")

    def count_total(self) -> int:
        return self.count()

    def count_pending(self) -> int:
        return self.count(self._pending_condition())

    def get_pending(self, limit: int) -> List[Any]:
        stmt = (
            select(self.model)
            .where(self._pending_condition())
            .order_by(self.key_column.asc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def apply_split(self, row: Any, target: str) -> Any:
        """
        Move the legacy encrypted value and hash into ``cpf_*`` or ``rf_*``.

        Values are copied as-is (no re-encryption); the legacy columns are
        cleared. A split column that already holds a value is kept.

        Args:
            row: Entity with legacy identifier columns set
            target: ``"cpf"`` or ``"rf"``

        Returns:
            The updated entity
        """
        if target not in ("cpf", "rf"):
            raise ValueError(f"Unknown identifier target: {target}")

        if not getattr(row, f"{target}_hash"):
            setattr(row, f"{target}_encrypted", row.cpf_rf_encrypted)
            setattr(row, f"{target}_hash", row.cpf_rf_hash)
        for column in LEGACY_COLUMNS:
            setattr(row, column, None)
        return self.update(row, commit=True)
