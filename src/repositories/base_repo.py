from __future__ import annotations

from typing import Generic, TypeVar, Type, Optional, Any
from sqlalchemy.orm import Session
from sqlalchemy import func, inspect, select

from src.repositories.cursor import KeysetCursor, MIN_CURSOR

T = TypeVar("T")


class BaseRepository(Generic[T]):
    def __init__(self, session: Session, model: Type[T]) -> None:
        self.session = session
        self.model = model

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    @property
    def key_column(self):
        return getattr(self.model, inspect(self.model).primary_key[0].key)

    def create(self, obj: T, *, commit: bool = True) -> T:
        self.session.add(obj)
        if commit:
            self.session.commit()
            self.session.refresh(obj)
        return obj

    def get_by_id(self, id_: Any) -> Optional[T]:
        return self.session.get(self.model, id_)

    def list(self, *, limit: int = 100, after_id: int = MIN_CURSOR) -> list[T]:
        """Return up to ``limit`` rows with a key above ``after_id``, ascending."""
        cursor = KeysetCursor(
            self.session, select(self.model), self.key_column, descending=False
        )
        rows, _ = cursor.next_batch(after_id, limit)
        return rows

    def count(self, *conditions) -> int:
        stmt = select(func.count()).select_from(self.model)
        for condition in conditions:
            stmt = stmt.where(condition)
        return int(self.session.execute(stmt).scalar_one())

    def update(self, obj: T, *, commit: bool = True) -> T:
        obj = self.session.merge(obj)
        if commit:
            self.session.commit()
            self.session.refresh(obj)
        return obj

    def delete(self, obj: T, *, commit: bool = True) -> None:
        self.session.delete(obj)
        if commit:
            self.session.commit()

    def table_exists(self) -> bool:
        return inspect(self.session.connection()).has_table(self.table_name)

    def column_exists(self, column: str) -> bool:
        """Check the live schema, not the mapped model."""
        if not self.table_exists():
            return False
        columns = inspect(self.session.connection()).get_columns(self.table_name)
        return any(c["name"] == column for c in columns)
