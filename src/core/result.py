"""Result container returned by the migration orchestrator and facade."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from src.core.errors import EngineError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or an ``EngineError``, never both."""

    value: T | None = None
    error: EngineError | None = None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: EngineError) -> Result[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
