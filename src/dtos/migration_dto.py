"""
DTOs for data migration operations.
"""

from pydantic import BaseModel, Field


class MigrationDefinitionRead(BaseModel):
    """DTO for reading a registered migration definition."""

    key: str
    name: str
    description: str
    icon: str | None = None
    batch_size: int
    order: int
    requires_precondition: bool


class StatusSnapshot(BaseModel):
    """Progress of one migration, recomputed from the dataset on every call."""

    total: int = Field(..., ge=0)
    migrated: int = Field(..., ge=0)
    pending: int = Field(..., ge=0)
    percent: float = Field(..., ge=0, le=100)
    is_complete: bool

    @classmethod
    def from_counts(cls, total: int, pending: int) -> "StatusSnapshot":
        """Build a snapshot; an empty dataset counts as 100% migrated."""
        pending = max(0, min(pending, total))
        migrated = total - pending
        percent = (migrated / total) * 100 if total > 0 else 100.0
        return cls(
            total=total,
            migrated=migrated,
            pending=pending,
            percent=round(percent, 2),
            is_complete=pending == 0,
        )


class ExecutionResult(BaseModel):
    """Outcome of one ``execute`` call; ``has_more`` asks the caller to call again."""

    success: bool
    processed: int = Field(..., ge=0)
    has_more: bool
    message: str
    errors: list[str] = Field(default_factory=list)


class CanRunResponse(BaseModel):
    can_run: bool
