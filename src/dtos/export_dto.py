"""
DTOs for CSV export jobs.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExportFilter(BaseModel):
    """Filter criteria for an export; ``form_ids=None`` exports every form."""

    form_ids: list[int] | None = Field(default=None, description="Form IDs to export")
    status: str | None = Field(
        default="publish", max_length=20, description="Submission status filter"
    )

    @field_validator("form_ids")
    @classmethod
    def _positive_ids(cls, v: list[int] | None) -> list[int] | None:
        if v is None:
            return None
        ids = sorted({abs(int(i)) for i in v if int(i) != 0})
        return ids or None


class ExportParams(BaseModel):
    """Parameters fixed at start time and reused by every batch."""

    form_ids: list[int] | None = None
    status: str | None = None
    dynamic_keys: list[str] = Field(default_factory=list)
    include_edit_columns: bool = False
    upper_key: int | None = None


class ExportJobState(BaseModel):
    """State of one export job as stored in the Job Store."""

    job_id: str
    owner: int
    created_at: datetime
    ttl_seconds: int
    params: ExportParams
    cursor: int
    processed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    artifact_path: str
    artifact_offset: int = Field(default=0, ge=0)
    filename: str
    download_token_id: str | None = None
    done: bool = False

    model_config = ConfigDict(extra="ignore")


class ExportStartResponse(BaseModel):
    job_id: str
    total: int


class ExportBatchResponse(BaseModel):
    done: bool
    processed: int
    total: int
    download_token: str | None = None


class ActionTokenRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=50)


class ActionTokenResponse(BaseModel):
    token: str
    expires_in: int
