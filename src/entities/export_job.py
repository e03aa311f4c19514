"""
Entity backing the export Job Store.

Each row is an opaque JSON blob keyed by job id, with the owning user,
an expiry timestamp and an optimistic-concurrency version counter.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.entities.base import Base
from src.repositories.job_store import utcnow


class ExportJobRecord(Base):
    __tablename__ = "export_jobs"

    job_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    state: Mapped[dict] = mapped_column(JSON, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
