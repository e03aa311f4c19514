"""
Entity for form submissions.

The ``data`` column holds a JSON object whose keys vary per form; the
export discovers them at start time. Sensitive fields exist in a legacy
plaintext form and an encrypted form (``*_encrypted`` + ``*_hash``).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.entities.base import Base
from src.repositories.job_store import utcnow


class Submission(Base):
    """A single form submission (the dataset exported and migrated)."""

    __tablename__ = "submissions"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    form_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    submission_date: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="publish", index=True
    )
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    data: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    user_ip: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_ip_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Legacy combined identifier (CPF or RF), superseded by the split columns
    cpf_rf: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cpf_rf_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    cpf_rf_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    cpf_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    cpf_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    rf_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    rf_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    auth_code: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    magic_token: Mapped[str | None] = mapped_column(String(32), nullable=True)

    consent_given: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    consent_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    consent_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    edited_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    edited_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
