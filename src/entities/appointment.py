"""
Entity for self-scheduling appointments.

Only the columns touched by the identifier migrations are modelled here.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.entities.base import Base


class Appointment(Base):
    __tablename__ = "self_scheduling_appointments"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    calendar_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    appointment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    custom_data: Mapped[str | None] = mapped_column(Text, nullable=True)

    cpf_rf: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cpf_rf_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    cpf_rf_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    cpf_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    cpf_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rf_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    rf_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
