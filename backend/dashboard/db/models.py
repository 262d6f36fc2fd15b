"""ORM model for records mirrored from the remote record store."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin


class StoredRecordModel(TimestampMixin, Base):
    __tablename__ = "stored_records"
    __table_args__ = (
        UniqueConstraint("table_name", "record_id", name="uq_stored_records_table_record"),
        Index("ix_stored_records_table_name", "table_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(128), nullable=False)
    record_id: Mapped[str] = mapped_column(String(32), nullable=False)
    fields: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


__all__ = ["StoredRecordModel"]
