"""Append-only conversion log model."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from docmeter.db.base import Base


class Conversion(Base):
    """Records a completed conversion for reporting. Rows are never updated."""

    __tablename__ = "conversions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    principal_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    principal_id: Mapped[str] = mapped_column(String(128), nullable=False)
    conversion_type: Mapped[str] = mapped_column(String(64), nullable=False)
    file_size_mb: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_conversions_principal_created", "principal_kind", "principal_id", "created_at"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Conversion {self.id} {self.principal_kind}:{self.principal_id} {self.conversion_type}>"
