"""Daily conversion counter model."""
from __future__ import annotations

from datetime import date

from sqlalchemy import CheckConstraint, Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from docmeter.db.base import Base


class DailyUsage(Base):
    """Conversions counted for one principal on one calendar day."""

    __tablename__ = "daily_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    principal_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    principal_id: Mapped[str] = mapped_column(String(128), nullable=False)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    conversion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "principal_kind", "principal_id", "usage_date", name="uq_daily_usage_principal_date"
        ),
        CheckConstraint("conversion_count >= 0", name="ck_daily_usage_count_non_negative"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<DailyUsage {self.principal_kind}:{self.principal_id} "
            f"{self.usage_date} count={self.conversion_count}>"
        )
