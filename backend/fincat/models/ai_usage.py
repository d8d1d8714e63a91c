"""Daily AI usage counter."""

from datetime import date

from sqlalchemy import Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fincat.models.base import Base, TimestampMixin


class AIUsage(Base, TimestampMixin):
    __tablename__ = "ai_usage"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    usage_type: Mapped[str] = mapped_column(String(30), nullable=False, default="categorisation")
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("date", "usage_type", name="uq_ai_usage_date_type"),
    )
