"""Categorisation rule model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fincat.models.base import Base, TimestampMixin


class CategoryRule(Base, TimestampMixin):
    """A rule that assigns a category to transactions whose description matches a pattern.

    Exact rules compare the whole trimmed, case-insensitive description; contains
    rules look for the pattern as a substring; regex rules run the pattern as a
    case-insensitive regular expression.
    """

    __tablename__ = "category_rules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    pattern: Mapped[str] = mapped_column(String(500), nullable=False)
    match_type: Mapped[str] = mapped_column(String(20), default="contains")  # exact, contains, regex
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id"), nullable=False)
    confidence: Mapped[float] = mapped_column(Numeric(3, 2, asdecimal=False), default=0.85)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    use_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    category = relationship("Category", back_populates="rules")

    __table_args__ = (
        Index("idx_category_rules_active_match_type", "is_active", "match_type"),
    )
