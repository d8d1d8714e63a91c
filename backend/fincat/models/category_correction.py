"""User correction of an automatic categorisation."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fincat.models.base import Base


class CategoryCorrection(Base):
    """A description the user moved to another category.

    Repeated corrections to the same category are analysed into rule
    suggestions. ``created_rule_id`` is set once a rule has been made from them.
    """

    __tablename__ = "category_corrections"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    original_category_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    corrected_category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    original_source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_rule_id: Mapped[int | None] = mapped_column(
        ForeignKey("category_rules.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    corrected_category = relationship("Category", foreign_keys=[corrected_category_id])
    original_category = relationship("Category", foreign_keys=[original_category_id])

    __table_args__ = (
        Index("idx_category_corrections_pending", "created_rule_id", "created_at"),
    )
