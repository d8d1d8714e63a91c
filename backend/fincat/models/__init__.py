"""SQLAlchemy models."""

from fincat.models.ai_usage import AIUsage
from fincat.models.base import Base
from fincat.models.category import Category
from fincat.models.category_correction import CategoryCorrection
from fincat.models.category_rule import CategoryRule
from fincat.models.transaction import Transaction

__all__ = [
    "Base",
    "AIUsage",
    "Category",
    "CategoryCorrection",
    "CategoryRule",
    "Transaction",
]
