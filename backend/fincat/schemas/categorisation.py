"""Categorisation schemas: match results, AI availability, engine output."""

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from fincat.schemas.category_rule import MatchType


class CategoryRead(BaseModel):
    id: int
    name: str
    group_name: str | None = None
    is_income: bool = False

    model_config = {"from_attributes": True}


class MatchResult(BaseModel):
    """A category proposed for one description. Never persisted here."""
    category_id: int
    category_name: str
    match_type: MatchType | None = None  # None for AI suggestions
    confidence: float
    rule_id: int | None = None
    pattern: str | None = None
    source: Literal["rule", "ai"] = "rule"
    reasoning: str | None = None


class MatchRequest(BaseModel):
    description: str


class MatchBatchRequest(BaseModel):
    descriptions: list[str] = Field(max_length=5000)


class MatchBatchResponse(BaseModel):
    results: dict[int, MatchResult | None]


class UsageSnapshot(BaseModel):
    date: date
    count: int
    daily_limit: int


class AIAvailability(BaseModel):
    available: bool
    remaining: int
    daily_limit: int


class AICategoriseRequest(BaseModel):
    descriptions: list[str] = Field(min_length=1, max_length=500)


class AISuggestion(BaseModel):
    """One item of the AI batch response, checked field by field."""
    index: int
    category_id: int
    confidence: float = Field(ge=0.0, le=1.0)
    category_name: str | None = None
    reasoning: str | None = None

    model_config = {"strict": True, "extra": "ignore"}


CategorisationSource = Literal["rule_exact", "rule_pattern", "ai", "none"]


class CategorisationResult(BaseModel):
    index: int
    description: str
    category_id: int | None = None
    category_name: str | None = None
    source: CategorisationSource = "none"
    confidence: float = 0.0
    rule_id: int | None = None
    match_details: str = "No matching category found"


class CategorisationStats(BaseModel):
    total: int = 0
    categorised: int = 0
    uncategorised: int = 0
    by_source: dict[str, int] = Field(
        default_factory=lambda: {"rule_exact": 0, "rule_pattern": 0, "ai": 0, "none": 0}
    )
    ai_error: str | None = None


class CategoriseRequest(BaseModel):
    descriptions: list[str] = Field(max_length=5000)
    use_ai: bool = True
    record_usage: bool = False


class CategorisationResponse(BaseModel):
    results: list[CategorisationResult]
    stats: CategorisationStats
