"""Categorisation rule schemas."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

MatchType = Literal["exact", "contains", "regex"]

# Default confidence per match type when the caller does not give one:
# literal matches are trusted more than pattern matches.
DEFAULT_CONFIDENCE: dict[str, float] = {
    "exact": 1.0,
    "contains": 0.85,
    "regex": 0.8,
}


class RuleCreate(BaseModel):
    pattern: str = Field(min_length=1, max_length=500)
    match_type: MatchType = "contains"
    category_id: int
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    is_system: bool = False
    notes: str | None = Field(default=None, max_length=1000)


class RuleUpdate(BaseModel):
    pattern: str | None = Field(default=None, min_length=1, max_length=500)
    match_type: MatchType | None = None
    category_id: int | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    is_active: bool | None = None
    notes: str | None = Field(default=None, max_length=1000)


class RuleRead(BaseModel):
    id: int
    pattern: str
    match_type: MatchType
    category_id: int
    category_name: str | None = None
    confidence: float
    is_system: bool = False
    is_active: bool = True
    notes: str | None = None
    use_count: int = 0
    last_used_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RuleFilter(BaseModel):
    category_id: int | None = None
    is_system: bool | None = None


class PatternCheckRequest(BaseModel):
    pattern: str = Field(min_length=1, max_length=500)
    match_type: MatchType


class PatternCheckResponse(BaseModel):
    exists: bool
    rule: RuleRead | None = None


class RuleTestRequest(BaseModel):
    pattern: str = Field(min_length=1, max_length=500)
    match_type: MatchType
    category_id: int
    limit: int = Field(default=50, ge=1, le=100)


class TransactionSample(BaseModel):
    """A historical transaction as seen by rule testing."""
    id: int
    date: date
    description: str
    amount: float
    current_category_id: int | None = None
    current_category_name: str | None = None


class RuleTestResult(BaseModel):
    match_count: int
    would_change: int
    sample_transactions: list[TransactionSample]


class RuleStats(BaseModel):
    total_rules: int
    active_rules: int
    system_rules: int
    user_rules: int
    by_category: dict[int, int]
    by_match_type: dict[str, int]
    recently_created: int
