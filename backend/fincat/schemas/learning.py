"""Schemas for corrections and learned rule suggestions."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from fincat.schemas.categorisation import CategorisationSource


class CorrectionCreate(BaseModel):
    description: str = Field(min_length=1, max_length=500)
    original_category_id: int | None = None
    corrected_category_id: int
    original_source: CategorisationSource | None = None


class CorrectionBatchCreate(BaseModel):
    corrections: list[CorrectionCreate]


class CorrectionBatchResult(BaseModel):
    recorded: int
    failed: int


class CorrectionRead(BaseModel):
    id: int
    description: str
    original_category_id: int | None = None
    corrected_category_id: int
    original_source: str | None = None
    created_rule_id: int | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PatternSuggestion(BaseModel):
    """A rule the corrections point to, with the evidence behind it."""
    pattern: str
    match_type: Literal["exact", "contains"]
    category_id: int
    category_name: str
    correction_count: int
    sample_descriptions: list[str]
    correction_ids: list[int]
    confidence: float


class CorrectionAnalysis(BaseModel):
    suggestions: list[PatternSuggestion]
    total_corrections: int
    recent_corrections: list[CorrectionRead]


class SuggestionCheck(BaseModel):
    has_suggestions: bool
    count: int


class RuleFromSuggestion(BaseModel):
    pattern: str = Field(min_length=1, max_length=500)
    match_type: Literal["exact", "contains"]
    category_id: int
    correction_count: int = Field(ge=0)
    confidence: float = Field(ge=0.0, le=1.0)
    correction_ids: list[int] = []
    notes: str | None = Field(default=None, max_length=1000)
