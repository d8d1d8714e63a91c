"""Corrections and learned rule suggestions API routes."""

from fastapi import APIRouter, Depends

from fincat.api.deps import get_learning
from fincat.schemas.category_rule import RuleRead
from fincat.schemas.learning import (
    CorrectionAnalysis,
    CorrectionBatchCreate,
    CorrectionBatchResult,
    CorrectionCreate,
    CorrectionRead,
    RuleFromSuggestion,
    SuggestionCheck,
)
from fincat.services.learning import LearningService

router = APIRouter()


@router.get("", response_model=CorrectionAnalysis)
async def analyse_corrections(learning: LearningService = Depends(get_learning)):
    """Pending corrections from the lookback window and the rules they suggest."""
    return await learning.analyse_corrections()


@router.get("/check", response_model=SuggestionCheck)
async def check_for_suggestions(learning: LearningService = Depends(get_learning)):
    return await learning.check_for_suggestions()


@router.get("/by-description", response_model=list[CorrectionRead])
async def corrections_for_description(
    description: str,
    learning: LearningService = Depends(get_learning),
):
    return await learning.get_corrections_for_description(description)


@router.post("", response_model=CorrectionRead, status_code=201)
async def record_correction(
    data: CorrectionCreate,
    learning: LearningService = Depends(get_learning),
):
    return await learning.record_correction(data)


@router.post("/batch", response_model=CorrectionBatchResult, status_code=201)
async def record_corrections_batch(
    data: CorrectionBatchCreate,
    learning: LearningService = Depends(get_learning),
):
    return await learning.record_corrections_batch(data.corrections)


@router.post("/rules", response_model=RuleRead, status_code=201)
async def create_rule_from_suggestion(
    data: RuleFromSuggestion,
    learning: LearningService = Depends(get_learning),
):
    """Accept a suggestion. A duplicate pattern returns 409 and leaves the corrections pending."""
    return await learning.create_rule_from_suggestion(data)
