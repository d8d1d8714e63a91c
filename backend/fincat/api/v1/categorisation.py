"""Categorisation API: rule matching, AI fallback and the combined engine."""

from fastapi import APIRouter, Depends

from fincat.api.deps import get_ai_categoriser, get_engine, get_matcher
from fincat.schemas.categorisation import (
    AIAvailability,
    AICategoriseRequest,
    CategorisationResponse,
    CategoriseRequest,
    MatchBatchRequest,
    MatchBatchResponse,
    MatchRequest,
    MatchResult,
)
from fincat.services.ai_categoriser import AICategoriser
from fincat.services.categorisation_engine import CategorisationEngine
from fincat.services.rule_matcher import RuleMatcher

router = APIRouter()


@router.post("", response_model=CategorisationResponse)
async def categorise(
    data: CategoriseRequest,
    engine: CategorisationEngine = Depends(get_engine),
):
    """Categorise a statement: rules first, then AI for the rest when allowed."""
    return await engine.categorise(data.descriptions, use_ai=data.use_ai, record_usage=data.record_usage)


@router.post("/match", response_model=MatchResult | None)
async def match_rule(data: MatchRequest, matcher: RuleMatcher = Depends(get_matcher)):
    return await matcher.match(data.description)


@router.post("/match-batch", response_model=MatchBatchResponse)
async def match_rules_batch(
    data: MatchBatchRequest,
    matcher: RuleMatcher = Depends(get_matcher),
):
    return MatchBatchResponse(results=await matcher.match_batch(data.descriptions))


@router.get("/ai/availability", response_model=AIAvailability)
async def ai_availability(ai: AICategoriser = Depends(get_ai_categoriser)):
    return await ai.check_availability()


@router.post("/ai", response_model=MatchBatchResponse)
async def categorise_with_ai(
    data: AICategoriseRequest,
    ai: AICategoriser = Depends(get_ai_categoriser),
):
    """Categorise descriptions with the AI service only. 429 once the daily budget is spent."""
    return MatchBatchResponse(results=await ai.categorise(data.descriptions))
