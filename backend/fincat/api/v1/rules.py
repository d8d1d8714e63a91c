"""Categorisation rules API routes."""

from fastapi import APIRouter, Depends

from fincat.api.deps import get_rules_manager
from fincat.schemas.category_rule import (
    PatternCheckRequest,
    PatternCheckResponse,
    RuleCreate,
    RuleFilter,
    RuleRead,
    RuleStats,
    RuleTestRequest,
    RuleTestResult,
    RuleUpdate,
)
from fincat.services.rules_manager import RulesManager

router = APIRouter()


@router.get("", response_model=list[RuleRead])
async def list_rules(
    category_id: int | None = None,
    is_system: bool | None = None,
    manager: RulesManager = Depends(get_rules_manager),
):
    """List rules, newest first, optionally filtered by category or origin."""
    return await manager.get_rules(RuleFilter(category_id=category_id, is_system=is_system))


@router.get("/stats", response_model=RuleStats)
async def rule_stats(manager: RulesManager = Depends(get_rules_manager)):
    return await manager.get_rule_stats()


@router.get("/{rule_id}", response_model=RuleRead)
async def get_rule(rule_id: int, manager: RulesManager = Depends(get_rules_manager)):
    return await manager.get_rule(rule_id)


@router.post("", response_model=RuleRead, status_code=201)
async def create_rule(
    data: RuleCreate,
    manager: RulesManager = Depends(get_rules_manager),
):
    """Create a rule. A duplicate pattern returns 409 with the existing rule."""
    return await manager.create_rule(data)


@router.post("/check", response_model=PatternCheckResponse)
async def check_pattern(
    data: PatternCheckRequest,
    manager: RulesManager = Depends(get_rules_manager),
):
    existing = await manager.check_pattern_exists(data.pattern, data.match_type)
    return PatternCheckResponse(exists=existing is not None, rule=existing)


@router.post("/test", response_model=RuleTestResult)
async def test_rule(
    data: RuleTestRequest,
    manager: RulesManager = Depends(get_rules_manager),
):
    """Preview which recent transactions a candidate rule would match."""
    return await manager.test_rule(data.pattern, data.match_type, data.category_id, data.limit)


@router.patch("/{rule_id}", response_model=RuleRead)
async def update_rule(
    rule_id: int,
    data: RuleUpdate,
    manager: RulesManager = Depends(get_rules_manager),
):
    return await manager.update_rule(rule_id, data)


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(rule_id: int, manager: RulesManager = Depends(get_rules_manager)):
    await manager.delete_rule(rule_id)
