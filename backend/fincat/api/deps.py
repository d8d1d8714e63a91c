"""Shared API dependencies."""

from fastapi import Request

from fincat.core.container import Container
from fincat.services.ai_categoriser import AICategoriser
from fincat.services.categorisation_engine import CategorisationEngine
from fincat.services.learning import LearningService
from fincat.services.rule_matcher import RuleMatcher
from fincat.services.rules_manager import RulesManager


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_rules_manager(request: Request) -> RulesManager:
    return get_container(request).rules_manager


def get_matcher(request: Request) -> RuleMatcher:
    return get_container(request).matcher


def get_ai_categoriser(request: Request) -> AICategoriser:
    return get_container(request).ai_categoriser


def get_engine(request: Request) -> CategorisationEngine:
    return get_container(request).engine


def get_learning(request: Request) -> LearningService:
    return get_container(request).learning
