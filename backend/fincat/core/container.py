"""Process-wide service wiring.

Built once in the application lifespan and stored on ``app.state``. The
rule cache and usage tracker hold shared state, so every request must use
the instances created here.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fincat.config import Settings
from fincat.services.ai_categoriser import AICategoriser
from fincat.services.categorisation_engine import CategorisationEngine
from fincat.services.learning import CorrectionStore, LearningConfig, LearningService, SQLCorrectionStore
from fincat.services.llm_provider import LLMProviderBase, get_llm_provider
from fincat.services.rule_cache import RuleCache
from fincat.services.rule_matcher import RuleMatcher
from fincat.services.rule_store import RuleStore, SQLRuleStore
from fincat.services.rules_manager import RulesManager
from fincat.services.usage_tracker import SQLUsageStore, UsageStore, UsageTracker


@dataclass
class Container:
    rule_store: RuleStore
    rule_cache: RuleCache
    matcher: RuleMatcher
    rules_manager: RulesManager
    usage_tracker: UsageTracker
    ai_categoriser: AICategoriser
    engine: CategorisationEngine
    learning: LearningService


def build_container(
    settings: Settings,
    rule_store: RuleStore,
    usage_store: UsageStore,
    provider: LLMProviderBase,
    correction_store: CorrectionStore,
) -> Container:
    rule_cache = RuleCache(rule_store, ttl_seconds=settings.rules_cache_ttl_seconds)
    matcher = RuleMatcher(rule_cache)
    rules_manager = RulesManager(
        rule_store, rule_cache, test_sample_size=settings.rule_test_sample_size
    )
    usage_tracker = UsageTracker(usage_store, daily_limit=settings.ai_categorisation_daily_limit)
    ai_categoriser = AICategoriser(
        provider,
        rule_cache,
        usage_tracker,
        timeout=settings.ai_timeout,
        max_batch_size=settings.ai_max_batch_size,
        max_retries=settings.ai_max_retries,
    )
    engine = CategorisationEngine(matcher, ai_categoriser, rules_manager)
    learning = LearningService(
        correction_store,
        rules_manager,
        rule_cache,
        config=LearningConfig(
            min_corrections=settings.learning_min_corrections,
            lookback_days=settings.learning_lookback_days,
            default_confidence=settings.learning_default_confidence,
            max_samples=settings.learning_max_samples,
        ),
    )
    return Container(
        rule_store=rule_store,
        rule_cache=rule_cache,
        matcher=matcher,
        rules_manager=rules_manager,
        usage_tracker=usage_tracker,
        ai_categoriser=ai_categoriser,
        engine=engine,
        learning=learning,
    )


def build_default_container(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> Container:
    """Production wiring: PostgreSQL stores and the configured LLM provider."""
    return build_container(
        settings,
        rule_store=SQLRuleStore(session_factory),
        usage_store=SQLUsageStore(session_factory),
        provider=get_llm_provider(settings),
        correction_store=SQLCorrectionStore(session_factory),
    )
