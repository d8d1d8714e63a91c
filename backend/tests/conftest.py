"""Shared test fixtures: in-memory stores, a scripted LLM provider and an API client."""

import asyncio
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from fincat.config import Settings
from fincat.core.container import build_container
from fincat.core.exceptions import DuplicateRuleError
from fincat.schemas.categorisation import CategoryRead
from fincat.schemas.category_rule import DEFAULT_CONFIDENCE, RuleRead, TransactionSample
from fincat.schemas.learning import CorrectionRead
from fincat.services.learning import LearningService
from fincat.services.llm_provider import LLMProviderBase
from fincat.services.rule_cache import RuleCache
from fincat.services.rule_matcher import RuleMatcher
from fincat.services.rules_manager import RulesManager
from fincat.services.usage_tracker import InMemoryUsageStore, UsageTracker

GROCERIES, SHOPPING, ENTERTAINMENT, SALARY = 1, 2, 3, 4

BASE_TIME = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(days=1)


class FakeRuleStore:
    """In-memory RuleStore. ``calls`` counts store round-trips per method."""

    def __init__(self, categories: list[CategoryRead]):
        self.categories = {c.id: c for c in categories}
        self.rules: dict[int, RuleRead] = {}
        self.transactions: list[TransactionSample] = []
        self.calls: Counter = Counter()
        self.fail_with: Exception | None = None
        self._next_id = 1

    def add_rule(
        self,
        pattern: str,
        match_type: str,
        category_id: int,
        confidence: float | None = None,
        **fields: Any,
    ) -> RuleRead:
        rule_id = self._next_id
        self._next_id += 1
        created_at = fields.pop("created_at", BASE_TIME + timedelta(minutes=rule_id))
        rule = RuleRead(
            id=rule_id,
            pattern=pattern,
            match_type=match_type,
            category_id=category_id,
            category_name=self.categories[category_id].name if category_id in self.categories else None,
            confidence=DEFAULT_CONFIDENCE[match_type] if confidence is None else confidence,
            created_at=created_at,
            updated_at=created_at,
            **fields,
        )
        self.rules[rule_id] = rule
        return rule

    def add_transaction(self, description: str, category_id: int | None = None) -> TransactionSample:
        txn = TransactionSample(
            id=len(self.transactions) + 1,
            date=date(2026, 9, 1) + timedelta(days=len(self.transactions)),
            description=description,
            amount=-10.0,
            current_category_id=category_id,
            current_category_name=self.categories[category_id].name if category_id else None,
        )
        self.transactions.append(txn)
        return txn

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with

    async def list_rules(self, category_id=None, is_system=None, active_only=False):
        await self._enter("list_rules")
        rules = list(self.rules.values())
        if category_id is not None:
            rules = [r for r in rules if r.category_id == category_id]
        if is_system is not None:
            rules = [r for r in rules if r.is_system == is_system]
        if active_only:
            rules = [r for r in rules if r.is_active]
            return sorted(rules, key=lambda r: (r.created_at, r.id))
        return sorted(rules, key=lambda r: (r.created_at, r.id), reverse=True)

    async def list_categories(self):
        await self._enter("list_categories")
        return list(self.categories.values())

    async def get_rule(self, rule_id):
        await self._enter("get_rule")
        return self.rules.get(rule_id)

    def _conflict(self, pattern, match_type, exclude_id=None) -> None:
        """Mirror the partial unique index on active (pattern, match_type)."""
        for rule in self.rules.values():
            if (
                rule.is_active
                and rule.id != exclude_id
                and rule.match_type == match_type
                and rule.pattern.strip().lower() == pattern.strip().lower()
            ):
                raise DuplicateRuleError(rule)

    async def insert_rule(self, data):
        await self._enter("insert_rule")
        if data.get("is_active", True):
            self._conflict(data["pattern"], data["match_type"])
        data = dict(data)
        return self.add_rule(
            data.pop("pattern"),
            data.pop("match_type"),
            data.pop("category_id"),
            data.pop("confidence"),
            **data,
        )

    async def update_rule(self, rule_id, changes):
        await self._enter("update_rule")
        rule = self.rules.get(rule_id)
        if rule is None:
            return None
        updated = rule.model_copy(update=changes)
        if updated.is_active:
            self._conflict(updated.pattern, updated.match_type, exclude_id=rule_id)
        self.rules[rule_id] = updated
        return updated

    async def delete_rule(self, rule_id):
        await self._enter("delete_rule")
        return self.rules.pop(rule_id, None) is not None

    async def find_rule_by_pattern(self, pattern, match_type, exclude_id=None):
        await self._enter("find_rule_by_pattern")
        for rule in sorted(self.rules.values(), key=lambda r: (r.created_at, r.id)):
            if (
                rule.is_active
                and rule.match_type == match_type
                and rule.pattern.strip().lower() == pattern
                and rule.id != exclude_id
            ):
                return rule
        return None

    async def sample_transactions(self, limit):
        await self._enter("sample_transactions")
        return list(reversed(self.transactions))[:limit]

    async def increment_rule_usage(self, rule_id):
        await self._enter("increment_rule_usage")
        rule = self.rules[rule_id]
        self.rules[rule_id] = rule.model_copy(
            update={"use_count": rule.use_count + 1, "last_used_at": BASE_TIME}
        )

    async def ping(self):
        await self._enter("ping")


class FakeProvider(LLMProviderBase):
    """Replays scripted replies. An exception is raised; a callable gets the prompt."""

    model = "fake-model"

    def __init__(self, *replies: Any):
        self.replies = list(replies)
        self.prompts: list[str] = []

    def is_configured(self) -> bool:
        return True

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else "[]"
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(prompt)
            if asyncio.iscoroutine(reply):
                reply = await reply
        return reply


class FakeCorrectionStore:
    """In-memory CorrectionStore."""

    def __init__(self) -> None:
        self.corrections: dict[int, CorrectionRead] = {}
        self._next_id = 1

    def add_correction(
        self,
        description: str,
        corrected_category_id: int,
        days_ago: float = 0,
        **fields: Any,
    ) -> CorrectionRead:
        correction = CorrectionRead(
            id=self._next_id,
            description=description,
            corrected_category_id=corrected_category_id,
            # Later corrections are newer.
            created_at=datetime.now(timezone.utc) - timedelta(days=days_ago) + timedelta(seconds=self._next_id),
            **fields,
        )
        self.corrections[correction.id] = correction
        self._next_id += 1
        return correction

    async def insert_corrections(self, corrections):
        await asyncio.sleep(0)
        return [
            self.add_correction(
                c.description,
                c.corrected_category_id,
                original_category_id=c.original_category_id,
                original_source=c.original_source,
            )
            for c in corrections
        ]

    async def list_pending(self, since=None):
        await asyncio.sleep(0)
        pending = [
            c for c in self.corrections.values()
            if c.created_rule_id is None and (since is None or c.created_at >= since)
        ]
        return sorted(pending, key=lambda c: (c.created_at, c.id), reverse=True)

    async def mark_processed(self, correction_ids, rule_id):
        await asyncio.sleep(0)
        marked = 0
        for correction_id in correction_ids:
            if correction_id in self.corrections:
                self.corrections[correction_id] = self.corrections[correction_id].model_copy(
                    update={"created_rule_id": rule_id}
                )
                marked += 1
        return marked


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DayClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def categories() -> list[CategoryRead]:
    return [
        CategoryRead(id=GROCERIES, name="Groceries", group_name="Food"),
        CategoryRead(id=SHOPPING, name="Shopping", group_name="Lifestyle"),
        CategoryRead(id=ENTERTAINMENT, name="Entertainment", group_name="Lifestyle"),
        CategoryRead(id=SALARY, name="Salary", group_name="Income", is_income=True),
    ]


@pytest.fixture
def store(categories) -> FakeRuleStore:
    return FakeRuleStore(categories)


@pytest.fixture
def scenario_store(store) -> FakeRuleStore:
    """TESCO exact, AMAZON contains, ^NETFLIX regex."""
    store.add_rule("TESCO", "exact", GROCERIES, 1.0)
    store.add_rule("AMAZON", "contains", SHOPPING, 0.9)
    store.add_rule("^NETFLIX", "regex", ENTERTAINMENT, 0.95)
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(store, clock) -> RuleCache:
    return RuleCache(store, ttl_seconds=300, clock=clock)


@pytest.fixture
def matcher(cache) -> RuleMatcher:
    return RuleMatcher(cache)


@pytest.fixture
def manager(store, cache) -> RulesManager:
    return RulesManager(store, cache, test_sample_size=1000)


@pytest.fixture
def day_clock() -> DayClock:
    return DayClock(datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def usage_store() -> InMemoryUsageStore:
    return InMemoryUsageStore()


@pytest.fixture
def usage(usage_store, day_clock) -> UsageTracker:
    return UsageTracker(usage_store, daily_limit=5, clock=day_clock)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def correction_store() -> FakeCorrectionStore:
    return FakeCorrectionStore()


@pytest.fixture
def learning(correction_store, manager, cache) -> LearningService:
    return LearningService(correction_store, manager, cache)


@pytest.fixture
def container(scenario_store, usage_store, provider, correction_store):
    settings = Settings(
        ai_categorisation_daily_limit=3,
        ai_max_batch_size=10,
        ai_max_retries=1,
        ai_timeout=5.0,
    )
    return build_container(settings, scenario_store, usage_store, provider, correction_store)


@pytest.fixture
async def client(container):
    """Async test client for the FastAPI app, wired to the in-memory container."""
    from fincat.main import app

    app.state.container = container
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.state.container = None
