"""In-process cache of the active rule set and the category list.

Constructed once at startup with an injected store and TTL, then shared by
the matcher, the rules manager and the AI categoriser. Rule mutations call
``invalidate()``; otherwise entries are refreshed when older than the TTL.
Regex patterns are compiled when the rules are loaded, one rule at a time,
so a single bad pattern only disables that rule.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import structlog

from fincat.schemas.categorisation import CategoryRead
from fincat.schemas.category_rule import RuleRead
from fincat.services.patterns import CompiledPattern
from fincat.services.rule_store import RuleStore

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class CachedRule:
    """An active rule with its precomputed matching form."""
    rule: RuleRead
    compiled: CompiledPattern

    @classmethod
    def from_rule(cls, rule: RuleRead) -> "CachedRule":
        return cls(rule=rule, compiled=CompiledPattern.build(rule.pattern, rule.match_type, rule.id))


@dataclass
class CacheEntry(Generic[T]):
    value: T
    fetched_at: float

    def is_valid(self, now: float, ttl: float) -> bool:
        return now - self.fetched_at < ttl


@dataclass
class _Slot(Generic[T]):
    entry: CacheEntry[T] | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class RuleCache:
    def __init__(
        self,
        store: RuleStore,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._rules: _Slot[list[CachedRule]] = _Slot()
        self._categories: _Slot[dict[int, CategoryRead]] = _Slot()
        self._generation = 0

    async def get_active_rules(self) -> list[CachedRule]:
        """Active rules in creation order."""
        return await self._get(self._rules, self._load_rules)

    async def get_categories(self) -> dict[int, CategoryRead]:
        return await self._get(self._categories, self._load_categories)

    def invalidate(self) -> None:
        """Drop both entries; the next read goes to the store."""
        self._generation += 1
        self._rules.entry = None
        self._categories.entry = None
        logger.debug("rules_cache_invalidated")

    async def _get(self, slot: _Slot[T], loader: Callable) -> T:
        entry = slot.entry
        if entry is not None and entry.is_valid(self.clock(), self.ttl_seconds):
            return entry.value

        # Concurrent misses wait for the first fetch instead of repeating it.
        async with slot.lock:
            entry = slot.entry
            if entry is not None and entry.is_valid(self.clock(), self.ttl_seconds):
                return entry.value
            generation = self._generation
            value = await loader()
            # A fetch that raced with invalidate() is returned but not kept.
            if generation == self._generation:
                slot.entry = CacheEntry(value=value, fetched_at=self.clock())
            return value

    async def _load_rules(self) -> list[CachedRule]:
        rules = await self.store.list_rules(active_only=True)
        cached = [CachedRule.from_rule(r) for r in rules if r.is_active]
        logger.info("rules_cache_refreshed", rules=len(cached))
        return cached

    async def _load_categories(self) -> dict[int, CategoryRead]:
        categories = await self.store.list_categories()
        logger.info("categories_cache_refreshed", categories=len(categories))
        return {c.id: c for c in categories}
