"""Rule matcher.

Resolves the category for transaction descriptions from the cached rule set.
An exact rule always wins. Otherwise the contains/regex rule with the highest
confidence wins, and ties go to the rule created first.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

from fincat.schemas.categorisation import CategoryRead, MatchResult
from fincat.services.patterns import normalise
from fincat.services.rule_cache import CachedRule, RuleCache


@dataclass
class RuleSnapshot:
    """One view of the cache, indexed for matching many descriptions."""
    exact: dict[str, CachedRule] = field(default_factory=dict)
    patterns: list[CachedRule] = field(default_factory=list)
    categories: dict[int, CategoryRead] = field(default_factory=dict)

    @classmethod
    def build(cls, rules: list[CachedRule], categories: dict[int, CategoryRead]) -> "RuleSnapshot":
        snapshot = cls(categories=categories)
        for cached in rules:
            if cached.rule.match_type == "exact":
                # First rule in creation order keeps the slot.
                snapshot.exact.setdefault(cached.compiled.normalised, cached)
            else:
                snapshot.patterns.append(cached)
        return snapshot

    def match_exact(self, description: str) -> MatchResult | None:
        cached = self.exact.get(normalise(description))
        return self._result(cached) if cached else None

    def match_pattern(self, description: str) -> MatchResult | None:
        best: CachedRule | None = None
        for cached in self.patterns:
            if not cached.compiled.matches(description):
                continue
            # Strict comparison keeps the earliest rule on equal confidence.
            if best is None or cached.rule.confidence > best.rule.confidence:
                best = cached
        return self._result(best) if best else None

    def match(self, description: str) -> MatchResult | None:
        return self.match_exact(description) or self.match_pattern(description)

    def _result(self, cached: CachedRule) -> MatchResult:
        rule = cached.rule
        category = self.categories.get(rule.category_id)
        return MatchResult(
            category_id=rule.category_id,
            category_name=category.name if category else (rule.category_name or "Unknown"),
            match_type=rule.match_type,
            confidence=rule.confidence,
            rule_id=rule.id,
            pattern=rule.pattern,
            source="rule",
        )


class RuleMatcher:
    def __init__(self, cache: RuleCache):
        self.cache = cache

    async def snapshot(self) -> RuleSnapshot:
        rules = await self.cache.get_active_rules()
        categories = await self.cache.get_categories()
        return RuleSnapshot.build(rules, categories)

    async def match_exact(self, description: str) -> MatchResult | None:
        return (await self.snapshot()).match_exact(description)

    async def match_pattern(self, description: str) -> MatchResult | None:
        return (await self.snapshot()).match_pattern(description)

    async def match(self, description: str) -> MatchResult | None:
        return (await self.snapshot()).match(description)

    async def match_batch(self, descriptions: Sequence[str]) -> dict[int, MatchResult | None]:
        """Match every description against a single cache read. Unmatched indices map to None."""
        snapshot = await self.snapshot()
        return {i: snapshot.match(description) for i, description in enumerate(descriptions)}
