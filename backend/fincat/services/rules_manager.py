"""Rules manager.

CRUD and governance over categorisation rules: duplicate detection, regex
validation, dry-run testing against history and usage statistics. Reads go
straight to the store so administrative views never see stale cache data;
every write invalidates the rule cache.
"""

import re
from datetime import datetime, timedelta, timezone

import structlog

from fincat.core.exceptions import (
    DuplicateRuleError,
    ForbiddenError,
    InvalidPatternError,
    NotFoundError,
)
from fincat.schemas.category_rule import (
    DEFAULT_CONFIDENCE,
    RuleCreate,
    RuleFilter,
    RuleRead,
    RuleStats,
    RuleTestResult,
    RuleUpdate,
)
from fincat.services.patterns import CompiledPattern, compile_regex, normalise
from fincat.services.rule_cache import RuleCache
from fincat.services.rule_store import RuleStore

logger = structlog.get_logger()

RECENT_RULE_DAYS = 30


class RulesManager:
    def __init__(self, store: RuleStore, cache: RuleCache, test_sample_size: int = 1000):
        self.store = store
        self.cache = cache
        self.test_sample_size = test_sample_size

    # ── Queries ────────────────────────────────────────

    async def get_rules(self, rule_filter: RuleFilter | None = None) -> list[RuleRead]:
        rule_filter = rule_filter or RuleFilter()
        return await self.store.list_rules(
            category_id=rule_filter.category_id,
            is_system=rule_filter.is_system,
        )

    async def get_rule(self, rule_id: int) -> RuleRead:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError("Rule")
        return rule

    async def check_pattern_exists(
        self, pattern: str, match_type: str, exclude_id: int | None = None
    ) -> RuleRead | None:
        """Return the active rule with the same normalised pattern and match type, if any."""
        return await self.store.find_rule_by_pattern(normalise(pattern), match_type, exclude_id)

    # ── Mutations ──────────────────────────────────────

    async def create_rule(self, data: RuleCreate) -> RuleRead:
        pattern = data.pattern.strip()
        self._validate_pattern(pattern, data.match_type)

        existing = await self.check_pattern_exists(pattern, data.match_type)
        if existing:
            raise DuplicateRuleError(existing)

        confidence = data.confidence
        if confidence is None:
            confidence = DEFAULT_CONFIDENCE[data.match_type]

        rule = await self.store.insert_rule({
            "pattern": pattern,
            "match_type": data.match_type,
            "category_id": data.category_id,
            "confidence": confidence,
            "is_system": data.is_system,
            "is_active": True,
            "notes": data.notes,
        })
        self.cache.invalidate()

        logger.info(
            "rule_created",
            rule_id=rule.id,
            match_type=rule.match_type,
            category_id=rule.category_id,
            confidence=rule.confidence,
        )
        return rule

    async def update_rule(self, rule_id: int, data: RuleUpdate) -> RuleRead:
        current = await self.get_rule(rule_id)
        # Only notes may be cleared; null for any other field means "leave as is".
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key == "notes"
        }
        if not changes:
            return current
        if "pattern" in changes:
            changes["pattern"] = changes["pattern"].strip()

        pattern = changes.get("pattern", current.pattern)
        match_type = changes.get("match_type", current.match_type)
        is_active = changes.get("is_active", current.is_active)

        if "pattern" in changes or "match_type" in changes:
            self._validate_pattern(pattern, match_type)
        if is_active and {"pattern", "match_type", "is_active"} & changes.keys():
            existing = await self.check_pattern_exists(pattern, match_type, exclude_id=rule_id)
            if existing:
                raise DuplicateRuleError(existing)

        rule = await self.store.update_rule(rule_id, changes)
        if rule is None:
            raise NotFoundError("Rule")
        self.cache.invalidate()

        logger.info("rule_updated", rule_id=rule_id, fields=sorted(changes))
        return rule

    async def delete_rule(self, rule_id: int) -> None:
        rule = await self.get_rule(rule_id)
        if rule.is_system:
            raise ForbiddenError("System rules cannot be deleted")
        if not await self.store.delete_rule(rule_id):
            raise NotFoundError("Rule")
        self.cache.invalidate()
        logger.info("rule_deleted", rule_id=rule_id)

    async def record_rule_usage(self, rule_id: int) -> None:
        await self.store.increment_rule_usage(rule_id)

    # ── Testing & stats ────────────────────────────────

    async def test_rule(
        self,
        pattern: str,
        match_type: str,
        category_id: int,
        limit: int = 50,
    ) -> RuleTestResult:
        """Preview a candidate rule against recent transactions without saving it.

        ``match_count`` covers the whole scanned sample; only the first
        ``limit`` matches are returned.
        """
        pattern = pattern.strip()
        self._validate_pattern(pattern, match_type)
        candidate = CompiledPattern.build(pattern, match_type)

        transactions = await self.store.sample_transactions(self.test_sample_size)
        matched = [t for t in transactions if candidate.matches(t.description)]
        would_change = sum(1 for t in matched if t.current_category_id != category_id)

        return RuleTestResult(
            match_count=len(matched),
            would_change=would_change,
            sample_transactions=matched[:limit],
        )

    async def get_rule_stats(self) -> RuleStats:
        rules = await self.store.list_rules()
        cutoff = datetime.now(timezone.utc) - timedelta(days=RECENT_RULE_DAYS)

        by_category: dict[int, int] = {}
        by_match_type: dict[str, int] = {}
        system_rules = active_rules = recently_created = 0
        for rule in rules:
            by_category[rule.category_id] = by_category.get(rule.category_id, 0) + 1
            by_match_type[rule.match_type] = by_match_type.get(rule.match_type, 0) + 1
            if rule.is_system:
                system_rules += 1
            if rule.is_active:
                active_rules += 1
            created_at = rule.created_at
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            if created_at > cutoff:
                recently_created += 1

        return RuleStats(
            total_rules=len(rules),
            active_rules=active_rules,
            system_rules=system_rules,
            user_rules=len(rules) - system_rules,
            by_category=by_category,
            by_match_type=by_match_type,
            recently_created=recently_created,
        )

    # ── Helpers ─────────────────────────────────────────

    @staticmethod
    def _validate_pattern(pattern: str, match_type: str) -> None:
        if not pattern:
            raise InvalidPatternError(pattern, "pattern is empty")
        if match_type == "regex":
            try:
                compile_regex(pattern)
            except re.error as e:
                raise InvalidPatternError(pattern, str(e)) from e
