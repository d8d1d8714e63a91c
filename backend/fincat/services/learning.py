"""Learning from user corrections.

When a user moves a transaction to another category the correction is
recorded. Corrections that keep landing in the same category are analysed
into rule suggestions:

1. exact: the same description corrected to the same category at least
   ``min_corrections`` times;
2. contains: a word or two-word phrase shared by at least half of a
   category's corrections, and by at least ``min_corrections`` of them.

Accepting a suggestion goes through ``RulesManager.create_rule``, so the
duplicate check and cache invalidation apply as for any other rule.
"""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fincat.core.exceptions import ValidationError
from fincat.models.category_correction import CategoryCorrection
from fincat.schemas.category_rule import RuleCreate, RuleRead
from fincat.schemas.learning import (
    CorrectionAnalysis,
    CorrectionBatchResult,
    CorrectionCreate,
    CorrectionRead,
    PatternSuggestion,
    RuleFromSuggestion,
    SuggestionCheck,
)
from fincat.services.patterns import normalise
from fincat.services.rule_cache import RuleCache
from fincat.services.rules_manager import RulesManager

logger = structlog.get_logger()

STOP_WORDS = frozenset({
    "the", "and", "for", "ref", "gbp", "usd", "eur", "payment", "card", "debit", "credit",
})
RECENT_CORRECTIONS = 10

_NON_WORD = re.compile(r"[^a-z0-9\s]")


@dataclass(frozen=True)
class LearningConfig:
    min_corrections: int = 3
    lookback_days: int = 90
    default_confidence: float = 0.85
    max_samples: int = 5


# ── Persistence ────────────────────────────────────


class CorrectionStore(Protocol):
    async def insert_corrections(self, corrections: list[CorrectionCreate]) -> list[CorrectionRead]: ...

    async def list_pending(self, since: datetime | None = None) -> list[CorrectionRead]:
        """Corrections not yet turned into a rule, newest first."""
        ...

    async def mark_processed(self, correction_ids: list[int], rule_id: int) -> int: ...


class SQLCorrectionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def insert_corrections(self, corrections: list[CorrectionCreate]) -> list[CorrectionRead]:
        async with self.session_factory() as session:
            rows = [CategoryCorrection(**c.model_dump()) for c in corrections]
            session.add_all(rows)
            await session.commit()
            for row in rows:
                await session.refresh(row)
            return [CorrectionRead.model_validate(row) for row in rows]

    async def list_pending(self, since: datetime | None = None) -> list[CorrectionRead]:
        query = select(CategoryCorrection).where(CategoryCorrection.created_rule_id.is_(None))
        if since is not None:
            query = query.where(CategoryCorrection.created_at >= since)
        query = query.order_by(CategoryCorrection.created_at.desc(), CategoryCorrection.id.desc())

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [CorrectionRead.model_validate(c) for c in result.scalars().all()]

    async def mark_processed(self, correction_ids: list[int], rule_id: int) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                update(CategoryCorrection)
                .where(CategoryCorrection.id.in_(correction_ids))
                .values(created_rule_id=rule_id)
            )
            await session.commit()
            return result.rowcount


# ── Pattern analysis ───────────────────────────────


@dataclass
class _Phrase:
    count: int = 0
    samples: list[str] = field(default_factory=list)
    correction_ids: list[int] = field(default_factory=list)


def _words(description: str) -> list[str]:
    cleaned = _NON_WORD.sub(" ", description.lower())
    return [w for w in cleaned.split() if len(w) >= 3 and w not in STOP_WORDS]


def _common_phrases(corrections: list[CorrectionRead], config: LearningConfig) -> list[tuple[str, _Phrase]]:
    """Words and word pairs shared by enough of ``corrections``, most frequent first."""
    phrases: dict[str, _Phrase] = {}
    for correction in corrections:
        words = _words(correction.description)
        candidates = list(dict.fromkeys(words + [f"{a} {b}" for a, b in zip(words, words[1:])]))
        for phrase in candidates:
            entry = phrases.setdefault(phrase, _Phrase())
            entry.count += 1
            entry.correction_ids.append(correction.id)
            if len(entry.samples) < config.max_samples:
                entry.samples.append(correction.description)

    common = [
        (phrase, entry)
        for phrase, entry in phrases.items()
        if entry.count >= config.min_corrections and entry.count >= len(corrections) * 0.5
    ]
    return sorted(common, key=lambda item: (-item[1].count, -len(item[0])))


def find_patterns(
    corrections: Iterable[CorrectionRead],
    category_names: dict[int, str],
    config: LearningConfig = LearningConfig(),
) -> list[PatternSuggestion]:
    """Suggest rules from corrections, the best-evidenced first."""
    by_category: dict[int, list[CorrectionRead]] = {}
    for correction in corrections:
        by_category.setdefault(correction.corrected_category_id, []).append(correction)

    suggestions: list[PatternSuggestion] = []
    for category_id, group in by_category.items():
        by_description: dict[str, list[CorrectionRead]] = {}
        for correction in group:
            by_description.setdefault(normalise(correction.description), []).append(correction)

        for matches in by_description.values():
            if len(matches) < config.min_corrections:
                continue
            suggestions.append(PatternSuggestion(
                pattern=matches[0].description.strip(),
                match_type="exact",
                category_id=category_id,
                category_name=category_names.get(category_id, "Unknown"),
                correction_count=len(matches),
                sample_descriptions=[m.description for m in matches[:config.max_samples]],
                correction_ids=[m.id for m in matches],
                confidence=round(
                    min(0.95, config.default_confidence + 0.02 * (len(matches) - config.min_corrections)), 2
                ),
            ))

    for category_id, group in by_category.items():
        if len(group) < config.min_corrections:
            continue
        exact_patterns = [
            normalise(s.pattern)
            for s in suggestions
            if s.category_id == category_id and s.match_type == "exact"
        ]
        for phrase, entry in _common_phrases(group, config):
            if any(phrase in pattern for pattern in exact_patterns):
                continue
            suggestions.append(PatternSuggestion(
                pattern=phrase,
                match_type="contains",
                category_id=category_id,
                category_name=category_names.get(category_id, "Unknown"),
                correction_count=entry.count,
                sample_descriptions=entry.samples,
                correction_ids=entry.correction_ids,
                # Contains rules start a notch below exact ones.
                confidence=round(
                    min(0.9, config.default_confidence - 0.05 + 0.02 * (entry.count - config.min_corrections)), 2
                ),
            ))

    return sorted(suggestions, key=lambda s: s.correction_count, reverse=True)


# ── Service ────────────────────────────────────────


class LearningService:
    def __init__(
        self,
        store: CorrectionStore,
        rules_manager: RulesManager,
        cache: RuleCache,
        config: LearningConfig = LearningConfig(),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.rules_manager = rules_manager
        self.cache = cache
        self.config = config
        self.clock = clock

    async def record_correction(self, correction: CorrectionCreate) -> CorrectionRead:
        await self._check_categories([correction])
        [record] = await self.store.insert_corrections([correction])
        logger.info(
            "correction_recorded",
            correction_id=record.id,
            corrected_category_id=record.corrected_category_id,
            original_source=record.original_source,
        )
        return record

    async def record_corrections_batch(self, corrections: list[CorrectionCreate]) -> CorrectionBatchResult:
        if not corrections:
            return CorrectionBatchResult(recorded=0, failed=0)
        await self._check_categories(corrections)
        records = await self.store.insert_corrections(corrections)
        logger.info("corrections_recorded", recorded=len(records))
        return CorrectionBatchResult(recorded=len(records), failed=len(corrections) - len(records))

    async def analyse_corrections(self) -> CorrectionAnalysis:
        since = self.clock() - timedelta(days=self.config.lookback_days)
        corrections = await self.store.list_pending(since)
        categories = await self.cache.get_categories()
        suggestions = find_patterns(
            corrections, {cid: c.name for cid, c in categories.items()}, self.config
        )
        logger.info(
            "corrections_analysed",
            corrections=len(corrections),
            suggestions=len(suggestions),
        )
        return CorrectionAnalysis(
            suggestions=suggestions,
            total_corrections=len(corrections),
            recent_corrections=corrections[:RECENT_CORRECTIONS],
        )

    async def check_for_suggestions(self) -> SuggestionCheck:
        analysis = await self.analyse_corrections()
        return SuggestionCheck(
            has_suggestions=bool(analysis.suggestions),
            count=len(analysis.suggestions),
        )

    async def get_corrections_for_description(self, description: str) -> list[CorrectionRead]:
        target = normalise(description)
        return [c for c in await self.store.list_pending() if normalise(c.description) == target]

    async def mark_corrections_as_processed(self, correction_ids: list[int], rule_id: int) -> int:
        if not correction_ids:
            return 0
        return await self.store.mark_processed(correction_ids, rule_id)

    async def create_rule_from_suggestion(self, suggestion: RuleFromSuggestion) -> RuleRead:
        """Create the suggested rule and tie its corrections to it."""
        rule = await self.rules_manager.create_rule(RuleCreate(
            pattern=suggestion.pattern,
            match_type=suggestion.match_type,
            category_id=suggestion.category_id,
            confidence=suggestion.confidence,
            notes=suggestion.notes or f"Created from {suggestion.correction_count} user corrections",
        ))
        marked = await self.mark_corrections_as_processed(suggestion.correction_ids, rule.id)
        logger.info("rule_learned", rule_id=rule.id, pattern=rule.pattern, corrections=marked)
        return rule

    async def _check_categories(self, corrections: list[CorrectionCreate]) -> None:
        categories = await self.cache.get_categories()
        for c in corrections:
            for category_id in (c.corrected_category_id, c.original_category_id):
                if category_id is not None and category_id not in categories:
                    raise ValidationError(f"Unknown category: {category_id}")
