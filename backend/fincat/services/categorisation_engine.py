"""Categorisation engine: rules first, AI for whatever rules leave unmatched.

AI failures are logged and recorded in the stats; they never prevent the
rule results from being returned.
"""

from collections.abc import Sequence

import structlog

from fincat.core.exceptions import AICategorisationError
from fincat.schemas.categorisation import (
    CategorisationResponse,
    CategorisationResult,
    CategorisationStats,
    MatchResult,
)
from fincat.services.ai_categoriser import AICategoriser
from fincat.services.rule_matcher import RuleMatcher
from fincat.services.rules_manager import RulesManager

logger = structlog.get_logger()


def _from_rule(index: int, description: str, match: MatchResult) -> CategorisationResult:
    is_exact = match.match_type == "exact"
    return CategorisationResult(
        index=index,
        description=description,
        category_id=match.category_id,
        category_name=match.category_name,
        source="rule_exact" if is_exact else "rule_pattern",
        confidence=match.confidence,
        rule_id=match.rule_id,
        match_details=f'{"Exact" if is_exact else "Pattern"} rule: "{match.pattern}"',
    )


def _from_ai(index: int, description: str, match: MatchResult) -> CategorisationResult:
    return CategorisationResult(
        index=index,
        description=description,
        category_id=match.category_id,
        category_name=match.category_name,
        source="ai",
        confidence=match.confidence,
        match_details=match.reasoning or "AI suggestion",
    )


class CategorisationEngine:
    def __init__(
        self,
        matcher: RuleMatcher,
        ai_categoriser: AICategoriser | None = None,
        rules_manager: RulesManager | None = None,
    ):
        self.matcher = matcher
        self.ai_categoriser = ai_categoriser
        self.rules_manager = rules_manager

    async def categorise(
        self,
        descriptions: Sequence[str],
        use_ai: bool = True,
        record_usage: bool = False,
    ) -> CategorisationResponse:
        stats = CategorisationStats(total=len(descriptions))
        results = [
            CategorisationResult(index=i, description=d) for i, d in enumerate(descriptions)
        ]
        if not descriptions:
            return CategorisationResponse(results=results, stats=stats)

        rule_matches = await self.matcher.match_batch(descriptions)
        unmatched: list[int] = []
        for i, description in enumerate(descriptions):
            match = rule_matches.get(i)
            if match is None:
                unmatched.append(i)
            else:
                results[i] = _from_rule(i, description, match)

        if record_usage and self.rules_manager is not None:
            for rule_id in sorted({r.rule_id for r in results if r.rule_id is not None}):
                await self.rules_manager.record_rule_usage(rule_id)

        if use_ai and unmatched and self.ai_categoriser is not None:
            await self._ai_pass(descriptions, unmatched, results, stats)

        for result in results:
            stats.by_source[result.source] += 1
        stats.categorised = sum(1 for r in results if r.category_id is not None)
        stats.uncategorised = stats.total - stats.categorised

        logger.info(
            "categorisation_done",
            total=stats.total,
            categorised=stats.categorised,
            ai_error=stats.ai_error,
        )
        return CategorisationResponse(results=results, stats=stats)

    async def _ai_pass(
        self,
        descriptions: Sequence[str],
        unmatched: list[int],
        results: list[CategorisationResult],
        stats: CategorisationStats,
    ) -> None:
        try:
            outcome = await self.ai_categoriser.categorise_batch(
                [descriptions[i] for i in unmatched]
            )
        except AICategorisationError as e:
            stats.ai_error = e.code
            logger.warning("ai_fallback_failed", code=e.code, error=e.message)
            return

        ai_matches = outcome.results
        if outcome.error is not None:
            stats.ai_error = outcome.error.code

        for position, match in ai_matches.items():
            if match is None:
                continue
            i = unmatched[position]
            results[i] = _from_ai(i, descriptions[i], match)
