"""AI fallback categoriser.

Sends descriptions that no rule covers to an external LLM, in batches, with
the cached category list as context. Every call is gated by the daily usage
budget and counted when it is dispatched, whatever the outcome. The response
is untrusted text: it is parsed as JSON and checked item by item, and only
items that pass every check become ``MatchResult`` values.
"""

import asyncio
import json
from collections.abc import Sequence
from typing import NamedTuple

import structlog
from pydantic import ValidationError as PydanticValidationError

from fincat.core.exceptions import (
    AIApiError,
    AICategorisationError,
    AIConfigurationError,
    AIInvalidResponseError,
    AIParseError,
    AITimeoutError,
    RateLimitedError,
)
from fincat.schemas.categorisation import AIAvailability, AISuggestion, CategoryRead, MatchResult
from fincat.services.llm_provider import LLMProviderBase
from fincat.services.prompts import build_batch_prompt
from fincat.services.rule_cache import RuleCache
from fincat.services.usage_tracker import UsageTracker

logger = structlog.get_logger()


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _validate_item(item: object, size: int, categories: dict[int, CategoryRead]) -> AISuggestion:
    if not isinstance(item, dict):
        raise AIInvalidResponseError("item is not an object")
    try:
        suggestion = AISuggestion.model_validate(item)
    except PydanticValidationError as e:
        raise AIInvalidResponseError(f"malformed item: {e.error_count()} field error(s)") from e
    if not 0 <= suggestion.index < size:
        raise AIInvalidResponseError(f"index {suggestion.index} out of range")
    if suggestion.category_id not in categories:
        raise AIInvalidResponseError(f"unknown category_id {suggestion.category_id}")
    return suggestion


def parse_batch_response(
    raw: str,
    size: int,
    categories: dict[int, CategoryRead],
) -> dict[int, MatchResult | None]:
    """Turn the raw AI reply for ``size`` descriptions into index-aligned results.

    Raises ``AIParseError`` if the reply is not a JSON array. Items that are
    malformed, out of range, duplicated or reference an unknown category are
    dropped, leaving ``None`` at their index.
    """
    try:
        payload = json.loads(_strip_code_fence(raw))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning("ai_parse_failed", response=raw[:500])
        raise AIParseError("AI response is not valid JSON", raw=raw) from e
    if not isinstance(payload, list):
        logger.warning("ai_parse_failed", response=raw[:500], reason="not_a_list")
        raise AIParseError("AI response is not a JSON array", raw=raw)

    results: dict[int, MatchResult | None] = {i: None for i in range(size)}
    for position, item in enumerate(payload):
        try:
            suggestion = _validate_item(item, size, categories)
        except AIInvalidResponseError as e:
            logger.warning("ai_invalid_item", position=position, error=e.message)
            continue
        if results[suggestion.index] is not None:
            logger.warning("ai_duplicate_item", index=suggestion.index)
            continue
        results[suggestion.index] = MatchResult(
            category_id=suggestion.category_id,
            category_name=categories[suggestion.category_id].name,
            match_type=None,
            confidence=suggestion.confidence,
            source="ai",
            reasoning=suggestion.reasoning,
        )
    return results


class AIBatchOutcome(NamedTuple):
    """Results for every description, plus the error that cut the batch short, if any."""

    results: dict[int, MatchResult | None]
    error: AICategorisationError | None = None


class AICategoriser:
    def __init__(
        self,
        provider: LLMProviderBase,
        cache: RuleCache,
        usage: UsageTracker,
        timeout: float = 30.0,
        max_batch_size: int = 10,
        max_retries: int = 1,
    ):
        self.provider = provider
        self.cache = cache
        self.usage = usage
        self.timeout = timeout
        self.max_batch_size = max(1, max_batch_size)
        self.max_retries = max(0, max_retries)

    async def check_availability(self) -> AIAvailability:
        return await self.usage.check_availability()

    async def track_usage(self, count: int = 1) -> None:
        await self.usage.increment(count)

    async def categorise(self, descriptions: Sequence[str]) -> dict[int, MatchResult | None]:
        """Categorise descriptions with the AI service.

        Raises ``RateLimitedError`` if not even one call is left today. If the
        budget runs out part way, the chunks that were not sent stay ``None``.
        """
        outcome = await self.categorise_batch(descriptions)
        return outcome.results

    async def categorise_batch(self, descriptions: Sequence[str]) -> AIBatchOutcome:
        """Like ``categorise``, but also reports a failure that hit only some chunks.

        A failed chunk leaves its own indices ``None`` and the remaining chunks
        are still sent. The error is raised only when no chunk succeeded.
        """
        results: dict[int, MatchResult | None] = {i: None for i in range(len(descriptions))}
        if not descriptions:
            return AIBatchOutcome(results)

        availability = await self.check_availability()
        if not availability.available:
            raise RateLimitedError(availability.remaining, availability.daily_limit)

        categories = await self.cache.get_categories()
        if not categories:
            raise AIConfigurationError("No categories available")

        succeeded = 0
        error: AICategorisationError | None = None
        for start in range(0, len(descriptions), self.max_batch_size):
            chunk = list(descriptions[start:start + self.max_batch_size])
            try:
                chunk_results = await self._categorise_chunk(chunk, categories)
            except RateLimitedError as e:
                error = error or e
                logger.warning(
                    "ai_budget_exhausted",
                    sent=start,
                    skipped=len(descriptions) - start,
                )
                break
            except AICategorisationError as e:
                error = error or e
                logger.warning(
                    "ai_chunk_failed",
                    start=start,
                    size=len(chunk),
                    code=e.code,
                    error=e.message,
                )
                continue
            succeeded += 1
            for offset, match in chunk_results.items():
                results[start + offset] = match

        if error is not None and not succeeded:
            raise error

        logger.info(
            "ai_categorisation_done",
            total=len(descriptions),
            matched=sum(1 for m in results.values() if m is not None),
            provider=self.provider.get_model_name(),
            error=error.code if error else None,
        )
        return AIBatchOutcome(results, error)

    async def _categorise_chunk(
        self,
        chunk: list[str],
        categories: dict[int, CategoryRead],
    ) -> dict[int, MatchResult | None]:
        prompt = build_batch_prompt(chunk, categories.values())
        attempt = 0
        while True:
            # Counted on dispatch: the provider bills timed-out and failed calls too.
            if not await self.usage.reserve(1):
                availability = await self.check_availability()
                raise RateLimitedError(availability.remaining, availability.daily_limit)
            try:
                raw = await self._dispatch(prompt)
            except (AIApiError, AITimeoutError) as e:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.warning("ai_request_retry", attempt=attempt, code=e.code, error=e.message)
                continue
            return parse_batch_response(raw, len(chunk), categories)

    async def _dispatch(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(self.provider.complete(prompt), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("ai_request_timeout", timeout=self.timeout)
            raise AITimeoutError(f"AI request timed out after {self.timeout}s") from e
