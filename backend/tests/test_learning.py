"""Learning: corrections become rule suggestions, accepted through the rules manager."""

from datetime import datetime, timezone

import pytest

from conftest import ENTERTAINMENT, GROCERIES, SHOPPING
from fincat.core.exceptions import DuplicateRuleError, ValidationError
from fincat.schemas.learning import CorrectionCreate, CorrectionRead, RuleFromSuggestion
from fincat.services.learning import LearningConfig, find_patterns

NAMES = {GROCERIES: "Groceries", SHOPPING: "Shopping", ENTERTAINMENT: "Entertainment"}


def corrections(*rows: tuple[str, int]) -> list[CorrectionRead]:
    now = datetime.now(timezone.utc)
    return [
        CorrectionRead(id=i, description=d, corrected_category_id=c, created_at=now)
        for i, (d, c) in enumerate(rows, start=1)
    ]


# ── Pattern analysis ──────────────────────────────


def test_repeated_description_suggests_exact_rule():
    suggestions = find_patterns(
        corrections(*[("SPOTIFY P1234", ENTERTAINMENT)] * 2, ("spotify p1234 ", ENTERTAINMENT)),
        NAMES,
    )

    assert len(suggestions) == 1
    [s] = suggestions
    assert (s.pattern, s.match_type, s.category_name) == ("SPOTIFY P1234", "exact", "Entertainment")
    assert s.correction_count == 3
    assert s.correction_ids == [1, 2, 3]
    assert s.confidence == 0.85


def test_exact_confidence_grows_with_evidence_and_is_capped():
    five = find_patterns(corrections(*[("NOW TV", ENTERTAINMENT)] * 5), NAMES)
    many = find_patterns(corrections(*[("NOW TV", ENTERTAINMENT)] * 20), NAMES)
    assert five[0].confidence == 0.89
    assert many[0].confidence == 0.95


def test_shared_word_suggests_contains_rule():
    suggestions = find_patterns(
        corrections(
            ("UBER *TRIP ABC", SHOPPING),
            ("UBER *TRIP XYZ", SHOPPING),
            ("UBER EATS 123", SHOPPING),
        ),
        NAMES,
    )

    assert [(s.pattern, s.match_type, s.correction_count) for s in suggestions] == [
        ("uber", "contains", 3),
    ]
    assert suggestions[0].confidence == 0.8
    assert suggestions[0].sample_descriptions[0] == "UBER *TRIP ABC"


def test_stop_words_are_not_suggested():
    suggestions = find_patterns(
        corrections(*[(f"CARD PAYMENT {n:03d}", GROCERIES) for n in range(4)]),
        NAMES,
    )
    assert suggestions == []


def test_too_few_corrections_suggest_nothing():
    assert find_patterns(corrections(*[("LIDL", GROCERIES)] * 2), NAMES) == []


def test_categories_are_analysed_separately():
    suggestions = find_patterns(
        corrections(
            ("AMAZON", SHOPPING),
            ("AMAZON", SHOPPING),
            ("AMAZON", GROCERIES),
        ),
        NAMES,
    )
    assert suggestions == []


def test_suggestions_are_ordered_by_evidence():
    suggestions = find_patterns(
        corrections(*[("LIDL", GROCERIES)] * 3, *[("STEAM", ENTERTAINMENT)] * 4),
        NAMES,
    )
    assert [s.pattern for s in suggestions] == ["STEAM", "LIDL"]


def test_thresholds_are_configurable():
    config = LearningConfig(min_corrections=2)
    suggestions = find_patterns(corrections(*[("LIDL", GROCERIES)] * 2), NAMES, config)
    assert suggestions[0].correction_count == 2


# ── Service ───────────────────────────────────────


async def test_record_correction(learning, correction_store):
    record = await learning.record_correction(CorrectionCreate(
        description="STEAM PURCHASE",
        original_category_id=SHOPPING,
        corrected_category_id=ENTERTAINMENT,
        original_source="ai",
    ))

    assert correction_store.corrections[record.id].original_source == "ai"
    assert record.created_rule_id is None


async def test_correction_to_unknown_category_is_rejected(learning, correction_store):
    with pytest.raises(ValidationError):
        await learning.record_correction(CorrectionCreate(description="X", corrected_category_id=999))
    assert correction_store.corrections == {}


async def test_record_corrections_batch(learning):
    result = await learning.record_corrections_batch([
        CorrectionCreate(description="LIDL", corrected_category_id=GROCERIES),
        CorrectionCreate(description="ALDI", corrected_category_id=GROCERIES),
    ])
    assert (result.recorded, result.failed) == (2, 0)

    empty = await learning.record_corrections_batch([])
    assert (empty.recorded, empty.failed) == (0, 0)


async def test_analysis_skips_old_and_processed_corrections(learning, correction_store):
    for _ in range(3):
        correction_store.add_correction("LIDL", GROCERIES)
    for _ in range(3):
        correction_store.add_correction("ALDI", GROCERIES, days_ago=120)
    for _ in range(3):
        correction_store.add_correction("STEAM", ENTERTAINMENT, created_rule_id=1)

    analysis = await learning.analyse_corrections()

    assert analysis.total_corrections == 3
    assert [s.pattern for s in analysis.suggestions] == ["LIDL"]
    assert analysis.suggestions[0].category_name == "Groceries"
    assert [c.description for c in analysis.recent_corrections] == ["LIDL"] * 3


async def test_check_for_suggestions(learning, correction_store):
    assert not (await learning.check_for_suggestions()).has_suggestions
    for _ in range(3):
        correction_store.add_correction("LIDL", GROCERIES)
    check = await learning.check_for_suggestions()
    assert check.has_suggestions and check.count == 1


async def test_corrections_for_description_ignore_case(learning, correction_store):
    correction_store.add_correction("Pret A Manger", GROCERIES)
    correction_store.add_correction("PRET A MANGER ", SHOPPING)
    correction_store.add_correction("COSTA", GROCERIES)

    found = await learning.get_corrections_for_description("pret a manger")

    assert sorted(c.corrected_category_id for c in found) == [GROCERIES, SHOPPING]


async def test_accepting_a_suggestion_creates_a_matching_rule(learning, correction_store, store, matcher):
    for _ in range(3):
        correction_store.add_correction("LIDL GB", GROCERIES)
    assert await matcher.match("LIDL GB") is None

    [suggestion] = (await learning.analyse_corrections()).suggestions
    rule = await learning.create_rule_from_suggestion(RuleFromSuggestion(**suggestion.model_dump()))

    assert rule.notes == "Created from 3 user corrections"
    assert rule.confidence == 0.85
    assert store.calls["insert_rule"] == 1
    assert (await matcher.match("lidl gb")).rule_id == rule.id
    assert all(c.created_rule_id == rule.id for c in correction_store.corrections.values())
    assert (await learning.analyse_corrections()).suggestions == []


async def test_duplicate_suggestion_leaves_corrections_pending(learning, correction_store, store):
    store.add_rule("LIDL GB", "exact", GROCERIES)
    ids = [correction_store.add_correction("LIDL GB", GROCERIES).id for _ in range(3)]

    with pytest.raises(DuplicateRuleError):
        await learning.create_rule_from_suggestion(RuleFromSuggestion(
            pattern="LIDL GB",
            match_type="exact",
            category_id=GROCERIES,
            correction_count=3,
            confidence=0.85,
            correction_ids=ids,
        ))

    assert all(c.created_rule_id is None for c in correction_store.corrections.values())
