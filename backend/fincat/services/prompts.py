"""Prompt templates for AI categorisation."""

import json
from collections.abc import Iterable, Sequence

from fincat.schemas.categorisation import CategoryRead

BATCH_CATEGORISE_PROMPT = """You are categorising UK bank transactions.

Transactions:
{transactions_list}

Available categories:
{categories_list}

For each transaction, choose the single most appropriate category. Consider:
- The merchant or payee name in the description
- Common UK transaction patterns (DIRECT DEBIT, CARD PAYMENT, FASTER PAYMENT, etc.)

Respond ONLY with a valid JSON array, one object per transaction, no markdown and no text around it:
[
  {{"index": 0, "category_id": <id from the list>, "confidence": <number 0.0 to 1.0>, "reasoning": "<short explanation>"}}
]

Rules:
- "index" is the number shown before the transaction
- "category_id" must be one of the ids listed above
- If you cannot decide, use a low confidence rather than inventing a category"""


def format_categories_list(categories: Iterable[CategoryRead]) -> str:
    """Group categories under their group name."""
    groups: dict[str, list[CategoryRead]] = {}
    for cat in categories:
        groups.setdefault(cat.group_name or "Other", []).append(cat)

    lines = []
    for group_name, cats in groups.items():
        lines.append(f"{group_name}:")
        for cat in cats:
            income_tag = " [INCOME]" if cat.is_income else ""
            lines.append(f"  - {cat.name} (id: {cat.id}){income_tag}")
    return "\n".join(lines)


def format_transactions_list(descriptions: Sequence[str]) -> str:
    return "\n".join(
        f"{i}. {json.dumps(d.strip(), ensure_ascii=False)}" for i, d in enumerate(descriptions)
    )


def build_batch_prompt(descriptions: Sequence[str], categories: Iterable[CategoryRead]) -> str:
    return BATCH_CATEGORISE_PROMPT.format(
        transactions_list=format_transactions_list(descriptions),
        categories_list=format_categories_list(categories),
    )
