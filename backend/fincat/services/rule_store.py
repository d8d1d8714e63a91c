"""Rule store adapter.

The source of truth for rules, categories and transaction history. Services
depend on the ``RuleStore`` protocol; ``SQLRuleStore`` is the PostgreSQL
implementation and opens one short-lived session per call so that it can be
shared by process-wide objects such as the rule cache.
"""

from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from fincat.core.exceptions import DuplicateRuleError
from fincat.models.category import Category
from fincat.models.category_rule import CategoryRule
from fincat.models.transaction import Transaction
from fincat.schemas.categorisation import CategoryRead
from fincat.schemas.category_rule import RuleRead, TransactionSample
from fincat.services.patterns import normalise


class RuleStore(Protocol):
    async def list_rules(
        self,
        category_id: int | None = None,
        is_system: bool | None = None,
        active_only: bool = False,
    ) -> list[RuleRead]: ...

    async def list_categories(self) -> list[CategoryRead]: ...

    async def get_rule(self, rule_id: int) -> RuleRead | None: ...

    async def insert_rule(self, data: dict[str, Any]) -> RuleRead: ...

    async def update_rule(self, rule_id: int, changes: dict[str, Any]) -> RuleRead | None: ...

    async def delete_rule(self, rule_id: int) -> bool: ...

    async def find_rule_by_pattern(
        self, pattern: str, match_type: str, exclude_id: int | None = None
    ) -> RuleRead | None: ...

    async def sample_transactions(self, limit: int) -> list[TransactionSample]: ...

    async def increment_rule_usage(self, rule_id: int) -> None: ...

    async def ping(self) -> None: ...


def _rule_to_read(rule: CategoryRule) -> RuleRead:
    return RuleRead(
        id=rule.id,
        pattern=rule.pattern,
        match_type=rule.match_type,
        category_id=rule.category_id,
        category_name=rule.category.name if rule.category else None,
        confidence=float(rule.confidence),
        is_system=rule.is_system,
        is_active=rule.is_active,
        notes=rule.notes,
        use_count=rule.use_count or 0,
        last_used_at=rule.last_used_at,
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


class SQLRuleStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ── Rules ──────────────────────────────────────────

    async def list_rules(
        self,
        category_id: int | None = None,
        is_system: bool | None = None,
        active_only: bool = False,
    ) -> list[RuleRead]:
        """List rules. Active-only listings come back in creation order, others newest first."""
        query = select(CategoryRule).options(selectinload(CategoryRule.category))
        if category_id is not None:
            query = query.where(CategoryRule.category_id == category_id)
        if is_system is not None:
            query = query.where(CategoryRule.is_system.is_(is_system))
        if active_only:
            query = query.where(CategoryRule.is_active.is_(True)).order_by(
                CategoryRule.created_at, CategoryRule.id
            )
        else:
            query = query.order_by(CategoryRule.created_at.desc(), CategoryRule.id.desc())

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_rule_to_read(r) for r in result.scalars().all()]

    async def get_rule(self, rule_id: int) -> RuleRead | None:
        async with self.session_factory() as session:
            rule = await self._load(session, rule_id)
            return _rule_to_read(rule) if rule else None

    async def insert_rule(self, data: dict[str, Any]) -> RuleRead:
        async with self.session_factory() as session:
            rule = CategoryRule(**data)
            session.add(rule)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                await self._raise_if_duplicate(data["pattern"], data["match_type"], None, e)
                raise
            rule = await self._load(session, rule.id)
            return _rule_to_read(rule)

    async def update_rule(self, rule_id: int, changes: dict[str, Any]) -> RuleRead | None:
        async with self.session_factory() as session:
            rule = await self._load(session, rule_id)
            if rule is None:
                return None
            for key, value in changes.items():
                setattr(rule, key, value)
            pattern, match_type = rule.pattern, rule.match_type
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                await self._raise_if_duplicate(pattern, match_type, rule_id, e)
                raise
            rule = await self._load(session, rule_id)
            return _rule_to_read(rule)

    async def delete_rule(self, rule_id: int) -> bool:
        async with self.session_factory() as session:
            rule = await session.get(CategoryRule, rule_id)
            if rule is None:
                return False
            await session.delete(rule)
            await session.commit()
            return True

    async def find_rule_by_pattern(
        self, pattern: str, match_type: str, exclude_id: int | None = None
    ) -> RuleRead | None:
        """Find an active rule whose trimmed, lower-cased pattern equals ``pattern``."""
        query = (
            select(CategoryRule)
            .options(selectinload(CategoryRule.category))
            .where(
                CategoryRule.is_active.is_(True),
                CategoryRule.match_type == match_type,
                func.lower(func.trim(CategoryRule.pattern)) == pattern,
            )
            .order_by(CategoryRule.created_at, CategoryRule.id)
        )
        if exclude_id is not None:
            query = query.where(CategoryRule.id != exclude_id)

        async with self.session_factory() as session:
            result = await session.execute(query)
            rule = result.scalars().first()
            return _rule_to_read(rule) if rule else None

    async def increment_rule_usage(self, rule_id: int) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(CategoryRule)
                .where(CategoryRule.id == rule_id)
                .values(
                    use_count=CategoryRule.use_count + 1,
                    last_used_at=datetime.now(timezone.utc),
                )
            )
            await session.commit()

    # ── Categories & history ───────────────────────────

    async def list_categories(self) -> list[CategoryRead]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Category).order_by(Category.group_name, Category.display_order, Category.id)
            )
            return [CategoryRead.model_validate(c) for c in result.scalars().all()]

    async def sample_transactions(self, limit: int) -> list[TransactionSample]:
        """Most recent transactions, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Transaction)
                .options(selectinload(Transaction.category))
                .order_by(Transaction.date.desc(), Transaction.id.desc())
                .limit(limit)
            )
            return [
                TransactionSample(
                    id=txn.id,
                    date=txn.date,
                    description=txn.description or "",
                    amount=float(txn.amount),
                    current_category_id=txn.category_id,
                    current_category_name=txn.category.name if txn.category else None,
                )
                for txn in result.scalars().all()
            ]

    async def ping(self) -> None:
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))

    # ── Helpers ─────────────────────────────────────────

    @staticmethod
    async def _load(session: AsyncSession, rule_id: int) -> CategoryRule | None:
        result = await session.execute(
            select(CategoryRule)
            .options(selectinload(CategoryRule.category))
            .where(CategoryRule.id == rule_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _raise_if_duplicate(
        self, pattern: str, match_type: str, exclude_id: int | None, error: IntegrityError
    ) -> None:
        """Turn a unique-index violation from a concurrent writer into ``DuplicateRuleError``."""
        existing = await self.find_rule_by_pattern(normalise(pattern), match_type, exclude_id)
        if existing is not None:
            raise DuplicateRuleError(existing) from error
