"""Daily AI usage accounting.

Counts are keyed by the UTC calendar day. Rollover is computed on read: any
day other than today simply has no count yet, so nothing needs resetting.
"""

import asyncio
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fincat.models.ai_usage import AIUsage
from fincat.schemas.categorisation import AIAvailability, UsageSnapshot

logger = structlog.get_logger()

USAGE_TYPE = "categorisation"


def day_key(now: datetime) -> date:
    """UTC calendar day for ``now``; naive datetimes are taken as UTC."""
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(timezone.utc).date()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsageStore(Protocol):
    async def read_count(self, day: date) -> int: ...

    async def write_count(self, day: date, count: int) -> None: ...

    async def add_within_limit(self, day: date, by: int, limit: int) -> int | None:
        """Add ``by`` unless that would pass ``limit``; return the new count or None."""
        ...


class InMemoryUsageStore:
    """Per-process counter. Only today's key is ever read."""

    def __init__(self) -> None:
        self._counts: dict[date, int] = {}

    async def read_count(self, day: date) -> int:
        return self._counts.get(day, 0)

    async def write_count(self, day: date, count: int) -> None:
        self._counts[day] = count

    async def add_within_limit(self, day: date, by: int, limit: int) -> int | None:
        count = self._counts.get(day, 0) + by
        if count > limit:
            return None
        self._counts[day] = count
        return count


class SQLUsageStore:
    """Counter persisted in ``ai_usage`` (one row per day and usage type)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def read_count(self, day: date) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(AIUsage.count).where(
                    AIUsage.date == day,
                    AIUsage.usage_type == USAGE_TYPE,
                )
            )
            return result.scalar_one_or_none() or 0

    async def write_count(self, day: date, count: int) -> None:
        stmt = insert(AIUsage).values(date=day, usage_type=USAGE_TYPE, count=count)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_ai_usage_date_type",
            set_={"count": stmt.excluded.count},
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def add_within_limit(self, day: date, by: int, limit: int) -> int | None:
        if by > limit:
            return None
        # Single statement: the row lock taken by the upsert serialises writers.
        stmt = insert(AIUsage).values(date=day, usage_type=USAGE_TYPE, count=by)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_ai_usage_date_type",
            set_={"count": AIUsage.count + by},
            where=AIUsage.count + by <= limit,
        ).returning(AIUsage.count)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            count = result.scalar_one_or_none()
            await session.commit()
            return count


class UsageTracker:
    """Owns the daily AI call counter and answers availability questions."""

    def __init__(
        self,
        store: UsageStore,
        daily_limit: int,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.daily_limit = daily_limit
        self.clock = clock
        self._lock = asyncio.Lock()

    async def get_usage(self) -> UsageSnapshot:
        today = day_key(self.clock())
        count = await self.store.read_count(today)
        return UsageSnapshot(date=today, count=count, daily_limit=self.daily_limit)

    async def increment(self, by: int = 1) -> None:
        if by <= 0:
            return
        # Read-modify-write is serialised within the process.
        async with self._lock:
            today = day_key(self.clock())
            count = await self.store.read_count(today)
            await self.store.write_count(today, count + by)
        logger.info("ai_usage_tracked", date=str(today), added=by, count=count + by)

    async def reserve(self, by: int = 1) -> bool:
        """Atomically claim ``by`` units of today's budget. False if they are not left."""
        if by <= 0:
            return True
        async with self._lock:
            today = day_key(self.clock())
            count = await self.store.add_within_limit(today, by, self.daily_limit)
        if count is None:
            logger.info("ai_usage_denied", date=str(today), requested=by, daily_limit=self.daily_limit)
            return False
        logger.info("ai_usage_tracked", date=str(today), added=by, count=count)
        return True

    async def check_availability(self) -> AIAvailability:
        usage = await self.get_usage()
        remaining = max(0, self.daily_limit - usage.count)
        return AIAvailability(
            available=remaining > 0,
            remaining=remaining,
            daily_limit=self.daily_limit,
        )
