from __future__ import annotations

import logging
from dataclasses import dataclass, field

import asyncpg

from app.core.config import Settings
from app.tickets.repository import (
    CategoryRepository,
    NotificationRepository,
    TicketRepository,
    UserRepository,
    ensure_schema,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TicketDatabase:
    """Owns the asyncpg pool and the repositories that share it.

    ``connect`` is idempotent; repositories are only available once it has
    run.
    """

    dsn: str
    min_size: int = 1
    max_size: int = 10
    _pool: asyncpg.Pool | None = field(default=None, repr=False)
    users: UserRepository | None = field(default=None, init=False)
    categories: CategoryRepository | None = field(default=None, init=False)
    tickets: TicketRepository | None = field(default=None, init=False)
    notifications: NotificationRepository | None = field(default=None, init=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TicketDatabase":
        return cls(
            dsn=settings.postgres_dsn,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
        )

    async def connect(self, *, create_schema: bool = True) -> "TicketDatabase":
        if self._pool is not None:
            return self

        self._pool = await asyncpg.create_pool(dsn=self.dsn, min_size=self.min_size, max_size=self.max_size)
        self.users = UserRepository(self._pool)
        self.categories = CategoryRepository(self._pool)
        self.tickets = TicketRepository(self._pool)
        self.notifications = NotificationRepository(self._pool)
        if create_schema:
            await ensure_schema(self.users, self.categories, self.tickets, self.notifications)
        logger.info("Connected to PostgreSQL (pool %d-%d)", self.min_size, self.max_size)
        return self

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        async with self._pool.acquire() as connection:
            await connection.execute("SELECT 1")
        return True

    async def close(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        self.users = self.categories = self.tickets = self.notifications = None
