"""Shared asyncpg plumbing for the PostgreSQL subscription store."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List

import asyncpg  # type: ignore[import-untyped]
import structlog

from event_delivery_service.core.exceptions import RepositoryError

logger = structlog.get_logger(__name__)


class BaseRepository:
    """Pool access with driver errors surfaced as :class:`RepositoryError`."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        async with self._pool.acquire() as conn:
            try:
                yield conn
            except asyncpg.PostgresError as exc:
                logger.error("subscription_store_query_failed", error=str(exc))
                raise RepositoryError(str(exc)) from exc

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._connection() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args: Any) -> List[asyncpg.Record]:
        async with self._connection() as conn:
            return list(await conn.fetch(query, *args))
