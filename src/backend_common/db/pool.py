"""Asyncpg connection pool helpers."""
from __future__ import annotations

from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]

pool: asyncpg.Pool | None = None


class SettingsProtocol(Protocol):
    """Settings objects carrying database configuration."""

    database_url: Any
    db_pool_size: int


async def init_pool(database_url: str, pool_size: int) -> asyncpg.Pool:
    """Initialize the process-wide asyncpg pool (idempotent)."""
    global pool
    if pool is None:
        pool = await asyncpg.create_pool(dsn=database_url, max_size=pool_size)
    return pool


async def close_pool(_app: Any = None) -> None:
    """Close the pool on shutdown."""
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def get_pool() -> asyncpg.Pool:
    """Return the initialized pool."""
    if pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return pool


def create_pool_wrappers(settings: SettingsProtocol) -> tuple[Any, Any]:
    """Build aiohttp ``on_startup``/``on_cleanup`` hooks bound to ``settings``."""

    async def init_pool_wrapper(_app: Any = None) -> None:
        await init_pool(str(settings.database_url), settings.db_pool_size)

    async def close_pool_wrapper(_app: Any = None) -> None:
        await close_pool(_app)

    return init_pool_wrapper, close_pool_wrapper
