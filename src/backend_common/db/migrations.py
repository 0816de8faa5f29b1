"""SQL migration runner used as an aiohttp startup hook."""
from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Protocol

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

_CONNECT_ATTEMPTS = 5
_CONNECT_RETRY_DELAY_SECONDS = 2.0


class SettingsProtocol(Protocol):
    """Settings objects with a database URL."""

    database_url: Any


def load_migrations(migrations_dir: Path) -> dict[str, Path]:
    """Return ``{version: path}`` for every ``*.sql`` file, ordered by name."""
    migrations: dict[str, Path] = {}
    for path in sorted(migrations_dir.glob("*.sql")):
        version = path.stem
        if version in migrations:
            raise ValueError(f"Duplicate migration version detected: {version}")
        migrations[version] = path
    return migrations


def checksum(sql: str) -> str:
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


async def _connect(database_url: str) -> asyncpg.Connection | None:
    for attempt in range(1, _CONNECT_ATTEMPTS + 1):
        try:
            return await asyncpg.connect(database_url)
        except (OSError, asyncpg.PostgresError) as exc:
            logger.warning(
                "migrations_connect_failed",
                attempt=attempt,
                max_attempts=_CONNECT_ATTEMPTS,
                error=str(exc),
            )
            if attempt < _CONNECT_ATTEMPTS:
                await asyncio.sleep(_CONNECT_RETRY_DELAY_SECONDS)
    return None


async def apply_migrations(conn: asyncpg.Connection, migrations: dict[str, Path]) -> int:
    """Apply pending migrations in order; returns how many were applied.

    Raises ``RuntimeError`` when an applied file was edited afterwards.
    """
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    applied = {row["version"]: row["checksum"] for row in rows}

    count = 0
    for version, path in migrations.items():
        sql = path.read_text(encoding="utf-8")
        digest = checksum(sql)
        if version in applied:
            if applied[version] != digest:
                raise RuntimeError(
                    f"Checksum mismatch for {version}: {applied[version]} (db) != {digest} (file)"
                )
            continue
        logger.info("migration_applying", version=version)
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                version,
                digest,
            )
        count += 1
    return count


def create_migration_runner(
    settings: SettingsProtocol,
    possible_paths: Iterable[Path],
) -> Callable[[web.Application], Awaitable[None]]:
    """Create an ``on_startup`` hook applying the first migrations dir that exists."""
    candidates = list(possible_paths)

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        migrations_dir = next((p for p in candidates if p.exists()), None)
        if migrations_dir is None:
            logger.warning("migrations_dir_missing", tried=[str(p) for p in candidates])
            return

        migrations = load_migrations(migrations_dir)
        if not migrations:
            logger.info("migrations_none_found", path=str(migrations_dir))
            return

        conn = await _connect(str(settings.database_url))
        if conn is None:
            logger.error("migrations_skipped", reason="database unreachable")
            return
        try:
            applied = await apply_migrations(conn, migrations)
        finally:
            await conn.close()
        logger.info("migrations_done", applied=applied, total=len(migrations))

    return apply_migrations_on_startup
