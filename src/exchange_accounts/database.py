"""
═══════════════════════════════════════════════════════════════════════════════
Exchange Accounts — PostgreSQL: пул соединений и миграции
═══════════════════════════════════════════════════════════════════════════════

Один пул asyncpg на процесс. Репозитории берут соединение через
``get_connection()``; при старте ``apply_migrations()`` прогоняет
``db/migrations/*.sql`` по порядку имён и запоминает применённые файлы
в ``_applied_migrations``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import asyncpg

from exchange_accounts.config import get_settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "db" / "migrations"

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    """
    Пул соединений к базе учётных записей (создаётся при первом вызове).

    Сессии работают в UTC: сроки токенов сравниваются с ``datetime.now(timezone.utc)``.
    """
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.database_pool_min,
            max_size=settings.database_pool_max,
            command_timeout=30,
            server_settings={"timezone": "UTC", "application_name": "exchange-accounts"},
        )
        logger.info(
            "Accounts DB pool ready (min=%d, max=%d)",
            settings.database_pool_min, settings.database_pool_max,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is None:
        return
    await _pool.close()
    _pool = None
    logger.info("Accounts DB pool closed")


@asynccontextmanager
async def get_connection() -> AsyncGenerator[asyncpg.Connection, None]:
    """Соединение из пула на время блока ``async with``."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        yield conn


async def apply_migrations(pool: asyncpg.Pool) -> list[str]:
    """
    Применяет ещё не применённые SQL-миграции.

    Каждый файл выполняется в своей транзакции вместе с отметкой в
    ``_applied_migrations``. Возвращает имена применённых файлов.
    """
    sql_files = sorted(MIGRATIONS_DIR.glob("*.sql")) if MIGRATIONS_DIR.is_dir() else []
    if not sql_files:
        logger.info("No SQL migrations found in %s", MIGRATIONS_DIR)
        return []

    applied_now: list[str] = []
    async with pool.acquire() as conn:
        await conn.execute(
            "CREATE TABLE IF NOT EXISTS _applied_migrations ("
            " filename TEXT PRIMARY KEY,"
            " applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
        )
        done = {r["filename"] for r in await conn.fetch("SELECT filename FROM _applied_migrations")}

        for sql_file in sql_files:
            if sql_file.name in done:
                continue
            async with conn.transaction():
                await conn.execute(sql_file.read_text(encoding="utf-8"))
                await conn.execute(
                    "INSERT INTO _applied_migrations (filename) VALUES ($1)", sql_file.name,
                )
            logger.info("Migration applied: %s", sql_file.name)
            applied_now.append(sql_file.name)

    logger.info(
        "Accounts schema up to date (%d checked, %d applied)", len(sql_files), len(applied_now),
    )
    return applied_now


async def check_connection() -> bool:
    """``SELECT 1`` через пул; для health check."""
    try:
        async with get_connection() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except (OSError, asyncpg.PostgresError) as exc:
        logger.error("Accounts DB health check failed: %s", exc)
        return False
