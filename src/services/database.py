"""Postgres connection pool.

Uses ``asyncpg`` for direct database access.  The pool is created once at app
startup by the service container and handed to the store; nothing else
reaches for it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from src.config import Settings

logger = logging.getLogger("scalesync.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS weights (
    log_id      BIGINT PRIMARY KEY,
    date        DATE NOT NULL,
    time        TEXT NOT NULL,
    weight      DOUBLE PRECISION NOT NULL,
    recorded_at TIMESTAMPTZ NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS weights_date_idx ON weights (date);

CREATE TABLE IF NOT EXISTS energy (
    record_key  TEXT PRIMARY KEY,
    kind        TEXT NOT NULL,
    period      TEXT NOT NULL,
    day         DATE NOT NULL,
    recorded_at TIMESTAMPTZ NOT NULL,
    energy_kj   DOUBLE PRECISION NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS energy_kind_day_idx ON energy (kind, period, day);
"""


async def create_pool(settings: Settings) -> asyncpg.Pool:
    """Create the asyncpg connection pool and make sure the tables exist."""
    pool = await asyncpg.create_pool(
        settings.database_url,
        min_size=1,
        max_size=10,
        command_timeout=30,
    )
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA)
    logger.info("Database pool initialized (min=1, max=10)")
    return pool


async def close_pool(pool: asyncpg.Pool) -> None:
    """Drain the pool. Call at app shutdown."""
    await pool.close()
    logger.info("Database pool closed")


@asynccontextmanager
async def get_connection(pool: asyncpg.Pool) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection with an open transaction.

    Usage::

        async with get_connection(pool) as conn:
            rows = await conn.fetch("SELECT * FROM weights WHERE date = $1", today)
    """
    async with pool.acquire() as conn:
        async with conn.transaction():
            yield conn
