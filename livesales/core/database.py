"""PostgreSQL connection pool and schema for interaction persistence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS live_session_interactions (
    id                    TEXT PRIMARY KEY,
    session_id            TEXT NOT NULL,
    message_id            TEXT NOT NULL,
    username              TEXT NOT NULL,
    user_message          TEXT NOT NULL,
    intent                TEXT NOT NULL,
    agent_response        TEXT,
    was_auto_responded    BOOLEAN NOT NULL DEFAULT FALSE,
    lead_score            INTEGER NOT NULL DEFAULT 0,
    matched_product_id    TEXT,
    requires_human_review BOOLEAN NOT NULL DEFAULT FALSE,
    skip_reason           TEXT,
    created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (session_id, message_id)
);

CREATE INDEX IF NOT EXISTS idx_live_session_interactions_session
    ON live_session_interactions (session_id, created_at);

CREATE TABLE IF NOT EXISTS live_session_leads (
    session_id          TEXT NOT NULL,
    username            TEXT NOT NULL,
    lead_score          INTEGER NOT NULL DEFAULT 0,
    status              TEXT NOT NULL DEFAULT 'NEW',
    interested_product  TEXT,
    first_seen_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (session_id, username)
);
"""


async def setup_database_schema(connection: asyncpg.Connection) -> None:
    """Create the interaction and lead tables if they do not exist."""
    await connection.execute(SCHEMA_SQL)
    logger.info("Database schema verified")


@dataclass
class PoolConfig:
    """Database pool configuration with sensible defaults."""

    min_size: int = 1
    max_size: int = 5
    timeout: float = 5.0
    command_timeout: float = 15.0
    max_retries: int = 3
    retry_delay: float = 3.0


class DatabaseManager:
    """Manages the PostgreSQL connection pool lifecycle."""

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None

    def _pool_kwargs(self) -> dict[str, Any]:
        cfg = self.config
        return {
            "dsn": self.database_url,
            "min_size": cfg.min_size,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
        }

    async def connect(self) -> None:
        """Initialize database connection pool with retry."""
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        cfg = self.config
        for attempt in range(1, cfg.max_retries + 1):
            try:
                self._pool = await asyncpg.create_pool(**self._pool_kwargs())

                async with self._pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                    await setup_database_schema(conn)

                logger.info(f"Database pool created and verified (size={cfg.min_size}-{cfg.max_size})")
                return
            except (OSError, asyncpg.PostgresError, asyncio.TimeoutError) as e:
                if self._pool is not None:
                    await self._pool.close()
                    self._pool = None
                if attempt >= cfg.max_retries:
                    logger.exception(
                        f"Database connection failed after {cfg.max_retries} attempts: "
                        f"{type(e).__name__}: {e or repr(e)}"
                    )
                    raise

                delay = cfg.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Database connection attempt {attempt}/{cfg.max_retries} failed: "
                    f"{type(e).__name__}: {e or repr(e)}, retrying in {delay}s..."
                )
                await asyncio.sleep(delay)

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self._pool is None:
            return

        pool, self._pool = self._pool, None
        await pool.close()
        logger.info("Database pool closed")

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the database connection pool. Raises if not initialized."""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool
