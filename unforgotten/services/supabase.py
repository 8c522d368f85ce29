"""Supabase Postgres access with RLS context.

Every connection runs inside a transaction where ``app.current_user_id``
and ``app.current_account_id`` are set transaction-locally (``set_config(...,
true)``, the parameterised form of ``SET LOCAL``), so Row-Level Security
policies see the signed-in identity.

Uses ``asyncpg`` directly since the Supabase Python client doesn't support
SET LOCAL session variables.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from unforgotten.config import Settings, get_settings

logger = logging.getLogger("unforgotten.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.supabase_db_url,
        min_size=1,
        max_size=5,
        command_timeout=s.gateway_timeout_seconds,
    )
    logger.info("Database pool initialized (min=1, max=5)")
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized; call init_pool() first")
    return _pool


async def ensure_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Return the pool, creating it on first use (e.g. after starting offline)."""
    if _pool is None:
        return await init_pool(settings)
    return _pool


@asynccontextmanager
async def get_connection(
    user_id: uuid.UUID | None = None,
    account_id: uuid.UUID | None = None,
    pool: asyncpg.Pool | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection with RLS session variables set.

    Usage::

        async with get_connection(user_id=session.user_id, account_id=acct) as conn:
            rows = await conn.fetch("SELECT * FROM profiles WHERE account_id = $1", acct)

    The session variables are scoped to the current transaction so they
    disappear automatically when the connection is returned to the pool.
    """
    pool = pool or get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if user_id:
                await conn.execute(
                    "SELECT set_config('app.current_user_id', $1, true)", str(user_id)
                )
            if account_id:
                await conn.execute(
                    "SELECT set_config('app.current_account_id', $1, true)", str(account_id)
                )
            yield conn
