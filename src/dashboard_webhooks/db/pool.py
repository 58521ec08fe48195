"""Asyncpg connection pool helpers."""
from __future__ import annotations

from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]


class SettingsProtocol(Protocol):
    """Protocol for settings objects with database configuration."""

    database_url: Any
    db_pool_size: int


async def create_pool(settings: SettingsProtocol) -> asyncpg.Pool:
    """Open a pool sized from settings. The caller owns and closes it."""
    return await asyncpg.create_pool(
        dsn=str(settings.database_url),
        max_size=settings.db_pool_size,
    )


async def close_pool(pool: asyncpg.Pool | None) -> None:
    if pool is not None:
        await pool.close()
