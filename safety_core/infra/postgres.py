"""Shared asyncpg pool used by the moderation repositories."""

from __future__ import annotations

from typing import Optional

import asyncpg

from safety_core.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			command_timeout=settings.postgres_command_timeout_seconds,
			# Tags sessions in pg_stat_activity
			server_settings={"application_name": settings.service_name},
		)
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is None:
		return
	pool, _pool = _pool, None
	await pool.close()
