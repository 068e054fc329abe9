"""Asyncpg connection pool helpers for the optional history sink."""
from __future__ import annotations

import asyncpg  # type: ignore[import-untyped]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sensor_data (
    id BIGSERIAL PRIMARY KEY,
    timestamp TIMESTAMPTZ NOT NULL,
    temperature DOUBLE PRECISION NOT NULL,
    humidity DOUBLE PRECISION NOT NULL,
    soil_moisture DOUBLE PRECISION NOT NULL,
    soil_moisture_raw DOUBLE PRECISION,
    light_level DOUBLE PRECISION NOT NULL,
    light_level_raw DOUBLE PRECISION,
    rain_intensity DOUBLE PRECISION NOT NULL,
    rain_intensity_raw DOUBLE PRECISION,
    pump_status BOOLEAN NOT NULL,
    auto_mode BOOLEAN NOT NULL,
    irrigation_score INTEGER,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


async def create_pool(database_url: str, pool_size: int) -> asyncpg.Pool:
    """Create a pool and make sure the history table exists."""
    pool = await asyncpg.create_pool(dsn=database_url, min_size=1, max_size=pool_size)
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)
    return pool


async def close_pool(pool: asyncpg.Pool | None) -> None:
    if pool is not None:
        await pool.close()
