from __future__ import annotations

from unittest.mock import MagicMock

import asyncpg
import pytest

from safety_core import main


@pytest.mark.asyncio
async def test_lifespan_wires_moderation_and_closes_pool(monkeypatch) -> None:
    pool = MagicMock(spec=asyncpg.Pool)
    calls: list[str] = []
    configured: dict[str, object] = {}

    async def fake_init_pool():
        calls.append("init")
        return pool

    async def fake_close_pool():
        calls.append("close")

    def fake_configure(pool_arg, redis_arg, *, config_path=None):
        configured.update(pool=pool_arg, redis=redis_arg, config_path=config_path)

    monkeypatch.setattr(main.obs, "init", lambda: calls.append("obs"))
    monkeypatch.setattr(main.postgres, "init_pool", fake_init_pool)
    monkeypatch.setattr(main.postgres, "close_pool", fake_close_pool)
    monkeypatch.setattr(main, "configure_moderation", fake_configure)
    monkeypatch.setattr(main.settings, "workers_enabled", False)

    async with main.lifespan() as tasks:
        assert tasks == []
        assert configured["pool"] is pool
        assert configured["redis"] is main.redis_client
        assert str(configured["config_path"]).endswith("moderation.yml")

    assert calls == ["obs", "init", "close"]
