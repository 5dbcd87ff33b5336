"""Process entry point: wires storage, starts moderation workers and waits."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from safety_core import obs
from safety_core.infra import postgres
from safety_core.infra.redis import redis_client
from safety_core.moderation import configure_postgres as configure_moderation
from safety_core.moderation import spawn_workers as spawn_moderation_workers
from safety_core.settings import settings

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "config" / "moderation.yml"


@asynccontextmanager
async def lifespan() -> AsyncIterator[list[asyncio.Task]]:
	obs.init()
	pool = await postgres.init_pool()
	config_path = settings.escalation_config_path or (str(_DEFAULT_CONFIG) if _DEFAULT_CONFIG.exists() else None)
	configure_moderation(pool, redis_client, config_path=config_path)
	worker_tasks: list[asyncio.Task] = []
	if settings.workers_enabled:
		worker_tasks.extend(spawn_moderation_workers(redis_client))
	logger.info("safety core started", extra={"workers": len(worker_tasks)})
	try:
		yield worker_tasks
	finally:
		for task in worker_tasks:
			task.cancel()
		if worker_tasks:
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		await postgres.close_pool()


async def serve() -> None:
	async with lifespan():
		await asyncio.Event().wait()


def main() -> None:
	try:
		asyncio.run(serve())
	except KeyboardInterrupt:
		pass


if __name__ == "__main__":
	main()
