"""Utilities for wiring moderation workers into an event loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from redis.asyncio import Redis

from safety_core.infra.redis import RedisProxy
from safety_core.moderation.domain.container import (
    get_content_gateway,
    get_reputation,
    get_resolution_engine,
    get_suspension_service,
)
from safety_core.moderation.jobs import resolution_retry, suspension_expiry
from safety_core.moderation.workers.escalation_worker import EscalationWorker
from safety_core.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class PeriodicJob:
    """Adapts a ``jobs.*.run`` coroutine to the worker ``run_once`` shape."""

    name: str
    job: Callable[[], Awaitable[object]]

    async def run_once(self) -> None:
        try:
            await self.job()
        except Exception:  # noqa: BLE001 - the loop retries on the next tick
            logger.exception("periodic job failed", extra={"job": self.name})


async def _run_forever(worker, delay: float) -> None:
    while True:
        await worker.run_once()
        await asyncio.sleep(delay)


def spawn_workers(
    redis_client: Redis | RedisProxy,
    *,
    escalation_stream: str | None = None,
    poll_interval: float = 0.1,
    expiry_interval: float | None = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Iterable[asyncio.Task]:
    """Create asyncio tasks for the escalation worker, the expiry sweep and resolution roll-forward."""

    event_loop = loop or asyncio.get_event_loop()
    suspensions = get_suspension_service()
    resolution = get_resolution_engine()
    escalations = EscalationWorker(
        redis=redis_client,
        content=get_content_gateway(),
        suspensions=suspensions,
        reputation=get_reputation(),
        stream_key=escalation_stream or settings.escalation_stream,
    )
    sweep_every = expiry_interval if expiry_interval is not None else settings.expiry_sweep_interval_seconds
    expiry = PeriodicJob("suspension-expiry", lambda: suspension_expiry.run(suspensions))
    retry = PeriodicJob("resolution-retry", lambda: resolution_retry.run(resolution))
    return [
        event_loop.create_task(_run_forever(escalations, poll_interval), name="moderation-escalations"),
        event_loop.create_task(_run_forever(expiry, sweep_every), name="moderation-suspension-expiry"),
        event_loop.create_task(_run_forever(retry, sweep_every), name="moderation-resolution-retry"),
    ]
