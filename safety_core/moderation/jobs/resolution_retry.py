"""Background job that rolls forward interrupted resolutions."""

from __future__ import annotations

import time
from datetime import datetime, timezone

from safety_core.moderation.domain.resolution import ResolutionEngine
from safety_core.obs import metrics as obs_metrics

_JOB_NAME = "moderation-resolution-retry"


async def run(engine: ResolutionEngine, *, now: datetime | None = None) -> int:
    """Replay incomplete resolution commands and return how many finished."""

    now = now or datetime.now(timezone.utc)
    started = time.perf_counter()
    try:
        completed = await engine.retry_pending_commands(now=now)
    except Exception:
        obs_metrics.record_job_run(_JOB_NAME, result="error")
        raise
    obs_metrics.record_job_run(_JOB_NAME, result="success", duration_seconds=time.perf_counter() - started)
    return len(completed)
