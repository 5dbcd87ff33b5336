"""Background job that deactivates lapsed suspensions."""

from __future__ import annotations

import time
from datetime import datetime, timezone

from safety_core.moderation.domain.suspensions import ExpirySweepResult, SuspensionService
from safety_core.obs import metrics as obs_metrics

_JOB_NAME = "moderation-suspension-expiry"


async def run(service: SuspensionService, *, now: datetime | None = None) -> ExpirySweepResult:
    """Run a single expiry sweep."""

    now = now or datetime.now(timezone.utc)
    started = time.perf_counter()
    try:
        result = await service.check_suspension_expiration(now=now)
    except Exception:
        obs_metrics.record_job_run(_JOB_NAME, result="error")
        raise
    outcome = "partial" if result.failed else "success"
    obs_metrics.record_job_run(_JOB_NAME, result=outcome, duration_seconds=time.perf_counter() - started)
    return result
