from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from safety_core.moderation.domain.content import InMemoryContentGateway
from safety_core.moderation.domain.errors import CollaboratorFailure
from safety_core.moderation.domain.models import (
    Report,
    ReportCategory,
    ReportPriority,
    ReportStatus,
    Resolution,
    ResolutionAction,
)
from safety_core.moderation.domain.repository import InMemoryReportRepository, InMemorySuspensionRepository
from safety_core.moderation.domain.reputation import InMemoryReputationRepository, ReputationLedger
from safety_core.moderation.domain.resolution import ResolutionEngine
from safety_core.moderation.domain.suspensions import SuspensionService, TemporaryTerm
from safety_core.moderation.jobs import resolution_retry, suspension_expiry
from safety_core.moderation.workers.runner import PeriodicJob

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class OnceBrokenGateway(InMemoryContentGateway):
    def __init__(self) -> None:
        super().__init__()
        self.broken = True

    async def flag_whisper(self, whisper_id: str, reason: str) -> None:
        if self.broken:
            raise TimeoutError("content store slow")
        await super().flag_whisper(whisper_id, reason)


@pytest.mark.asyncio
async def test_suspension_expiry_job_runs_sweep() -> None:
    reputation_repo = InMemoryReputationRepository()
    service = SuspensionService(InMemorySuspensionRepository(), ReputationLedger(reputation_repo))
    created = await service.create_suspension(
        user_id="user-1", reason="spam", term=TemporaryTerm(timedelta(hours=1)), now=NOW
    )

    result = await suspension_expiry.run(service, now=NOW + timedelta(hours=2))

    assert result.expired == [created.id]
    assert result.restored == [created.id]
    assert reputation_repo.scores["user-1"].score == 35


@pytest.mark.asyncio
async def test_resolution_retry_job_rolls_forward() -> None:
    reports = InMemoryReportRepository()
    await reports.save(
        Report(
            id="report-1",
            content_id="whisper-1",
            reporter_id="reporter-1",
            reporter_display_name="Reporter",
            reporter_reputation=75,
            category=ReportCategory.SPAM,
            priority=ReportPriority.MEDIUM,
            status=ReportStatus.PENDING,
            reason="spam",
            created_at=NOW,
            updated_at=NOW,
            reputation_weight=1.5,
        )
    )
    content = OnceBrokenGateway()
    content.add_whisper("whisper-1", "author-1")
    reputation = ReputationLedger(InMemoryReputationRepository())
    engine = ResolutionEngine(
        reports,
        suspensions=SuspensionService(InMemorySuspensionRepository(), reputation),
        reputation=reputation,
        content=content,
    )
    resolution = Resolution(action=ResolutionAction.FLAG, reason="borderline", moderator_id="mod-1", timestamp=NOW)
    with pytest.raises(CollaboratorFailure):
        await engine.resolve_report("report-1", resolution, now=NOW)

    assert await resolution_retry.run(engine, now=NOW) == 0
    content.broken = False
    assert await resolution_retry.run(engine, now=NOW) == 1
    assert content.whispers["whisper-1"].flagged


@pytest.mark.asyncio
async def test_periodic_job_absorbs_failures() -> None:
    calls: list[str] = []

    async def explode() -> None:
        calls.append("ran")
        raise RuntimeError("boom")

    job = PeriodicJob("explode", explode)
    await job.run_once()
    await job.run_once()

    assert calls == ["ran", "ran"]
