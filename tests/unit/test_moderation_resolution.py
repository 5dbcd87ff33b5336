from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from safety_core.moderation.domain.content import InMemoryContentGateway
from safety_core.moderation.domain.errors import (
    CollaboratorFailure,
    InvalidResolutionAction,
    ReportAlreadyResolved,
    ReportNotFound,
)
from safety_core.moderation.domain.models import (
    CommentReport,
    ContentType,
    Report,
    ReportCategory,
    ReportPriority,
    ReportStatus,
    Resolution,
    ResolutionAction,
    ResolutionCommand,
    SuspensionType,
)
from safety_core.moderation.domain.repository import (
    InMemoryReportRepository,
    InMemoryResolutionCommandRepository,
    InMemorySuspensionRepository,
)
from safety_core.moderation.domain.reputation import InMemoryReputationRepository, ReputationLedger
from safety_core.moderation.domain.resolution import ResolutionEngine
from safety_core.moderation.domain.suspensions import SuspensionService

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FlakyContentGateway(InMemoryContentGateway):
    def __init__(self) -> None:
        super().__init__()
        self.fail_deletes = True

    async def delete_whisper(self, whisper_id: str) -> None:
        if self.fail_deletes:
            raise ConnectionError("content store offline")
        await super().delete_whisper(whisper_id)


class BlockingContentGateway(InMemoryContentGateway):
    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def delete_whisper(self, whisper_id: str) -> None:
        self.entered.set()
        await self.release.wait()
        await super().delete_whisper(whisper_id)


class Harness:
    def __init__(self, content: InMemoryContentGateway | None = None) -> None:
        self.reports = InMemoryReportRepository()
        self.suspension_repo = InMemorySuspensionRepository()
        self.reputation_repo = InMemoryReputationRepository()
        self.reputation = ReputationLedger(self.reputation_repo)
        self.content = content or InMemoryContentGateway()
        self.commands = InMemoryResolutionCommandRepository()
        self.suspensions = SuspensionService(self.suspension_repo, self.reputation)
        self.engine = ResolutionEngine(
            self.reports,
            suspensions=self.suspensions,
            reputation=self.reputation,
            content=self.content,
            commands=self.commands,
        )
        self.content.add_whisper("whisper-1", "author-1")
        self.content.add_comment("comment-1", "whisper-1", "commenter-1")

    async def score(self, user_id: str) -> int:
        return (await self.reputation.get_user_reputation(user_id)).score

    async def whisper_report(
        self,
        report_id: str = "report-1",
        content_id: str = "whisper-1",
        status: ReportStatus = ReportStatus.PENDING,
    ) -> Report:
        report = Report(
            id=report_id,
            content_id=content_id,
            reporter_id="reporter-1",
            reporter_display_name="Reporter",
            reporter_reputation=75,
            category=ReportCategory.SPAM,
            priority=ReportPriority.MEDIUM,
            status=status,
            reason="spam",
            created_at=NOW - timedelta(hours=2),
            updated_at=NOW - timedelta(hours=2),
            reputation_weight=1.5,
        )
        return await self.reports.save(report)

    async def comment_report(self, report_id: str = "comment-report-1") -> CommentReport:
        report = CommentReport(
            id=report_id,
            content_id="whisper-1",
            comment_id="comment-1",
            reporter_id="reporter-1",
            reporter_display_name="Reporter",
            reporter_reputation=75,
            category=ReportCategory.HARASSMENT,
            priority=ReportPriority.HIGH,
            status=ReportStatus.UNDER_REVIEW,
            reason="rude",
            created_at=NOW - timedelta(hours=1),
            updated_at=NOW - timedelta(hours=1),
            reputation_weight=1.5,
        )
        return await self.reports.save_comment_report(report)


def _resolution(action: ResolutionAction, reason: str = "policy violation") -> Resolution:
    return Resolution(action=action, reason=reason, moderator_id="mod-1", timestamp=NOW)


@pytest.mark.asyncio
async def test_reject_deletes_content_and_penalizes_author() -> None:
    harness = Harness()
    await harness.whisper_report()

    result = await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.REJECT), now=NOW)

    assert result.report.status is ReportStatus.RESOLVED
    assert result.report.reviewed_by == "mod-1"
    assert result.report.reviewed_at == NOW
    assert result.report.resolution.action is ResolutionAction.REJECT
    assert harness.content.deleted_whispers == ["whisper-1"]
    assert await harness.score("author-1") == 55
    assert "reporter-1" not in harness.reputation_repo.scores
    assert result.affected_users == ["author-1"]


@pytest.mark.asyncio
async def test_dismiss_penalizes_reporter_and_leaves_content() -> None:
    harness = Harness()
    await harness.whisper_report()

    await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.DISMISS), now=NOW)

    assert "whisper-1" in harness.content.whispers
    assert harness.content.deleted_whispers == []
    assert await harness.score("reporter-1") == 65
    assert "author-1" not in harness.reputation_repo.scores


@pytest.mark.asyncio
async def test_warn_creates_warning_without_reputation_change() -> None:
    harness = Harness()
    await harness.whisper_report()

    await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.WARN), now=NOW)

    suspensions = await harness.suspensions.get_user_suspensions("author-1")
    assert [s.type for s in suspensions] == [SuspensionType.WARNING]
    assert "author-1" not in harness.reputation_repo.scores
    status = await harness.suspensions.is_user_suspended("author-1", now=NOW)
    assert not status.suspended


@pytest.mark.asyncio
async def test_ban_suspends_author_for_seven_days_and_deletes_content() -> None:
    harness = Harness()
    await harness.whisper_report()

    await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.BAN), now=NOW)

    suspensions = await harness.suspensions.get_user_suspensions("author-1")
    assert len(suspensions) == 1
    assert suspensions[0].type is SuspensionType.TEMPORARY
    assert suspensions[0].end_date == NOW + timedelta(days=7)
    assert harness.content.deleted_whispers == ["whisper-1"]
    assert await harness.score("author-1") == 25


@pytest.mark.asyncio
async def test_flag_marks_whisper_without_deleting() -> None:
    harness = Harness()
    await harness.whisper_report()

    await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.FLAG), now=NOW)

    assert harness.content.whispers["whisper-1"].flagged
    assert harness.content.deleted_whispers == []


@pytest.mark.asyncio
async def test_missing_report_raises_not_found() -> None:
    harness = Harness()
    with pytest.raises(ReportNotFound):
        await harness.engine.resolve_report("missing", _resolution(ResolutionAction.WARN))


@pytest.mark.asyncio
async def test_second_resolution_is_rejected() -> None:
    harness = Harness()
    await harness.whisper_report()
    await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.DISMISS), now=NOW)

    with pytest.raises(ReportAlreadyResolved):
        await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.REJECT), now=NOW)

    stored = await harness.reports.get_by_id("report-1")
    assert stored.resolution.action is ResolutionAction.DISMISS
    assert "whisper-1" in harness.content.whispers


@pytest.mark.asyncio
async def test_comment_only_actions_are_refused_for_whisper_reports() -> None:
    harness = Harness()
    await harness.whisper_report()

    with pytest.raises(InvalidResolutionAction):
        await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.HIDE))

    stored = await harness.reports.get_by_id("report-1")
    assert stored.status is ReportStatus.PENDING


@pytest.mark.asyncio
async def test_comment_hide_and_delete() -> None:
    harness = Harness()
    await harness.comment_report("comment-report-1")
    await harness.comment_report("comment-report-2")

    await harness.engine.resolve_comment_report("comment-report-1", _resolution(ResolutionAction.HIDE), now=NOW)
    assert harness.content.comments["comment-1"].hidden

    await harness.engine.resolve_comment_report("comment-report-2", _resolution(ResolutionAction.DELETE), now=NOW)
    assert harness.content.deleted_comments == ["comment-1"]
    assert await harness.score("commenter-1") == 60


@pytest.mark.asyncio
async def test_missing_content_skips_side_effects() -> None:
    harness = Harness()
    await harness.whisper_report(content_id="whisper-gone")

    result = await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.REJECT), now=NOW)

    assert result.report.status is ReportStatus.RESOLVED
    assert result.affected_users == []
    assert harness.reputation_repo.scores == {}
    assert await harness.engine.pending_commands() == []


@pytest.mark.asyncio
async def test_collaborator_failure_leaves_report_resolved_and_can_roll_forward() -> None:
    content = FlakyContentGateway()
    harness = Harness(content)
    await harness.whisper_report()

    with pytest.raises(CollaboratorFailure) as excinfo:
        await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.REJECT), now=NOW)

    assert excinfo.value.operation == "resolve_report.delete_content"
    assert isinstance(excinfo.value.cause, ConnectionError)
    stored = await harness.reports.get_by_id("report-1")
    assert stored.status is ReportStatus.RESOLVED
    pending = await harness.engine.pending_commands()
    assert len(pending) == 1
    assert pending[0].status == "failed"
    assert "author-1" not in harness.reputation_repo.scores

    content.fail_deletes = False
    completed = await harness.engine.retry_pending_commands(now=NOW)

    assert completed == [pending[0].id]
    assert content.deleted_whispers == ["whisper-1"]
    assert await harness.score("author-1") == 55
    assert await harness.engine.pending_commands() == []


@pytest.mark.asyncio
async def test_resolution_stats_and_history() -> None:
    harness = Harness()
    await harness.whisper_report("report-1")
    await harness.whisper_report("report-2", content_id="whisper-2")
    await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.DISMISS), now=NOW)
    await harness.engine.resolve_report("report-2", _resolution(ResolutionAction.FLAG), now=NOW)

    stats = await harness.engine.get_resolution_stats()
    assert stats.total_resolutions == 2
    assert stats.by_action == {"dismiss": 1, "flag": 1}
    assert stats.average_resolution_hours == pytest.approx(2.0)
    assert stats.moderator_performance["mod-1"].total_resolutions == 2

    history = await harness.engine.get_user_resolution_history("reporter-1")
    assert len(history.reports_submitted) == 2
    assert len(history.reports_resolved) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [ReportStatus.UNDER_REVIEW, ReportStatus.ESCALATED])
async def test_reviewed_and_escalated_reports_can_be_resolved(status: ReportStatus) -> None:
    harness = Harness()
    await harness.whisper_report(status=status)

    result = await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.REJECT), now=NOW)

    assert result.report.status is ReportStatus.RESOLVED
    assert harness.content.deleted_whispers == ["whisper-1"]
    assert await harness.score("author-1") == 55


@pytest.mark.asyncio
async def test_dismissed_report_cannot_be_resolved() -> None:
    harness = Harness()
    await harness.whisper_report(status=ReportStatus.DISMISSED)

    with pytest.raises(ReportAlreadyResolved):
        await harness.engine.resolve_report("report-1", _resolution(ResolutionAction.REJECT), now=NOW)

    assert "whisper-1" in harness.content.whispers
    assert harness.reputation_repo.scores == {}


@pytest.mark.asyncio
async def test_retry_leaves_in_flight_resolution_alone() -> None:
    content = BlockingContentGateway()
    harness = Harness(content)
    await harness.whisper_report()

    resolving = asyncio.create_task(
        harness.engine.resolve_report("report-1", _resolution(ResolutionAction.REJECT), now=NOW)
    )
    await content.entered.wait()

    assert await harness.engine.retry_pending_commands(now=NOW) == []

    content.release.set()
    await resolving

    assert content.deleted_whispers == ["whisper-1"]
    assert await harness.score("author-1") == 55
    assert await harness.engine.pending_commands() == []


@pytest.mark.asyncio
async def test_retry_takes_over_abandoned_claim() -> None:
    harness = Harness()
    await harness.whisper_report()
    abandoned = ResolutionCommand(
        id="cmd-1",
        report_id="report-1",
        content_type=ContentType.WHISPER,
        action=ResolutionAction.REJECT,
        steps=("delete_content", "penalize_author"),
        created_at=NOW - timedelta(hours=1),
        target_id="whisper-1",
        reporter_id="reporter-1",
        moderator_id="mod-1",
        reason="abuse",
        author_id="author-1",
        completed_steps=["delete_content"],
        status="running",
        claimed_at=NOW - timedelta(hours=1),
    )
    await harness.commands.save_command(abandoned)

    assert await harness.engine.retry_pending_commands(now=NOW - timedelta(minutes=58)) == []
    assert await harness.engine.retry_pending_commands(now=NOW) == ["cmd-1"]

    assert harness.content.deleted_whispers == []
    assert await harness.score("author-1") == 55
    assert harness.commands.commands["cmd-1"].status == "completed"
