from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from safety_core.moderation.domain.errors import ReportNotFound
from safety_core.moderation.domain.escalation import EscalationEngine, EscalationResult, choose_action
from safety_core.moderation.domain.models import (
    CommentReport,
    ContentType,
    EscalationAction,
    Report,
    ReportCategory,
    ReportPriority,
    ReportStatus,
    Resolution,
    ResolutionAction,
)
from safety_core.moderation.domain.repository import InMemoryReportRepository
from safety_core.moderation.domain.thresholds import EscalationThresholds
from safety_core.moderation.infra.streams import RedisEscalationPublisher

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_report(
    idx: int,
    *,
    reporter_id: str | None = None,
    content_id: str = "whisper-1",
    priority: ReportPriority = ReportPriority.MEDIUM,
    status: ReportStatus = ReportStatus.PENDING,
    category: ReportCategory = ReportCategory.SPAM,
    resolution: Resolution | None = None,
) -> Report:
    return Report(
        id=f"report-{idx}",
        content_id=content_id,
        reporter_id=reporter_id or f"reporter-{idx}",
        reporter_display_name="Reporter",
        reporter_reputation=60,
        category=category,
        priority=priority,
        status=status,
        reason="spam",
        created_at=NOW + timedelta(minutes=idx),
        updated_at=NOW + timedelta(minutes=idx),
        reputation_weight=1.0,
        resolution=resolution,
    )


class RecordingPublisher:
    def __init__(self) -> None:
        self.published: list[EscalationResult] = []

    async def publish(self, result: EscalationResult) -> None:
        self.published.append(result)


class BrokenPublisher:
    async def publish(self, result: EscalationResult) -> None:
        raise ConnectionError("redis unavailable")


async def _seed(repo: InMemoryReportRepository, reports: list[Report]) -> None:
    for report in reports:
        await repo.save(report)


@pytest.mark.asyncio
async def test_three_distinct_reporters_escalate_and_move_pending_reports() -> None:
    repo = InMemoryReportRepository()
    await _seed(repo, [make_report(i) for i in range(3)])
    engine = EscalationEngine(repo)

    result = await engine.check_automatic_escalation("whisper-1", ContentType.WHISPER)

    assert result.escalated
    assert result.action is EscalationAction.FLAGGED_FOR_REVIEW
    assert sorted(result.affected_reports) == ["report-0", "report-1", "report-2"]
    assert {r.status for r in repo.reports.values()} == {ReportStatus.UNDER_REVIEW}


@pytest.mark.asyncio
async def test_three_reports_from_one_reporter_do_not_escalate() -> None:
    repo = InMemoryReportRepository()
    categories = [ReportCategory.SPAM, ReportCategory.SCAM, ReportCategory.OTHER]
    await _seed(repo, [make_report(i, reporter_id="same", category=categories[i]) for i in range(3)])
    engine = EscalationEngine(repo)

    result = await engine.check_automatic_escalation("whisper-1")

    assert not result.escalated
    assert result.action is EscalationAction.NONE
    assert result.total_reports == 3
    assert result.unique_reporters == 1
    assert {r.status for r in repo.reports.values()} == {ReportStatus.PENDING}


@pytest.mark.asyncio
async def test_single_critical_report_escalates() -> None:
    repo = InMemoryReportRepository()
    await _seed(repo, [make_report(0, priority=ReportPriority.CRITICAL)])
    engine = EscalationEngine(repo)

    result = await engine.check_automatic_escalation("whisper-1")

    assert result.escalated
    assert result.action is EscalationAction.FLAGGED_FOR_REVIEW
    assert repo.reports["report-0"].status is ReportStatus.UNDER_REVIEW


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("count", "expected"),
    [
        (5, EscalationAction.AUTO_DELETE),
        (7, EscalationAction.AUTO_DELETE),
        (8, EscalationAction.DELETE_AND_BAN),
    ],
)
async def test_action_label_tracks_strongest_threshold(count: int, expected: EscalationAction) -> None:
    repo = InMemoryReportRepository()
    await _seed(repo, [make_report(i) for i in range(count)])
    engine = EscalationEngine(repo)

    result = await engine.check_automatic_escalation("whisper-1")

    assert result.action is expected


def test_auto_delete_needs_five_unique_reporters() -> None:
    thresholds = EscalationThresholds.default()
    assert choose_action(6, 4, thresholds) is EscalationAction.FLAGGED_FOR_REVIEW
    assert choose_action(9, 7, thresholds) is EscalationAction.AUTO_DELETE


@pytest.mark.asyncio
async def test_escalation_is_idempotent_for_reports_already_under_review() -> None:
    repo = InMemoryReportRepository()
    await _seed(
        repo,
        [
            make_report(0, status=ReportStatus.UNDER_REVIEW),
            make_report(1, status=ReportStatus.ESCALATED),
            make_report(2),
        ],
    )
    engine = EscalationEngine(repo)

    first = await engine.check_automatic_escalation("whisper-1")
    second = await engine.check_automatic_escalation("whisper-1")

    assert first.affected_reports == ["report-2"]
    assert second.escalated
    assert second.affected_reports == []
    assert repo.reports["report-1"].status is ReportStatus.ESCALATED


@pytest.mark.asyncio
async def test_comment_reports_are_evaluated_per_comment() -> None:
    repo = InMemoryReportRepository()
    for idx in range(3):
        await repo.save_comment_report(
            CommentReport(
                id=f"comment-report-{idx}",
                content_id="whisper-1",
                comment_id="comment-1",
                reporter_id=f"reporter-{idx}",
                reporter_display_name="Reporter",
                reporter_reputation=60,
                category=ReportCategory.HARASSMENT,
                priority=ReportPriority.HIGH,
                status=ReportStatus.PENDING,
                reason="rude",
                created_at=NOW,
                updated_at=NOW,
                reputation_weight=1.0,
            )
        )
    engine = EscalationEngine(repo)

    result = await engine.check_automatic_escalation("comment-1", ContentType.COMMENT)

    assert result.escalated
    assert result.content_type is ContentType.COMMENT
    assert {r.status for r in repo.comment_reports.values()} == {ReportStatus.UNDER_REVIEW}


@pytest.mark.asyncio
async def test_custom_thresholds_are_respected() -> None:
    repo = InMemoryReportRepository()
    await _seed(repo, [make_report(i) for i in range(3)])
    engine = EscalationEngine(repo, thresholds=EscalationThresholds(flag_for_review=4))

    result = await engine.check_automatic_escalation("whisper-1")

    assert not result.escalated


@pytest.mark.asyncio
async def test_escalated_results_are_published() -> None:
    repo = InMemoryReportRepository()
    await _seed(repo, [make_report(i) for i in range(3)])
    publisher = RecordingPublisher()
    engine = EscalationEngine(repo, publisher=publisher)

    await engine.check_automatic_escalation("whisper-1")
    await engine.check_automatic_escalation("whisper-2")

    assert [r.content_id for r in publisher.published] == ["whisper-1"]


@pytest.mark.asyncio
async def test_publish_failure_is_absorbed() -> None:
    repo = InMemoryReportRepository()
    await _seed(repo, [make_report(i) for i in range(3)])
    engine = EscalationEngine(repo, publisher=BrokenPublisher())

    result = await engine.check_automatic_escalation("whisper-1")

    assert result.escalated


@pytest.mark.asyncio
async def test_redis_publisher_writes_stream_entry(fake_redis) -> None:
    repo = InMemoryReportRepository()
    await _seed(repo, [make_report(i) for i in range(5)])
    engine = EscalationEngine(repo, publisher=RedisEscalationPublisher(fake_redis))

    await engine.check_automatic_escalation("whisper-1")

    entries = await fake_redis.xrange("mod:escalations")
    assert len(entries) == 1
    _entry_id, fields = entries[0]
    assert fields["action"] == "auto_delete"
    assert fields["content_id"] == "whisper-1"
    assert fields["unique_reporters"] == "5"


@pytest.mark.asyncio
async def test_manual_escalation_ignores_thresholds() -> None:
    repo = InMemoryReportRepository()
    await _seed(repo, [make_report(0)])
    engine = EscalationEngine(repo)

    updated = await engine.escalate_report("report-0")

    assert updated.status is ReportStatus.ESCALATED
    with pytest.raises(ReportNotFound):
        await engine.escalate_report("missing")


@pytest.mark.asyncio
async def test_user_level_escalation_counts_actioned_reports() -> None:
    repo = InMemoryReportRepository()

    def resolved(idx: int, action: ResolutionAction) -> Report:
        return make_report(
            idx,
            reporter_id="busy-reporter",
            content_id=f"whisper-{idx}",
            status=ReportStatus.RESOLVED,
            resolution=Resolution(action=action, reason="done", moderator_id="mod-1", timestamp=NOW),
        )

    await _seed(
        repo,
        [
            resolved(0, ResolutionAction.WARN),
            resolved(1, ResolutionAction.REJECT),
            resolved(2, ResolutionAction.DISMISS),
        ],
    )
    engine = EscalationEngine(repo)

    below = await engine.check_user_level_escalation("busy-reporter")
    assert not below.escalated

    await repo.save(resolved(3, ResolutionAction.BAN))
    above = await engine.check_user_level_escalation("busy-reporter")
    assert above.escalated
    assert above.action is EscalationAction.USER_ESCALATION
    assert sorted(above.affected_reports) == ["report-0", "report-1", "report-3"]


@pytest.mark.asyncio
async def test_escalation_stats() -> None:
    repo = InMemoryReportRepository()
    await _seed(
        repo,
        [
            make_report(0, status=ReportStatus.ESCALATED, category=ReportCategory.SCAM),
            make_report(1, status=ReportStatus.ESCALATED, category=ReportCategory.SCAM),
            make_report(2, status=ReportStatus.ESCALATED, category=ReportCategory.SPAM),
            make_report(3),
        ],
    )
    engine = EscalationEngine(repo)

    stats = await engine.get_escalation_stats()

    assert stats.total_escalations == 3
    assert stats.escalation_rate == 75.0
    assert stats.most_escalated_categories[0].category == "scam"
    assert stats.most_escalated_categories[0].count == 2
