"""Threshold-based escalation of reported content."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from safety_core.moderation.domain.errors import CollaboratorFailure, ReportNotFound
from safety_core.moderation.domain.models import (
    AnyReport,
    ContentType,
    EscalationAction,
    ReportFilters,
    ReportPriority,
    ReportStatus,
    ResolutionAction,
)
from safety_core.moderation.domain.repository import ReportRepository
from safety_core.moderation.domain.thresholds import EscalationThresholds
from safety_core.obs import metrics

logger = logging.getLogger(__name__)

USER_ESCALATION_MIN_ACTIONED = 3


@dataclass(slots=True)
class EscalationResult:
    escalated: bool
    reason: str
    action: EscalationAction
    timestamp: datetime
    affected_reports: list[str] = field(default_factory=list)
    content_id: Optional[str] = None
    content_type: Optional[ContentType] = None
    total_reports: int = 0
    unique_reporters: int = 0


@dataclass(slots=True)
class CategoryCount:
    category: str
    count: int
    percentage: float


@dataclass(slots=True)
class EscalationStats:
    total_escalations: int
    under_review: int
    escalation_rate: float
    most_escalated_categories: list[CategoryCount]


class EscalationPublisher(Protocol):
    async def publish(self, result: EscalationResult) -> None:
        ...


def choose_action(total: int, unique: int, thresholds: EscalationThresholds) -> EscalationAction:
    """Strongest advisory label the counts support once escalation is decided."""

    if total >= thresholds.delete_and_temp_ban and unique >= thresholds.delete_and_ban_unique_min:
        return EscalationAction.DELETE_AND_BAN
    if total >= thresholds.auto_delete and unique >= thresholds.auto_delete_unique_min:
        return EscalationAction.AUTO_DELETE
    return EscalationAction.FLAGGED_FOR_REVIEW


class EscalationEngine:
    """Re-evaluates a target's full report set and advances pending reports.

    The returned action is advisory; deletion and bans happen in the escalation worker
    or through a moderator resolution.
    """

    def __init__(
        self,
        repository: ReportRepository,
        *,
        thresholds: EscalationThresholds | None = None,
        publisher: EscalationPublisher | None = None,
    ) -> None:
        self._repo = repository
        self._thresholds = thresholds or EscalationThresholds.default()
        self._publisher = publisher

    @property
    def thresholds(self) -> EscalationThresholds:
        return self._thresholds

    async def _reports_for(self, target_id: str, content_type: ContentType) -> Sequence[AnyReport]:
        match content_type:
            case ContentType.WHISPER:
                return await self._repo.get_with_filters(ReportFilters(content_id=target_id))
            case ContentType.COMMENT:
                return await self._repo.get_comment_reports_with_filters(ReportFilters(comment_id=target_id))
        raise ValueError(f"unsupported content type: {content_type!r}")

    async def _advance(self, report: AnyReport, status: ReportStatus, now: datetime) -> None:
        changes = {"status": status, "updated_at": now}
        match report.content_type:
            case ContentType.WHISPER:
                await self._repo.update(report.id, changes)
            case ContentType.COMMENT:
                await self._repo.update_comment_report(report.id, changes)

    async def check_automatic_escalation(
        self,
        target_id: str,
        content_type: ContentType | str = ContentType.WHISPER,
        *,
        now: datetime | None = None,
    ) -> EscalationResult:
        now = now or datetime.now(timezone.utc)
        content_type = ContentType(content_type)
        try:
            reports = await self._reports_for(target_id, content_type)
        except Exception as exc:
            raise CollaboratorFailure("check_automatic_escalation", exc) from exc

        total = len(reports)
        unique = len({report.reporter_id for report in reports})
        has_critical = any(report.priority is ReportPriority.CRITICAL for report in reports)
        result = EscalationResult(
            escalated=False,
            reason="Escalation thresholds not met",
            action=EscalationAction.NONE,
            timestamp=now,
            content_id=target_id,
            content_type=content_type,
            total_reports=total,
            unique_reporters=unique,
        )

        limits = self._thresholds
        if has_critical:
            result.reason = "Critical priority report detected"
        elif total >= limits.flag_for_review and unique >= limits.unique_reporters_min:
            result.reason = f"{total} reports from {unique} unique reporters"
        else:
            metrics.MOD_ESCALATIONS_TOTAL.labels(action=EscalationAction.NONE.value).inc()
            return result

        result.escalated = True
        result.action = choose_action(total, unique, limits)
        for report in reports:
            if report.status is not ReportStatus.PENDING:
                continue
            try:
                await self._advance(report, ReportStatus.UNDER_REVIEW, now)
            except Exception as exc:
                raise CollaboratorFailure("check_automatic_escalation", exc) from exc
            result.affected_reports.append(report.id)

        metrics.MOD_ESCALATIONS_TOTAL.labels(action=result.action.value).inc()
        logger.info(
            "content escalated",
            extra={
                "target_id": target_id,
                "content_type": content_type.value,
                "action": result.action.value,
                "total_reports": total,
                "unique_reporters": unique,
                "affected": len(result.affected_reports),
            },
        )
        await self._publish(result)
        return result

    async def _publish(self, result: EscalationResult) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher.publish(result)
        except Exception:  # noqa: BLE001 - the escalation itself is already recorded
            metrics.MOD_ESCALATION_FAILURES_TOTAL.labels(stage="publish").inc()
            logger.exception("failed to publish escalation", extra={"target_id": result.content_id})

    async def escalate_report(
        self,
        report_id: str,
        content_type: ContentType | str = ContentType.WHISPER,
        *,
        now: datetime | None = None,
    ) -> AnyReport:
        """Manual escalation of a single report, ignoring thresholds."""

        now = now or datetime.now(timezone.utc)
        content_type = ContentType(content_type)
        changes = {"status": ReportStatus.ESCALATED, "updated_at": now}
        match content_type:
            case ContentType.WHISPER:
                if await self._repo.get_by_id(report_id) is None:
                    raise ReportNotFound(report_id)
                updated = await self._repo.update(report_id, changes)
            case ContentType.COMMENT:
                if await self._repo.get_comment_report(report_id) is None:
                    raise ReportNotFound(report_id)
                updated = await self._repo.update_comment_report(report_id, changes)
        metrics.MOD_ESCALATIONS_TOTAL.labels(action=EscalationAction.ESCALATED.value).inc()
        logger.info("report escalated manually", extra={"report_id": report_id, "content_type": content_type.value})
        return updated

    async def check_user_level_escalation(self, user_id: str, *, now: datetime | None = None) -> EscalationResult:
        """Flag reporters whose reports repeatedly led to action."""

        now = now or datetime.now(timezone.utc)
        try:
            reports = await self._repo.get_by_reporter(user_id)
        except Exception as exc:
            raise CollaboratorFailure("check_user_level_escalation", exc) from exc
        actioned = [
            report
            for report in reports
            if report.status is ReportStatus.RESOLVED
            and report.resolution is not None
            and report.resolution.action is not ResolutionAction.DISMISS
        ]
        if len(actioned) < USER_ESCALATION_MIN_ACTIONED:
            return EscalationResult(
                escalated=False,
                reason="User escalation threshold not met",
                action=EscalationAction.NONE,
                timestamp=now,
            )
        metrics.MOD_ESCALATIONS_TOTAL.labels(action=EscalationAction.USER_ESCALATION.value).inc()
        logger.info("user escalation threshold reached", extra={"user_id": user_id, "actioned": len(actioned)})
        return EscalationResult(
            escalated=True,
            reason=f"User has {len(actioned)} reports with actions",
            action=EscalationAction.USER_ESCALATION,
            timestamp=now,
            affected_reports=[report.id for report in actioned],
            total_reports=len(reports),
        )

    async def get_escalation_stats(self) -> EscalationStats:
        reports = list(await self._repo.get_all()) + list(await self._repo.get_all_comment_reports())
        escalated = [report for report in reports if report.status is ReportStatus.ESCALATED]
        under_review = sum(1 for report in reports if report.status is ReportStatus.UNDER_REVIEW)
        rate = (len(escalated) / len(reports) * 100) if reports else 0.0
        counts = Counter(report.category.value for report in escalated)
        ranked = [
            CategoryCount(category=category, count=count, percentage=count / len(escalated) * 100)
            for category, count in counts.most_common()
        ]
        return EscalationStats(
            total_escalations=len(escalated),
            under_review=under_review,
            escalation_rate=rate,
            most_escalated_categories=ranked,
        )
