"""Report intake with per-reporter deduplication."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence
from uuid import uuid4

from safety_core.moderation.domain import statistics
from safety_core.moderation.domain.errors import (
    CollaboratorFailure,
    InvalidStatusTransition,
    ReportNotFound,
    ReporterBanned,
)
from safety_core.moderation.domain.escalation import EscalationEngine
from safety_core.moderation.domain.models import (
    STATUS_TRANSITIONS,
    AnyReport,
    CommentReport,
    ContentType,
    Report,
    ReportCategory,
    ReportFilters,
    ReportStatus,
    ReputationLevel,
)
from safety_core.moderation.domain.priority import PriorityCalculator, escalate_priority
from safety_core.moderation.domain.repository import ReportRepository
from safety_core.moderation.domain.reputation import ReputationGateway
from safety_core.obs import metrics

logger = logging.getLogger(__name__)

MERGE_SEPARATOR = "\n\n--- Additional Report ---\n"

# Statuses that stamp reviewed_at / reviewed_by
_REVIEW_STATUSES = frozenset({ReportStatus.UNDER_REVIEW, ReportStatus.RESOLVED})


def merge_reasons(existing: str, new: str) -> str:
    return f"{existing}{MERGE_SEPARATOR}{new}"


@dataclass
class ReportService:
    repository: ReportRepository
    reputation: ReputationGateway
    escalation: EscalationEngine
    calculator: PriorityCalculator = field(default_factory=PriorityCalculator)

    async def submit_report(
        self,
        *,
        content_id: str,
        reporter_id: str,
        reporter_display_name: str,
        category: ReportCategory | str,
        reason: str,
        evidence: Optional[str] = None,
        now: datetime | None = None,
    ) -> Report:
        started = time.perf_counter()
        now = now or datetime.now(timezone.utc)
        category = ReportCategory(category)
        reputation = await self._reporter_reputation(reporter_id, ContentType.WHISPER)

        try:
            existing = await self.repository.get_with_filters(
                ReportFilters(content_id=content_id, reporter_id=reporter_id, category=category)
            )
        except Exception as exc:
            raise CollaboratorFailure("submit_report", exc) from exc

        if existing:
            report = await self._merge(existing[0], reason, now)
            outcome = "merged"
        else:
            report = Report(
                id=str(uuid4()),
                content_id=content_id,
                reporter_id=reporter_id,
                reporter_display_name=reporter_display_name,
                reporter_reputation=reputation.score,
                category=category,
                priority=self.calculator.calculate_priority(reputation, category),
                status=ReportStatus.PENDING,
                reason=reason,
                evidence=evidence,
                created_at=now,
                updated_at=now,
                reputation_weight=self.calculator.calculate_reputation_weight(reputation),
            )
            try:
                report = await self.repository.save(report)
            except Exception as exc:
                raise CollaboratorFailure("submit_report", exc) from exc
            outcome = "created"

        metrics.MOD_REPORTS_TOTAL.labels(content_type=ContentType.WHISPER.value, outcome=outcome).inc()
        logger.info(
            "report submitted",
            extra={"report_id": report.id, "content_id": content_id, "outcome": outcome, "priority": report.priority.value},
        )
        await self._evaluate_escalation(content_id, ContentType.WHISPER)
        metrics.MOD_REPORT_INTAKE_SECONDS.observe(time.perf_counter() - started)
        return report

    async def submit_comment_report(
        self,
        *,
        comment_id: str,
        content_id: str,
        reporter_id: str,
        reporter_display_name: str,
        category: ReportCategory | str,
        reason: str,
        evidence: Optional[str] = None,
        now: datetime | None = None,
    ) -> CommentReport:
        started = time.perf_counter()
        now = now or datetime.now(timezone.utc)
        category = ReportCategory(category)
        reputation = await self._reporter_reputation(reporter_id, ContentType.COMMENT)

        try:
            existing = await self.repository.get_comment_reports_with_filters(
                ReportFilters(comment_id=comment_id, reporter_id=reporter_id, category=category)
            )
        except Exception as exc:
            raise CollaboratorFailure("submit_comment_report", exc) from exc

        if existing:
            report = await self._merge(existing[0], reason, now)
            outcome = "merged"
        else:
            report = CommentReport(
                id=str(uuid4()),
                content_id=content_id,
                comment_id=comment_id,
                reporter_id=reporter_id,
                reporter_display_name=reporter_display_name,
                reporter_reputation=reputation.score,
                category=category,
                priority=self.calculator.calculate_priority(reputation, category),
                status=ReportStatus.PENDING,
                reason=reason,
                evidence=evidence,
                created_at=now,
                updated_at=now,
                reputation_weight=self.calculator.calculate_reputation_weight(reputation),
            )
            try:
                report = await self.repository.save_comment_report(report)
            except Exception as exc:
                raise CollaboratorFailure("submit_comment_report", exc) from exc
            outcome = "created"

        metrics.MOD_REPORTS_TOTAL.labels(content_type=ContentType.COMMENT.value, outcome=outcome).inc()
        logger.info(
            "comment report submitted",
            extra={"report_id": report.id, "comment_id": comment_id, "outcome": outcome, "priority": report.priority.value},
        )
        await self._evaluate_escalation(comment_id, ContentType.COMMENT)
        metrics.MOD_REPORT_INTAKE_SECONDS.observe(time.perf_counter() - started)
        return report

    async def _reporter_reputation(self, reporter_id: str, content_type: ContentType):
        try:
            reputation = await self.reputation.get_user_reputation(reporter_id)
        except Exception as exc:
            raise CollaboratorFailure("get_user_reputation", exc) from exc
        if reputation.level is ReputationLevel.BANNED:
            metrics.MOD_REPORTS_TOTAL.labels(content_type=content_type.value, outcome="rejected").inc()
            raise ReporterBanned(reporter_id)
        return reputation

    async def _merge(self, report: AnyReport, reason: str, now: datetime) -> AnyReport:
        changes = {
            "reason": merge_reasons(report.reason, reason),
            "priority": escalate_priority(report.priority),
            "updated_at": now,
        }
        try:
            match report.content_type:
                case ContentType.WHISPER:
                    return await self.repository.update(report.id, changes)
                case ContentType.COMMENT:
                    return await self.repository.update_comment_report(report.id, changes)
        except Exception as exc:
            raise CollaboratorFailure("merge_report", exc) from exc
        raise ValueError(f"unsupported content type: {report.content_type!r}")

    async def _evaluate_escalation(self, target_id: str, content_type: ContentType) -> None:
        try:
            await self.escalation.check_automatic_escalation(target_id, content_type)
        except Exception:  # noqa: BLE001 - intake succeeds without an escalation verdict
            metrics.MOD_ESCALATION_FAILURES_TOTAL.labels(stage="evaluate").inc()
            logger.exception(
                "escalation check failed",
                extra={"target_id": target_id, "content_type": content_type.value},
            )

    async def get_report(self, report_id: str, content_type: ContentType | str = ContentType.WHISPER) -> AnyReport:
        match ContentType(content_type):
            case ContentType.WHISPER:
                report = await self.repository.get_by_id(report_id)
            case ContentType.COMMENT:
                report = await self.repository.get_comment_report(report_id)
        if report is None:
            raise ReportNotFound(report_id)
        return report

    async def list_reports(self, filters: ReportFilters | None = None) -> Sequence[Report]:
        return await self.repository.get_with_filters(filters or ReportFilters())

    async def list_comment_reports(self, filters: ReportFilters | None = None) -> Sequence[CommentReport]:
        return await self.repository.get_comment_reports_with_filters(filters or ReportFilters())

    async def reports_for_content(self, content_id: str) -> Sequence[Report]:
        return await self.repository.get_with_filters(ReportFilters(content_id=content_id))

    async def reports_for_comment(self, comment_id: str) -> Sequence[CommentReport]:
        return await self.repository.get_comment_reports_with_filters(ReportFilters(comment_id=comment_id))

    async def update_status(
        self,
        report_id: str,
        status: ReportStatus | str,
        *,
        moderator_id: Optional[str] = None,
        content_type: ContentType | str = ContentType.WHISPER,
        now: datetime | None = None,
    ) -> AnyReport:
        """Move a report forward; resolving with a remediation goes through the resolution engine."""

        now = now or datetime.now(timezone.utc)
        status = ReportStatus(status)
        report = await self.get_report(report_id, content_type)
        if status is not report.status and status not in STATUS_TRANSITIONS[report.status]:
            raise InvalidStatusTransition(f"{report.status.value} -> {status.value}")
        if status is ReportStatus.RESOLVED and report.resolution is None:
            raise InvalidStatusTransition("resolved requires a resolution")
        changes: dict[str, object] = {"status": status, "updated_at": now}
        if status in _REVIEW_STATUSES and moderator_id:
            changes["reviewed_at"] = now
            changes["reviewed_by"] = moderator_id
        match report.content_type:
            case ContentType.WHISPER:
                return await self.repository.update(report_id, changes)
            case ContentType.COMMENT:
                return await self.repository.update_comment_report(report_id, changes)
        raise ValueError(f"unsupported content type: {report.content_type!r}")

    async def _all_reports(self) -> list[AnyReport]:
        return list(await self.repository.get_all()) + list(await self.repository.get_all_comment_reports())

    async def get_report_stats(self) -> statistics.ReportStats:
        return statistics.overall_report_stats(await self._all_reports())

    async def get_content_report_stats(self, target_id: str) -> statistics.ContentReportStats:
        return statistics.content_report_stats(await self._all_reports(), target_id)

    async def get_reporter_stats(self, reporter_id: str) -> statistics.ReporterStats:
        return statistics.reporter_stats(await self.repository.get_by_reporter(reporter_id), reporter_id)
