"""Read-only aggregates over report and suspension collections."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from safety_core.moderation.domain.models import (
    AnyReport,
    ReportPriority,
    ReportStatus,
    ResolutionAction,
    Suspension,
    SuspensionType,
)

_ESCALATED_STATUSES = frozenset({ReportStatus.ESCALATED, ReportStatus.UNDER_REVIEW})


@dataclass(slots=True)
class Breakdown:
    key: str
    count: int
    percentage: float


@dataclass(slots=True)
class ReportStats:
    total: int
    by_category: dict[str, int]
    by_priority: dict[str, int]
    by_status: dict[str, int]
    pending: int
    critical: int
    resolved: int
    average_resolution_hours: float


@dataclass(slots=True)
class ContentReportStats:
    target_id: str
    total_reports: int
    unique_reporters: int
    by_category: dict[str, int]
    average_priority_rank: float
    escalation_rate: float


@dataclass(slots=True)
class ReporterStats:
    reporter_id: str
    total_reports: int
    by_category: dict[str, int]
    average_reporter_reputation: float
    accuracy: float


@dataclass(slots=True)
class ModeratorPerformance:
    total_resolutions: int
    average_resolution_hours: float
    actions: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class ResolutionStats:
    total_resolutions: int
    by_action: dict[str, int]
    by_category: dict[str, int]
    average_resolution_hours: float
    moderator_performance: dict[str, ModeratorPerformance]


@dataclass(slots=True)
class UserResolutionHistory:
    reports_submitted: list[AnyReport]
    reports_resolved: list[AnyReport]
    average_resolution_hours: float
    most_common_action: str


@dataclass(slots=True)
class SuspensionStats:
    total: int
    active: int
    warnings: int
    temporary: int
    permanent: int
    expired: int
    appealable: int = 0


def _hours(report: AnyReport) -> Optional[float]:
    if report.reviewed_at is None:
        return None
    return (report.reviewed_at - report.created_at).total_seconds() / 3600


def _mean(values: Iterable[float]) -> float:
    items = list(values)
    return sum(items) / len(items) if items else 0.0


def _resolved(reports: Iterable[AnyReport]) -> list[AnyReport]:
    return [r for r in reports if r.status is ReportStatus.RESOLVED and r.resolution is not None]


def average_resolution_hours(reports: Iterable[AnyReport]) -> float:
    return _mean(h for h in (_hours(r) for r in _resolved(reports)) if h is not None)


def overall_report_stats(reports: Sequence[AnyReport]) -> ReportStats:
    return ReportStats(
        total=len(reports),
        by_category=dict(Counter(r.category.value for r in reports)),
        by_priority=dict(Counter(r.priority.value for r in reports)),
        by_status=dict(Counter(r.status.value for r in reports)),
        pending=sum(1 for r in reports if r.status is ReportStatus.PENDING),
        critical=sum(1 for r in reports if r.priority is ReportPriority.CRITICAL),
        resolved=sum(1 for r in reports if r.status is ReportStatus.RESOLVED),
        average_resolution_hours=average_resolution_hours(reports),
    )


def content_report_stats(reports: Sequence[AnyReport], target_id: str) -> ContentReportStats:
    scoped = [r for r in reports if r.target_id == target_id]
    escalated = sum(1 for r in scoped if r.status in _ESCALATED_STATUSES)
    return ContentReportStats(
        target_id=target_id,
        total_reports=len(scoped),
        unique_reporters=len({r.reporter_id for r in scoped}),
        by_category=dict(Counter(r.category.value for r in scoped)),
        average_priority_rank=_mean(r.priority.rank for r in scoped),
        escalation_rate=(escalated / len(scoped) * 100) if scoped else 0.0,
    )


def reporter_stats(reports: Sequence[AnyReport], reporter_id: str) -> ReporterStats:
    """Accuracy is the share of a reporter's resolved reports that led to action."""

    scoped = [r for r in reports if r.reporter_id == reporter_id]
    resolved = _resolved(scoped)
    actioned = [r for r in resolved if r.resolution.action is not ResolutionAction.DISMISS]
    return ReporterStats(
        reporter_id=reporter_id,
        total_reports=len(scoped),
        by_category=dict(Counter(r.category.value for r in scoped)),
        average_reporter_reputation=_mean(r.reporter_reputation for r in scoped),
        accuracy=(len(actioned) / len(resolved) * 100) if resolved else 0.0,
    )


def _breakdown(values: Sequence[str]) -> list[Breakdown]:
    total = len(values)
    return [
        Breakdown(key=key, count=count, percentage=count / total * 100)
        for key, count in Counter(values).most_common()
    ]


def category_breakdown(reports: Sequence[AnyReport]) -> list[Breakdown]:
    return _breakdown([r.category.value for r in reports])


def priority_breakdown(reports: Sequence[AnyReport]) -> list[Breakdown]:
    return _breakdown([r.priority.value for r in reports])


def moderator_performance(reports: Sequence[AnyReport]) -> dict[str, ModeratorPerformance]:
    hours: dict[str, list[float]] = defaultdict(list)
    actions: dict[str, Counter] = defaultdict(Counter)
    for report in _resolved(reports):
        moderator = report.reviewed_by or report.resolution.moderator_id
        elapsed = _hours(report)
        if elapsed is not None:
            hours[moderator].append(elapsed)
        actions[moderator][report.resolution.action.value] += 1
    return {
        moderator: ModeratorPerformance(
            total_resolutions=sum(counts.values()),
            average_resolution_hours=_mean(hours[moderator]),
            actions=dict(counts),
        )
        for moderator, counts in actions.items()
    }


def resolution_stats(reports: Sequence[AnyReport]) -> ResolutionStats:
    resolved = _resolved(reports)
    return ResolutionStats(
        total_resolutions=len(resolved),
        by_action=dict(Counter(r.resolution.action.value for r in resolved)),
        by_category=dict(Counter(r.category.value for r in resolved)),
        average_resolution_hours=average_resolution_hours(resolved),
        moderator_performance=moderator_performance(resolved),
    )


def user_resolution_history(reports: Sequence[AnyReport], user_id: str) -> UserResolutionHistory:
    submitted = [r for r in reports if r.reporter_id == user_id]
    resolved = _resolved(submitted)
    actions = Counter(r.resolution.action.value for r in resolved)
    return UserResolutionHistory(
        reports_submitted=submitted,
        reports_resolved=resolved,
        average_resolution_hours=average_resolution_hours(resolved),
        most_common_action=actions.most_common(1)[0][0] if actions else "none",
    )


def suspension_stats(suspensions: Sequence[Suspension], *, now: datetime | None = None) -> SuspensionStats:
    """``active`` counts suspensions still in effect at ``now``; ``expired`` everything else."""

    now = now or datetime.now(timezone.utc)
    in_effect = [s for s in suspensions if s.is_in_effect(now)]
    return SuspensionStats(
        total=len(suspensions),
        active=len(in_effect),
        warnings=sum(1 for s in suspensions if s.type is SuspensionType.WARNING),
        temporary=sum(1 for s in suspensions if s.type is SuspensionType.TEMPORARY),
        permanent=sum(1 for s in suspensions if s.type is SuspensionType.PERMANENT),
        expired=len(suspensions) - len(in_effect),
        appealable=sum(1 for s in in_effect if s.appealable),
    )
