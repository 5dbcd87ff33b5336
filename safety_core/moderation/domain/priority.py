"""Report priority and reporter-weight calculation."""

from __future__ import annotations

import logging
import math

from safety_core.moderation.domain.models import (
    ReportCategory,
    ReportPriority,
    ReputationLevel,
    UserReputation,
)
from safety_core.moderation.domain.thresholds import PriorityTables

logger = logging.getLogger(__name__)

_BASE_PRIORITY = {
    ReputationLevel.TRUSTED: ReportPriority.HIGH,
    ReputationLevel.VERIFIED: ReportPriority.MEDIUM,
    ReputationLevel.STANDARD: ReportPriority.MEDIUM,
    ReputationLevel.FLAGGED: ReportPriority.LOW,
    ReputationLevel.BANNED: ReportPriority.LOW,
}

_DESCRIPTIONS = {
    ReportPriority.CRITICAL: "Critical - Requires immediate attention",
    ReportPriority.HIGH: "High - Requires prompt review",
    ReportPriority.MEDIUM: "Medium - Standard review timeline",
    ReportPriority.LOW: "Low - Low priority review",
}

# Minimum report count per priority before content is worth escalating
_ESCALATION_COUNTS = {
    ReportPriority.HIGH: 3,
    ReportPriority.MEDIUM: 5,
    ReportPriority.LOW: 10,
}


def escalate_priority(priority: ReportPriority) -> ReportPriority:
    return ReportPriority.from_rank(min(priority.rank + 1, ReportPriority.CRITICAL.rank))


def deescalate_priority(priority: ReportPriority) -> ReportPriority:
    return ReportPriority.from_rank(max(priority.rank - 1, ReportPriority.LOW.rank))


def describe(priority: ReportPriority) -> str:
    return _DESCRIPTIONS[priority]


class PriorityCalculator:
    """Maps a reporter's reputation and the report category to a priority and weight."""

    def __init__(self, tables: PriorityTables | None = None) -> None:
        self._tables = tables or PriorityTables()

    @property
    def tables(self) -> PriorityTables:
        return self._tables

    def calculate_priority(self, reputation: UserReputation, category: ReportCategory) -> ReportPriority:
        base = _BASE_PRIORITY[reputation.level]
        multiplier = self._tables.category_multipliers.get(category, 1.0)
        # round half up so 1.5 lands on medium
        adjusted = ReportPriority.from_rank(math.floor(base.rank * multiplier + 0.5))
        if reputation.score >= self._tables.boost_score:
            return escalate_priority(adjusted)
        if reputation.score <= self._tables.demote_score:
            return deescalate_priority(adjusted)
        return adjusted

    def calculate_reputation_weight(self, reputation: UserReputation) -> float:
        weights = self._tables.reputation_weights
        weight = weights.get(reputation.level)
        if weight is None:
            logger.warning("unknown reputation level", extra={"level": str(reputation.level)})
            return weights.get(ReputationLevel.STANDARD, 1.0)
        return weight

    @staticmethod
    def should_escalate(priority: ReportPriority, report_count: int) -> bool:
        if priority is ReportPriority.CRITICAL:
            return True
        return report_count >= _ESCALATION_COUNTS[priority]
