from __future__ import annotations

import pytest

from safety_core.moderation.domain.models import ReportCategory, ReportPriority, ReputationLevel, UserReputation
from safety_core.moderation.domain.priority import (
    PriorityCalculator,
    describe,
    deescalate_priority,
    escalate_priority,
)
from safety_core.moderation.domain.thresholds import PriorityTables


def _rep(level: ReputationLevel, score: int) -> UserReputation:
    return UserReputation(user_id="reporter", score=score, level=level)


@pytest.mark.parametrize(
    ("level", "score", "category", "expected"),
    [
        (ReputationLevel.STANDARD, 60, ReportCategory.SPAM, ReportPriority.MEDIUM),
        (ReputationLevel.STANDARD, 60, ReportCategory.HARASSMENT, ReportPriority.HIGH),
        (ReputationLevel.STANDARD, 50, ReportCategory.HATE_SPEECH, ReportPriority.CRITICAL),
        (ReputationLevel.VERIFIED, 80, ReportCategory.COPYRIGHT, ReportPriority.MEDIUM),
        (ReputationLevel.FLAGGED, 30, ReportCategory.OTHER, ReportPriority.LOW),
        (ReputationLevel.FLAGGED, 30, ReportCategory.HARASSMENT, ReportPriority.MEDIUM),
        (ReputationLevel.TRUSTED, 90, ReportCategory.OTHER, ReportPriority.CRITICAL),
        (ReputationLevel.TRUSTED, 95, ReportCategory.VIOLENCE, ReportPriority.CRITICAL),
        (ReputationLevel.BANNED, 10, ReportCategory.SPAM, ReportPriority.LOW),
    ],
)
def test_calculate_priority(level, score, category, expected) -> None:
    calculator = PriorityCalculator()
    assert calculator.calculate_priority(_rep(level, score), category) is expected


def test_low_score_demotes_priority() -> None:
    calculator = PriorityCalculator()
    # standard base (medium) x harassment 1.5 = high, then demoted for score <= 20
    assert calculator.calculate_priority(_rep(ReputationLevel.STANDARD, 20), ReportCategory.HARASSMENT) is ReportPriority.MEDIUM


def test_reputation_weights() -> None:
    calculator = PriorityCalculator()
    assert calculator.calculate_reputation_weight(_rep(ReputationLevel.TRUSTED, 95)) == 2.0
    assert calculator.calculate_reputation_weight(_rep(ReputationLevel.VERIFIED, 80)) == 1.5
    assert calculator.calculate_reputation_weight(_rep(ReputationLevel.STANDARD, 60)) == 1.0
    assert calculator.calculate_reputation_weight(_rep(ReputationLevel.FLAGGED, 30)) == 0.5
    assert calculator.calculate_reputation_weight(_rep(ReputationLevel.BANNED, 5)) == 0.0


def test_unknown_level_weight_falls_back_to_standard() -> None:
    tables = PriorityTables(reputation_weights={ReputationLevel.STANDARD: 1.0})
    calculator = PriorityCalculator(tables)
    assert calculator.calculate_reputation_weight(_rep(ReputationLevel.TRUSTED, 95)) == 1.0


def test_escalate_and_deescalate_are_capped() -> None:
    assert escalate_priority(ReportPriority.LOW) is ReportPriority.MEDIUM
    assert escalate_priority(ReportPriority.CRITICAL) is ReportPriority.CRITICAL
    assert deescalate_priority(ReportPriority.HIGH) is ReportPriority.MEDIUM
    assert deescalate_priority(ReportPriority.LOW) is ReportPriority.LOW


def test_should_escalate_counts() -> None:
    assert PriorityCalculator.should_escalate(ReportPriority.CRITICAL, 0)
    assert PriorityCalculator.should_escalate(ReportPriority.HIGH, 3)
    assert not PriorityCalculator.should_escalate(ReportPriority.HIGH, 2)
    assert PriorityCalculator.should_escalate(ReportPriority.MEDIUM, 5)
    assert not PriorityCalculator.should_escalate(ReportPriority.LOW, 9)


def test_describe() -> None:
    assert describe(ReportPriority.CRITICAL).startswith("Critical")
