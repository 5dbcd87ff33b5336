"""Configuration helpers for escalation thresholds, priority tables and sanction magnitudes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

import yaml

from safety_core.moderation.domain.models import ReportCategory, ReputationLevel
from safety_core.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationThresholds:
    flag_for_review: int = 3
    auto_delete: int = 5
    delete_and_temp_ban: int = 8
    unique_reporters_min: int = 3
    # Unique-reporter gates for the stronger advisory labels
    auto_delete_unique_min: int = 5
    delete_and_ban_unique_min: int = 8

    @staticmethod
    def default() -> "EscalationThresholds":
        return EscalationThresholds()


def _default_category_multipliers() -> dict[ReportCategory, float]:
    return {
        ReportCategory.HARASSMENT: 1.5,
        ReportCategory.HATE_SPEECH: 1.8,
        ReportCategory.VIOLENCE: 2.0,
        ReportCategory.SEXUAL_CONTENT: 1.7,
        ReportCategory.SPAM: 1.2,
        ReportCategory.SCAM: 1.4,
        ReportCategory.COPYRIGHT: 1.1,
        ReportCategory.PERSONAL_INFO: 1.3,
        ReportCategory.MINOR_SAFETY: 2.0,
        ReportCategory.OTHER: 1.0,
    }


def _default_reputation_weights() -> dict[ReputationLevel, float]:
    return {
        ReputationLevel.TRUSTED: 2.0,
        ReputationLevel.VERIFIED: 1.5,
        ReputationLevel.STANDARD: 1.0,
        ReputationLevel.FLAGGED: 0.5,
        ReputationLevel.BANNED: 0.0,
    }


@dataclass(frozen=True)
class PriorityTables:
    category_multipliers: Mapping[ReportCategory, float] = field(default_factory=_default_category_multipliers)
    reputation_weights: Mapping[ReputationLevel, float] = field(default_factory=_default_reputation_weights)
    boost_score: int = 90
    demote_score: int = 20


@dataclass(frozen=True)
class SanctionPolicy:
    """Durations and reputation deltas applied by suspensions and resolutions."""

    temporary_duration: timedelta = timedelta(hours=24)
    extended_duration: timedelta = timedelta(days=7)
    ban_duration: timedelta = timedelta(days=7)
    permanent_horizon: timedelta = timedelta(days=100 * 365)
    suspension_penalty: int = -50
    restoration_bonus: int = 10
    reject_penalty: int = -20
    comment_delete_penalty: int = -15
    dismiss_penalty: int = -10

    @staticmethod
    def from_settings(cfg: Settings) -> "SanctionPolicy":
        return SanctionPolicy(
            temporary_duration=timedelta(seconds=cfg.temporary_suspension_seconds),
            extended_duration=timedelta(seconds=cfg.extended_suspension_seconds),
            ban_duration=timedelta(seconds=cfg.ban_suspension_seconds),
            permanent_horizon=timedelta(days=cfg.permanent_horizon_days),
            suspension_penalty=cfg.suspension_penalty,
            restoration_bonus=cfg.suspension_restoration_bonus,
            reject_penalty=cfg.reject_penalty,
            comment_delete_penalty=cfg.comment_delete_penalty,
            dismiss_penalty=cfg.dismiss_penalty,
        )


@dataclass(frozen=True)
class ModerationConfig:
    escalation: EscalationThresholds = field(default_factory=EscalationThresholds.default)
    priority: PriorityTables = field(default_factory=PriorityTables)

    @staticmethod
    def default() -> "ModerationConfig":
        return ModerationConfig()

    @staticmethod
    def from_settings(cfg: Settings) -> "ModerationConfig":
        base = EscalationThresholds.default()
        escalation = EscalationThresholds(
            flag_for_review=cfg.flag_for_review_threshold,
            auto_delete=cfg.auto_delete_threshold,
            delete_and_temp_ban=cfg.delete_and_temp_ban_threshold,
            unique_reporters_min=cfg.unique_reporters_min,
            auto_delete_unique_min=base.auto_delete_unique_min,
            delete_and_ban_unique_min=base.delete_and_ban_unique_min,
        )
        return ModerationConfig(escalation=escalation)

    @staticmethod
    def from_mapping(config: Mapping[str, Any], base: "ModerationConfig | None" = None) -> "ModerationConfig":
        base = base or ModerationConfig.default()
        esc_cfg = config.get("escalation", {}) or {}
        prio_cfg = config.get("priority", {}) or {}
        escalation = EscalationThresholds(
            flag_for_review=int(esc_cfg.get("flag_for_review", base.escalation.flag_for_review)),
            auto_delete=int(esc_cfg.get("auto_delete", base.escalation.auto_delete)),
            delete_and_temp_ban=int(esc_cfg.get("delete_and_temp_ban", base.escalation.delete_and_temp_ban)),
            unique_reporters_min=int(esc_cfg.get("unique_reporters_min", base.escalation.unique_reporters_min)),
            auto_delete_unique_min=int(
                esc_cfg.get("auto_delete_unique_min", base.escalation.auto_delete_unique_min)
            ),
            delete_and_ban_unique_min=int(
                esc_cfg.get("delete_and_ban_unique_min", base.escalation.delete_and_ban_unique_min)
            ),
        )
        multipliers = dict(base.priority.category_multipliers)
        for key, value in (prio_cfg.get("category_multipliers") or {}).items():
            try:
                multipliers[ReportCategory(str(key))] = float(value)
            except ValueError:
                logger.warning("ignoring unknown report category in config", extra={"category": key})
        weights = dict(base.priority.reputation_weights)
        for key, value in (prio_cfg.get("reputation_weights") or {}).items():
            try:
                weights[ReputationLevel(str(key))] = float(value)
            except ValueError:
                logger.warning("ignoring unknown reputation level in config", extra={"level": key})
        priority = PriorityTables(
            category_multipliers=multipliers,
            reputation_weights=weights,
            boost_score=int(prio_cfg.get("boost_score", base.priority.boost_score)),
            demote_score=int(prio_cfg.get("demote_score", base.priority.demote_score)),
        )
        return ModerationConfig(escalation=escalation, priority=priority)


def load_moderation_config(path: str | Path | None, *, base: ModerationConfig | None = None) -> ModerationConfig:
    """Load thresholds from a YAML file, keeping ``base`` (or the defaults) when it is unusable."""

    fallback = base or ModerationConfig.default()
    if not path:
        return fallback
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning("moderation config file missing at %s; using defaults", path)
        return fallback
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        logger.warning("failed to parse moderation config: %s", exc)
        return fallback
    if not isinstance(data, Mapping):
        logger.warning("moderation config file invalid; falling back to defaults")
        return fallback
    try:
        return ModerationConfig.from_mapping(data, base=fallback)
    except (TypeError, ValueError, AttributeError) as exc:
        logger.warning("moderation config values invalid: %s", exc)
        return fallback
