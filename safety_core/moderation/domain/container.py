"""Process-wide service wiring for the moderation core."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import asyncpg
from redis.asyncio import Redis

from safety_core.infra.redis import RedisProxy, redis_client
from safety_core.moderation.domain.content import ContentGateway, InMemoryContentGateway
from safety_core.moderation.domain.escalation import EscalationEngine, EscalationPublisher
from safety_core.moderation.domain.priority import PriorityCalculator
from safety_core.moderation.domain.reports_service import ReportService
from safety_core.moderation.domain.repository import (
    InMemoryReportRepository,
    InMemoryResolutionCommandRepository,
    InMemorySuspensionRepository,
    ReportRepository,
    ResolutionCommandRepository,
    SuspensionRepository,
)
from safety_core.moderation.domain.reputation import (
    InMemoryReputationRepository,
    ReputationGateway,
    ReputationLedger,
)
from safety_core.moderation.domain.resolution import ResolutionEngine
from safety_core.moderation.domain.suspensions import SuspensionService
from safety_core.moderation.domain.thresholds import ModerationConfig, SanctionPolicy, load_moderation_config
from safety_core.moderation.infra.postgres_repo import (
    PostgresReportRepository,
    PostgresReputationRepository,
    PostgresResolutionCommandRepository,
    PostgresSuspensionRepository,
)
from safety_core.moderation.infra.streams import RedisEscalationPublisher
from safety_core.settings import settings

_report_repository: ReportRepository = InMemoryReportRepository()
_suspension_repository: SuspensionRepository = InMemorySuspensionRepository()
_command_repository: ResolutionCommandRepository = InMemoryResolutionCommandRepository()
_reputation: ReputationGateway = ReputationLedger(InMemoryReputationRepository())
_content: ContentGateway = InMemoryContentGateway()
_config: ModerationConfig = ModerationConfig.from_settings(settings)
_policy: SanctionPolicy = SanctionPolicy.from_settings(settings)
_publisher: Optional[EscalationPublisher] = None
_escalation: EscalationEngine
_suspensions: SuspensionService
_reports: ReportService
_resolution: ResolutionEngine


def _rebuild() -> None:
    global _escalation, _suspensions, _reports, _resolution
    _escalation = EscalationEngine(_report_repository, thresholds=_config.escalation, publisher=_publisher)
    _suspensions = SuspensionService(_suspension_repository, _reputation, policy=_policy)
    _reports = ReportService(
        repository=_report_repository,
        reputation=_reputation,
        escalation=_escalation,
        calculator=PriorityCalculator(_config.priority),
    )
    _resolution = ResolutionEngine(
        _report_repository,
        suspensions=_suspensions,
        reputation=_reputation,
        content=_content,
        commands=_command_repository,
        policy=_policy,
        lease=timedelta(seconds=settings.resolution_command_lease_seconds),
    )


_rebuild()


def configure(
    *,
    report_repository: Optional[ReportRepository] = None,
    suspension_repository: Optional[SuspensionRepository] = None,
    command_repository: Optional[ResolutionCommandRepository] = None,
    reputation: Optional[ReputationGateway] = None,
    content: Optional[ContentGateway] = None,
    config: Optional[ModerationConfig] = None,
    policy: Optional[SanctionPolicy] = None,
    publisher: Optional[EscalationPublisher] = None,
) -> None:
    global _report_repository, _suspension_repository, _command_repository, _reputation, _content
    global _config, _policy, _publisher
    if report_repository is not None:
        _report_repository = report_repository
    if suspension_repository is not None:
        _suspension_repository = suspension_repository
    if command_repository is not None:
        _command_repository = command_repository
    if reputation is not None:
        _reputation = reputation
    if content is not None:
        _content = content
    if config is not None:
        _config = config
    if policy is not None:
        _policy = policy
    if publisher is not None:
        _publisher = publisher
    _rebuild()


def configure_postgres(
    pool: asyncpg.Pool,
    redis_conn: Redis | RedisProxy | None = None,
    *,
    content: Optional[ContentGateway] = None,
    config_path: Optional[str] = None,
) -> None:
    if redis_conn is None:
        proxy = redis_client
    elif isinstance(redis_conn, RedisProxy):
        proxy = redis_conn
    else:
        proxy = RedisProxy(redis_conn)
    base = ModerationConfig.from_settings(settings)
    configure(
        report_repository=PostgresReportRepository(pool),
        suspension_repository=PostgresSuspensionRepository(pool),
        command_repository=PostgresResolutionCommandRepository(pool),
        reputation=ReputationLedger(PostgresReputationRepository(pool)),
        content=content,
        config=load_moderation_config(config_path or settings.escalation_config_path, base=base),
        policy=SanctionPolicy.from_settings(settings),
        publisher=RedisEscalationPublisher(proxy, stream_key=settings.escalation_stream),
    )


def reset() -> None:
    """Back to in-memory defaults; used by tests."""

    global _report_repository, _suspension_repository, _command_repository, _reputation, _content
    global _config, _policy, _publisher
    _report_repository = InMemoryReportRepository()
    _suspension_repository = InMemorySuspensionRepository()
    _command_repository = InMemoryResolutionCommandRepository()
    _reputation = ReputationLedger(InMemoryReputationRepository())
    _content = InMemoryContentGateway()
    _config = ModerationConfig.from_settings(settings)
    _policy = SanctionPolicy.from_settings(settings)
    _publisher = None
    _rebuild()


def get_report_service() -> ReportService:
    return _reports


def get_escalation_engine() -> EscalationEngine:
    return _escalation


def get_resolution_engine() -> ResolutionEngine:
    return _resolution


def get_suspension_service() -> SuspensionService:
    return _suspensions


def get_reputation() -> ReputationGateway:
    return _reputation


def get_content_gateway() -> ContentGateway:
    return _content


def get_report_repository() -> ReportRepository:
    return _report_repository


def get_config() -> ModerationConfig:
    return _config
