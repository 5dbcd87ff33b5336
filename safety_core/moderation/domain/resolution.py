"""Moderator resolutions and their remediation side effects.

The report is marked resolved first, then a ``ResolutionCommand`` records the side effects.
Steps are marked complete one at a time, so a command interrupted by a collaborator failure
can be rolled forward later with :meth:`ResolutionEngine.retry_pending_commands`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Sequence
from uuid import uuid4

from safety_core.moderation.domain import statistics
from safety_core.moderation.domain.content import ContentGateway
from safety_core.moderation.domain.errors import (
    CollaboratorFailure,
    InvalidResolutionAction,
    ReportAlreadyResolved,
    ReportNotFound,
)
from safety_core.moderation.domain.models import (
    COMMENT_RESOLUTION_ACTIONS,
    WHISPER_RESOLUTION_ACTIONS,
    AnyReport,
    ContentType,
    Resolution,
    ResolutionAction,
    ResolutionCommand,
    ReportStatus,
)
from safety_core.moderation.domain.repository import (
    InMemoryResolutionCommandRepository,
    ReportRepository,
    ResolutionCommandRepository,
)
from safety_core.moderation.domain.reputation import ReputationGateway
from safety_core.moderation.domain.suspensions import SuspensionService, TemporaryTerm, WarningTerm
from safety_core.moderation.domain.thresholds import SanctionPolicy
from safety_core.obs import metrics
from safety_core.obs.logging import bind_context, reset_context

logger = logging.getLogger(__name__)


class ResolutionStep(str, Enum):
    WARN_AUTHOR = "warn_author"
    FLAG_CONTENT = "flag_content"
    HIDE_CONTENT = "hide_content"
    DELETE_CONTENT = "delete_content"
    PENALIZE_AUTHOR = "penalize_author"
    SUSPEND_AUTHOR = "suspend_author"
    PENALIZE_REPORTER = "penalize_reporter"


# Steps that act on the reported item or its author
_CONTENT_STEPS = frozenset(
    {
        ResolutionStep.WARN_AUTHOR,
        ResolutionStep.FLAG_CONTENT,
        ResolutionStep.HIDE_CONTENT,
        ResolutionStep.DELETE_CONTENT,
        ResolutionStep.PENALIZE_AUTHOR,
        ResolutionStep.SUSPEND_AUTHOR,
    }
)


def steps_for(action: ResolutionAction) -> tuple[ResolutionStep, ...]:
    match action:
        case ResolutionAction.WARN:
            return (ResolutionStep.WARN_AUTHOR,)
        case ResolutionAction.FLAG:
            return (ResolutionStep.FLAG_CONTENT,)
        case ResolutionAction.REJECT:
            return (ResolutionStep.DELETE_CONTENT, ResolutionStep.PENALIZE_AUTHOR)
        case ResolutionAction.BAN:
            return (ResolutionStep.SUSPEND_AUTHOR, ResolutionStep.DELETE_CONTENT)
        case ResolutionAction.DISMISS:
            return (ResolutionStep.PENALIZE_REPORTER,)
        case ResolutionAction.HIDE:
            return (ResolutionStep.HIDE_CONTENT,)
        case ResolutionAction.DELETE:
            return (ResolutionStep.DELETE_CONTENT, ResolutionStep.PENALIZE_AUTHOR)
    raise InvalidResolutionAction(str(action))


@dataclass(slots=True)
class ResolutionResult:
    report: AnyReport
    command_id: str
    action: ResolutionAction
    timestamp: datetime
    affected_users: list[str] = field(default_factory=list)


class ResolutionEngine:
    def __init__(
        self,
        repository: ReportRepository,
        *,
        suspensions: SuspensionService,
        reputation: ReputationGateway,
        content: ContentGateway,
        commands: ResolutionCommandRepository | None = None,
        policy: SanctionPolicy | None = None,
        lease: timedelta = timedelta(minutes=5),
    ) -> None:
        self._repo = repository
        self._suspensions = suspensions
        self._reputation = reputation
        self._content = content
        self._commands = commands or InMemoryResolutionCommandRepository()
        self._policy = policy or SanctionPolicy()
        self._lease = lease

    async def resolve_report(
        self, report_id: str, resolution: Resolution, *, now: datetime | None = None
    ) -> ResolutionResult:
        tokens = bind_context(operation="resolve_report", actor_id=resolution.moderator_id)
        try:
            report = await self._repo.get_by_id(report_id)
            return await self._resolve(report_id, report, resolution, WHISPER_RESOLUTION_ACTIONS, now=now)
        finally:
            reset_context(tokens)

    async def resolve_comment_report(
        self, report_id: str, resolution: Resolution, *, now: datetime | None = None
    ) -> ResolutionResult:
        tokens = bind_context(operation="resolve_comment_report", actor_id=resolution.moderator_id)
        try:
            report = await self._repo.get_comment_report(report_id)
            return await self._resolve(report_id, report, resolution, COMMENT_RESOLUTION_ACTIONS, now=now)
        finally:
            reset_context(tokens)

    async def _resolve(
        self,
        report_id: str,
        report: Optional[AnyReport],
        resolution: Resolution,
        allowed: frozenset[ResolutionAction],
        *,
        now: datetime | None,
    ) -> ResolutionResult:
        now = now or datetime.now(timezone.utc)
        if report is None:
            raise ReportNotFound(report_id)
        if report.status.is_terminal:
            raise ReportAlreadyResolved(report_id)
        action = ResolutionAction(resolution.action)
        if action not in allowed:
            raise InvalidResolutionAction(f"{action.value} is not valid for {report.content_type.value} reports")

        steps = steps_for(action)
        author_id: Optional[str] = None
        if any(step in _CONTENT_STEPS for step in steps):
            author_id = await self._lookup_author(report)

        command = ResolutionCommand(
            id=str(uuid4()),
            report_id=report.id,
            content_type=report.content_type,
            action=action,
            steps=steps,
            created_at=now,
            target_id=report.target_id,
            reporter_id=report.reporter_id,
            moderator_id=resolution.moderator_id,
            reason=resolution.reason,
            author_id=author_id,
            status="running",
            claimed_at=now,
        )
        changes = {
            "status": ReportStatus.RESOLVED,
            "resolution": resolution,
            "reviewed_at": now,
            "reviewed_by": resolution.moderator_id,
            "updated_at": now,
        }
        try:
            match report.content_type:
                case ContentType.WHISPER:
                    updated = await self._repo.update(report.id, changes)
                case ContentType.COMMENT:
                    updated = await self._repo.update_comment_report(report.id, changes)
            command = await self._commands.save_command(command)
        except Exception as exc:
            raise CollaboratorFailure("resolve_report", exc) from exc

        affected = await self._run(command, now=now)
        metrics.MOD_RESOLUTIONS_TOTAL.labels(
            content_type=report.content_type.value, action=action.value, result="applied"
        ).inc()
        logger.info(
            "report resolved",
            extra={
                "report_id": report.id,
                "content_type": report.content_type.value,
                "action": action.value,
                "moderator_id": resolution.moderator_id,
            },
        )
        return ResolutionResult(
            report=updated,
            command_id=command.id,
            action=action,
            timestamp=now,
            affected_users=affected,
        )

    async def _lookup_author(self, report: AnyReport) -> Optional[str]:
        try:
            match report.content_type:
                case ContentType.WHISPER:
                    item = await self._content.get_whisper(report.target_id)
                case ContentType.COMMENT:
                    item = await self._content.get_comment(report.target_id)
        except Exception as exc:
            raise CollaboratorFailure("get_content", exc) from exc
        if item is None:
            logger.warning(
                "reported content no longer exists; remediation skipped",
                extra={"report_id": report.id, "target_id": report.target_id},
            )
            return None
        return item.user_id

    async def _run(self, command: ResolutionCommand, *, now: datetime) -> list[str]:
        affected: list[str] = []
        for step in map(ResolutionStep, command.remaining_steps):
            try:
                user_id = await self._apply_step(command, step, now=now)
                await self._commands.mark_step_completed(command.id, step)
            except Exception as exc:
                await self._commands.set_command_status(command.id, "failed", f"{step.value}: {exc}")
                metrics.MOD_RESOLUTIONS_TOTAL.labels(
                    content_type=command.content_type.value, action=command.action.value, result="failed"
                ).inc()
                logger.exception(
                    "resolution step failed",
                    extra={"command_id": command.id, "report_id": command.report_id, "step": step.value},
                )
                if isinstance(exc, CollaboratorFailure):
                    raise
                raise CollaboratorFailure(f"resolve_report.{step.value}", exc) from exc
            if user_id and user_id not in affected:
                affected.append(user_id)
        await self._commands.set_command_status(command.id, "completed")
        return affected

    async def _apply_step(self, command: ResolutionCommand, step: ResolutionStep, *, now: datetime) -> Optional[str]:
        """Run one side effect; returns the user it touched, if any."""

        if step in _CONTENT_STEPS and command.author_id is None:
            return None
        author = command.author_id
        match step:
            case ResolutionStep.WARN_AUTHOR:
                await self._suspensions.create_suspension(
                    user_id=author,
                    reason=f"Content warning: {command.reason}",
                    term=WarningTerm(),
                    moderator_id=command.moderator_id,
                    now=now,
                )
                return author
            case ResolutionStep.FLAG_CONTENT:
                if command.content_type is ContentType.WHISPER:
                    await self._content.flag_whisper(command.target_id, command.reason)
                else:
                    await self._content.hide_comment(command.target_id, command.reason)
                return None
            case ResolutionStep.HIDE_CONTENT:
                await self._content.hide_comment(command.target_id, command.reason)
                return None
            case ResolutionStep.DELETE_CONTENT:
                if command.content_type is ContentType.WHISPER:
                    await self._content.delete_whisper(command.target_id)
                else:
                    await self._content.delete_comment(command.target_id, command.moderator_id)
                return author
            case ResolutionStep.PENALIZE_AUTHOR:
                delta = (
                    self._policy.comment_delete_penalty
                    if command.action is ResolutionAction.DELETE
                    else self._policy.reject_penalty
                )
                await self._reputation.adjust_user_reputation_score(
                    author, delta, f"content_{command.action.value}: {command.reason}"
                )
                return author
            case ResolutionStep.SUSPEND_AUTHOR:
                await self._suspensions.create_suspension(
                    user_id=author,
                    reason=command.reason,
                    term=TemporaryTerm(self._policy.ban_duration),
                    moderator_id=command.moderator_id,
                    now=now,
                )
                return author
            case ResolutionStep.PENALIZE_REPORTER:
                await self._reputation.adjust_user_reputation_score(
                    command.reporter_id, self._policy.dismiss_penalty, f"report_dismissed: {command.reason}"
                )
                return command.reporter_id
        raise InvalidResolutionAction(f"unknown resolution step {step.value}")

    async def retry_pending_commands(self, *, now: datetime | None = None) -> list[str]:
        """Roll forward failed commands and abandoned claims; returns the ids that completed.

        A command is claimed before its steps run, so a resolution still in flight elsewhere is left alone
        until its lease runs out.
        """

        now = now or datetime.now(timezone.utc)
        stale_before = now - self._lease
        completed: list[str] = []
        for candidate in await self._commands.list_retryable(stale_before):
            command = await self._commands.claim_command(candidate.id, now=now, stale_before=stale_before)
            if command is None:
                continue
            try:
                await self._run(command, now=now)
            except CollaboratorFailure:
                continue
            completed.append(command.id)
            logger.info("resolution command rolled forward", extra={"command_id": command.id})
        return completed

    async def _all_reports(self) -> list[AnyReport]:
        return list(await self._repo.get_all()) + list(await self._repo.get_all_comment_reports())

    async def get_resolution_stats(self) -> statistics.ResolutionStats:
        return statistics.resolution_stats(await self._all_reports())

    async def get_user_resolution_history(self, user_id: str) -> statistics.UserResolutionHistory:
        return statistics.user_resolution_history(await self._all_reports(), user_id)

    async def pending_commands(self) -> Sequence[ResolutionCommand]:
        return await self._commands.list_incomplete()
