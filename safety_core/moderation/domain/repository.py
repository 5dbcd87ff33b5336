"""Storage contracts and in-memory fallbacks for reports, suspensions and resolution commands."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol, Sequence

from safety_core.moderation.domain.models import (
    CommentReport,
    Report,
    ReportFilters,
    ResolutionCommand,
    Suspension,
)


class ReportRepository(Protocol):
    """Record store for whisper and comment reports.

    No cross-record transactions are assumed; every method is an independent write or read.
    """

    async def save(self, report: Report) -> Report:
        ...

    async def get_by_id(self, report_id: str) -> Optional[Report]:
        ...

    async def update(self, report_id: str, changes: Mapping[str, Any]) -> Report:
        ...

    async def delete(self, report_id: str) -> None:
        ...

    async def get_with_filters(self, filters: ReportFilters) -> Sequence[Report]:
        """Return whisper reports matching ``filters``, newest first."""

    async def get_by_reporter(self, reporter_id: str) -> Sequence[Report]:
        ...

    async def get_all(self) -> Sequence[Report]:
        ...

    async def save_comment_report(self, report: CommentReport) -> CommentReport:
        ...

    async def get_comment_report(self, report_id: str) -> Optional[CommentReport]:
        ...

    async def update_comment_report(self, report_id: str, changes: Mapping[str, Any]) -> CommentReport:
        ...

    async def get_comment_reports_with_filters(self, filters: ReportFilters) -> Sequence[CommentReport]:
        ...

    async def get_all_comment_reports(self) -> Sequence[CommentReport]:
        ...


class SuspensionRepository(Protocol):
    async def save_suspension(self, suspension: Suspension) -> Suspension:
        ...

    async def get_suspension(self, suspension_id: str) -> Optional[Suspension]:
        ...

    async def get_user_suspensions(self, user_id: str) -> Sequence[Suspension]:
        ...

    async def update_suspension(self, suspension_id: str, changes: Mapping[str, Any]) -> Suspension:
        ...

    async def get_active_suspensions(self) -> Sequence[Suspension]:
        """Return every suspension whose ``is_active`` flag is still set."""

    async def get_all_suspensions(self) -> Sequence[Suspension]:
        ...


class ResolutionCommandRepository(Protocol):
    async def save_command(self, command: ResolutionCommand) -> ResolutionCommand:
        ...

    async def mark_step_completed(self, command_id: str, step: str) -> ResolutionCommand:
        ...

    async def set_command_status(self, command_id: str, status: str, error: Optional[str] = None) -> ResolutionCommand:
        ...

    async def list_incomplete(self) -> Sequence[ResolutionCommand]:
        ...

    async def list_retryable(self, stale_before: datetime) -> Sequence[ResolutionCommand]:
        """Failed commands, plus running ones whose claim is older than ``stale_before``."""

    async def claim_command(
        self, command_id: str, *, now: datetime, stale_before: datetime
    ) -> Optional[ResolutionCommand]:
        """Atomically mark a retryable command ``running``; ``None`` when another runner holds it."""


def _newest_first(items: Sequence[Report]) -> list[Any]:
    return sorted(items, key=lambda item: item.created_at, reverse=True)


class InMemoryReportRepository(ReportRepository):
    """Reference repository used in tests and developer environments."""

    def __init__(self) -> None:
        self.reports: dict[str, Report] = {}
        self.comment_reports: dict[str, CommentReport] = {}

    async def save(self, report: Report) -> Report:
        self.reports[report.id] = replace(report)
        return report

    async def get_by_id(self, report_id: str) -> Optional[Report]:
        stored = self.reports.get(report_id)
        return replace(stored) if stored else None

    async def update(self, report_id: str, changes: Mapping[str, Any]) -> Report:
        stored = self.reports.get(report_id)
        if stored is None:
            raise KeyError(report_id)
        updated = replace(stored, **dict(changes))
        self.reports[report_id] = updated
        return replace(updated)

    async def delete(self, report_id: str) -> None:
        self.reports.pop(report_id, None)

    async def get_with_filters(self, filters: ReportFilters) -> Sequence[Report]:
        return [replace(item) for item in _newest_first([r for r in self.reports.values() if filters.matches(r)])]

    async def get_by_reporter(self, reporter_id: str) -> Sequence[Report]:
        return await self.get_with_filters(ReportFilters(reporter_id=reporter_id))

    async def get_all(self) -> Sequence[Report]:
        return [replace(item) for item in _newest_first(list(self.reports.values()))]

    async def save_comment_report(self, report: CommentReport) -> CommentReport:
        self.comment_reports[report.id] = replace(report)
        return report

    async def get_comment_report(self, report_id: str) -> Optional[CommentReport]:
        stored = self.comment_reports.get(report_id)
        return replace(stored) if stored else None

    async def update_comment_report(self, report_id: str, changes: Mapping[str, Any]) -> CommentReport:
        stored = self.comment_reports.get(report_id)
        if stored is None:
            raise KeyError(report_id)
        updated = replace(stored, **dict(changes))
        self.comment_reports[report_id] = updated
        return replace(updated)

    async def get_comment_reports_with_filters(self, filters: ReportFilters) -> Sequence[CommentReport]:
        matches = [r for r in self.comment_reports.values() if filters.matches(r)]
        return [replace(item) for item in _newest_first(matches)]

    async def get_all_comment_reports(self) -> Sequence[CommentReport]:
        return [replace(item) for item in _newest_first(list(self.comment_reports.values()))]


class InMemorySuspensionRepository(SuspensionRepository):
    def __init__(self) -> None:
        self.items: dict[str, Suspension] = {}

    async def save_suspension(self, suspension: Suspension) -> Suspension:
        self.items[suspension.id] = replace(suspension)
        return suspension

    async def get_suspension(self, suspension_id: str) -> Optional[Suspension]:
        stored = self.items.get(suspension_id)
        return replace(stored) if stored else None

    async def get_user_suspensions(self, user_id: str) -> Sequence[Suspension]:
        return [replace(item) for item in self.items.values() if item.user_id == user_id]

    async def update_suspension(self, suspension_id: str, changes: Mapping[str, Any]) -> Suspension:
        stored = self.items.get(suspension_id)
        if stored is None:
            raise KeyError(suspension_id)
        updated = replace(stored, **dict(changes))
        self.items[suspension_id] = updated
        return replace(updated)

    async def get_active_suspensions(self) -> Sequence[Suspension]:
        return [replace(item) for item in self.items.values() if item.is_active]

    async def get_all_suspensions(self) -> Sequence[Suspension]:
        return [replace(item) for item in self.items.values()]


class InMemoryResolutionCommandRepository(ResolutionCommandRepository):
    def __init__(self) -> None:
        self.commands: dict[str, ResolutionCommand] = {}

    async def save_command(self, command: ResolutionCommand) -> ResolutionCommand:
        self.commands[command.id] = command
        return command

    async def mark_step_completed(self, command_id: str, step: str) -> ResolutionCommand:
        command = self.commands[command_id]
        if step not in command.completed_steps:
            command.completed_steps.append(step)
        return command

    async def set_command_status(self, command_id: str, status: str, error: Optional[str] = None) -> ResolutionCommand:
        command = self.commands[command_id]
        command.status = status
        command.last_error = error
        return command

    async def list_incomplete(self) -> Sequence[ResolutionCommand]:
        return [command for command in self.commands.values() if command.status != "completed"]

    async def list_retryable(self, stale_before: datetime) -> Sequence[ResolutionCommand]:
        return [command for command in self.commands.values() if _retryable(command, stale_before)]

    async def claim_command(
        self, command_id: str, *, now: datetime, stale_before: datetime
    ) -> Optional[ResolutionCommand]:
        command = self.commands.get(command_id)
        if command is None or not _retryable(command, stale_before):
            return None
        command.status = "running"
        command.claimed_at = now
        return command


def _retryable(command: ResolutionCommand, stale_before: datetime) -> bool:
    if command.status == "failed":
        return True
    if command.status in ("pending", "running"):
        return (command.claimed_at or command.created_at) < stale_before
    return False
