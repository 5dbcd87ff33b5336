"""PostgreSQL persistence for reports, suspensions, resolution commands and reputation."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

import asyncpg

from safety_core.moderation.domain.models import (
    CommentReport,
    ContentType,
    Report,
    ReportCategory,
    ReportFilters,
    ReportPriority,
    ReportStatus,
    Resolution,
    ResolutionAction,
    ResolutionCommand,
    ReputationLevel,
    Suspension,
    SuspensionType,
    UserReputation,
)
from safety_core.moderation.domain.repository import (
    ReportRepository,
    ResolutionCommandRepository,
    SuspensionRepository,
)
from safety_core.moderation.domain.reputation import ReputationEvent, ReputationRepository

_REPORT_COLUMNS = """
    id, content_type, content_id, comment_id, reporter_id, reporter_display_name, reporter_reputation,
    category, priority, status, reason, evidence, reputation_weight, created_at, updated_at,
    reviewed_at, reviewed_by, resolution_action, resolution_reason, resolution_moderator_id,
    resolution_at, resolution_notes
"""

_SUSPENSION_COLUMNS = """
    id, user_id, reason, type, duration, start_date, end_date, is_active, appealable,
    moderator_id, created_at, updated_at
"""

_COMMAND_COLUMNS = """
    id, report_id, content_type, action, steps, completed_steps, status, last_error,
    target_id, reporter_id, moderator_id, reason, author_id, created_at, claimed_at
"""

# A failed command, or a running one whose claim has outlived its lease ($1)
_RETRYABLE_CLAUSE = """
    (status = 'failed'
     OR (status IN ('pending', 'running') AND COALESCE(claimed_at, created_at) < $1))
"""

# Report fields that map one-to-one onto a column
_REPORT_FIELDS = frozenset(
    {
        "reporter_display_name",
        "reporter_reputation",
        "category",
        "priority",
        "status",
        "reason",
        "evidence",
        "reputation_weight",
        "updated_at",
        "reviewed_at",
        "reviewed_by",
    }
)

_SUSPENSION_FIELDS = frozenset(
    {"reason", "type", "duration", "start_date", "end_date", "is_active", "appealable", "moderator_id", "updated_at"}
)


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _resolution_from_row(row: asyncpg.Record) -> Optional[Resolution]:
    if row["resolution_action"] is None:
        return None
    return Resolution(
        action=ResolutionAction(str(row["resolution_action"])),
        reason=str(row["resolution_reason"] or ""),
        moderator_id=str(row["resolution_moderator_id"] or ""),
        timestamp=row["resolution_at"],
        notes=row["resolution_notes"],
    )


def _row_to_report(row: asyncpg.Record) -> Report | CommentReport:
    common = dict(
        id=str(row["id"]),
        content_id=str(row["content_id"]),
        reporter_id=str(row["reporter_id"]),
        reporter_display_name=str(row["reporter_display_name"]),
        reporter_reputation=int(row["reporter_reputation"]),
        category=ReportCategory(str(row["category"])),
        priority=ReportPriority(str(row["priority"])),
        status=ReportStatus(str(row["status"])),
        reason=str(row["reason"]),
        evidence=row["evidence"],
        reputation_weight=float(row["reputation_weight"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        reviewed_at=row["reviewed_at"],
        reviewed_by=str(row["reviewed_by"]) if row["reviewed_by"] is not None else None,
        resolution=_resolution_from_row(row),
    )
    if row["content_type"] == ContentType.COMMENT.value:
        return CommentReport(comment_id=str(row["comment_id"]), **common)
    return Report(**common)


def _row_to_suspension(row: asyncpg.Record) -> Suspension:
    return Suspension(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        reason=str(row["reason"]),
        type=SuspensionType(str(row["type"])),
        duration=row["duration"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        is_active=bool(row["is_active"]),
        appealable=bool(row["appealable"]),
        moderator_id=str(row["moderator_id"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_command(row: asyncpg.Record) -> ResolutionCommand:
    return ResolutionCommand(
        id=str(row["id"]),
        report_id=str(row["report_id"]),
        content_type=ContentType(str(row["content_type"])),
        action=ResolutionAction(str(row["action"])),
        steps=tuple(row["steps"] or ()),
        completed_steps=list(row["completed_steps"] or ()),
        status=str(row["status"]),
        last_error=row["last_error"],
        target_id=str(row["target_id"]),
        reporter_id=str(row["reporter_id"]),
        moderator_id=str(row["moderator_id"]),
        reason=str(row["reason"]),
        author_id=str(row["author_id"]) if row["author_id"] is not None else None,
        created_at=row["created_at"],
        claimed_at=row["claimed_at"],
    )


def _report_assignments(changes: Mapping[str, Any]) -> tuple[list[str], list[Any]]:
    columns: list[str] = []
    values: list[Any] = []
    for key, value in changes.items():
        if key == "resolution":
            resolution: Optional[Resolution] = value
            columns.extend(
                [
                    "resolution_action",
                    "resolution_reason",
                    "resolution_moderator_id",
                    "resolution_at",
                    "resolution_notes",
                ]
            )
            if resolution is None:
                values.extend([None, None, None, None, None])
            else:
                values.extend(
                    [
                        _db_value(resolution.action),
                        resolution.reason,
                        resolution.moderator_id,
                        resolution.timestamp,
                        resolution.notes,
                    ]
                )
            continue
        if key not in _REPORT_FIELDS:
            raise ValueError(f"unsupported report column: {key}")
        columns.append(key)
        values.append(_db_value(value))
    return columns, values


def _filter_clause(filters: ReportFilters, content_type: ContentType) -> tuple[str, list[Any]]:
    clauses = ["content_type = $1"]
    params: list[Any] = [content_type.value]
    for column, value in (
        ("content_id", filters.content_id),
        ("comment_id", filters.comment_id),
        ("reporter_id", filters.reporter_id),
        ("status", _db_value(filters.status)),
        ("category", _db_value(filters.category)),
        ("priority", _db_value(filters.priority)),
    ):
        if value is not None:
            params.append(value)
            clauses.append(f"{column} = ${len(params)}")
    if filters.created_after is not None:
        params.append(filters.created_after)
        clauses.append(f"created_at >= ${len(params)}")
    if filters.created_before is not None:
        params.append(filters.created_before)
        clauses.append(f"created_at <= ${len(params)}")
    return " AND ".join(clauses), params


class PostgresReportRepository(ReportRepository):
    """Stores whisper and comment reports in mod_report, keyed by content_type."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def _insert(self, report: Report | CommentReport) -> Report | CommentReport:
        resolution = report.resolution
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO mod_report ({_REPORT_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18, $19, $20, $21, $22)
            RETURNING {_REPORT_COLUMNS}
            """,
            report.id,
            report.content_type.value,
            report.content_id,
            getattr(report, "comment_id", None),
            report.reporter_id,
            report.reporter_display_name,
            report.reporter_reputation,
            report.category.value,
            report.priority.value,
            report.status.value,
            report.reason,
            report.evidence,
            report.reputation_weight,
            report.created_at,
            report.updated_at,
            report.reviewed_at,
            report.reviewed_by,
            resolution.action.value if resolution else None,
            resolution.reason if resolution else None,
            resolution.moderator_id if resolution else None,
            resolution.timestamp if resolution else None,
            resolution.notes if resolution else None,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert report")
        return _row_to_report(row)

    async def _get(self, report_id: str, content_type: ContentType) -> Report | CommentReport | None:
        row = await self._pool.fetchrow(
            f"SELECT {_REPORT_COLUMNS} FROM mod_report WHERE id = $1 AND content_type = $2",
            report_id,
            content_type.value,
        )
        if row is None:
            return None
        return _row_to_report(row)

    async def _update(
        self, report_id: str, content_type: ContentType, changes: Mapping[str, Any]
    ) -> Report | CommentReport:
        columns, values = _report_assignments(changes)
        if not columns:
            existing = await self._get(report_id, content_type)
            if existing is None:
                raise KeyError(report_id)
            return existing
        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=3))
        row = await self._pool.fetchrow(
            f"""
            UPDATE mod_report SET {assignments}
            WHERE id = $1 AND content_type = $2
            RETURNING {_REPORT_COLUMNS}
            """,
            report_id,
            content_type.value,
            *values,
        )
        if row is None:
            raise KeyError(report_id)
        return _row_to_report(row)

    async def _query(self, filters: ReportFilters, content_type: ContentType) -> list[Report | CommentReport]:
        where, params = _filter_clause(filters, content_type)
        rows = await self._pool.fetch(
            f"SELECT {_REPORT_COLUMNS} FROM mod_report WHERE {where} ORDER BY created_at DESC",
            *params,
        )
        return [_row_to_report(row) for row in rows]

    async def save(self, report: Report) -> Report:
        return await self._insert(report)

    async def get_by_id(self, report_id: str) -> Optional[Report]:
        return await self._get(report_id, ContentType.WHISPER)

    async def update(self, report_id: str, changes: Mapping[str, Any]) -> Report:
        return await self._update(report_id, ContentType.WHISPER, changes)

    async def delete(self, report_id: str) -> None:
        await self._pool.execute("DELETE FROM mod_report WHERE id = $1", report_id)

    async def get_with_filters(self, filters: ReportFilters) -> Sequence[Report]:
        return await self._query(filters, ContentType.WHISPER)

    async def get_by_reporter(self, reporter_id: str) -> Sequence[Report]:
        return await self._query(ReportFilters(reporter_id=reporter_id), ContentType.WHISPER)

    async def get_all(self) -> Sequence[Report]:
        return await self._query(ReportFilters(), ContentType.WHISPER)

    async def save_comment_report(self, report: CommentReport) -> CommentReport:
        return await self._insert(report)

    async def get_comment_report(self, report_id: str) -> Optional[CommentReport]:
        return await self._get(report_id, ContentType.COMMENT)

    async def update_comment_report(self, report_id: str, changes: Mapping[str, Any]) -> CommentReport:
        return await self._update(report_id, ContentType.COMMENT, changes)

    async def get_comment_reports_with_filters(self, filters: ReportFilters) -> Sequence[CommentReport]:
        return await self._query(filters, ContentType.COMMENT)

    async def get_all_comment_reports(self) -> Sequence[CommentReport]:
        return await self._query(ReportFilters(), ContentType.COMMENT)


class PostgresSuspensionRepository(SuspensionRepository):
    """Stores suspensions in mod_suspension."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def save_suspension(self, suspension: Suspension) -> Suspension:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO mod_suspension ({_SUSPENSION_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING {_SUSPENSION_COLUMNS}
            """,
            suspension.id,
            suspension.user_id,
            suspension.reason,
            suspension.type.value,
            suspension.duration,
            suspension.start_date,
            suspension.end_date,
            suspension.is_active,
            suspension.appealable,
            suspension.moderator_id,
            suspension.created_at,
            suspension.updated_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert suspension")
        return _row_to_suspension(row)

    async def get_suspension(self, suspension_id: str) -> Optional[Suspension]:
        row = await self._pool.fetchrow(
            f"SELECT {_SUSPENSION_COLUMNS} FROM mod_suspension WHERE id = $1",
            suspension_id,
        )
        if row is None:
            return None
        return _row_to_suspension(row)

    async def get_user_suspensions(self, user_id: str) -> Sequence[Suspension]:
        rows = await self._pool.fetch(
            f"SELECT {_SUSPENSION_COLUMNS} FROM mod_suspension WHERE user_id = $1 ORDER BY created_at DESC",
            user_id,
        )
        return [_row_to_suspension(row) for row in rows]

    async def update_suspension(self, suspension_id: str, changes: Mapping[str, Any]) -> Suspension:
        unknown = set(changes) - _SUSPENSION_FIELDS
        if unknown:
            raise ValueError(f"unsupported suspension columns: {sorted(unknown)}")
        columns = list(changes)
        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=2))
        row = await self._pool.fetchrow(
            f"""
            UPDATE mod_suspension SET {assignments}
            WHERE id = $1
            RETURNING {_SUSPENSION_COLUMNS}
            """,
            suspension_id,
            *[_db_value(changes[column]) for column in columns],
        )
        if row is None:
            raise KeyError(suspension_id)
        return _row_to_suspension(row)

    async def get_active_suspensions(self) -> Sequence[Suspension]:
        rows = await self._pool.fetch(
            f"SELECT {_SUSPENSION_COLUMNS} FROM mod_suspension WHERE is_active ORDER BY end_date ASC"
        )
        return [_row_to_suspension(row) for row in rows]

    async def get_all_suspensions(self) -> Sequence[Suspension]:
        rows = await self._pool.fetch(f"SELECT {_SUSPENSION_COLUMNS} FROM mod_suspension ORDER BY created_at DESC")
        return [_row_to_suspension(row) for row in rows]


class PostgresResolutionCommandRepository(ResolutionCommandRepository):
    """Stores resolution commands in mod_resolution_command."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def save_command(self, command: ResolutionCommand) -> ResolutionCommand:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO mod_resolution_command ({_COMMAND_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
            RETURNING {_COMMAND_COLUMNS}
            """,
            command.id,
            command.report_id,
            command.content_type.value,
            command.action.value,
            [_db_value(step) for step in command.steps],
            [_db_value(step) for step in command.completed_steps],
            command.status,
            command.last_error,
            command.target_id,
            command.reporter_id,
            command.moderator_id,
            command.reason,
            command.author_id,
            command.created_at,
            command.claimed_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert resolution command")
        return _row_to_command(row)

    async def mark_step_completed(self, command_id: str, step: str) -> ResolutionCommand:
        row = await self._pool.fetchrow(
            f"""
            UPDATE mod_resolution_command
            SET completed_steps = CASE
                WHEN $2 = ANY(completed_steps) THEN completed_steps
                ELSE array_append(completed_steps, $2)
            END
            WHERE id = $1
            RETURNING {_COMMAND_COLUMNS}
            """,
            command_id,
            _db_value(step),
        )
        if row is None:
            raise KeyError(command_id)
        return _row_to_command(row)

    async def set_command_status(self, command_id: str, status: str, error: Optional[str] = None) -> ResolutionCommand:
        row = await self._pool.fetchrow(
            f"""
            UPDATE mod_resolution_command SET status = $2, last_error = $3
            WHERE id = $1
            RETURNING {_COMMAND_COLUMNS}
            """,
            command_id,
            status,
            error,
        )
        if row is None:
            raise KeyError(command_id)
        return _row_to_command(row)

    async def list_incomplete(self) -> Sequence[ResolutionCommand]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_COMMAND_COLUMNS} FROM mod_resolution_command
            WHERE status <> 'completed'
            ORDER BY created_at ASC
            """
        )
        return [_row_to_command(row) for row in rows]

    async def list_retryable(self, stale_before: datetime) -> Sequence[ResolutionCommand]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_COMMAND_COLUMNS} FROM mod_resolution_command
            WHERE {_RETRYABLE_CLAUSE}
            ORDER BY created_at ASC
            """,
            stale_before,
        )
        return [_row_to_command(row) for row in rows]

    async def claim_command(
        self, command_id: str, *, now: datetime, stale_before: datetime
    ) -> Optional[ResolutionCommand]:
        row = await self._pool.fetchrow(
            f"""
            UPDATE mod_resolution_command SET status = 'running', claimed_at = $2
            WHERE id = $3 AND {_RETRYABLE_CLAUSE}
            RETURNING {_COMMAND_COLUMNS}
            """,
            stale_before,
            now,
            command_id,
        )
        if row is None:
            return None
        return _row_to_command(row)


class PostgresReputationRepository(ReputationRepository):
    """Reputation snapshot in mod_user_reputation plus the mod_reputation_event trail."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self, user_id: str) -> UserReputation | None:
        row = await self._pool.fetchrow(
            "SELECT user_id, score, level FROM mod_user_reputation WHERE user_id = $1",
            user_id,
        )
        if row is None:
            return None
        return UserReputation(
            user_id=str(row["user_id"]),
            score=int(row["score"]),
            level=ReputationLevel(str(row["level"])),
        )

    async def upsert(self, reputation: UserReputation) -> UserReputation:
        await self._pool.execute(
            """
            INSERT INTO mod_user_reputation (user_id, score, level, updated_at)
            VALUES ($1, $2, $3, now())
            ON CONFLICT (user_id) DO UPDATE
            SET score = EXCLUDED.score, level = EXCLUDED.level, updated_at = now()
            """,
            reputation.user_id,
            reputation.score,
            reputation.level.value,
        )
        return reputation

    async def insert_event(self, event: ReputationEvent) -> None:
        await self._pool.execute(
            """
            INSERT INTO mod_reputation_event (user_id, delta, reason, created_at)
            VALUES ($1, $2, $3, $4)
            """,
            event.user_id,
            event.delta,
            event.reason,
            event.created_at,
        )

    async def list_events(self, user_id: str, limit: int = 20) -> Sequence[ReputationEvent]:
        rows = await self._pool.fetch(
            """
            SELECT user_id, delta, reason, created_at
            FROM mod_reputation_event
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
            user_id,
            limit,
        )
        return [
            ReputationEvent(
                user_id=str(row["user_id"]),
                delta=int(row["delta"]),
                reason=str(row["reason"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]
