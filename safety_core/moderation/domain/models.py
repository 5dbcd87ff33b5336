"""Records and closed vocabularies shared by the moderation services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union


class ContentType(str, Enum):
    WHISPER = "whisper"
    COMMENT = "comment"


class ReportCategory(str, Enum):
    HARASSMENT = "harassment"
    HATE_SPEECH = "hate_speech"
    VIOLENCE = "violence"
    SEXUAL_CONTENT = "sexual_content"
    SPAM = "spam"
    SCAM = "scam"
    COPYRIGHT = "copyright"
    PERSONAL_INFO = "personal_info"
    MINOR_SAFETY = "minor_safety"
    OTHER = "other"


class ReportPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]

    @classmethod
    def from_rank(cls, rank: int) -> "ReportPriority":
        if rank >= 4:
            return cls.CRITICAL
        if rank >= 3:
            return cls.HIGH
        if rank >= 2:
            return cls.MEDIUM
        return cls.LOW


_PRIORITY_RANKS = {
    ReportPriority.LOW: 1,
    ReportPriority.MEDIUM: 2,
    ReportPriority.HIGH: 3,
    ReportPriority.CRITICAL: 4,
}


class ReportStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in (ReportStatus.RESOLVED, ReportStatus.DISMISSED)


# Allowed forward moves; resolution is handled separately by the resolution engine.
STATUS_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.PENDING: frozenset(
        {ReportStatus.UNDER_REVIEW, ReportStatus.RESOLVED, ReportStatus.DISMISSED, ReportStatus.ESCALATED}
    ),
    ReportStatus.UNDER_REVIEW: frozenset({ReportStatus.RESOLVED, ReportStatus.DISMISSED, ReportStatus.ESCALATED}),
    ReportStatus.ESCALATED: frozenset({ReportStatus.RESOLVED, ReportStatus.DISMISSED}),
    ReportStatus.RESOLVED: frozenset(),
    ReportStatus.DISMISSED: frozenset(),
}


class ResolutionAction(str, Enum):
    WARN = "warn"
    FLAG = "flag"
    REJECT = "reject"
    BAN = "ban"
    DISMISS = "dismiss"
    HIDE = "hide"
    DELETE = "delete"


WHISPER_RESOLUTION_ACTIONS = frozenset(
    {
        ResolutionAction.WARN,
        ResolutionAction.FLAG,
        ResolutionAction.REJECT,
        ResolutionAction.BAN,
        ResolutionAction.DISMISS,
    }
)
COMMENT_RESOLUTION_ACTIONS = WHISPER_RESOLUTION_ACTIONS | {ResolutionAction.HIDE, ResolutionAction.DELETE}


class SuspensionType(str, Enum):
    WARNING = "warning"
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


class ReviewAction(str, Enum):
    EXTEND = "extend"
    REDUCE = "reduce"
    REMOVE = "remove"
    MAKE_PERMANENT = "make_permanent"


class EscalationAction(str, Enum):
    NONE = "none"
    FLAGGED_FOR_REVIEW = "flagged_for_review"
    AUTO_DELETE = "auto_delete"
    DELETE_AND_BAN = "delete_and_ban"
    ESCALATED = "escalated"
    USER_ESCALATION = "user_escalation"


class ReputationLevel(str, Enum):
    TRUSTED = "trusted"
    VERIFIED = "verified"
    STANDARD = "standard"
    FLAGGED = "flagged"
    BANNED = "banned"


@dataclass(slots=True)
class UserReputation:
    user_id: str
    score: int
    level: ReputationLevel


@dataclass(slots=True)
class Resolution:
    action: ResolutionAction
    reason: str
    moderator_id: str
    timestamp: datetime
    notes: Optional[str] = None


@dataclass(slots=True)
class Report:
    """A single user's flag of a whisper for a category of violation."""

    id: str
    content_id: str
    reporter_id: str
    reporter_display_name: str
    reporter_reputation: int
    category: ReportCategory
    priority: ReportPriority
    status: ReportStatus
    reason: str
    created_at: datetime
    updated_at: datetime
    reputation_weight: float
    evidence: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    resolution: Optional[Resolution] = None

    @property
    def content_type(self) -> ContentType:
        return ContentType.WHISPER

    @property
    def target_id(self) -> str:
        return self.content_id


@dataclass(slots=True)
class CommentReport(Report):
    """Report scoped to a comment; ``content_id`` is the parent whisper."""

    comment_id: str = ""

    @property
    def content_type(self) -> ContentType:
        return ContentType.COMMENT

    @property
    def target_id(self) -> str:
        return self.comment_id


AnyReport = Union[Report, CommentReport]


@dataclass(slots=True)
class ReportFilters:
    content_id: Optional[str] = None
    comment_id: Optional[str] = None
    reporter_id: Optional[str] = None
    status: Optional[ReportStatus] = None
    category: Optional[ReportCategory] = None
    priority: Optional[ReportPriority] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None

    def matches(self, report: AnyReport) -> bool:
        if self.content_id is not None and report.content_id != self.content_id:
            return False
        if self.comment_id is not None and getattr(report, "comment_id", None) != self.comment_id:
            return False
        if self.reporter_id is not None and report.reporter_id != self.reporter_id:
            return False
        if self.status is not None and report.status is not self.status:
            return False
        if self.category is not None and report.category is not self.category:
            return False
        if self.priority is not None and report.priority is not self.priority:
            return False
        if self.created_after is not None and report.created_at < self.created_after:
            return False
        if self.created_before is not None and report.created_at > self.created_before:
            return False
        return True


@dataclass(slots=True)
class Suspension:
    id: str
    user_id: str
    reason: str
    type: SuspensionType
    start_date: datetime
    end_date: datetime
    is_active: bool
    appealable: bool
    moderator_id: str
    created_at: datetime
    updated_at: datetime
    duration: Optional[timedelta] = None

    def is_in_effect(self, now: datetime) -> bool:
        return self.is_active and self.end_date > now


@dataclass(slots=True)
class Whisper:
    id: str
    user_id: str
    flagged: bool = False


@dataclass(slots=True)
class Comment:
    id: str
    whisper_id: str
    user_id: str
    hidden: bool = False


@dataclass(slots=True)
class ResolutionCommand:
    """Outbox record tracking which side effects of a resolution have run."""

    id: str
    report_id: str
    content_type: ContentType
    action: ResolutionAction
    steps: tuple[str, ...]
    created_at: datetime
    target_id: str = ""
    reporter_id: str = ""
    moderator_id: str = ""
    reason: str = ""
    author_id: Optional[str] = None
    completed_steps: list[str] = field(default_factory=list)
    status: str = "pending"
    last_error: Optional[str] = None
    claimed_at: Optional[datetime] = None

    @property
    def remaining_steps(self) -> tuple[str, ...]:
        return tuple(step for step in self.steps if step not in self.completed_steps)
