"""Suspension lifecycle: creation, moderator review, automatic progression and expiry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence, Union
from uuid import uuid4

from safety_core.moderation.domain.errors import (
    CannotModifyInactive,
    CannotModifyPermanent,
    CannotModifyWarning,
    CollaboratorFailure,
    SuspensionNotFound,
    SuspensionValidationError,
)
from safety_core.moderation.domain.models import ReviewAction, Suspension, SuspensionType
from safety_core.moderation.domain.repository import SuspensionRepository
from safety_core.moderation.domain.reputation import ReputationGateway
from safety_core.moderation.domain.statistics import SuspensionStats, suspension_stats
from safety_core.moderation.domain.thresholds import SanctionPolicy
from safety_core.obs import metrics

logger = logging.getLogger(__name__)

SYSTEM_MODERATOR = "system"


@dataclass(frozen=True)
class WarningTerm:
    """A recorded warning; never restricts the user."""


@dataclass(frozen=True)
class TemporaryTerm:
    duration: timedelta

    def __post_init__(self) -> None:
        if self.duration is None or self.duration <= timedelta(0):
            raise SuspensionValidationError("Temporary suspensions require a positive duration")


@dataclass(frozen=True)
class PermanentTerm:
    """Open-ended suspension, only lifted by a moderator."""


SuspensionTerm = Union[WarningTerm, TemporaryTerm, PermanentTerm]


def term_for(suspension_type: SuspensionType | str, duration: Optional[timedelta] = None) -> SuspensionTerm:
    """Build a term from raw moderator input, rejecting durations that do not fit the type."""

    kind = SuspensionType(suspension_type)
    match kind:
        case SuspensionType.WARNING:
            return WarningTerm()
        case SuspensionType.TEMPORARY:
            if not duration:
                raise SuspensionValidationError("Temporary suspensions require a duration")
            return TemporaryTerm(duration)
        case SuspensionType.PERMANENT:
            if duration is not None:
                raise SuspensionValidationError("Permanent suspensions cannot have a duration")
            return PermanentTerm()


def _review_delta(new_duration: Optional[timedelta]) -> timedelta:
    if new_duration is None or new_duration <= timedelta(0):
        raise SuspensionValidationError("Extending or reducing a suspension requires a positive duration")
    return new_duration


def _type_of(term: SuspensionTerm) -> SuspensionType:
    match term:
        case WarningTerm():
            return SuspensionType.WARNING
        case TemporaryTerm():
            return SuspensionType.TEMPORARY
        case PermanentTerm():
            return SuspensionType.PERMANENT
    raise TypeError(f"unsupported suspension term: {term!r}")


@dataclass(slots=True)
class SuspensionStatus:
    suspended: bool
    suspensions: list[Suspension]
    can_appeal: bool


@dataclass(slots=True)
class ExpirySweepResult:
    expired: list[str] = field(default_factory=list)
    restored: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class SuspensionService:
    """Owns every transition of a user's suspension records."""

    def __init__(
        self,
        repository: SuspensionRepository,
        reputation: ReputationGateway,
        *,
        policy: SanctionPolicy | None = None,
    ) -> None:
        self._repo = repository
        self._reputation = reputation
        self._policy = policy or SanctionPolicy()

    @property
    def policy(self) -> SanctionPolicy:
        return self._policy

    async def create_suspension(
        self,
        *,
        user_id: str,
        reason: str,
        term: SuspensionTerm,
        moderator_id: str = SYSTEM_MODERATOR,
        appealable: Optional[bool] = None,
        now: datetime | None = None,
    ) -> Suspension:
        now = now or datetime.now(timezone.utc)
        kind = _type_of(term)
        duration: Optional[timedelta] = None
        match term:
            case WarningTerm():
                end_date = now
            case TemporaryTerm(duration=length):
                duration = length
                end_date = now + length
            case PermanentTerm():
                end_date = now + self._policy.permanent_horizon
        if kind is SuspensionType.PERMANENT:
            appealable = False
        elif appealable is None:
            appealable = True
        suspension = Suspension(
            id=f"suspension-{uuid4().hex}",
            user_id=user_id,
            reason=reason,
            type=kind,
            duration=duration,
            start_date=now,
            end_date=end_date,
            is_active=True,
            appealable=appealable,
            moderator_id=moderator_id,
            created_at=now,
            updated_at=now,
        )
        try:
            stored = await self._repo.save_suspension(suspension)
        except Exception as exc:
            raise CollaboratorFailure("create_suspension", exc) from exc
        if kind is not SuspensionType.WARNING:
            await self._adjust_reputation(user_id, self._policy.suspension_penalty, f"suspension: {kind.value}")
        metrics.MOD_SUSPENSION_TRANSITIONS_TOTAL.labels(transition="created", type=kind.value).inc()
        logger.info(
            "suspension created",
            extra={"suspension_id": stored.id, "user_id": user_id, "type": kind.value, "moderator_id": moderator_id},
        )
        return stored

    async def get_suspension(self, suspension_id: str) -> Optional[Suspension]:
        return await self._repo.get_suspension(suspension_id)

    async def get_user_suspensions(self, user_id: str) -> Sequence[Suspension]:
        return await self._repo.get_user_suspensions(user_id)

    async def get_user_active_suspensions(self, user_id: str, *, now: datetime | None = None) -> list[Suspension]:
        now = now or datetime.now(timezone.utc)
        suspensions = await self._repo.get_user_suspensions(user_id)
        return [item for item in suspensions if item.is_in_effect(now)]

    async def is_user_suspended(self, user_id: str, *, now: datetime | None = None) -> SuspensionStatus:
        active = await self.get_user_active_suspensions(user_id, now=now)
        return SuspensionStatus(
            suspended=bool(active),
            suspensions=active,
            can_appeal=any(item.appealable for item in active),
        )

    async def review_suspension(
        self,
        *,
        suspension_id: str,
        action: ReviewAction | str,
        reason: str,
        moderator_id: str,
        new_duration: Optional[timedelta] = None,
        now: datetime | None = None,
    ) -> Suspension:
        now = now or datetime.now(timezone.utc)
        action = ReviewAction(action)
        suspension = await self._repo.get_suspension(suspension_id)
        if suspension is None:
            raise SuspensionNotFound(suspension_id)
        if not suspension.is_active:
            raise CannotModifyInactive("Cannot modify inactive suspension")
        if suspension.type is SuspensionType.WARNING:
            raise CannotModifyWarning("Warnings cannot be reviewed")

        changes: dict[str, object] = {"updated_at": now}
        match action:
            case ReviewAction.EXTEND:
                if suspension.type is SuspensionType.PERMANENT:
                    raise CannotModifyPermanent("Cannot extend permanent suspension")
                changes["end_date"] = suspension.end_date + _review_delta(new_duration)
            case ReviewAction.REDUCE:
                if suspension.type is SuspensionType.PERMANENT:
                    raise CannotModifyPermanent("Cannot reduce permanent suspension")
                # Never before the start, and never in the past
                changes["end_date"] = max(
                    suspension.end_date - _review_delta(new_duration), suspension.start_date, now
                )
            case ReviewAction.REMOVE:
                changes["is_active"] = False
                changes["end_date"] = now
            case ReviewAction.MAKE_PERMANENT:
                changes["type"] = SuspensionType.PERMANENT
                changes["duration"] = None
                changes["end_date"] = now + self._policy.permanent_horizon
                changes["appealable"] = False

        try:
            updated = await self._repo.update_suspension(suspension_id, changes)
        except Exception as exc:
            raise CollaboratorFailure("review_suspension", exc) from exc
        metrics.MOD_SUSPENSION_TRANSITIONS_TOTAL.labels(transition=action.value, type=updated.type.value).inc()
        logger.info(
            "suspension reviewed",
            extra={
                "suspension_id": suspension_id,
                "action": action.value,
                "moderator_id": moderator_id,
                "review_reason": reason,
            },
        )
        return updated

    def term_for_violation(self, violation_count: int) -> SuspensionTerm:
        """Sanction ladder: warning, 24h, 7 days, then permanent."""

        if violation_count <= 1:
            return WarningTerm()
        if violation_count == 2:
            return TemporaryTerm(self._policy.temporary_duration)
        if violation_count == 3:
            return TemporaryTerm(self._policy.extended_duration)
        return PermanentTerm()

    async def create_automatic_suspension(
        self,
        user_id: str,
        violation_count: int,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> Optional[Suspension]:
        term = self.term_for_violation(violation_count)
        if isinstance(term, WarningTerm):
            logger.info("warning recorded", extra={"user_id": user_id, "violation_reason": reason})
            metrics.MOD_SUSPENSION_TRANSITIONS_TOTAL.labels(transition="warning_logged", type="warning").inc()
            return None
        return await self.create_suspension(
            user_id=user_id,
            reason=f"Automatic suspension: {reason} (violation #{violation_count})",
            term=term,
            moderator_id=SYSTEM_MODERATOR,
            now=now,
        )

    async def check_suspension_expiration(self, *, now: datetime | None = None) -> ExpirySweepResult:
        """Deactivate every lapsed suspension; one failing record never stops the sweep."""

        now = now or datetime.now(timezone.utc)
        result = ExpirySweepResult()
        active = await self._repo.get_active_suspensions()
        metrics.MOD_SUSPENSIONS_ACTIVE.set(len(active))
        for suspension in active:
            if not suspension.is_active or suspension.end_date > now:
                continue
            try:
                await self._expire(suspension, now=now, result=result)
            except Exception:  # noqa: BLE001 - retried on the next sweep
                result.failed.append(suspension.id)
                logger.exception("failed to expire suspension", extra={"suspension_id": suspension.id})
        return result

    async def _expire(self, suspension: Suspension, *, now: datetime, result: ExpirySweepResult) -> None:
        # A concurrent review may have lifted it since the scan
        current = await self._repo.get_suspension(suspension.id)
        if current is None or not current.is_active or current.end_date > now:
            return
        # The record stays active until the bonus lands
        restores = current.type is SuspensionType.TEMPORARY
        if restores:
            await self._reputation.adjust_user_reputation_score(
                current.user_id,
                self._policy.restoration_bonus,
                "suspension_expired: reputation restored",
            )
        await self._repo.update_suspension(current.id, {"is_active": False, "updated_at": now})
        result.expired.append(current.id)
        if restores:
            result.restored.append(current.id)
        metrics.MOD_SUSPENSION_TRANSITIONS_TOTAL.labels(transition="expired", type=current.type.value).inc()
        logger.info("suspension expired", extra={"suspension_id": current.id, "type": current.type.value})

    async def get_suspension_stats(self, *, now: datetime | None = None) -> SuspensionStats:
        return suspension_stats(await self._repo.get_all_suspensions(), now=now)

    async def _adjust_reputation(self, user_id: str, delta: int, reason: str) -> None:
        try:
            await self._reputation.adjust_user_reputation_score(user_id, delta, reason)
        except Exception:  # noqa: BLE001 - the suspension itself is already recorded
            logger.exception("failed to apply suspension reputation penalty", extra={"user_id": user_id})
