"""Reputation collaborator contract plus a ledger-backed reference implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

from safety_core.moderation.domain.models import ReputationLevel, UserReputation
from safety_core.obs import metrics

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_SCORE = 75

LEVEL_THRESHOLDS: tuple[tuple[int, ReputationLevel], ...] = (
    (90, ReputationLevel.TRUSTED),
    (75, ReputationLevel.VERIFIED),
    (50, ReputationLevel.STANDARD),
    (25, ReputationLevel.FLAGGED),
)


def level_for_score(score: int) -> ReputationLevel:
    """Map raw score to the reputation level thresholds."""

    for minimum, level in LEVEL_THRESHOLDS:
        if score >= minimum:
            return level
    return ReputationLevel.BANNED


def clamp(value: int, minimum: int = 0, maximum: int = 100) -> int:
    return max(minimum, min(maximum, value))


class ReputationGateway(Protocol):
    """What the moderation core needs from the reputation subsystem."""

    async def get_user_reputation(self, user_id: str) -> UserReputation:
        ...

    async def adjust_user_reputation_score(self, user_id: str, delta: int, reason: str) -> UserReputation:
        ...

    async def update_user_reputation(self, user_id: str, patch: Mapping[str, Any]) -> UserReputation:
        ...


@dataclass(slots=True)
class ReputationEvent:
    """Immutable event describing a reputation adjustment."""

    user_id: str
    delta: int
    reason: str
    created_at: datetime
    meta: Mapping[str, object] = field(default_factory=dict)


class ReputationRepository(Protocol):
    async def get(self, user_id: str) -> UserReputation | None:
        ...

    async def upsert(self, reputation: UserReputation) -> UserReputation:
        ...

    async def insert_event(self, event: ReputationEvent) -> None:
        ...

    async def list_events(self, user_id: str, limit: int = 20) -> Sequence[ReputationEvent]:
        ...


class ReputationLedger(ReputationGateway):
    """Bounded score keeping with an append-only event trail."""

    def __init__(
        self,
        repository: ReputationRepository,
        *,
        initial_score: int = DEFAULT_INITIAL_SCORE,
        min_score: int = 0,
        max_score: int = 100,
    ) -> None:
        self._repo = repository
        self._initial_score = initial_score
        self._min_score = min_score
        self._max_score = max_score

    async def get_user_reputation(self, user_id: str) -> UserReputation:
        """Return the current reputation, seeding a default record when absent."""

        existing = await self._repo.get(user_id)
        if existing:
            return existing
        seeded = UserReputation(
            user_id=user_id,
            score=self._initial_score,
            level=level_for_score(self._initial_score),
        )
        return await self._repo.upsert(seeded)

    async def adjust_user_reputation_score(self, user_id: str, delta: int, reason: str) -> UserReputation:
        await self._repo.insert_event(
            ReputationEvent(user_id=user_id, delta=delta, reason=reason, created_at=datetime.now(timezone.utc))
        )
        current = await self.get_user_reputation(user_id)
        score = clamp(current.score + delta, self._min_score, self._max_score)
        updated = UserReputation(user_id=user_id, score=score, level=level_for_score(score))
        metrics.record_reputation_adjustment(reason.split(":", 1)[0], delta)
        logger.info(
            "reputation adjusted",
            extra={"user_id": user_id, "delta": delta, "score": score, "level": updated.level.value},
        )
        return await self._repo.upsert(updated)

    async def update_user_reputation(self, user_id: str, patch: Mapping[str, Any]) -> UserReputation:
        current = await self.get_user_reputation(user_id)
        score = clamp(int(patch.get("score", current.score)), self._min_score, self._max_score)
        level = patch.get("level")
        updated = UserReputation(
            user_id=user_id,
            score=score,
            level=ReputationLevel(level) if level is not None else level_for_score(score),
        )
        return await self._repo.upsert(updated)

    async def list_recent_events(self, user_id: str, limit: int = 20) -> Sequence[ReputationEvent]:
        return await self._repo.list_events(user_id, limit=limit)


class InMemoryReputationRepository(ReputationRepository):
    """Reference repository used in tests and developer environments."""

    def __init__(self) -> None:
        self.scores: dict[str, UserReputation] = {}
        self.events: list[ReputationEvent] = []

    async def get(self, user_id: str) -> UserReputation | None:
        return self.scores.get(user_id)

    async def upsert(self, reputation: UserReputation) -> UserReputation:
        self.scores[reputation.user_id] = reputation
        return reputation

    async def insert_event(self, event: ReputationEvent) -> None:
        self.events.append(event)

    async def list_events(self, user_id: str, limit: int = 20) -> Sequence[ReputationEvent]:
        filtered = [evt for evt in reversed(self.events) if evt.user_id == user_id]
        return filtered[:limit]
