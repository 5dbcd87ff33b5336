"""Worker that acts on advisory escalation events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

from safety_core.moderation.domain.content import ContentGateway
from safety_core.moderation.domain.models import ContentType, EscalationAction, ReputationLevel
from safety_core.moderation.domain.reputation import ReputationGateway
from safety_core.moderation.domain.suspensions import SYSTEM_MODERATOR, SuspensionService, TemporaryTerm
from safety_core.moderation.infra.streams import ESCALATION_STREAM, decode_entry
from safety_core.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

# Authors already flagged and below this score get the extended automatic suspension
LOW_REPUTATION_SCORE = 30
LOW_REPUTATION_VIOLATION = 3


class RedisStream(Protocol):
    async def xread(
        self,
        streams: Mapping[str, str],
        count: int,
        block: int,
    ) -> list[tuple[str, list[tuple[str, Mapping[Any, Any]]]]]:
        ...

    async def get(self, name: str) -> Optional[str]:
        ...

    async def set(self, name: str, value: str) -> Any:
        ...


@dataclass
class EscalationWorker:
    """Consumes escalation events and applies the automatic remediation they call for.

    The last handled entry id is saved under ``<stream>:cursor`` so a restarted worker resumes
    where the previous one stopped instead of replaying the capped stream.
    """

    redis: RedisStream
    content: ContentGateway
    suspensions: SuspensionService
    reputation: ReputationGateway
    stream_key: str = ESCALATION_STREAM
    batch_size: int = 100
    block_ms: int = 5000
    last_id: Optional[str] = None

    @property
    def cursor_key(self) -> str:
        return f"{self.stream_key}:cursor"

    async def run_once(self) -> int:
        if self.last_id is None:
            self.last_id = await self.redis.get(self.cursor_key) or "0-0"
        messages = await self.redis.xread({self.stream_key: self.last_id}, count=self.batch_size, block=self.block_ms)
        if not messages:
            return 0
        handled = 0
        for _stream, entries in messages:
            for entry_id, payload in entries:
                try:
                    await self.handle_event(decode_entry(payload))
                    handled += 1
                except Exception:  # noqa: BLE001 - continue processing other entries
                    obs_metrics.MOD_ESCALATION_FAILURES_TOTAL.labels(stage="worker").inc()
                    logger.exception("failed to apply escalation", extra={"entry_id": str(entry_id)})
            if entries:
                self.last_id = entries[-1][0]
                await self.redis.set(self.cursor_key, self.last_id)
        return handled

    async def handle_event(self, event: Mapping[str, str]) -> None:
        target_id = event.get("content_id")
        if not target_id:
            logger.debug("skipping escalation event missing content id", extra={"event": dict(event)})
            return
        try:
            action = EscalationAction(event.get("action", EscalationAction.NONE.value))
            content_type = ContentType(event.get("content_type") or ContentType.WHISPER.value)
        except ValueError:
            logger.warning("skipping malformed escalation event", extra={"event": dict(event)})
            return
        unique = int(event.get("unique_reporters") or 0)

        match action:
            case EscalationAction.AUTO_DELETE:
                author_id = await self._author_of(target_id, content_type)
                await self._delete(target_id, content_type)
            case EscalationAction.DELETE_AND_BAN:
                author_id = await self._author_of(target_id, content_type)
                if author_id:
                    await self.suspensions.create_suspension(
                        user_id=author_id,
                        reason=f"Automatic temporary ban: {unique} reports on single {content_type.value}",
                        term=TemporaryTerm(self.suspensions.policy.temporary_duration),
                        moderator_id=SYSTEM_MODERATOR,
                    )
                await self._delete(target_id, content_type)
            case _:
                logger.info(
                    "escalation needs no automatic remediation",
                    extra={"target_id": target_id, "action": action.value},
                )
                return

        logger.info(
            "escalation remediation applied",
            extra={"target_id": target_id, "content_type": content_type.value, "action": action.value},
        )
        if author_id:
            await self._check_author(author_id)

    async def _author_of(self, target_id: str, content_type: ContentType) -> Optional[str]:
        match content_type:
            case ContentType.WHISPER:
                item = await self.content.get_whisper(target_id)
            case ContentType.COMMENT:
                item = await self.content.get_comment(target_id)
        if item is None:
            logger.warning("escalated content already gone", extra={"target_id": target_id})
            return None
        return item.user_id

    async def _delete(self, target_id: str, content_type: ContentType) -> None:
        match content_type:
            case ContentType.WHISPER:
                await self.content.delete_whisper(target_id)
            case ContentType.COMMENT:
                await self.content.delete_comment(target_id, SYSTEM_MODERATOR)

    async def _check_author(self, author_id: str) -> None:
        reputation = await self.reputation.get_user_reputation(author_id)
        if reputation.level is ReputationLevel.FLAGGED and reputation.score < LOW_REPUTATION_SCORE:
            await self.suspensions.create_automatic_suspension(
                author_id,
                LOW_REPUTATION_VIOLATION,
                "Automatic escalation due to low reputation score",
            )
