"""Redis stream adapters for escalation events."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from safety_core.moderation.domain.escalation import EscalationResult

logger = logging.getLogger(__name__)

ESCALATION_STREAM = "mod:escalations"


class StreamWriter(Protocol):
    async def xadd(self, name: str, fields: Mapping[str, Any], *, maxlen: int | None = None) -> Any:
        ...


def encode_escalation(result: EscalationResult) -> dict[str, str]:
    return {
        "content_id": result.content_id or "",
        "content_type": result.content_type.value if result.content_type else "",
        "action": result.action.value,
        "reason": result.reason,
        "total_reports": str(result.total_reports),
        "unique_reporters": str(result.unique_reporters),
        "affected_reports": ",".join(result.affected_reports),
        "timestamp": result.timestamp.isoformat(),
    }


def decode_entry(payload: Mapping[Any, Any]) -> dict[str, str]:
    decoded: dict[str, str] = {}
    for key, value in payload.items():
        name = key.decode("utf-8") if isinstance(key, (bytes, bytearray)) else str(key)
        decoded[name] = value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else str(value)
    return decoded


class RedisEscalationPublisher:
    """Appends escalated results to a capped stream for the escalation worker."""

    def __init__(self, redis: StreamWriter, *, stream_key: str = ESCALATION_STREAM, maxlen: int | None = 10_000) -> None:
        self._redis = redis
        self._stream_key = stream_key
        self._maxlen = maxlen

    async def publish(self, result: EscalationResult) -> None:
        if not result.escalated:
            return
        entry_id = await self._redis.xadd(self._stream_key, encode_escalation(result), maxlen=self._maxlen)
        logger.debug("escalation published", extra={"stream": self._stream_key, "entry_id": str(entry_id)})
