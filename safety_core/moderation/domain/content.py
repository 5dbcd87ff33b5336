"""Content collaborator contract for whispers and comments."""

from __future__ import annotations

from typing import Optional, Protocol

from safety_core.moderation.domain.models import Comment, Whisper


class ContentGateway(Protocol):
    async def get_whisper(self, whisper_id: str) -> Optional[Whisper]:
        ...

    async def delete_whisper(self, whisper_id: str) -> None:
        ...

    async def flag_whisper(self, whisper_id: str, reason: str) -> None:
        ...

    async def get_comment(self, comment_id: str) -> Optional[Comment]:
        ...

    async def delete_comment(self, comment_id: str, deleted_by: str) -> None:
        ...

    async def hide_comment(self, comment_id: str, reason: str) -> None:
        ...


class InMemoryContentGateway(ContentGateway):
    """Simple content store for development and tests."""

    def __init__(self) -> None:
        self.whispers: dict[str, Whisper] = {}
        self.comments: dict[str, Comment] = {}
        self.deleted_whispers: list[str] = []
        self.deleted_comments: list[str] = []

    def add_whisper(self, whisper_id: str, user_id: str) -> Whisper:
        whisper = Whisper(id=whisper_id, user_id=user_id)
        self.whispers[whisper_id] = whisper
        return whisper

    def add_comment(self, comment_id: str, whisper_id: str, user_id: str) -> Comment:
        comment = Comment(id=comment_id, whisper_id=whisper_id, user_id=user_id)
        self.comments[comment_id] = comment
        return comment

    async def get_whisper(self, whisper_id: str) -> Optional[Whisper]:
        return self.whispers.get(whisper_id)

    async def delete_whisper(self, whisper_id: str) -> None:
        if self.whispers.pop(whisper_id, None) is not None:
            self.deleted_whispers.append(whisper_id)

    async def flag_whisper(self, whisper_id: str, reason: str) -> None:
        whisper = self.whispers.get(whisper_id)
        if whisper is not None:
            whisper.flagged = True

    async def get_comment(self, comment_id: str) -> Optional[Comment]:
        return self.comments.get(comment_id)

    async def delete_comment(self, comment_id: str, deleted_by: str) -> None:
        if self.comments.pop(comment_id, None) is not None:
            self.deleted_comments.append(comment_id)

    async def hide_comment(self, comment_id: str, reason: str) -> None:
        comment = self.comments.get(comment_id)
        if comment is not None:
            comment.hidden = True
