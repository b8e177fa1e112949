"""
habitloop.engine.events — ChatEvent envelope
=============================================

Every chat message that flows through the fan-out is normalized into a
:class:`ChatEvent`, whether it was posted in this process or picked up
from a PostgreSQL NOTIFY.  ``seq`` is the per-challenge ordering key;
``id`` is the global row id.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from habitloop.database.models import ChatMessage

__all__ = ["ChatEvent"]


@dataclass(frozen=True, slots=True)
class ChatEvent:
    """Immutable snapshot of one chat message."""

    id: int
    challenge_id: int
    seq: int
    user_id: str
    message: str
    created_at: datetime | None = None
    username: str | None = None

    @classmethod
    def from_row(cls, row: ChatMessage, username: str | None = None) -> ChatEvent:
        return cls(
            id=row.id,
            challenge_id=row.challenge_id,
            seq=row.seq,
            user_id=row.user_id,
            message=row.message,
            created_at=row.created_at,
            username=username,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.created_at is not None:
            data["created_at"] = self.created_at.isoformat()
        return data
