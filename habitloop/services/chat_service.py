"""
habitloop.services.chat_service — Chat Persistence
===================================================

Append-only chat per challenge.  Each insert takes the next
per-challenge sequence number with an atomic ``message_seq + 1`` UPDATE
on the challenge row.  That UPDATE holds the row lock until commit, so
within one challenge the commit order equals the ``seq`` order that live
subscribers rely on.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from habitloop.database.engine import get_session
from habitloop.database.models import Challenge, ChatMessage, Profile
from habitloop.engine.chat_hub import notify_before_commit
from habitloop.engine.events import ChatEvent
from habitloop.errors import ChallengeNotFound, EmptyMessage, InvalidInput, NotMember
from habitloop.services.membership_service import is_member

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


def _username(session: Session, user_id: str) -> str | None:
    return session.scalar(select(Profile.username).where(Profile.user_id == user_id))


def post_message(engine: Engine, challenge_id: int, user_id: str, text: str) -> ChatEvent:
    """Append a message from a current member of the challenge."""
    if text is None or not text.strip():
        raise EmptyMessage("Message text must not be blank")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise InvalidInput(f"Message is longer than {MAX_MESSAGE_LENGTH} characters")

    with get_session(engine) as session:
        if not is_member(session, challenge_id, user_id):
            raise NotMember(f"User {user_id} is not a member of challenge {challenge_id}")

        result = session.execute(
            update(Challenge)
            .where(Challenge.id == challenge_id)
            .values(message_seq=Challenge.message_seq + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ChallengeNotFound(f"Challenge {challenge_id} not found")
        seq = session.scalar(
            select(Challenge.message_seq).where(Challenge.id == challenge_id)
        )

        row = ChatMessage(challenge_id=challenge_id, user_id=user_id, seq=seq, message=text)
        session.add(row)
        session.flush()
        session.refresh(row)

        event = ChatEvent.from_row(row, username=_username(session, user_id))
        notify_before_commit(session, event)

    logger.debug("Chat message %d (seq %d) in challenge %d", event.id, seq, challenge_id)
    return event


def history(engine: Engine, challenge_id: int, after_seq: int = 0) -> list[ChatEvent]:
    """Messages of a challenge with ``seq > after_seq``, oldest first."""
    with Session(engine) as session:
        rows = session.execute(
            select(ChatMessage, Profile.username)
            .outerjoin(Profile, Profile.user_id == ChatMessage.user_id)
            .where(ChatMessage.challenge_id == challenge_id, ChatMessage.seq > after_seq)
            .order_by(ChatMessage.seq)
        ).all()
        return [ChatEvent.from_row(row[0], username=row[1]) for row in rows]


def load_message(engine: Engine, message_id: int) -> ChatEvent | None:
    """Load one message by row id (used by the NOTIFY listener)."""
    with Session(engine) as session:
        row = session.execute(
            select(ChatMessage, Profile.username)
            .outerjoin(Profile, Profile.user_id == ChatMessage.user_id)
            .where(ChatMessage.id == message_id)
        ).first()
        if row is None:
            return None
        return ChatEvent.from_row(row[0], username=row[1])
