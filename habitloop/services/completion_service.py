"""
habitloop.services.completion_service — Completion Recorder
============================================================

Records at most one proof-backed completion per (user, challenge,
calendar day) and credits the completion's points in the same
transaction.

The day key is a plain ``date``: 23:59 and 00:01 the next morning are
two different days.  Uniqueness is enforced by the
``uq_completions_user_challenge_day`` constraint, so a double-tapped
"Complete" button yields one row and one credit; the loser of the race
gets :class:`DuplicateCompletion`.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from habitloop.database.engine import get_session
from habitloop.database.models import Challenge, Completion
from habitloop.errors import DuplicateCompletion, MissingProof, NotMember
from habitloop.services import ledger_service
from habitloop.services.membership_service import is_member

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_POINTS = 10


@dataclass(frozen=True, slots=True)
class CompletionView:
    """A completion joined with the challenge metadata shown next to it."""

    completion: Completion
    challenge_title: str
    challenge_category: str


# Leading bytes of the image formats a phone camera or gallery produces.
_IMAGE_SIGNATURES = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def _sniff_media_type(data: bytes) -> str:
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    for signature, media_type in _IMAGE_SIGNATURES:
        if data.startswith(signature):
            return media_type
    return "application/octet-stream"


def encode_proof(data: bytes) -> str:
    """Store raw attachment bytes losslessly as a base64 ``data:`` URI."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{_sniff_media_type(data)};base64,{encoded}"


def _has_proof(proof: str | bytes | None) -> bool:
    if proof is None:
        return False
    if isinstance(proof, bytes):
        return len(proof) > 0
    return bool(proof.strip())


def record_completion(
    engine: Engine,
    challenge_id: int,
    user_id: str,
    proof: str | bytes | None,
    day: date | None = None,
    *,
    points: int = DEFAULT_POINTS,
) -> Completion:
    """Record today's (or *day*'s) completion and credit *points*.

    Raises
    ------
    MissingProof
        *proof* is None, empty or blank.
    NotMember
        *user_id* has no live membership in the challenge.
    DuplicateCompletion
        A completion for (user, challenge, day) already exists.
    InvalidAmount
        *points* is not a positive integer (nothing is recorded).
    """
    if not _has_proof(proof):
        raise MissingProof("A photo proof is required to complete a challenge")
    if isinstance(proof, bytes):
        proof = encode_proof(proof)
    day = day or date.today()

    with get_session(engine) as session:
        if not is_member(session, challenge_id, user_id):
            raise NotMember(f"User {user_id} is not a member of challenge {challenge_id}")

        completion = Completion(
            challenge_id=challenge_id,
            user_id=user_id,
            completed_on=day,
            proof=proof,
            points_earned=points,
        )
        session.add(completion)
        try:
            session.flush()
        except IntegrityError as exc:
            raise DuplicateCompletion(
                f"Challenge {challenge_id} already completed by {user_id} on {day}"
            ) from exc

        # Same transaction: a failed credit rolls the completion back too.
        ledger_service.credit_in_session(session, user_id, points)
        session.refresh(completion)

    logger.info(
        "User %s completed challenge %d on %s (+%d points)",
        user_id, challenge_id, day, points,
    )
    return completion


def completions_for_user(engine: Engine, user_id: str, day: date) -> list[CompletionView]:
    """All of *user_id*'s completions on *day*, with challenge title/category."""
    with Session(engine) as session:
        rows = session.execute(
            select(Completion, Challenge.title, Challenge.category)
            .join(Challenge, Challenge.id == Completion.challenge_id)
            .where(Completion.user_id == user_id, Completion.completed_on == day)
            .order_by(Completion.id)
        ).all()
        for row in rows:
            session.expunge(row[0])
        return [
            CompletionView(completion=row[0], challenge_title=row[1], challenge_category=row[2])
            for row in rows
        ]


def completed_challenge_ids(session: Session, user_id: str, day: date) -> set[int]:
    """Ids of the challenges *user_id* completed on *day*."""
    return set(
        session.scalars(
            select(Completion.challenge_id).where(
                Completion.user_id == user_id, Completion.completed_on == day
            )
        ).all()
    )


def is_completed_today(
    engine: Engine, user_id: str, challenge_id: int, day: date | None = None
) -> bool:
    """True if (user, challenge, day) already holds a completion."""
    day = day or date.today()
    with Session(engine) as session:
        return session.scalar(
            select(Completion.id).where(
                Completion.user_id == user_id,
                Completion.challenge_id == challenge_id,
                Completion.completed_on == day,
            )
        ) is not None
