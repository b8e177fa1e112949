"""
habitloop.services.membership_service — Membership Store
=========================================================

Who belongs to which challenge, and the challenge's ``member_count``.

The (challenge_id, user_id) unique constraint is the only duplicate
check: a second join is rejected by the store and surfaced as
:class:`AlreadyMember`.  ``member_count`` moves by SQL increment /
decrement in the same transaction as the row insert / delete, so it
always equals the number of live membership rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from habitloop.database.engine import get_session
from habitloop.database.models import Challenge, Membership
from habitloop.errors import AlreadyMember, ChallengeNotFound, NotMember

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JoinedChallenge:
    """A membership row paired with the full challenge it refers to."""

    challenge: Challenge
    joined_at: datetime | None


# ---------------------------------------------------------------------------
# In-transaction steps (shared with the catalog)
# ---------------------------------------------------------------------------
def join_in_session(session: Session, challenge_id: int, user_id: str) -> Membership:
    """Insert the membership row and bump ``member_count``.

    Raises :class:`AlreadyMember` on a unique-constraint violation.  The
    caller's transaction is unusable afterwards and must be rolled back.
    """
    membership = Membership(challenge_id=challenge_id, user_id=user_id)
    session.add(membership)
    try:
        session.flush()
    except IntegrityError as exc:
        raise AlreadyMember(
            f"User {user_id} is already a member of challenge {challenge_id}"
        ) from exc

    session.execute(
        update(Challenge)
        .where(Challenge.id == challenge_id)
        .values(member_count=Challenge.member_count + 1)
        .execution_options(synchronize_session=False)
    )
    return membership


def is_member(session: Session, challenge_id: int, user_id: str) -> bool:
    return session.scalar(
        select(Membership.id).where(
            Membership.challenge_id == challenge_id,
            Membership.user_id == user_id,
        )
    ) is not None


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------
def join(engine: Engine, challenge_id: int, user_id: str) -> Membership:
    """Add *user_id* to a public challenge."""
    with get_session(engine) as session:
        challenge = session.get(Challenge, challenge_id)
        if challenge is None or not challenge.is_public:
            raise ChallengeNotFound(f"Challenge {challenge_id} not found")

        membership = join_in_session(session, challenge_id, user_id)
        session.refresh(membership)

    logger.info("User %s joined challenge %d", user_id, challenge_id)
    return membership


def leave(engine: Engine, challenge_id: int, user_id: str) -> None:
    """Remove *user_id* from a challenge; ``member_count`` never drops below 0."""
    with get_session(engine) as session:
        result = session.execute(
            delete(Membership)
            .where(
                Membership.challenge_id == challenge_id,
                Membership.user_id == user_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotMember(f"User {user_id} is not a member of challenge {challenge_id}")

        session.execute(
            update(Challenge)
            .where(Challenge.id == challenge_id)
            .values(
                member_count=case(
                    (Challenge.member_count > 0, Challenge.member_count - 1),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )

    logger.info("User %s left challenge %d", user_id, challenge_id)


def check_membership(engine: Engine, challenge_id: int, user_id: str) -> bool:
    with Session(engine) as session:
        return is_member(session, challenge_id, user_id)


def list_memberships(engine: Engine, user_id: str) -> list[JoinedChallenge]:
    """Every challenge *user_id* currently belongs to, ordered by challenge id."""
    with get_session(engine) as session:
        rows = session.execute(
            select(Challenge, Membership.joined_at)
            .join(Membership, Membership.challenge_id == Challenge.id)
            .where(Membership.user_id == user_id)
            .order_by(Challenge.id)
        ).all()
        return [JoinedChallenge(challenge=row[0], joined_at=row[1]) for row in rows]
