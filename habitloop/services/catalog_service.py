"""
habitloop.services.catalog_service — Challenge Catalog
=======================================================

Create, fetch and search public challenges.  Creating a challenge
enrols its creator in the same transaction, so a challenge never exists
without its creator as a member.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from habitloop.database.engine import get_session
from habitloop.database.models import DEFAULT_CATEGORY, Challenge
from habitloop.errors import ChallengeNotFound, InvalidInput
from habitloop.services.membership_service import join_in_session

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


def create_challenge(
    engine: Engine,
    creator_id: str,
    title: str,
    description: str | None = None,
    category: str | None = None,
) -> Challenge:
    """Create a public challenge and auto-join *creator_id*."""
    title = (title or "").strip()
    if not title:
        raise InvalidInput("Challenge title must not be empty")
    if len(title) > MAX_TITLE_LENGTH:
        raise InvalidInput(f"Challenge title is longer than {MAX_TITLE_LENGTH} characters")

    with get_session(engine) as session:
        challenge = Challenge(
            title=title,
            description=(description or "").strip() or None,
            category=(category or "").strip() or DEFAULT_CATEGORY,
            creator_id=creator_id,
            is_public=True,
            member_count=0,
        )
        session.add(challenge)
        session.flush()

        join_in_session(session, challenge.id, creator_id)
        session.refresh(challenge)

    logger.info("User %s created challenge %d (%r)", creator_id, challenge.id, title)
    return challenge


def get_challenge(engine: Engine, challenge_id: int) -> Challenge:
    with Session(engine) as session:
        challenge = session.get(Challenge, challenge_id)
        if challenge is None:
            raise ChallengeNotFound(f"Challenge {challenge_id} not found")
        return challenge


def list_public(engine: Engine, search_text: str = "") -> list[Challenge]:
    """Public challenges matching *search_text* in title or description.

    Case-insensitive substring match (``%`` and ``_`` are literal); the
    empty string matches everything.  Newest first.
    """
    stmt = select(Challenge).where(Challenge.is_public.is_(True))
    needle = (search_text or "").strip()
    if needle:
        stmt = stmt.where(
            or_(
                Challenge.title.icontains(needle, autoescape=True),
                Challenge.description.icontains(needle, autoescape=True),
            )
        )
    stmt = stmt.order_by(Challenge.created_at.desc(), Challenge.id.desc())

    with Session(engine) as session:
        return list(session.scalars(stmt).all())
