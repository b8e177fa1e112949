"""
habitloop.services.ledger_service — Rewards Ledger
===================================================

Point balances and lifetime redeemed currency, one ``profiles`` row per
user.  The balance only moves through two paths:

* :func:`credit` / :func:`credit_in_session` — ``points = points + n``;
* :func:`redeem` — a compare-and-swap UPDATE guarded by the balance
  snapshot the redemption was computed from.

Neither path writes an absolute value computed from a possibly stale
read, and a ``points >= 0`` CHECK constraint backs the invariant in the
store itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from habitloop.database.engine import get_session
from habitloop.database.models import Profile
from habitloop.engine.ledger import compute_redemption, to_currency
from habitloop.errors import InsufficientBalance, InvalidAmount, LedgerContention

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Redemption attempts before giving up on a balance that keeps moving.
MAX_REDEEM_ATTEMPTS = 5


@dataclass(frozen=True, slots=True)
class Balance:
    points: int
    total_earned: Decimal


def _validate_points(points: object) -> int:
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise InvalidAmount(f"Points must be a positive integer, got {points!r}")
    return points


def ensure_profile_in_session(
    session: Session, user_id: str, username: str | None = None
) -> None:
    """Insert a zero-balance profile for *user_id* unless one exists.

    A concurrent insert for the same user is absorbed by the SAVEPOINT.
    """
    if session.get(Profile, user_id) is not None:
        return
    try:
        with session.begin_nested():
            session.add(Profile(user_id=user_id, username=username))
    except IntegrityError:
        logger.debug("Profile for %s created concurrently", user_id)


def ensure_profile(engine: Engine, user_id: str, username: str | None = None) -> None:
    """Create the profile row at signup (idempotent)."""
    with get_session(engine) as session:
        ensure_profile_in_session(session, user_id, username)


def credit_in_session(session: Session, user_id: str, points: int) -> None:
    """Add *points* to *user_id*'s balance inside the caller's transaction."""
    points = _validate_points(points)
    ensure_profile_in_session(session, user_id)
    session.execute(
        update(Profile)
        .where(Profile.user_id == user_id)
        .values(points=Profile.points + points)
        .execution_options(synchronize_session=False)
    )


def credit(engine: Engine, user_id: str, points: int) -> Balance:
    """Add *points* to *user_id*'s balance and return the new balance."""
    with get_session(engine) as session:
        credit_in_session(session, user_id, points)
        balance = _read_balance(session, user_id)
    logger.info("Credited %d points to %s", points, user_id)
    return balance


def _read_balance(session: Session, user_id: str) -> Balance:
    row = session.execute(
        select(Profile.points, Profile.total_earned).where(Profile.user_id == user_id)
    ).first()
    if row is None:
        return Balance(points=0, total_earned=to_currency(0))
    return Balance(points=row.points or 0, total_earned=to_currency(row.total_earned))


def get_balance(engine: Engine, user_id: str) -> Balance:
    """Current points and lifetime redeemed currency (zero for unknown users)."""
    with Session(engine) as session:
        return _read_balance(session, user_id)


def redeem(
    engine: Engine,
    user_id: str,
    *,
    unit_points: int = 100,
    unit_value: Decimal = Decimal("10.00"),
) -> Decimal:
    """Convert every whole redemption unit in the balance into currency.

    Returns the currency credited to ``total_earned``.  The UPDATE only
    matches if the balance still equals the snapshot the amounts were
    computed from; a concurrent change forces a fresh read, so the same
    points can never be spent twice.
    """
    for attempt in range(1, MAX_REDEEM_ATTEMPTS + 1):
        with get_session(engine) as session:
            snapshot = _read_balance(session, user_id).points
            redemption = compute_redemption(snapshot, unit_points, unit_value)
            if not redemption.possible:
                raise InsufficientBalance(
                    f"Need at least {unit_points} points to redeem, have {snapshot}"
                )

            result = session.execute(
                update(Profile)
                .where(Profile.user_id == user_id, Profile.points == snapshot)
                .values(
                    points=Profile.points - redemption.points_debited,
                    total_earned=Profile.total_earned + redemption.currency,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.info(
                    "User %s redeemed %d points for %s",
                    user_id, redemption.points_debited, redemption.currency,
                )
                return redemption.currency

        logger.debug(
            "Redemption for %s lost a race (attempt %d/%d), re-reading balance",
            user_id, attempt, MAX_REDEEM_ATTEMPTS,
        )

    raise LedgerContention(f"Balance for {user_id} kept changing; redemption abandoned")
