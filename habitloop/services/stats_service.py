"""
habitloop.services.stats_service — Dashboard & Statistics Read Models
======================================================================

Read-only views over memberships, completions and balances.  The
arithmetic lives in :mod:`habitloop.engine.progress`; this module only
fetches the inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from habitloop.database.models import Challenge, Completion, Membership, Profile
from habitloop.engine.progress import (
    WeeklyTotals,
    category_breakdown,
    current_streak,
    weekly_activity,
    weekly_totals,
    window_start,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine


@dataclass(frozen=True, slots=True)
class DashboardSummary:
    total_challenges: int
    completed_today: int
    streak: int
    points: int


@dataclass(frozen=True, slots=True)
class WeeklyStats:
    days: list[tuple[date, int]]
    categories: dict[str, int]
    totals: WeeklyTotals


def _completion_days(session: Session, user_id: str) -> list[date]:
    return list(
        session.scalars(
            select(Completion.completed_on).where(Completion.user_id == user_id)
        ).all()
    )


def dashboard_summary(engine: Engine, user_id: str, day: date | None = None) -> DashboardSummary:
    """Joined challenges, today's completions, streak and point balance."""
    day = day or date.today()
    with Session(engine) as session:
        total_challenges = session.scalar(
            select(func.count()).select_from(Membership).where(Membership.user_id == user_id)
        ) or 0
        days = _completion_days(session, user_id)
        # Only challenges still joined count towards today's progress.
        completed_today = session.scalar(
            select(func.count())
            .select_from(Completion)
            .join(
                Membership,
                (Membership.challenge_id == Completion.challenge_id)
                & (Membership.user_id == Completion.user_id),
            )
            .where(Completion.user_id == user_id, Completion.completed_on == day)
        ) or 0
        points = session.scalar(
            select(Profile.points).where(Profile.user_id == user_id)
        ) or 0

    return DashboardSummary(
        total_challenges=total_challenges,
        completed_today=completed_today,
        streak=current_streak(days, day),
        points=points,
    )


def weekly_stats(engine: Engine, user_id: str, day: date | None = None) -> WeeklyStats:
    """Last seven days: per-day counts, per-category counts and totals."""
    day = day or date.today()
    start = window_start(day)
    with Session(engine) as session:
        rows = session.execute(
            select(Completion.completed_on, Challenge.category)
            .join(Challenge, Challenge.id == Completion.challenge_id)
            .where(
                Completion.user_id == user_id,
                Completion.completed_on >= start,
                Completion.completed_on <= day,
            )
        ).all()
        total = session.scalar(
            select(func.count()).select_from(Completion).where(Completion.user_id == user_id)
        ) or 0

    return WeeklyStats(
        days=weekly_activity((row[0] for row in rows), day),
        categories=category_breakdown(row[1] for row in rows),
        totals=weekly_totals(total, len(rows)),
    )


def completion_calendar(engine: Engine, user_id: str) -> list[date]:
    """Distinct days on which *user_id* completed anything, ascending."""
    with Session(engine) as session:
        return list(
            session.scalars(
                select(Completion.completed_on)
                .where(Completion.user_id == user_id)
                .distinct()
                .order_by(Completion.completed_on)
            ).all()
        )
