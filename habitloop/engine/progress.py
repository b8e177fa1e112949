"""
habitloop.engine.progress — Progress Read Models
=================================================

Pure computations over a user's completion history, used by the
dashboard and statistics views.  No DB I/O; the stats service feeds these
functions with plain dates and category names.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from habitloop.database.models import DEFAULT_CATEGORY

WINDOW_DAYS = 7


@dataclass(frozen=True, slots=True)
class WeeklyTotals:
    total: int
    this_week: int
    daily_average: float


def current_streak(days: Iterable[date], today: date) -> int:
    """Length of the trailing run of consecutive days with a completion.

    The run may end today or yesterday: a user who has not checked in yet
    today still holds yesterday's streak until the day is over.
    """
    seen = set(days)
    cursor = today if today in seen else today - timedelta(days=1)
    streak = 0
    while cursor in seen:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def window_start(today: date, days: int = WINDOW_DAYS) -> date:
    """First day of the *days*-long window that ends on *today*."""
    return today - timedelta(days=days - 1)


def weekly_activity(days: Iterable[date], today: date) -> list[tuple[date, int]]:
    """Completion counts for each of the last seven days, oldest first.

    *days* holds one entry per completion, so repeated dates count
    multiple completions.
    """
    counts = Counter(days)
    start = window_start(today)
    return [
        (start + timedelta(days=offset), counts.get(start + timedelta(days=offset), 0))
        for offset in range(WINDOW_DAYS)
    ]


def category_breakdown(categories: Iterable[str | None]) -> dict[str, int]:
    """Count completions per challenge category, in first-seen order."""
    breakdown: dict[str, int] = {}
    for category in categories:
        key = category or DEFAULT_CATEGORY
        breakdown[key] = breakdown.get(key, 0) + 1
    return breakdown


def weekly_totals(total: int, this_week: int) -> WeeklyTotals:
    """Overall total, this week's total and the week's daily average."""
    average = Decimal(this_week) / Decimal(WINDOW_DAYS)
    return WeeklyTotals(
        total=total,
        this_week=this_week,
        daily_average=float(average.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)),
    )
