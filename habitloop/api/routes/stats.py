"""
habitloop.api.routes.stats — Dashboard, statistics & calendar
==============================================================
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends

from habitloop.api.deps import get_coordinator, get_current_user
from habitloop.services.participation import ParticipationCoordinator

router = APIRouter(prefix="/me", tags=["stats"])


@router.get("/dashboard")
async def dashboard(
    day: date | None = None,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    summary = await coordinator.dashboard(user_id, day)
    return {
        "total_challenges": summary.total_challenges,
        "completed_today": summary.completed_today,
        "remaining_today": max(0, summary.total_challenges - summary.completed_today),
        "streak": summary.streak,
        "points": summary.points,
    }


@router.get("/stats/weekly")
async def weekly_stats(
    day: date | None = None,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Last seven days of completions, by day and by category."""
    stats = await coordinator.weekly_stats(user_id, day)
    return {
        "days": [{"date": d.isoformat(), "completions": n} for d, n in stats.days],
        "categories": [{"name": k, "value": v} for k, v in stats.categories.items()],
        "total": stats.totals.total,
        "this_week": stats.totals.this_week,
        "daily_average": stats.totals.daily_average,
    }


@router.get("/calendar")
async def calendar(
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    days = await coordinator.completion_calendar(user_id)
    return {"days": [d.isoformat() for d in days]}
