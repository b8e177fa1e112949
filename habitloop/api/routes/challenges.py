"""
habitloop.api.routes.challenges — Catalog, membership & completions
====================================================================
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from habitloop.api.deps import get_coordinator, get_current_user
from habitloop.database.models import Challenge, Completion
from habitloop.services.participation import ParticipationCoordinator

router = APIRouter(tags=["challenges"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ChallengeCreate(BaseModel):
    title: str = Field(max_length=200)
    description: str | None = None
    category: str | None = Field(default=None, max_length=50)


class CompletionCreate(BaseModel):
    proof: str | None = None  # photo URL, object-store key or data URI
    day: date | None = None  # the caller's local calendar day


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def challenge_dict(c: Challenge) -> dict:
    return {
        "id": c.id,
        "title": c.title,
        "description": c.description,
        "category": c.category,
        "creator_id": c.creator_id,
        "is_public": c.is_public,
        "member_count": c.member_count,
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }


def completion_dict(c: Completion) -> dict:
    return {
        "id": c.id,
        "challenge_id": c.challenge_id,
        "user_id": c.user_id,
        "completed_on": c.completed_on.isoformat(),
        "points_earned": c.points_earned,
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
@router.get("/challenges")
async def list_challenges(
    q: str = Query("", max_length=200),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Public challenges, newest first, optionally filtered by *q*."""
    challenges = await coordinator.list_challenges(q)
    return {"challenges": [challenge_dict(c) for c in challenges]}


@router.post("/challenges", status_code=status.HTTP_201_CREATED)
async def create_challenge(
    body: ChallengeCreate,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Create a challenge; the creator is enrolled automatically."""
    challenge = await coordinator.create_challenge(
        user_id, body.title, body.description, body.category
    )
    return challenge_dict(challenge)


@router.get("/challenges/{challenge_id}")
async def get_challenge(
    challenge_id: int,
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    return challenge_dict(await coordinator.get_challenge(challenge_id))


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------
@router.post("/challenges/{challenge_id}/join", status_code=status.HTTP_201_CREATED)
async def join_challenge(
    challenge_id: int,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    membership = await coordinator.join(user_id, challenge_id)
    return {
        "challenge_id": membership.challenge_id,
        "user_id": membership.user_id,
        "joined_at": membership.joined_at.isoformat() if membership.joined_at else None,
    }


@router.delete("/challenges/{challenge_id}/membership", status_code=status.HTTP_204_NO_CONTENT)
async def leave_challenge(
    challenge_id: int,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    await coordinator.leave(user_id, challenge_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Completions
# ---------------------------------------------------------------------------
@router.post("/challenges/{challenge_id}/completions", status_code=status.HTTP_201_CREATED)
async def complete_challenge(
    challenge_id: int,
    body: CompletionCreate,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Submit today's proof for a joined challenge."""
    completion = await coordinator.complete_with_proof(
        user_id, challenge_id, body.proof, body.day
    )
    return completion_dict(completion)


@router.get("/me/habits")
async def my_habits(
    day: date | None = None,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Joined challenges with today's completion status."""
    statuses = await coordinator.joined_challenges_with_today_status(user_id, day)
    return {
        "habits": [
            {
                **challenge_dict(s.challenge),
                "joined_at": s.joined_at.isoformat() if s.joined_at else None,
                "completed_today": s.completed_today,
            }
            for s in statuses
        ]
    }


@router.get("/me/completions")
async def my_completions(
    day: date | None = None,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Completions on *day* (default today) with challenge title/category."""
    views = await coordinator.completions_on(user_id, day)
    return {
        "completions": [
            {
                **completion_dict(v.completion),
                "challenge_title": v.challenge_title,
                "challenge_category": v.challenge_category,
            }
            for v in views
        ]
    }
