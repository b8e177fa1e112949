"""
habitloop.api.routes.profile — Display name & avatar
=====================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from habitloop.api.deps import get_coordinator, get_current_user
from habitloop.services.participation import ParticipationCoordinator
from habitloop.services.profile_service import ProfileView

router = APIRouter(prefix="/me", tags=["profile"])


class ProfileUpdate(BaseModel):
    username: str | None = None
    avatar_url: str | None = None


def profile_dict(p: ProfileView) -> dict:
    return {"user_id": p.user_id, "username": p.username, "avatar_url": p.avatar_url}


@router.get("/profile")
async def get_profile(
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    return profile_dict(await coordinator.profile(user_id))


@router.patch("/profile")
async def update_profile(
    body: ProfileUpdate,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Update only the fields present in the body; ``null`` clears a field."""
    changes = body.model_dump(exclude_unset=True)
    return profile_dict(await coordinator.update_profile(user_id, **changes))
