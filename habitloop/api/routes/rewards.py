"""
habitloop.api.routes.rewards — Point balance & redemption
==========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from habitloop.api.deps import get_config, get_coordinator, get_current_user
from habitloop.config import HabitLoopConfig
from habitloop.engine.ledger import compute_redemption
from habitloop.services.participation import ParticipationCoordinator

router = APIRouter(prefix="/me", tags=["rewards"])


@router.get("/balance")
async def get_balance(
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
    cfg: HabitLoopConfig = Depends(get_config),
):
    """Points, lifetime redeemed currency and what could be redeemed now."""
    balance = await coordinator.balance(user_id)
    preview = compute_redemption(
        balance.points, cfg.redemption_unit_points, cfg.redemption_unit_value
    )
    return {
        "points": balance.points,
        "total_earned": str(balance.total_earned),
        "redeemable": str(preview.currency),
        "exchange_rate": {
            "points": cfg.redemption_unit_points,
            "value": str(cfg.redemption_unit_value),
        },
    }


@router.post("/redeem")
async def redeem(
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Redeem every whole unit of points for currency."""
    credited = await coordinator.redeem(user_id)
    balance = await coordinator.balance(user_id)
    return {
        "credited": str(credited),
        "points": balance.points,
        "total_earned": str(balance.total_earned),
    }
