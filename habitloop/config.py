"""
habitloop.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for application tuning (reward constants,
redemption rate, API port, CORS).  Secrets and the database URL stay in
the environment (``.env``), never in this file.

Usage::

    from habitloop.config import load_config

    cfg = load_config()                 # reads ./config.yaml by default
    print(cfg.points_per_completion)    # 10
    print(cfg.redemption_unit_value)    # Decimal('10.00')
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml

DEFAULT_POINTS_PER_COMPLETION = 10
DEFAULT_REDEMPTION_UNIT_POINTS = 100
DEFAULT_REDEMPTION_UNIT_VALUE = Decimal("10.00")


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class HabitLoopConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    app_name: str = "HabitLoop"

    # API
    api_port: int = 8000
    cors_origins: tuple[str, ...] = field(default_factory=tuple)

    # Rewards
    points_per_completion: int = DEFAULT_POINTS_PER_COMPLETION
    redemption_unit_points: int = DEFAULT_REDEMPTION_UNIT_POINTS
    redemption_unit_value: Decimal = DEFAULT_REDEMPTION_UNIT_VALUE


def default_config() -> HabitLoopConfig:
    """Return a config populated entirely from built-in defaults."""
    return HabitLoopConfig()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HabitLoopConfig:
    """Read *path* and return a :class:`HabitLoopConfig` instance.

    Keys missing from the file keep their defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a reward setting is not a positive number.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    rewards: dict = raw.get("rewards") or {}
    cfg = HabitLoopConfig(
        app_name=raw.get("app_name", "HabitLoop"),
        api_port=int(raw.get("api_port", 8000)),
        cors_origins=tuple(raw.get("cors_origins") or ()),
        points_per_completion=int(
            rewards.get("points_per_completion", DEFAULT_POINTS_PER_COMPLETION)
        ),
        redemption_unit_points=int(
            rewards.get("redemption_unit_points", DEFAULT_REDEMPTION_UNIT_POINTS)
        ),
        redemption_unit_value=Decimal(
            str(rewards.get("redemption_unit_value", DEFAULT_REDEMPTION_UNIT_VALUE))
        ),
    )

    if cfg.points_per_completion <= 0:
        raise ValueError("rewards.points_per_completion must be positive")
    if cfg.redemption_unit_points <= 0:
        raise ValueError("rewards.redemption_unit_points must be positive")
    if cfg.redemption_unit_value <= 0:
        raise ValueError("rewards.redemption_unit_value must be positive")
    return cfg
