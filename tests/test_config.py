"""
tests/test_config.py — YAML Config Loader Tests
================================================
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from habitloop.config import HabitLoopConfig, default_config, load_config


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        assert load_config(_write(tmp_path, "")) == default_config()

    def test_reads_every_section(self, tmp_path):
        cfg = load_config(_write(tmp_path, """
app_name: "Streaks"
api_port: 9000
cors_origins:
  - "https://app.example.com"
rewards:
  points_per_completion: 15
  redemption_unit_points: 200
  redemption_unit_value: "25.00"
"""))
        assert cfg == HabitLoopConfig(
            app_name="Streaks",
            api_port=9000,
            cors_origins=("https://app.example.com",),
            points_per_completion=15,
            redemption_unit_points=200,
            redemption_unit_value=Decimal("25.00"),
        )

    @pytest.mark.parametrize(
        "rewards",
        [
            "points_per_completion: 0",
            "redemption_unit_points: -100",
            "redemption_unit_value: 0",
        ],
    )
    def test_non_positive_reward_settings_are_rejected(self, tmp_path, rewards):
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, f"rewards:\n  {rewards}\n"))

    def test_shipped_example_is_valid(self):
        from pathlib import Path

        example = Path(__file__).resolve().parent.parent / "config.yaml.example"
        cfg = load_config(example)
        assert cfg.redemption_unit_points == 100
        assert cfg.redemption_unit_value == Decimal("10.00")


class TestDefaults:
    def test_exchange_rate(self):
        cfg = default_config()
        assert cfg.points_per_completion == 10
        assert cfg.redemption_unit_points == 100
        assert cfg.redemption_unit_value == Decimal("10.00")

    def test_frozen(self):
        cfg = default_config()
        with pytest.raises(AttributeError):
            cfg.api_port = 1  # type: ignore[misc]
