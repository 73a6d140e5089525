from __future__ import annotations

import dataclasses

import pytest

from stylepilot.config import PilotConfig


class TestPilotConfig:
    def test_defaults(self) -> None:
        config = PilotConfig()
        assert config.llm_provider == "gemini"
        assert config.class_prefix == "portal-"
        assert config.max_iterations == 3
        assert config.max_attempts == 3
        assert config.retry_delay == 2.0
        assert config.quality_threshold is None

    def test_frozen(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            PilotConfig().port = 1  # type: ignore[misc]

    def test_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("STYLEPILOT_PROVIDER", "anthropic")
        monkeypatch.setenv("STYLEPILOT_MAX_ITERATIONS", "5")
        monkeypatch.setenv("STYLEPILOT_QUALITY_THRESHOLD", "7.5")
        monkeypatch.setenv("STYLEPILOT_RETRY_DELAY", "0.5")
        monkeypatch.setenv("STYLEPILOT_DB", "/tmp/pilot.db")
        config = PilotConfig.from_env()
        assert config.llm_provider == "anthropic"
        assert config.max_iterations == 5
        assert config.quality_threshold == 7.5
        assert config.retry_delay == 0.5
        assert config.db_path == "/tmp/pilot.db"
        assert config.stall_ratio is None

    def test_overrides_win(self, monkeypatch) -> None:
        monkeypatch.setenv("STYLEPILOT_PROVIDER", "anthropic")
        config = PilotConfig.from_env(llm_provider="stub", llm_model=None, bogus=1)
        assert config.llm_provider == "stub"
        assert config.llm_model == ""


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_iterations": 0},
            {"max_attempts": 0},
            {"quality_threshold": -1.0},
            {"stall_ratio": 1.5},
            {"stall_ratio": -0.1},
            {"retry_delay": -1.0},
            {"settle_delay": -0.5},
        ],
    )
    def test_rejects_bad_values(self, kwargs) -> None:
        with pytest.raises(ValueError):
            PilotConfig(**kwargs)

    def test_boundaries_allowed(self) -> None:
        config = PilotConfig(max_iterations=1, quality_threshold=0.0, stall_ratio=1.0, retry_delay=0)
        assert config.stall_ratio == 1.0

    def test_from_env_validates(self, monkeypatch) -> None:
        monkeypatch.setenv("STYLEPILOT_MAX_ITERATIONS", "0")
        with pytest.raises(ValueError, match="max_iterations"):
            PilotConfig.from_env()
