import dataclasses

from neonguard.config import CONFIG, validate_config
import pytest


def test_default_config_is_valid():
    """Verify the shipped defaults pass validation."""
    validate_config(CONFIG)
    assert CONFIG.fraud_threshold == 0.7
    assert CONFIG.category_weights["session_manipulation"] == 0.6


def test_config_is_immutable():
    """Verify CONFIG cannot be mutated at runtime."""
    with pytest.raises(dataclasses.FrozenInstanceError):
        CONFIG.fraud_threshold = 0.1


def test_invalid_values_are_rejected():
    """Verify out-of-range values raise ValueError."""
    with pytest.raises(ValueError, match="rate_window_ms"):
        validate_config(dataclasses.replace(CONFIG, rate_window_ms=0))
    with pytest.raises(ValueError):
        validate_config(dataclasses.replace(CONFIG, action_rate_caps={"left": 0}))


def test_env_override(monkeypatch):
    """Verify fields read their environment variable at construction."""
    monkeypatch.setenv("MAX_ACTIONS_PER_WINDOW", "25")
    assert type(CONFIG)().max_actions_per_window == 25


def test_detection_thresholds_are_validated():
    """Verify scoring-rate, fault and cross-session thresholds are range-checked."""
    with pytest.raises(ValueError, match="max_points_per_second"):
        validate_config(dataclasses.replace(CONFIG, max_points_per_second=0.0))
    with pytest.raises(ValueError, match="fault_contribution"):
        validate_config(dataclasses.replace(CONFIG, fault_contribution=0.5))
    with pytest.raises(ValueError, match="replay_block"):
        validate_config(dataclasses.replace(CONFIG, replay_block=1))
    with pytest.raises(ValueError, match="outlier_sigma"):
        validate_config(dataclasses.replace(CONFIG, outlier_sigma=0.0))
    with pytest.raises(ValueError, match="historical_weight"):
        validate_config(dataclasses.replace(CONFIG, historical_weight=1.5))


def test_detection_thresholds_read_environment(monkeypatch):
    """Verify the moved thresholds take their environment variables."""
    monkeypatch.setenv("MAX_POINTS_PER_SECOND", "500")
    monkeypatch.setenv("REPLAY_BLOCK", "7")
    cfg = type(CONFIG)()
    assert cfg.max_points_per_second == 500.0
    assert cfg.replay_block == 7
