from neonguard.errors import ManipulationDetected, RateLimitError, ValidationError
from neonguard.models import ActivePiece, StateSnapshot
from neonguard.validators import (
    SIGNAL_IMPOSSIBLE_STATE,
    SIGNAL_MEMORY,
    SIGNAL_TIMING,
    InputValidator,
    ManipulationDetector,
)
import pytest


def _snapshot(**overrides):
    snapshot = {
        "timestamp": 1_000.0,
        "score": 100,
        "level": 2,
        "lines": 4,
        "activePiece": {"type": "T", "position": {"x": 4, "y": 0}, "rotation": 0},
    }
    snapshot.update(overrides)
    return snapshot


def test_eleventh_unconstrained_input_is_rate_limited():
    """Verify ten 'pause' inputs inside one second pass and the eleventh is rejected."""
    validator = InputValidator(clock=lambda: 0.0)
    for i in range(10):
        assert validator.check("pause", now=i * 50.0) == "pause"
    with pytest.raises(RateLimitError, match="Input rate exceeded: 10 inputs per second"):
        validator.check("pause", now=500.0)


def test_per_action_cap_applies_before_global_cap():
    """Verify rotate_left is capped at three per second."""
    validator = InputValidator()
    for i in range(3):
        validator.check("rotate_left", now=i * 10.0)
    with pytest.raises(RateLimitError, match="rotate_left"):
        validator.check("rotate_left", now=40.0)
    assert validator.check("left", now=50.0) == "left"


def test_rate_window_slides():
    """Verify inputs older than the window no longer count against the cap."""
    validator = InputValidator()
    for i in range(10):
        validator.check("pause", now=float(i))
    assert validator.check("pause", now=1_000.0) == "pause"


def test_structural_checks_in_order():
    """Verify type, length, markup and vocabulary checks raise ValidationError."""
    validator = InputValidator()
    with pytest.raises(ValidationError, match="must be a string"):
        validator.check(42, now=0.0)
    with pytest.raises(ValidationError, match="Input too long"):
        validator.check("<" * 21, now=0.0)
    with pytest.raises(ValidationError, match="suspicious characters"):
        validator.check("<script>", now=0.0)
    with pytest.raises(ValidationError, match="Invalid input: jump"):
        validator.check("jump", now=0.0)


def test_rejected_inputs_do_not_consume_the_window():
    """Verify invalid actions are not counted by the rate limiter."""
    validator = InputValidator()
    for _ in range(20):
        assert not validator.validate("teleport", now=0.0).valid
    assert validator.validate("left", now=0.0).valid


def test_validate_reports_error_type():
    """Verify the non-raising form carries the reason and the exception."""
    validator = InputValidator(global_cap=1)
    validator.check("left", now=0.0)
    result = validator.validate("right", now=1.0)
    assert not result.valid
    assert isinstance(result.error, RateLimitError)
    assert result.reason.startswith("Input rate exceeded")


def test_clean_snapshot_passes():
    """Verify an ordinary snapshot raises no signal."""
    result = ManipulationDetector().check("left", _snapshot(), now=2_000.0)
    assert not result.detected
    assert result.signals == []
    result.raise_if_detected()


def test_missing_field_is_memory_manipulation():
    """Verify a snapshot without 'lines' is flagged as memory manipulation."""
    snapshot = _snapshot()
    del snapshot["lines"]
    result = ManipulationDetector().check("left", snapshot, now=2_000.0)
    assert result.signals == [SIGNAL_MEMORY]


def test_out_of_bounds_state_is_impossible():
    """Verify negative score and off-board pieces are impossible states."""
    detector = ManipulationDetector()
    assert detector.check(None, _snapshot(score=-1), now=2_000.0).signals == [SIGNAL_IMPOSSIBLE_STATE]
    assert detector.check(None, _snapshot(level=0), now=2_000.0).signals == [SIGNAL_IMPOSSIBLE_STATE]
    off_board = {"type": "I", "position": {"x": 10, "y": 0}, "rotation": 0}
    assert detector.check(None, _snapshot(activePiece=off_board), now=2_000.0).detected


def test_future_snapshot_is_timing_manipulation():
    """Verify a snapshot stamped after 'now' raises the timing signal."""
    result = ManipulationDetector().check("left", _snapshot(timestamp=5_000.0), now=2_000.0)
    assert SIGNAL_TIMING in result.signals
    with pytest.raises(ManipulationDetected):
        result.raise_if_detected()


def test_accepts_state_snapshot_instances():
    """Verify StateSnapshot objects are checked like their wire form."""
    snapshot = StateSnapshot(timestamp=1_000.0, score=10, level=1, lines=0,
                             active_piece=ActivePiece("S", 3, 5))
    assert not ManipulationDetector().check("left", snapshot, now=2_000.0).detected
