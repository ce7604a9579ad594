from neonguard.errors import SuspiciousPattern
from neonguard.patterns import (
    AUTOMATED_SEQUENCE,
    EXACT_REPETITION,
    IMPOSSIBLE_COMBINATION,
    INHUMAN_TIMING,
    PatternDetector,
    has_repeating_block,
    intervals,
    population_variance,
)
import pytest


def _events(actions, gaps):
    t = 0.0
    events = []
    for action, gap in zip(actions, gaps):
        t += gap
        events.append({"timestamp": t, "action": action})
    return events


IRREGULAR = [130, 260, 80, 330, 170, 410, 95, 240, 360, 150, 280, 120]


def test_population_variance_and_intervals():
    """Verify the pure helpers on small inputs."""
    assert intervals([0, 100, 250]) == [100, 150]
    assert population_variance([100, 150]) == 625.0
    assert population_variance([]) == 0.0


def test_has_repeating_block_needs_adjacent_copy():
    """Verify only immediately repeated blocks count."""
    assert has_repeating_block(["a", "b", "c", "a", "b", "c"], 3)
    assert not has_repeating_block(["a", "b", "c", "x", "a", "b", "c"], 3)


def test_exact_repetition():
    """Verify three identical trailing actions fire exact_repetition."""
    result = PatternDetector().detect(_events(["left", "left", "left"], IRREGULAR))
    assert result.suspicious
    assert result.categories == [EXACT_REPETITION]
    with pytest.raises(SuspiciousPattern):
        result.raise_if_suspicious()


def test_impossible_combination():
    """Verify opposing actions back to back are flagged."""
    result = PatternDetector().detect(_events(["rotate_left", "rotate_right"], IRREGULAR))
    assert result.categories == [IMPOSSIBLE_COMBINATION]


def test_inhuman_timing_requires_five_events():
    """Verify perfectly even spacing fires only once five events are present."""
    actions = ["left", "soft_drop", "rotate_left", "hold", "hard_drop"]
    detector = PatternDetector()
    assert not detector.detect(_events(actions[:4], [100] * 4)).suspicious
    assert detector.detect(_events(actions, [100] * 5)).categories == [INHUMAN_TIMING]


def test_automated_sequence():
    """Verify a repeated block of three actions is flagged once ten events exist."""
    actions = ["left", "soft_drop", "rotate_left"] * 3 + ["hold"]
    result = PatternDetector().detect(_events(actions, IRREGULAR))
    assert AUTOMATED_SEQUENCE in result.categories


def test_human_like_input_is_clean():
    """Verify varied actions with irregular gaps raise nothing."""
    actions = ["left", "soft_drop", "rotate_left", "right", "hold", "hard_drop"]
    assert not PatternDetector().detect(_events(actions, IRREGULAR)).suspicious


def test_scan_reports_categories_in_fixed_order():
    """Verify scan collects every category that fired anywhere in the history."""
    actions = ["left", "right", "hold", "hold", "hold", "soft_drop"]
    assert PatternDetector().scan(_events(actions, IRREGULAR)) == [
        EXACT_REPETITION,
        IMPOSSIBLE_COMBINATION,
    ]


def test_accepts_input_key():
    """Verify wire entries using 'input' instead of 'action' are understood."""
    events = [{"timestamp": t, "input": "drop"} for t in (0, 300, 450)]
    assert PatternDetector().detect(events).categories == [EXACT_REPETITION]
