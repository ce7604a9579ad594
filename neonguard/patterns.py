"""
NEONGUARD — Input Pattern Detector (soft gate)
===============================================

Sliding-window heuristics over the trailing input history.  Shared by the
client (evaluated on every accepted input) and the server (``scan`` replays a
full submitted history).  Detections only annotate; they never block.

Categories
----------
    exact_repetition        last REPETITION_RUN actions identical
    impossible_combination  last two actions are opposite ends of one axis
    inhuman_timing          interval variance in the window < threshold (ms^2)
    automated_sequence      a block of 3..6 actions immediately repeated

Every check is O(window) (automated_sequence is O(window * max_length)), so
the cost per input is bounded by PATTERN_WINDOW.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from neonguard.config import CONFIG as _cfg
from neonguard.errors import SuspiciousPattern
from neonguard.models import InputEvent, are_opposing

EXACT_REPETITION = "exact_repetition"
IMPOSSIBLE_COMBINATION = "impossible_combination"
INHUMAN_TIMING = "inhuman_timing"
AUTOMATED_SEQUENCE = "automated_sequence"

CATEGORIES: tuple[str, ...] = (
    EXACT_REPETITION,
    IMPOSSIBLE_COMBINATION,
    INHUMAN_TIMING,
    AUTOMATED_SEQUENCE,
)


@dataclass
class PatternResult:
    suspicious: bool
    categories: list[str] = field(default_factory=list)
    reason: Optional[str] = None

    def raise_if_suspicious(self) -> None:
        if self.suspicious:
            raise SuspiciousPattern(self.categories)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def _action_of(event: Any) -> Any:
    if isinstance(event, InputEvent):
        return event.action
    if isinstance(event, Mapping):
        return event.get("action", event.get("input"))
    return event


def _timestamp_of(event: Any) -> Optional[float]:
    if isinstance(event, InputEvent):
        return event.timestamp
    if isinstance(event, Mapping):
        return event.get("timestamp")
    return None


def population_variance(values: Sequence[float]) -> float:
    """Population variance; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def intervals(timestamps: Sequence[float]) -> list[float]:
    """Consecutive differences of a timestamp sequence."""
    return [b - a for a, b in zip(timestamps, timestamps[1:])]


def has_repeating_block(actions: Sequence[Any], length: int) -> bool:
    """True when some block of ``length`` actions is immediately repeated."""
    for i in range(len(actions) - 2 * length + 1):
        if list(actions[i:i + length]) == list(actions[i + length:i + 2 * length]):
            return True
    return False


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class PatternDetector:
    """Evaluate the four soft-gate heuristics over a trailing window.

    Events may be InputEvent instances or wire mappings carrying
    ``timestamp`` and ``action`` (or ``input``).
    """

    def __init__(self, window: int = _cfg.pattern_window) -> None:
        self.window = window

    def detect(self, events: Sequence[Any]) -> PatternResult:
        """Run every heuristic on the last ``window`` entries of ``events``."""
        recent = list(events[-self.window:])
        actions = [_action_of(e) for e in recent]

        categories: list[str] = []
        if self._exact_repetition(actions):
            categories.append(EXACT_REPETITION)
        if self._impossible_combination(actions):
            categories.append(IMPOSSIBLE_COMBINATION)
        if self._inhuman_timing(recent):
            categories.append(INHUMAN_TIMING)
        if self._automated_sequence(actions):
            categories.append(AUTOMATED_SEQUENCE)

        if not categories:
            return PatternResult(suspicious=False)
        return PatternResult(
            suspicious=True,
            categories=categories,
            reason=f"Detected patterns: {', '.join(categories)}",
        )

    def scan(self, events: Sequence[Any]) -> list[str]:
        """Slide ``detect`` across a whole history; return categories that fired.

        Order follows CATEGORIES so results are deterministic.
        """
        fired: set[str] = set()
        for end in range(1, len(events) + 1):
            result = self.detect(events[max(0, end - self.window):end])
            fired.update(result.categories)
            if len(fired) == len(CATEGORIES):
                break
        return [c for c in CATEGORIES if c in fired]

    @staticmethod
    def _exact_repetition(actions: list[Any]) -> bool:
        run = _cfg.repetition_run
        if len(actions) < run:
            return False
        tail = actions[-run:]
        return all(a == tail[0] for a in tail)

    @staticmethod
    def _impossible_combination(actions: list[Any]) -> bool:
        if len(actions) < 2:
            return False
        return are_opposing(actions[-2], actions[-1])

    @staticmethod
    def _inhuman_timing(recent: list[Any]) -> bool:
        if len(recent) < _cfg.timing_min_events:
            return False
        stamps = [_timestamp_of(e) for e in recent]
        if any(t is None for t in stamps):
            return False
        return population_variance(intervals(stamps)) < _cfg.timing_variance_threshold

    @staticmethod
    def _automated_sequence(actions: list[Any]) -> bool:
        if len(actions) < _cfg.automated_min_events:
            return False
        return any(
            has_repeating_block(actions, length)
            for length in range(_cfg.sequence_min_length, _cfg.sequence_max_length + 1)
        )
