"""
NEONGUARD — Input Validator & Manipulation Detector
====================================================

Two synchronous gates run on every input the client observes:

  InputValidator        structural checks on the action string, then a sliding
                        1-second rate window (global cap plus per-action caps).
                        First violated constraint wins.

  ManipulationDetector  hard gate on the current state snapshot.  Any signal
                        rejects the input outright.

Both run in time bounded by their fixed windows and perform no I/O.
"""

from __future__ import annotations

import logging
import re
import time
from collections import deque
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Callable, Mapping, Optional

from neonguard.config import CONFIG as _cfg
from neonguard.errors import (
    AntiCheatError,
    ManipulationDetected,
    RateLimitError,
    ValidationError,
)
from neonguard.models import ACTION_VOCABULARY, StateSnapshot

logger: logging.Logger = logging.getLogger(__name__)

_FORBIDDEN_CHARS = re.compile(r"[<>\"'&]")

_REQUIRED_SNAPSHOT_FIELDS: tuple[str, ...] = ("score", "level", "lines")


def _now_ms() -> float:
    return time.time() * 1000.0


# ---------------------------------------------------------------------------
# InputValidator
# ---------------------------------------------------------------------------

@dataclass
class ValidationResult:
    valid: bool
    reason: Optional[str] = None
    error: Optional[AntiCheatError] = None


class InputValidator:
    """Structural and rate checks on a single input action."""

    def __init__(
        self,
        clock: Callable[[], float] = _now_ms,
        window_ms: int = _cfg.rate_window_ms,
        global_cap: int = _cfg.max_actions_per_window,
        action_caps: Optional[Mapping[str, int]] = None,
    ) -> None:
        self._clock = clock
        self._window_ms = window_ms
        self._global_cap = global_cap
        self._action_caps = dict(_cfg.action_rate_caps if action_caps is None else action_caps)
        self._accepted: deque[tuple[float, str]] = deque()

    def check(self, action: Any, now: Optional[float] = None) -> str:
        """Validate ``action`` and record it for windowing.

        Returns the action string on success.

        Raises:
            ValidationError: non-string, too long, markup characters, or
                             outside the vocabulary.
            RateLimitError:  global or per-action window cap reached.
        """
        self._check_structure(action)
        now = self._clock() if now is None else now
        self._check_rate(action, now)
        self._accepted.append((now, action))
        return action

    def validate(self, action: Any, now: Optional[float] = None) -> ValidationResult:
        """Non-raising form of ``check``."""
        try:
            self.check(action, now)
        except (ValidationError, RateLimitError) as exc:
            return ValidationResult(valid=False, reason=str(exc), error=exc)
        return ValidationResult(valid=True)

    def reset(self) -> None:
        self._accepted.clear()

    def _check_structure(self, action: Any) -> None:
        if not isinstance(action, str):
            raise ValidationError("Input must be a string")
        if len(action) > _cfg.max_action_length:
            raise ValidationError("Input too long")
        if _FORBIDDEN_CHARS.search(action):
            raise ValidationError("Input contains suspicious characters")
        if action not in ACTION_VOCABULARY:
            raise ValidationError(f"Invalid input: {action}")

    def _check_rate(self, action: str, now: float) -> None:
        horizon = now - self._window_ms
        while self._accepted and self._accepted[0][0] <= horizon:
            self._accepted.popleft()

        if len(self._accepted) >= self._global_cap:
            raise RateLimitError(
                f"Input rate exceeded: {len(self._accepted)} inputs per second"
            )

        cap = self._action_caps.get(action)
        if cap is not None:
            same = sum(1 for _, a in self._accepted if a == action)
            if same >= cap:
                raise RateLimitError(
                    f"Input rate exceeded for {action}: {same} per second (max {cap})"
                )


# ---------------------------------------------------------------------------
# ManipulationDetector
# ---------------------------------------------------------------------------

SIGNAL_IMPOSSIBLE_STATE = "impossible_state_change"
SIGNAL_MEMORY = "memory_manipulation"
SIGNAL_TIMING = "timing_manipulation"


@dataclass
class ManipulationResult:
    detected: bool
    signals: list[str] = field(default_factory=list)
    reason: Optional[str] = None

    def raise_if_detected(self) -> None:
        if self.detected:
            raise ManipulationDetected(self.signals)


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


class ManipulationDetector:
    """Hard-gate checks for internally impossible snapshot values."""

    def __init__(self, clock: Callable[[], float] = _now_ms) -> None:
        self._clock = clock

    def check(
        self,
        latest_input: Any,
        snapshot: Any,
        now: Optional[float] = None,
    ) -> ManipulationResult:
        """Inspect ``snapshot`` (wire mapping or StateSnapshot).

        ``latest_input`` is carried for the log record only; the checks are
        on the state the input would act upon.
        """
        if isinstance(snapshot, StateSnapshot):
            snapshot = snapshot.to_dict()
        now = self._clock() if now is None else now

        signals: list[str] = []
        if self._memory_manipulated(snapshot):
            signals.append(SIGNAL_MEMORY)
        else:
            if self._impossible_state(snapshot):
                signals.append(SIGNAL_IMPOSSIBLE_STATE)
            timestamp = snapshot.get("timestamp")
            if _is_number(timestamp) and timestamp > now:
                signals.append(SIGNAL_TIMING)

        if not signals:
            return ManipulationResult(detected=False)

        reason = f"Manipulation detected: {', '.join(signals)}"
        logger.warning(
            "manipulation detected",
            extra={"input": latest_input, "signals": signals},
        )
        return ManipulationResult(detected=True, signals=signals, reason=reason)

    @staticmethod
    def _memory_manipulated(snapshot: Any) -> bool:
        """Wrong shape or missing/non-numeric required fields."""
        if not isinstance(snapshot, Mapping):
            return True
        for name in _REQUIRED_SNAPSHOT_FIELDS:
            if name not in snapshot or not _is_number(snapshot[name]):
                return True
        piece = snapshot.get("activePiece")
        if piece is not None:
            position = piece.get("position") if isinstance(piece, Mapping) else None
            if not isinstance(position, Mapping):
                return True
            if not (_is_number(position.get("x")) and _is_number(position.get("y"))):
                return True
        return False

    @staticmethod
    def _impossible_state(snapshot: Mapping[str, Any]) -> bool:
        if snapshot["score"] < 0:
            return True
        if not (_cfg.min_level <= snapshot["level"] <= _cfg.max_level):
            return True
        piece = snapshot.get("activePiece")
        if piece is not None:
            x, y = piece["position"]["x"], piece["position"]["y"]
            if not (0 <= x < _cfg.board_width and 0 <= y < _cfg.board_height):
                return True
        return False
