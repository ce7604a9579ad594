"""
NEONGUARD — Gameplay Instrumentation
=====================================

Observes the game engine through explicit lifecycle hooks and builds the
SessionRecord that is later fingerprinted, sealed and submitted.

Architecture
------------
The engine exposes ``subscribe(hook, callback)`` for four hooks and a state
accessor ``get_state()``.  Instrumentation never replaces engine methods; it
only registers observers:

  tick   ``callback(delta)``  after each update.  Captures a post-update
                              snapshot and validates the transition from the
                              previous snapshot.
  input  ``callback(action)`` before the engine applies an input.  Returns
                              False to veto (validation, rate limit or
                              manipulation), True otherwise.
                              Soft-gate patterns are flagged once when they
                              start firing, not on every input while they
                              persist.
  score  ``callback(points)`` on every score update.
  piece  ``callback(piece)``  on every piece generation.

``HookRegistry`` is a minimal registry an engine can embed to provide the
``subscribe`` side of that contract.

Failure model
-------------
A missing hook or accessor degrades that concern to pass-through with a
warning.  Any exception raised while processing an event is logged and the
event is allowed (fail-open for gameplay); nothing beyond what was already
recorded is added, so a fault never earns the session extra trust.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Optional

from neonguard.alert import ActivityReporter
from neonguard.config import CONFIG as _cfg
from neonguard.errors import RateLimitError
from neonguard.models import (
    InputEvent,
    PieceEvent,
    ScoreDelta,
    SessionRecord,
    Severity,
    StateSnapshot,
    SuspiciousActivity,
    normalize_engine_state,
)
from neonguard.patterns import PatternDetector
from neonguard.validators import InputValidator, ManipulationDetector

logger: logging.Logger = logging.getLogger(__name__)

# Hook names used as keys in subscribe() and HookRegistry.
HOOK_TICK = "tick"
HOOK_INPUT = "input"
HOOK_SCORE = "score"
HOOK_PIECE = "piece"

HOOKS: tuple[str, ...] = (HOOK_TICK, HOOK_INPUT, HOOK_SCORE, HOOK_PIECE)


def _now_ms() -> float:
    return time.time() * 1000.0


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Engine-side hook registry
# ---------------------------------------------------------------------------

class HookRegistry:
    """Observer registry for the fixed set of engine lifecycle hooks."""

    def __init__(self, hooks: tuple[str, ...] = HOOKS) -> None:
        self._callbacks: dict[str, list[Callable[..., Any]]] = {h: [] for h in hooks}

    def subscribe(self, hook: str, callback: Callable[..., Any]) -> None:
        """Register ``callback`` for ``hook``; unknown hooks raise ValueError."""
        if hook not in self._callbacks:
            raise ValueError(f"unknown hook {hook!r}")
        self._callbacks[hook].append(callback)

    def emit(self, hook: str, *args: Any) -> list[Any]:
        """Invoke every subscriber of ``hook`` in order; return their results."""
        return [callback(*args) for callback in self._callbacks.get(hook, [])]

    def emit_input(self, action: Any) -> bool:
        """Emit an input; False when any subscriber vetoed it."""
        return all(result is not False for result in self.emit(HOOK_INPUT, action))


# ---------------------------------------------------------------------------
# Instrumentation
# ---------------------------------------------------------------------------

class GameplayInstrumentation:
    """Route engine lifecycle events through the validators into a SessionRecord."""

    def __init__(
        self,
        engine: Any,
        player_id: str,
        clock: Callable[[], float] = _now_ms,
        session_id: Optional[str] = None,
        reporter: Optional[ActivityReporter] = None,
        validator: Optional[InputValidator] = None,
        pattern_detector: Optional[PatternDetector] = None,
        manipulation_detector: Optional[ManipulationDetector] = None,
    ) -> None:
        self.engine = engine
        self.clock = clock
        self.reporter = reporter
        self.validator = validator or InputValidator(clock=clock)
        self.pattern_detector = pattern_detector or PatternDetector()
        self.manipulation_detector = manipulation_detector or ManipulationDetector(clock=clock)
        self.record = SessionRecord(
            session_id=session_id or new_session_id(),
            player_id=player_id,
            start_time=clock(),
        )
        self.attached: set[str] = set()
        self.blocked: list[tuple[InputEvent, str]] = []
        self._active_patterns: set[str] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def attach(self) -> set[str]:
        """Subscribe to every available hook; return the set attached."""
        subscribe = getattr(self.engine, "subscribe", None)
        if not callable(subscribe):
            logger.warning(
                "engine exposes no subscribe(); instrumentation is pass-through",
                extra={"session_id": self.record.session_id},
            )
            return self.attached

        handlers = {
            HOOK_TICK: self.on_tick,
            HOOK_INPUT: self.on_input,
            HOOK_SCORE: self.on_score,
            HOOK_PIECE: self.on_piece,
        }
        for hook, handler in handlers.items():
            try:
                subscribe(hook, handler)
            except Exception as exc:  # noqa: BLE001
                logger.warning("hook %r unavailable, passing through: %s", hook, exc)
                continue
            self.attached.add(hook)

        if not callable(getattr(self.engine, "get_state", None)):
            logger.warning("engine exposes no get_state(); snapshots disabled")
        return self.attached

    # ------------------------------------------------------------------
    # State capture
    # ------------------------------------------------------------------

    def capture(self, now: Optional[float] = None) -> Optional[dict]:
        """Return the current engine state in snapshot wire form, or None.

        The snapshot is stamped with ``now`` when given, so an input and the
        state it acts upon share one clock reading.
        """
        get_state = getattr(self.engine, "get_state", None)
        if not callable(get_state):
            return None
        state = get_state()
        if state is None:
            return None
        return normalize_engine_state(state, self.clock() if now is None else now)

    def flag(self, category: str, severity: Severity, evidence: dict) -> SuspiciousActivity:
        """Record a SuspiciousActivity and hand it to the reporter."""
        activity = SuspiciousActivity(
            category=category,
            severity=severity,
            timestamp=self.clock(),
            evidence=evidence,
        )
        self.record.add_suspicious(activity)
        logger.warning(
            "suspicious activity: %s",
            category,
            extra={"session_id": self.record.session_id, "severity": severity.value},
        )
        if self.reporter is not None:
            self.reporter.report(activity, self.record.session_id)
        return activity

    # ------------------------------------------------------------------
    # Hook handlers
    # ------------------------------------------------------------------

    def on_tick(self, delta: Any = None) -> None:
        try:
            raw = self.capture()
            if raw is None:
                return
            previous = self.record.latest_snapshot
            post = StateSnapshot.from_dict(raw)
            self.record.add_snapshot(post)
            if previous is not None:
                self._validate_transition(previous, post)
        except Exception:  # noqa: BLE001
            logger.exception("tick instrumentation failed; passing through")

    def on_input(self, action: Any) -> bool:
        """Process one input; return False to veto it."""
        try:
            return self._process_input(action)
        except Exception:  # noqa: BLE001
            logger.exception("input instrumentation failed; passing through")
            return True

    def on_score(self, points: Any) -> None:
        try:
            previous = self.record.score
            delta = ScoreDelta(
                timestamp=self.clock(),
                previous_score=previous,
                points=points,
                new_score=previous + points,
            )
            self.record.add_score_delta(delta)
            if points < 0:
                self.flag("negative_score_change", Severity.HIGH, delta.to_dict())
            elif points > _cfg.max_score_jump:
                self.flag("score_jump", Severity.HIGH, delta.to_dict())
        except Exception:  # noqa: BLE001
            logger.exception("score instrumentation failed; passing through")

    def on_piece(self, piece: Any) -> None:
        try:
            latest = self.record.latest_snapshot
            self.record.add_piece(PieceEvent(
                timestamp=self.clock(),
                piece=piece,
                level=latest.level if latest else 1,
            ))
        except Exception:  # noqa: BLE001
            logger.exception("piece instrumentation failed; passing through")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _process_input(self, action: Any) -> bool:
        now = self.clock()
        self.record.add_attempt(InputEvent(timestamp=now, action=action))

        validation = self.validator.validate(action, now)
        if not validation.valid:
            event = InputEvent(timestamp=now, action=action)
            self.blocked.append((event, validation.reason))
            category = "rate_limit" if isinstance(validation.error, RateLimitError) else "invalid_input"
            self.flag(category, Severity.MEDIUM, {"input": action, "reason": validation.reason})
            return False

        raw = self.capture(now)
        snapshot_index = None
        if raw is not None:
            manipulation = self.manipulation_detector.check(action, raw, now)
            if manipulation.detected:
                event = InputEvent(timestamp=now, action=action)
                self.blocked.append((event, manipulation.reason))
                for signal in manipulation.signals:
                    self.flag(signal, Severity.CRITICAL, {"input": action, "snapshot": raw})
                return False
            snapshot_index = self.record.add_snapshot(StateSnapshot.from_dict(raw))

        event = InputEvent(timestamp=now, action=action, snapshot_index=snapshot_index)
        patterns = self.pattern_detector.detect(self.record.inputs + [event])
        # Flag a pattern when it starts firing, not again while it persists.
        for category in patterns.categories:
            if category not in self._active_patterns:
                self.flag(category, Severity.MEDIUM, {"input": action, "reason": patterns.reason})
        self._active_patterns = set(patterns.categories)

        self.record.add_input(event)
        return True

    def _validate_transition(self, pre: StateSnapshot, post: StateSnapshot) -> None:
        evidence = {"pre": pre.to_dict(), "post": post.to_dict()}
        if post.score < pre.score:
            self.flag("score_decrease", Severity.HIGH, evidence)
        elif post.score - pre.score > _cfg.max_score_jump:
            self.flag("score_jump", Severity.HIGH, {**evidence, "scoreDiff": post.score - pre.score})
        if post.level < pre.level:
            self.flag("level_decrease", Severity.HIGH, evidence)
