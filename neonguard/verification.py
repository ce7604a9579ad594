"""
NEONGUARD — Server-Side Session Verification
=============================================

Independently replays one submitted session and produces a Verdict.

Stages
------
    1. Structural-Validate  required fields present; +STRUCTURAL_PENALTY per
                            missing field; processing always continues.
    2. Reconstruct          score progression, piece sequence, move sequence,
                            session duration and fingerprint chain.  Each
                            violated category adds its fixed weight once.
    3. Pattern-Analyze      PatternDetector.scan over the submitted input
                            history, submitted snapshots through the
                            ManipulationDetector, future timestamps, and a
                            discounted count of client self-reports.
    4. Cross-Reference      fired categories, manipulation signals and client
                            report types against KNOWN_CHEAT_SIGNATURES.
    5. Verdict              raw = sum of contributions; is_valid = raw < 0.7;
                            fraud_score = raw clamped to [0, 1].

verify() never raises: a fault inside reconstruction costs 1.0, any other
fault turns the whole verdict invalid with fraud_score 1.0.

Shared state
------------
Only the verdict history and the audit list, both bounded to
VERIFICATION_HISTORY_SIZE and guarded by one lock.
Everything else is per request.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Callable, Mapping, Optional

from neonguard import scoring
from neonguard.aggregate import compute_digest
from neonguard.alert import AuditLog
from neonguard.config import CONFIG as _cfg
from neonguard.errors import ReconstructionError, StructuralError
from neonguard.models import Verdict, are_opposing
from neonguard.patterns import PatternDetector
from neonguard.validators import SIGNAL_TIMING, ManipulationDetector

logger: logging.Logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[str, ...] = (
    "sessionId", "gameState", "suspiciousPatterns", "verificationData",
)
REQUIRED_GAME_STATE_FIELDS: tuple[str, ...] = ("score", "level", "moves", "pieces")


def _now_ms() -> float:
    return time.time() * 1000.0


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Per-request accumulator
# ---------------------------------------------------------------------------

@dataclass
class _Tally:
    """Running fraud score for one request."""

    raw: float = 0.0
    issues: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    signals: set[str] = field(default_factory=set)

    def add(self, weight: float, issue: str) -> None:
        self.raw += weight
        self.issues.append(issue)

    def fire(self, category: str, issue: str) -> None:
        """Record ``issue``; add the category weight only on first firing."""
        self.issues.append(issue)
        if category not in self.categories:
            self.categories.append(category)
            self.raw += scoring.category_weight(category)


def _as_list(value: Any, name: str) -> list:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ReconstructionError(f"{name} must be a list, got {type(value).__name__}")
    return list(value)


def _entries(value: Any, name: str) -> list[Mapping[str, Any]]:
    items = _as_list(value, name)
    for i, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise ReconstructionError(f"{name}[{i}] must be an object")
    return items


def _timestamp(entry: Mapping[str, Any], name: str) -> Optional[float]:
    ts = entry.get("timestamp")
    if ts is None:
        return None
    if not _is_number(ts):
        raise ReconstructionError(f"{name} timestamp is not numeric: {ts!r}")
    return float(ts)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class VerificationEngine:
    """Verify submitted sessions and keep a bounded verdict history."""

    def __init__(
        self,
        clock: Callable[[], float] = _now_ms,
        pattern_detector: Optional[PatternDetector] = None,
        audit_log: Optional[AuditLog] = None,
        history_size: int = _cfg.verification_history_size,
    ) -> None:
        self.clock = clock
        self.pattern_detector = pattern_detector or PatternDetector()
        self.audit_log = audit_log
        self.verification_history: deque[Verdict] = deque(maxlen=history_size)
        self.suspicious_sessions: deque[Verdict] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def verify(self, payload: Any, received_at: Optional[float] = None) -> Verdict:
        """Run every stage on ``payload`` and return the verdict."""
        received_at = self.clock() if received_at is None else received_at
        session_id = payload.get("sessionId") if isinstance(payload, Mapping) else None
        verdict = Verdict(session_id=session_id, received_at=received_at)
        tally = _Tally()

        try:
            payload, game_state = self._validate_structure(payload, tally)
            self._reconstruct(payload, game_state, tally)
            self._analyze_patterns(payload, game_state, received_at, tally)
            self._cross_reference(payload, tally)
        except Exception as exc:  # noqa: BLE001
            logger.exception("verification failed", extra={"session_id": session_id})
            tally.issues.append(f"Verification error: {exc}")
            tally.raw = max(tally.raw, _cfg.fault_contribution)
            self._finish(verdict, tally, force_invalid=True)
        else:
            self._finish(verdict, tally)

        self._record(verdict, payload)
        return verdict

    def stats(self) -> dict:
        """Summary of the retained verification history."""
        with self._lock:
            history = list(self.verification_history)
            audit = len(self.suspicious_sessions)
        total = len(history)
        return {
            "totalVerifications": total,
            "validSessions": sum(1 for v in history if v.is_valid),
            "suspiciousSessions": audit,
            "averageFraudScore": (
                sum(v.fraud_score for v in history) / total if total else 0.0
            ),
        }

    # ------------------------------------------------------------------
    # Stage 1 — structure
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_structure(payload: Any, tally: _Tally) -> tuple[Mapping, Mapping]:
        if not isinstance(payload, Mapping):
            tally.add(
                _cfg.structural_penalty * len(REQUIRED_FIELDS),
                f"Malformed session payload: {type(payload).__name__}",
            )
            return {}, {}

        for name in REQUIRED_FIELDS:
            if payload.get(name) is None:
                tally.add(_cfg.structural_penalty, f"Missing required field: {name}")

        game_state = payload.get("gameState")
        if game_state is None:
            return payload, {}
        if not isinstance(game_state, Mapping):
            tally.add(_cfg.structural_penalty, "Malformed game state")
            return payload, {}
        for name in REQUIRED_GAME_STATE_FIELDS:
            if name not in game_state:
                tally.add(_cfg.structural_penalty, f"Missing game state field: {name}")
        return payload, game_state

    # ------------------------------------------------------------------
    # Stage 2 — reconstruction
    # ------------------------------------------------------------------

    def _reconstruct(self, payload: Mapping, game_state: Mapping, tally: _Tally) -> None:
        try:
            self._reconstruct_score(game_state, tally)
            self._reconstruct_pieces(game_state, tally)
            self._reconstruct_moves(game_state, tally)
            self._reconstruct_duration(game_state, tally)
            self._reconstruct_fingerprints(payload, tally)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "reconstruction failed",
                extra={"session_id": payload.get("sessionId"), "error": str(exc)},
            )
            tally.add(_cfg.fault_contribution, f"Reconstruction error: {exc}")

    def _reconstruct_score(self, game_state: Mapping, tally: _Tally) -> None:
        score = game_state.get("score", 0)
        if score is None:
            return
        if not _is_number(score):
            raise ReconstructionError(f"score is not numeric: {score!r}")

        if score < 0:
            tally.fire(scoring.SCORE_MANIPULATION, "Negative score detected")
        if score > _cfg.max_score:
            tally.fire(scoring.SCORE_MANIPULATION, "Unrealistically high score")

        for move in _entries(game_state.get("moves"), "moves"):
            increase = move.get("scoreIncrease") or 0
            if not _is_number(increase):
                raise ReconstructionError(f"scoreIncrease is not numeric: {increase!r}")
            if increase > _cfg.max_score_jump:
                tally.fire(
                    scoring.SCORE_MANIPULATION,
                    f"Impossible score increase in single move: {increase}",
                )
                break

        for delta in _entries(game_state.get("scoreDeltas"), "scoreDeltas"):
            points = delta.get("points") or 0
            if _is_number(points) and (points > _cfg.max_score_jump or points < 0):
                tally.fire(
                    scoring.SCORE_MANIPULATION,
                    f"Impossible score update: {points}",
                )
                break

    def _reconstruct_pieces(self, game_state: Mapping, tally: _Tally) -> None:
        pieces = _entries(game_state.get("pieces"), "pieces")
        timing_flagged = repetition_flagged = False
        for i in range(1, len(pieces)):
            previous, current = pieces[i - 1], pieces[i]
            t0, t1 = _timestamp(previous, "pieces"), _timestamp(current, "pieces")
            if not timing_flagged and t0 is not None and t1 is not None:
                if t1 - t0 < _cfg.min_piece_gap_ms:
                    tally.fire(scoring.SPEED_HACKING, "Impossible piece generation timing")
                    timing_flagged = True
            if not repetition_flagged and i + 1 < len(pieces):
                following = pieces[i + 1]
                if previous.get("piece") == current.get("piece") == following.get("piece"):
                    tally.fire(scoring.SESSION_MANIPULATION, "Impossible piece repetition")
                    repetition_flagged = True

    def _reconstruct_moves(self, game_state: Mapping, tally: _Tally) -> None:
        moves = _entries(game_state.get("moves"), "moves")
        timing_flagged = conflict_flagged = False
        for i in range(1, len(moves)):
            previous, current = moves[i - 1], moves[i]
            t0, t1 = _timestamp(previous, "moves"), _timestamp(current, "moves")
            if t0 is None or t1 is None:
                continue
            same_tick = t1 - t0 < _cfg.min_move_gap_ms
            if same_tick and not timing_flagged:
                tally.fire(scoring.SPEED_HACKING, "Impossible move timing")
                timing_flagged = True
            if same_tick and not conflict_flagged and are_opposing(
                previous.get("action"), current.get("action")
            ):
                tally.fire(scoring.INPUT_REPLAY, "Conflicting moves detected in the same tick")
                conflict_flagged = True

    def _reconstruct_duration(self, game_state: Mapping, tally: _Tally) -> None:
        start, end = game_state.get("startTime"), game_state.get("endTime")
        if not (_is_number(start) and _is_number(end)):
            return
        duration = end - start
        if duration < 0:
            tally.fire(scoring.SESSION_MANIPULATION, "Session ends before it starts")
            return
        if duration > _cfg.max_session_ms:
            tally.fire(scoring.TIMING_ANOMALIES, "Session duration exceeds reasonable limit")
        score = game_state.get("score")
        if _is_number(score) and score > _cfg.max_points_per_second * (duration / 1000.0):
            tally.fire(scoring.SCORE_MANIPULATION, "Score impossible for duration")

    def _reconstruct_fingerprints(self, payload: Mapping, tally: _Tally) -> None:
        fingerprints = _entries(payload.get("verificationData"), "verificationData")
        session_id = payload.get("sessionId")
        for fp in fingerprints:
            state_data, digest = fp.get("stateData"), fp.get("stateHash")
            if state_data is None or digest is None:
                continue
            if compute_digest(state_data) != digest or state_data.get("sessionId") != session_id:
                tally.fire(
                    scoring.SESSION_MANIPULATION,
                    "Fingerprint does not match its state data",
                )
                break

        final_hash = payload.get("finalHash")
        if final_hash and fingerprints and fingerprints[-1].get("stateHash") != final_hash:
            tally.fire(
                scoring.SESSION_MANIPULATION,
                "Final hash does not match last fingerprint",
            )

    # ------------------------------------------------------------------
    # Stage 3 — pattern analysis
    # ------------------------------------------------------------------

    def _analyze_patterns(
        self,
        payload: Mapping,
        game_state: Mapping,
        received_at: float,
        tally: _Tally,
    ) -> None:
        inputs = game_state.get("inputPatterns") or []
        if isinstance(inputs, (list, tuple)):
            for category in self.pattern_detector.scan(inputs):
                tally.patterns.append(category)
                tally.add(scoring.category_weight(category), f"Input pattern detected: {category}")

        self._check_snapshots(game_state, received_at, tally)
        self._check_future_timestamps(payload, game_state, received_at, tally)

        reports = payload.get("suspiciousPatterns") or []
        if isinstance(reports, (list, tuple)) and reports:
            tally.add(
                _cfg.client_report_weight * len(reports),
                f"Found {len(reports)} suspicious patterns",
            )

    def _check_snapshots(self, game_state: Mapping, received_at: float, tally: _Tally) -> None:
        snapshots = game_state.get("snapshots") or []
        if not isinstance(snapshots, (list, tuple)):
            return
        detector = ManipulationDetector()
        for snapshot in snapshots:
            result = detector.check(None, snapshot, received_at)
            new = [s for s in result.signals if s not in tally.signals]
            for signal in new:
                tally.signals.add(signal)
                category = (
                    scoring.TIMING_ANOMALIES if signal == SIGNAL_TIMING
                    else scoring.SESSION_MANIPULATION
                )
                tally.fire(category, f"Snapshot flagged: {signal}")

    def _check_future_timestamps(
        self,
        payload: Mapping,
        game_state: Mapping,
        received_at: float,
        tally: _Tally,
    ) -> None:
        if SIGNAL_TIMING in tally.signals:
            return
        sources = (
            payload.get("verificationData"),
            game_state.get("moves"),
            game_state.get("pieces"),
            game_state.get("inputPatterns"),
        )
        for source in sources:
            if not isinstance(source, (list, tuple)):
                continue
            for entry in source:
                ts = entry.get("timestamp") if isinstance(entry, Mapping) else None
                if _is_number(ts) and ts > received_at:
                    tally.signals.add(SIGNAL_TIMING)
                    tally.fire(scoring.TIMING_ANOMALIES, "Future timestamp detected")
                    return

    # ------------------------------------------------------------------
    # Stage 4 — cross-reference
    # ------------------------------------------------------------------

    def _cross_reference(self, payload: Mapping, tally: _Tally) -> None:
        signals = set(tally.categories) | tally.signals
        for report in payload.get("suspiciousPatterns") or []:
            if isinstance(report, Mapping) and report.get("type"):
                signals.add(report["type"])
        for signature in scoring.match_signatures(signals):
            tally.add(_cfg.signature_weight, f"Known cheating pattern detected: {signature}")

    # ------------------------------------------------------------------
    # Stage 5 — verdict
    # ------------------------------------------------------------------

    def _finish(self, verdict: Verdict, tally: _Tally, force_invalid: bool = False) -> None:
        verdict.raw_score = round(tally.raw, 6)
        verdict.fraud_score = scoring.finalize_score(tally.raw)
        if force_invalid:
            verdict.fraud_score = max(verdict.fraud_score, _cfg.fault_contribution)
        verdict.is_valid = not force_invalid and tally.raw < _cfg.fraud_threshold
        verdict.issues = tally.issues
        verdict.categories = sorted(set(tally.categories) | set(tally.patterns) | tally.signals)
        verdict.recommendations = scoring.recommendations_for(verdict.fraud_score)

    def _record(self, verdict: Verdict, payload: Any) -> None:
        with self._lock:
            self.verification_history.append(verdict)
            if not verdict.is_valid:
                self.suspicious_sessions.append(verdict)
        if not verdict.is_valid and self.audit_log is not None:
            player_id = payload.get("playerId") if isinstance(payload, Mapping) else None
            try:
                self.audit_log.append(verdict, player_id)
            except OSError:
                logger.exception("audit log write failed", extra={"session_id": verdict.session_id})
        logger.info(
            "session verified",
            extra={
                "session_id": verdict.session_id,
                "is_valid": verdict.is_valid,
                "fraud_score": verdict.fraud_score,
            },
        )


def raise_for_structure(payload: Any) -> None:
    """Strict variant of stage 1 for callers that prefer to reject early.

    Raises:
        StructuralError: listing every missing required field.
    """
    tally = _Tally()
    VerificationEngine._validate_structure(payload, tally)
    if tally.issues:
        raise StructuralError("; ".join(tally.issues))
