"""
NEONGUARD — Cross-Session Pattern Analysis
===========================================

Compares each verified session against the player's own history.

Components
----------
  SessionStore                 explicit store of per-player ring buffers
                               (last PLAYER_HISTORY_SIZE sessions) and
                               PlayerProfile aggregates, with one lock per
                               player.  Created by the caller and injected;
                               there is no process-wide registry.

  CrossSessionPatternAnalyzer  analyze(player_id, session_data) runs
                               single-session checks, cross-session checks
                               against the previous sessions, and historical
                               anomaly checks against the profile, then
                               updates the profile.

Concurrency
-----------
The whole read-modify-write (buffer append, history comparison, profile
update) for one player runs under that player's lock.  Different players
never share a lock, so their analyses do not contend.

The risk score produced here is independent of the VerificationEngine
verdict; combining the two is left to the caller.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable, Mapping, Optional, Sequence

from neonguard import scoring
from neonguard.config import CONFIG as _cfg
from neonguard.models import CrossSessionReport, PlayerProfile, Verdict
from neonguard.patterns import has_repeating_block, intervals, population_variance

logger: logging.Logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000.0


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _game_state(session_data: Mapping[str, Any]) -> Mapping[str, Any]:
    state = session_data.get("gameState") if isinstance(session_data, Mapping) else None
    return state if isinstance(state, Mapping) else {}


def _score(session_data: Mapping[str, Any]) -> float:
    score = _game_state(session_data).get("score", 0)
    return score if _is_number(score) else 0


def _timed(entries: Any) -> list[Mapping[str, Any]]:
    if not isinstance(entries, (list, tuple)):
        return []
    return [e for e in entries if isinstance(e, Mapping) and _is_number(e.get("timestamp"))]


def _actions(entries: Any) -> list[Any]:
    if not isinstance(entries, (list, tuple)):
        return []
    return [e.get("input", e.get("action")) for e in entries if isinstance(e, Mapping)]


def input_similarity(first: Sequence[Any], second: Sequence[Any], size: int = _cfg.shingle_size) -> float:
    """Containment similarity of two action sequences over n-gram shingles.

    Returns |S(a) & S(b)| / max(|S(a)|, |S(b)|).  A sequence shorter than
    ``size`` has no shingles, so the result is 0.0.
    """
    if len(first) < size or len(second) < size:
        return 0.0

    def shingles(seq: Sequence[Any]) -> set[tuple]:
        return {tuple(seq[i:i + size]) for i in range(len(seq) - size + 1)}

    a, b = shingles(first), shingles(second)
    return len(a & b) / max(len(a), len(b))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoredSession:
    received_at: float
    session_data: Mapping[str, Any]


class SessionStore:
    """Per-player session ring buffers and profiles."""

    def __init__(self, history_size: int = _cfg.player_history_size) -> None:
        self.history_size = history_size
        self._sessions: dict[str, deque[StoredSession]] = {}
        self._profiles: dict[str, PlayerProfile] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, player_id: str) -> threading.RLock:
        """Return the lock serialising updates for ``player_id``."""
        with self._registry_lock:
            lock = self._locks.get(player_id)
            if lock is None:
                lock = self._locks[player_id] = threading.RLock()
            return lock

    def append(self, player_id: str, entry: StoredSession) -> list[StoredSession]:
        """Add ``entry`` to the player's buffer; return the buffer, oldest first."""
        with self.lock_for(player_id):
            with self._registry_lock:
                buffer = self._sessions.setdefault(player_id, deque(maxlen=self.history_size))
            buffer.append(entry)
            return list(buffer)

    def sessions(self, player_id: str) -> list[StoredSession]:
        with self.lock_for(player_id):
            return list(self._sessions.get(player_id, ()))

    def profile(self, player_id: str) -> Optional[PlayerProfile]:
        return self._profiles.get(player_id)

    def profile_for_update(self, player_id: str) -> PlayerProfile:
        """Return the player's profile, creating it on first use."""
        with self.lock_for(player_id):
            profile = self._profiles.get(player_id)
            if profile is None:
                with self._registry_lock:
                    profile = self._profiles[player_id] = PlayerProfile(player_id=player_id)
            return profile

    def players(self) -> list[str]:
        with self._registry_lock:
            return list(self._profiles)

    def session_count(self) -> int:
        with self._registry_lock:
            return sum(len(buffer) for buffer in self._sessions.values())


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

def _finding(kind: str, severity: str, description: str, **details: Any) -> dict:
    return {"type": kind, "severity": severity, "description": description, **details}


class CrossSessionPatternAnalyzer:
    """Score a session against the player's own history."""

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        self.store = store if store is not None else SessionStore()
        self.clock = clock

    def analyze(
        self,
        player_id: str,
        session_data: Mapping[str, Any],
        verdict: Optional[Verdict] = None,
        received_at: Optional[float] = None,
    ) -> CrossSessionReport:
        """Store the session, run every check and update the profile."""
        received_at = self.clock() if received_at is None else received_at
        report = CrossSessionReport(player_id=player_id)

        with self.store.lock_for(player_id):
            raw = 0.0
            try:
                baseline = self.store.profile(player_id)
                average = baseline.average_score if baseline else 0.0
                sessions = self.store.append(player_id, StoredSession(received_at, session_data))
                raw += self._single_session(session_data, received_at, report)
                raw += self._cross_session(sessions, report)
                raw += self._anomalies(average, session_data, report)
            except Exception as exc:  # noqa: BLE001
                logger.exception("cross-session analysis failed", extra={"player_id": player_id})
                report.anomalies.append(
                    _finding("analysis_error", "critical", f"Analysis error: {exc}")
                )
                raw = _cfg.fault_contribution

            report.raw_score = round(raw, 6)
            report.risk_score = scoring.finalize_score(raw)
            report.recommendations = scoring.recommendations_for(report.risk_score)
            self._update_profile(player_id, session_data, report, verdict)

        if report.patterns or report.anomalies:
            logger.warning(
                "cross-session findings for player %s",
                player_id,
                extra={"risk_score": report.risk_score, "findings": len(report.descriptions())},
            )
        return report

    def stats(self) -> dict:
        players = self.store.players()
        profiles = [self.store.profile(p) for p in players]
        return {
            "totalUsers": len(players),
            "totalSessions": self.store.session_count(),
            "averageRiskScore": (
                sum(p.cumulative_risk for p in profiles) / len(profiles) if profiles else 0.0
            ),
        }

    # ------------------------------------------------------------------
    # Single-session checks
    # ------------------------------------------------------------------

    def _single_session(
        self,
        session_data: Mapping[str, Any],
        received_at: float,
        report: CrossSessionReport,
    ) -> float:
        checks = (
            (scoring.SPEED_HACKING, self._speed_hacking(session_data)),
            (scoring.SCORE_MANIPULATION, self._score_manipulation(session_data)),
            (scoring.INPUT_REPLAY, self._input_replay(session_data)),
            (scoring.TIMING_ANOMALIES, self._timing_anomalies(session_data, received_at)),
        )
        raw = 0.0
        for category, findings in checks:
            if findings:
                report.patterns.extend(findings)
                raw += scoring.category_weight(category)
        return raw

    @staticmethod
    def _speed_hacking(session_data: Mapping[str, Any]) -> list[dict]:
        state = _game_state(session_data)
        findings = []
        for name, limit, severity, label in (
            ("inputPatterns", _cfg.speed_input_gap_ms, "high", "Inhuman input speed"),
            ("moves", _cfg.speed_move_gap_ms, "critical", "Impossible move speed"),
        ):
            entries = _timed(state.get(name))
            for previous, current in zip(entries, entries[1:]):
                gap = current["timestamp"] - previous["timestamp"]
                if gap < limit:
                    findings.append(_finding(
                        scoring.SPEED_HACKING, severity, f"{label}: {gap}ms",
                        timestamp=current["timestamp"],
                    ))
        return findings

    @staticmethod
    def _score_manipulation(session_data: Mapping[str, Any]) -> list[dict]:
        state = _game_state(session_data)
        findings = []
        moves = state.get("moves") if isinstance(state.get("moves"), (list, tuple)) else []
        for move in moves:
            increase = move.get("scoreIncrease") if isinstance(move, Mapping) else None
            if _is_number(increase) and increase > _cfg.max_score_jump:
                findings.append(_finding(
                    scoring.SCORE_MANIPULATION, "high",
                    f"Impossible score increase: {increase}",
                    timestamp=move.get("timestamp"),
                ))
        score = _score(session_data)
        if score < 0:
            findings.append(_finding(scoring.SCORE_MANIPULATION, "critical", "Negative score detected"))
        if score > _cfg.max_score:
            findings.append(_finding(
                scoring.SCORE_MANIPULATION, "medium", f"Unrealistic final score: {score}",
            ))
        return findings

    @staticmethod
    def _input_replay(session_data: Mapping[str, Any]) -> list[dict]:
        state = _game_state(session_data)
        findings = []
        actions = _actions(state.get("inputPatterns"))
        if has_repeating_block(actions, _cfg.replay_block):
            findings.append(_finding(
                scoring.INPUT_REPLAY, "medium", "Exact input sequence repetition",
            ))
        entries = _timed(state.get("inputPatterns"))
        gaps = intervals([e["timestamp"] for e in entries])
        if (
            len(gaps) > _cfg.replay_min_intervals
            and population_variance(gaps) < _cfg.replay_variance
        ):
            findings.append(_finding(
                scoring.INPUT_REPLAY, "high", "Suspiciously consistent input timing",
            ))
        return findings

    @staticmethod
    def _timing_anomalies(session_data: Mapping[str, Any], received_at: float) -> list[dict]:
        state = _game_state(session_data)
        findings = []
        fingerprints = session_data.get("verificationData") if isinstance(session_data, Mapping) else None
        for entry in _timed(fingerprints):
            if entry["timestamp"] > received_at:
                findings.append(_finding(
                    scoring.TIMING_ANOMALIES, "critical", "Future timestamp detected",
                    timestamp=entry["timestamp"],
                ))
                break
        start, end = state.get("startTime"), state.get("endTime")
        if _is_number(start) and _is_number(end) and end - start > _cfg.max_analyzed_session_ms:
            findings.append(_finding(
                scoring.TIMING_ANOMALIES, "medium", f"Unusually long session: {end - start}ms",
            ))
        return findings

    # ------------------------------------------------------------------
    # Cross-session checks
    # ------------------------------------------------------------------

    def _cross_session(self, sessions: list[StoredSession], report: CrossSessionReport) -> float:
        if len(sessions) < 2:
            return 0.0
        *earlier, current = sessions
        previous = earlier[-1]
        findings = []

        improvement = _score(current.session_data) - _score(previous.session_data)
        if improvement > _cfg.max_score_improvement:
            findings.append(_finding(
                "cross_session_anomaly", "high",
                f"Impossible score improvement: {improvement}",
                timestamp=current.received_at,
            ))

        gap = current.received_at - previous.received_at
        if gap < _cfg.min_session_gap_ms:
            findings.append(_finding(
                "cross_session_anomaly", "medium",
                f"Impossible session timing: {gap}ms",
                timestamp=current.received_at,
            ))

        current_actions = _actions(_game_state(current.session_data).get("inputPatterns"))
        for stored in earlier:
            past_actions = _actions(_game_state(stored.session_data).get("inputPatterns"))
            similarity = input_similarity(current_actions, past_actions)
            if similarity > _cfg.similarity_threshold:
                findings.append(_finding(
                    "cross_session_anomaly", "medium",
                    "Suspiciously similar input patterns across sessions",
                    similarity=round(similarity, 4),
                    timestamp=current.received_at,
                ))
                break

        report.patterns.extend(findings)
        return _cfg.cross_session_weight * len(findings)

    # ------------------------------------------------------------------
    # Anomalies against the player's own baseline
    # ------------------------------------------------------------------

    @staticmethod
    def _anomalies(average: float, session_data: Mapping[str, Any], report: CrossSessionReport) -> float:
        raw = 0.0
        score = _score(session_data)
        if average > 0 and score > average * _cfg.history_score_multiplier:
            report.anomalies.append(_finding(
                "historical_anomaly", "medium",
                "Score significantly above historical average",
                details=f"Current: {score}, Average: {average:.1f}",
            ))
            raw += _cfg.historical_weight

        entries = _timed(_game_state(session_data).get("inputPatterns"))
        if len(entries) > _cfg.outlier_min_inputs:
            gaps = intervals([e["timestamp"] for e in entries])
            mean = sum(gaps) / len(gaps)
            std = math.sqrt(population_variance(gaps))
            outliers = [g for g in gaps if abs(g - mean) > std * _cfg.outlier_sigma]
            if outliers:
                report.anomalies.append(_finding(
                    "statistical_anomaly", "low",
                    "Input timing statistical outlier",
                    details=f"Outliers: {len(outliers)}, Mean: {mean:.1f}, StdDev: {std:.1f}",
                ))
                raw += _cfg.statistical_weight
        return raw

    def _update_profile(
        self,
        player_id: str,
        session_data: Mapping[str, Any],
        report: CrossSessionReport,
        verdict: Optional[Verdict],
    ) -> None:
        profile = self.store.profile_for_update(player_id)
        profile.session_count += 1
        profile.cumulative_risk += report.risk_score
        profile.last_risk_score = report.risk_score
        if verdict is not None:
            profile.last_verdict = verdict
        score = max(_score(session_data), 0)
        profile.average_score += (score - profile.average_score) / profile.session_count
