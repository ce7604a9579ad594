"""
NEONGUARD — Session Aggregation & Fingerprinting
=================================================

Wraps a SessionRecord produced by GameplayInstrumentation and:
    1. Periodically fingerprints the session state (background timer,
       independent of the frame loop).
    2. Seals the record at session end.
    3. Builds the submission payload for the server.
    4. Runs an advisory local preflight check.

Fingerprint
-----------
    digest = sha256(canonical_json({sessionId, elapsed, score, level,
                                    moves, pieces, suspicious}))

The JSON is serialised with sorted keys, so the digest does not depend on
field order.  It provides tamper-evidence only: the client holds everything
needed to recompute it.

A skipped timer tick (backgrounded tab, suspended process) is not an error;
the session simply carries fewer fingerprints and the preflight threshold
deals with it.

Usage
-----
    aggregator = SessionAggregator(instrumentation.record)
    aggregator.start()
    ...
    aggregator.end_session()
    payload = aggregator.get_submission()
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Mapping, Optional

from neonguard.config import CONFIG as _cfg
from neonguard.errors import SessionSealedError
from neonguard.models import SessionRecord, StateFingerprint

logger: logging.Logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000.0


# ---------------------------------------------------------------------------
# Pure helpers (shared with server-side verification)
# ---------------------------------------------------------------------------

def compute_digest(state_data: Mapping[str, Any]) -> str:
    """Return the SHA-256 hex digest of the canonical JSON of ``state_data``."""
    canonical = json.dumps(state_data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def fingerprint_state(record: SessionRecord, now: float) -> dict:
    """Collect the fields covered by a fingerprint."""
    latest = record.latest_snapshot
    return {
        "sessionId": record.session_id,
        "elapsed": now - record.start_time,
        "score": record.score,
        "level": latest.level if latest else 1,
        "moves": len(record.inputs),
        "pieces": len(record.pieces),
        "suspicious": len(record.suspicious),
    }


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class SessionAggregator:
    """Fingerprint, seal and package one SessionRecord."""

    def __init__(
        self,
        record: SessionRecord,
        clock: Callable[[], float] = _now_ms,
        interval_ms: int = _cfg.fingerprint_interval_ms,
    ) -> None:
        self.record = record
        self.clock = clock
        self.interval_ms = interval_ms
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Fingerprints
    # ------------------------------------------------------------------

    def fingerprint(self) -> StateFingerprint:
        """Compute and append a fingerprint of the current session state."""
        with self._lock:
            now = self.clock()
            state_data = fingerprint_state(self.record, now)
            fp = StateFingerprint(timestamp=now, digest=compute_digest(state_data), state_data=state_data)
            self.record.add_fingerprint(fp)
        logger.debug(
            "fingerprint recorded",
            extra={"session_id": self.record.session_id, "digest": fp.digest[:12]},
        )
        return fp

    def start(self) -> None:
        """Start the background fingerprint timer (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="neonguard-fingerprint", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=max(self.interval_ms / 1000.0, 1.0))
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_ms / 1000.0):
            try:
                self.fingerprint()
            except SessionSealedError:
                return
            except Exception:  # noqa: BLE001
                logger.exception("fingerprint tick failed; skipping")

    # ------------------------------------------------------------------
    # Session end
    # ------------------------------------------------------------------

    def end_session(self) -> StateFingerprint:
        """Stop the timer, take a final fingerprint and seal the record."""
        self.stop()
        fp = self.fingerprint()
        with self._lock:
            self.record.seal(self.clock())
        logger.info(
            "session sealed",
            extra={
                "session_id": self.record.session_id,
                "fingerprints": len(self.record.fingerprints),
                "suspicious": len(self.record.suspicious),
            },
        )
        return fp

    def get_submission(self) -> dict:
        """Return the submission payload for the verification service."""
        record = self.record
        latest = record.latest_snapshot
        return {
            "sessionId": record.session_id,
            "playerId": record.player_id,
            "gameState": {
                "score": record.score,
                "level": latest.level if latest else 1,
                "lines": latest.lines if latest else 0,
                "moves": [e.to_dict() for e in record.inputs],
                "pieces": [p.to_dict() for p in record.pieces],
                "inputPatterns": [e.to_dict() for e in record.attempts],
                "scoreDeltas": [d.to_dict() for d in record.score_deltas],
                "snapshots": [s.to_dict() for s in record.snapshots],
                "startTime": record.start_time,
                "endTime": record.end_time,
            },
            "suspiciousPatterns": [a.to_dict() for a in record.suspicious],
            "verificationData": [f.to_dict() for f in record.fingerprints],
            "finalHash": record.final_fingerprint,
        }

    def preflight_check(self) -> dict:
        """Advisory local check; does not replace server verification."""
        issues: list[str] = []
        if self.record.suspicious:
            issues.append(f"Found {len(self.record.suspicious)} suspicious activities")
        if self.record.score > _cfg.max_score:
            issues.append("Unrealistic final score")
        if len(self.record.fingerprints) < _cfg.min_fingerprints:
            issues.append("Insufficient verification data")
        return {
            "isValid": not issues,
            "issues": issues,
            "sessionId": self.record.session_id,
            "finalScore": self.record.score,
        }
