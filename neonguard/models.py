"""
NEONGUARD — Session Data Model
===============================

Plain dataclasses for everything captured during a play session and everything
produced by verification.  Python attributes are snake_case; ``to_dict()``
returns the camelCase wire form used in submission payloads and verdict
responses.

Time unit: milliseconds since the epoch (float) throughout.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from neonguard.errors import SessionSealedError


class Action(str, Enum):
    """Fixed input vocabulary accepted from the game client."""

    LEFT = "left"
    RIGHT = "right"
    SOFT_DROP = "soft_drop"
    HARD_DROP = "hard_drop"
    ROTATE_LEFT = "rotate_left"
    ROTATE_RIGHT = "rotate_right"
    DROP = "drop"
    HOLD = "hold"
    PAUSE = "pause"
    RESUME = "resume"


ACTION_VOCABULARY: frozenset[str] = frozenset(a.value for a in Action)

# Pairs that cannot both be pressed in the same instant.
OPPOSING_ACTIONS: tuple[frozenset[str], ...] = (
    frozenset({Action.LEFT.value, Action.RIGHT.value}),
    frozenset({Action.ROTATE_LEFT.value, Action.ROTATE_RIGHT.value}),
)


def are_opposing(first: Any, second: Any) -> bool:
    """Return True when the two actions sit on opposite ends of one axis."""
    return frozenset({first, second}) in OPPOSING_ACTIONS


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def board_digest(board: Any) -> str:
    """Short stable digest of a board grid (any JSON-serialisable value)."""
    raw = json.dumps(board, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha1(raw).hexdigest()[:16]


def normalize_engine_state(state: Mapping[str, Any], timestamp: float) -> dict:
    """Convert the engine's state accessor output into the snapshot wire form.

    Keys the engine did not provide stay absent so the manipulation detector
    can tell a missing field from a zero.
    """
    snapshot: dict[str, Any] = {"timestamp": timestamp}
    for key in ("score", "level", "lines"):
        if key in state:
            snapshot[key] = state[key]

    current = state.get("current")
    if current is None:
        snapshot["activePiece"] = None
    else:
        snapshot["activePiece"] = {
            "type": current.get("type"),
            "position": {"x": current.get("gridX"), "y": current.get("gridY")},
            "rotation": current.get("rotation", 0),
        }
    snapshot["boardDigest"] = board_digest(state.get("board", []))
    return snapshot


# ---------------------------------------------------------------------------
# Captured events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActivePiece:
    type: str
    x: int
    y: int
    rotation: int = 0

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "position": {"x": self.x, "y": self.y},
            "rotation": self.rotation,
        }


@dataclass(frozen=True)
class StateSnapshot:
    """Game state observed at one instant."""

    timestamp: float
    score: int = 0
    level: int = 1
    lines: int = 0
    active_piece: Optional[ActivePiece] = None
    board_digest: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateSnapshot":
        """Build a snapshot from its wire form, defaulting absent fields."""
        piece = data.get("activePiece")
        active = None
        if piece:
            position = piece.get("position") or {}
            active = ActivePiece(
                type=piece.get("type"),
                x=position.get("x"),
                y=position.get("y"),
                rotation=piece.get("rotation", 0),
            )
        return cls(
            timestamp=data.get("timestamp", 0.0),
            score=data.get("score", 0),
            level=data.get("level", 1),
            lines=data.get("lines", 0),
            active_piece=active,
            board_digest=data.get("boardDigest", ""),
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "score": self.score,
            "level": self.level,
            "lines": self.lines,
            "activePiece": self.active_piece.to_dict() if self.active_piece else None,
            "boardDigest": self.board_digest,
        }


@dataclass
class InputEvent:
    """One input action.  ``score_increase`` accumulates points credited while
    this was the most recent accepted move."""

    timestamp: float
    action: str
    snapshot_index: Optional[int] = None
    score_increase: int = 0

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "action": self.action,
            "input": self.action,
            "snapshot": self.snapshot_index,
            "scoreIncrease": self.score_increase,
        }


@dataclass(frozen=True)
class PieceEvent:
    timestamp: float
    piece: str
    level: int

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "piece": self.piece, "level": self.level}


@dataclass(frozen=True)
class ScoreDelta:
    timestamp: float
    previous_score: int
    points: int
    new_score: int

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "previousScore": self.previous_score,
            "points": self.points,
            "newScore": self.new_score,
        }


@dataclass(frozen=True)
class SuspiciousActivity:
    category: str
    severity: Severity
    timestamp: float
    evidence: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.category,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "data": self.evidence,
        }


@dataclass(frozen=True)
class StateFingerprint:
    timestamp: float
    digest: str
    state_data: dict

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "stateHash": self.digest,
            "stateData": self.state_data,
        }


# ---------------------------------------------------------------------------
# Session record
# ---------------------------------------------------------------------------

@dataclass
class SessionRecord:
    """Complete capture of one play session.

    Owned by a single instrumentation instance until ``seal()``; every
    mutator raises SessionSealedError afterwards.
    """

    session_id: str
    player_id: str
    start_time: float
    inputs: list[InputEvent] = field(default_factory=list)
    attempts: list[InputEvent] = field(default_factory=list)
    snapshots: list[StateSnapshot] = field(default_factory=list)
    pieces: list[PieceEvent] = field(default_factory=list)
    score_deltas: list[ScoreDelta] = field(default_factory=list)
    suspicious: list[SuspiciousActivity] = field(default_factory=list)
    fingerprints: list[StateFingerprint] = field(default_factory=list)
    final_fingerprint: Optional[str] = None
    end_time: Optional[float] = None
    sealed: bool = False

    def _ensure_open(self) -> None:
        if self.sealed:
            raise SessionSealedError(f"session {self.session_id} is sealed")

    def add_attempt(self, event: InputEvent) -> None:
        self._ensure_open()
        self.attempts.append(event)

    def add_input(self, event: InputEvent) -> None:
        self._ensure_open()
        self.inputs.append(event)

    def add_snapshot(self, snapshot: StateSnapshot) -> int:
        """Append a snapshot and return its index."""
        self._ensure_open()
        self.snapshots.append(snapshot)
        return len(self.snapshots) - 1

    def add_piece(self, event: PieceEvent) -> None:
        self._ensure_open()
        self.pieces.append(event)

    def add_score_delta(self, delta: ScoreDelta) -> None:
        self._ensure_open()
        self.score_deltas.append(delta)
        if self.inputs:
            self.inputs[-1].score_increase += delta.points

    def add_suspicious(self, activity: SuspiciousActivity) -> None:
        self._ensure_open()
        self.suspicious.append(activity)

    def add_fingerprint(self, fingerprint: StateFingerprint) -> None:
        self._ensure_open()
        self.fingerprints.append(fingerprint)

    def seal(self, end_time: float) -> None:
        self._ensure_open()
        self.end_time = end_time
        if self.fingerprints:
            self.final_fingerprint = self.fingerprints[-1].digest
        self.sealed = True

    @property
    def latest_snapshot(self) -> Optional[StateSnapshot]:
        return self.snapshots[-1] if self.snapshots else None

    @property
    def score(self) -> int:
        """Current score as last observed by snapshots or score events."""
        candidates = []
        if self.snapshots:
            candidates.append((self.snapshots[-1].timestamp, self.snapshots[-1].score))
        if self.score_deltas:
            candidates.append((self.score_deltas[-1].timestamp, self.score_deltas[-1].new_score))
        if not candidates:
            return 0
        return max(candidates, key=lambda c: c[0])[1]


# ---------------------------------------------------------------------------
# Server-side results
# ---------------------------------------------------------------------------

@dataclass
class Verdict:
    session_id: Optional[str]
    is_valid: bool = False
    fraud_score: float = 0.0
    raw_score: float = 0.0
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    received_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "isValid": self.is_valid,
            "fraudScore": self.fraud_score,
            "rawScore": self.raw_score,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
        }


@dataclass
class PlayerProfile:
    player_id: str
    session_count: int = 0
    average_score: float = 0.0
    cumulative_risk: float = 0.0
    last_risk_score: float = 0.0
    last_verdict: Optional[Verdict] = None


@dataclass
class CrossSessionReport:
    player_id: str
    risk_score: float = 0.0
    raw_score: float = 0.0
    patterns: list[dict] = field(default_factory=list)
    anomalies: list[dict] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def descriptions(self) -> list[str]:
        """Human-readable text of every pattern and anomaly, in order."""
        return [p["description"] for p in self.patterns + self.anomalies]
