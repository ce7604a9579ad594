"""
NEONGUARD — Centralized Configuration
======================================

Single source of truth for every tunable constant in the anti-cheat pipeline.
All modules import exclusively from here; no magic numbers appear elsewhere.

Environment overrides
---------------------
Every field reads from an env variable of the same name (loaded via os.getenv).
Dict-valued fields take a JSON string.  Set them in .env or export them in the
shell before starting the service.

Inspecting the current config
------------------------------
    python -m neonguard.config
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field


# ---------------------------------------------------------------------------
# Config dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _Config:
    """Immutable runtime configuration for the NEONGUARD pipeline."""

    # ------------------------------------------------------------------
    # Input validation (validators.InputValidator)
    # ------------------------------------------------------------------

    max_action_length: int = field(
        default_factory=lambda: int(os.getenv("MAX_ACTION_LENGTH", "20"))
    )
    # Longest action string accepted before the vocabulary lookup.
    # Valid range: >= 1.

    rate_window_ms: int = field(
        default_factory=lambda: int(os.getenv("RATE_WINDOW_MS", "1000"))
    )
    # Width of the sliding rate-limit window.
    # Valid range: >= 1.

    max_actions_per_window: int = field(
        default_factory=lambda: int(os.getenv("MAX_ACTIONS_PER_WINDOW", "10"))
    )
    # Global cap on accepted actions inside one rate window.
    # Valid range: >= 1.

    action_rate_caps: dict = field(
        default_factory=lambda: json.loads(
            os.getenv(
                "ACTION_RATE_CAPS",
                '{"left": 5, "right": 5, "soft_drop": 10, "hard_drop": 2, '
                '"rotate_left": 3, "rotate_right": 3, "hold": 1}',
            )
        )
    )
    # Per-action caps inside one rate window.  Actions absent here are bounded
    # only by max_actions_per_window.
    # Valid values: each cap >= 1.

    # ------------------------------------------------------------------
    # Manipulation detector (validators.ManipulationDetector)
    # ------------------------------------------------------------------

    board_width: int = field(
        default_factory=lambda: int(os.getenv("BOARD_WIDTH", "10"))
    )
    board_height: int = field(
        default_factory=lambda: int(os.getenv("BOARD_HEIGHT", "20"))
    )
    # Playfield size in cells; active piece origin must lie inside it.

    min_level: int = field(
        default_factory=lambda: int(os.getenv("MIN_LEVEL", "1"))
    )
    max_level: int = field(
        default_factory=lambda: int(os.getenv("MAX_LEVEL", "100"))
    )
    # Inclusive level bounds.  Valid range: 1 <= min_level <= max_level.

    # ------------------------------------------------------------------
    # Pattern detector (patterns.PatternDetector)
    # ------------------------------------------------------------------

    pattern_window: int = field(
        default_factory=lambda: int(os.getenv("PATTERN_WINDOW", "20"))
    )
    # Number of trailing input events inspected by every pattern heuristic.
    # Valid range: >= automated_min_events.

    repetition_run: int = field(
        default_factory=lambda: int(os.getenv("REPETITION_RUN", "3"))
    )
    # Identical trailing actions needed for exact_repetition.

    timing_variance_threshold: float = field(
        default_factory=lambda: float(os.getenv("TIMING_VARIANCE_THRESHOLD", "100.0"))
    )
    # Interval variance (ms^2) below which cadence is considered mechanical.
    # Valid range: > 0.0.

    timing_min_events: int = field(
        default_factory=lambda: int(os.getenv("TIMING_MIN_EVENTS", "5"))
    )
    # Events required in the window before inhuman_timing is evaluated.
    # Valid range: >= 3.

    automated_min_events: int = field(
        default_factory=lambda: int(os.getenv("AUTOMATED_MIN_EVENTS", "10"))
    )
    # Events required in the window before automated_sequence is evaluated.

    sequence_min_length: int = field(
        default_factory=lambda: int(os.getenv("SEQUENCE_MIN_LENGTH", "3"))
    )
    sequence_max_length: int = field(
        default_factory=lambda: int(os.getenv("SEQUENCE_MAX_LENGTH", "6"))
    )
    # Block lengths searched for immediate repetition.
    # Valid range: 2 <= min <= max.

    # ------------------------------------------------------------------
    # Client instrumentation & aggregation
    # ------------------------------------------------------------------

    max_score_jump: int = field(
        default_factory=lambda: int(os.getenv("MAX_SCORE_JUMP", "1000"))
    )
    # Largest plausible score increase from one move, tick or score event.

    max_score: int = field(
        default_factory=lambda: int(os.getenv("MAX_SCORE", "1000000"))
    )
    # Absolute score ceiling; anything above is rejected.

    fingerprint_interval_ms: int = field(
        default_factory=lambda: int(os.getenv("FINGERPRINT_INTERVAL_MS", "5000"))
    )
    # Period of the background fingerprint timer.
    # Valid range: >= 100.

    min_fingerprints: int = field(
        default_factory=lambda: int(os.getenv("MIN_FINGERPRINTS", "2"))
    )
    # Fingerprints a session must carry to pass the local preflight check.

    # ------------------------------------------------------------------
    # Server reconstruction (verification.VerificationEngine)
    # ------------------------------------------------------------------

    min_piece_gap_ms: float = field(
        default_factory=lambda: float(os.getenv("MIN_PIECE_GAP_MS", "100"))
    )
    # Fastest plausible gap between two piece generations.

    min_move_gap_ms: float = field(
        default_factory=lambda: float(os.getenv("MIN_MOVE_GAP_MS", "16"))
    )
    # One frame at 60 fps; moves closer than this share a tick.

    max_session_ms: int = field(
        default_factory=lambda: int(os.getenv("MAX_SESSION_MS", "3600000"))
    )
    # Sessions longer than this are reported as a timing anomaly.

    max_points_per_second: float = field(
        default_factory=lambda: float(os.getenv("MAX_POINTS_PER_SECOND", "2000"))
    )
    # Fastest plausible scoring rate; a final score above rate x duration is
    # scored as score manipulation.

    fault_contribution: float = field(
        default_factory=lambda: float(os.getenv("FAULT_CONTRIBUTION", "1.0"))
    )
    # Contribution charged when a session cannot be replayed or analysed.
    # Valid range: >= fraud_threshold, so a fault always invalidates.

    category_weights: dict = field(
        default_factory=lambda: json.loads(
            os.getenv(
                "CATEGORY_WEIGHTS",
                '{"speed_hacking": 0.4, "score_manipulation": 0.5, '
                '"input_replay": 0.3, "timing_anomalies": 0.2, '
                '"session_manipulation": 0.6}',
            )
        )
    )
    # Fixed fraud weight added once per violated category.
    # Valid values: each weight in (0.0, 1.0].

    structural_penalty: float = field(
        default_factory=lambda: float(os.getenv("STRUCTURAL_PENALTY", "0.3"))
    )
    # Added per missing required field in a submitted payload.

    client_report_weight: float = field(
        default_factory=lambda: float(os.getenv("CLIENT_REPORT_WEIGHT", "0.1"))
    )
    # Added per client-reported suspicious activity entry.

    signature_weight: float = field(
        default_factory=lambda: float(os.getenv("SIGNATURE_WEIGHT", "0.4"))
    )
    # Added per signal matching the known cheat-signature catalog.

    fraud_threshold: float = field(
        default_factory=lambda: float(os.getenv("FRAUD_THRESHOLD", "0.7"))
    )
    # Sessions whose raw fraud score reaches this value are invalid.
    # Valid range: 0.0 < value <= 1.0.

    clamp_scores: bool = field(
        default_factory=lambda: os.getenv("CLAMP_SCORES", "true").lower() == "true"
    )
    # Clamp reported fraud/risk scores to [0, 1].  Raw sums are kept alongside.

    verification_history_size: int = field(
        default_factory=lambda: int(os.getenv("VERIFICATION_HISTORY_SIZE", "1000"))
    )
    # Bounded history of verdicts retained by one engine instance.

    # ------------------------------------------------------------------
    # Cross-session analysis (cross_session)
    # ------------------------------------------------------------------

    player_history_size: int = field(
        default_factory=lambda: int(os.getenv("PLAYER_HISTORY_SIZE", "50"))
    )
    # Per-player ring buffer length.

    max_score_improvement: int = field(
        default_factory=lambda: int(os.getenv("MAX_SCORE_IMPROVEMENT", "50000"))
    )
    # Score gain between consecutive sessions considered impossible.

    min_session_gap_ms: float = field(
        default_factory=lambda: float(os.getenv("MIN_SESSION_GAP_MS", "1000"))
    )
    # Consecutive submissions closer than this are not humanly possible.

    similarity_threshold: float = field(
        default_factory=lambda: float(os.getenv("SIMILARITY_THRESHOLD", "0.95"))
    )
    # Input-pattern containment above which two sessions count as a replay.

    shingle_size: int = field(
        default_factory=lambda: int(os.getenv("SHINGLE_SIZE", "5"))
    )
    # Action n-gram length used for input-pattern similarity.

    history_score_multiplier: float = field(
        default_factory=lambda: float(os.getenv("HISTORY_SCORE_MULTIPLIER", "3.0"))
    )
    # Current score above multiplier x rolling average is a historical anomaly.

    speed_input_gap_ms: float = field(
        default_factory=lambda: float(os.getenv("SPEED_INPUT_GAP_MS", "30"))
    )
    # Raw inputs closer together than this are inhumanly fast.

    speed_move_gap_ms: float = field(
        default_factory=lambda: float(os.getenv("SPEED_MOVE_GAP_MS", "10"))
    )
    # Accepted moves closer together than this are impossible.

    replay_block: int = field(
        default_factory=lambda: int(os.getenv("REPLAY_BLOCK", "5"))
    )
    # Length of an immediately repeated input block counted as replay.

    replay_variance: float = field(
        default_factory=lambda: float(os.getenv("REPLAY_VARIANCE", "20.0"))
    )
    # Interval variance (ms^2) below which input timing is a replay.

    replay_min_intervals: int = field(
        default_factory=lambda: int(os.getenv("REPLAY_MIN_INTERVALS", "10"))
    )
    # Intervals needed before the replay variance check applies.

    max_analyzed_session_ms: int = field(
        default_factory=lambda: int(os.getenv("MAX_ANALYZED_SESSION_MS", "7200000"))
    )
    # Sessions longer than this are a cross-session timing anomaly.

    outlier_min_inputs: int = field(
        default_factory=lambda: int(os.getenv("OUTLIER_MIN_INPUTS", "20"))
    )
    # Inputs needed before the statistical outlier check applies.

    outlier_sigma: float = field(
        default_factory=lambda: float(os.getenv("OUTLIER_SIGMA", "3.0"))
    )
    # Intervals further than this many standard deviations are outliers.

    cross_session_weight: float = field(
        default_factory=lambda: float(os.getenv("CROSS_SESSION_WEIGHT", "0.1"))
    )
    # Added per cross-session finding.

    historical_weight: float = field(
        default_factory=lambda: float(os.getenv("HISTORICAL_WEIGHT", "0.2"))
    )
    # Added when the score is far above the player's own average.

    statistical_weight: float = field(
        default_factory=lambda: float(os.getenv("STATISTICAL_WEIGHT", "0.15"))
    )
    # Added when input timing contains statistical outliers.

    # ------------------------------------------------------------------
    # Alerting / reporting (alert.py)
    # ------------------------------------------------------------------

    report_webhook_url: str = field(
        default_factory=lambda: os.getenv("REPORT_WEBHOOK_URL", "")
    )
    # HTTP(S) URL receiving client suspicious-activity reports. Empty disables.

    report_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("REPORT_TIMEOUT_SECONDS", "2.0"))
    )
    # Per-request timeout for the fire-and-forget reporter.

    audit_log_path: str = field(
        default_factory=lambda: os.getenv("AUDIT_LOG_PATH", "data/audit/verdicts.jsonl")
    )
    # Append-only JSONL file receiving invalid verdicts for manual review.

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    # Python logging level for the entire pipeline.
    # Valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL.


# ---------------------------------------------------------------------------
# Module-level singleton — the one true CONFIG object
# ---------------------------------------------------------------------------

CONFIG: _Config = _Config()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS: frozenset[str] = frozenset(
    {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
)

_WEIGHTED_CATEGORIES: frozenset[str] = frozenset(
    {"speed_hacking", "score_manipulation", "input_replay",
     "timing_anomalies", "session_manipulation"}
)


def validate_config(cfg: _Config = CONFIG) -> None:
    """Raise ValueError if any CONFIG field violates its documented constraint.

    Args:
        cfg: Config instance to validate (defaults to the module singleton CONFIG).

    Raises:
        ValueError: Describing the first constraint that is violated.
    """
    # --- input validation ---
    if cfg.max_action_length < 1:
        raise ValueError(
            f"max_action_length must be >= 1 (got {cfg.max_action_length})."
        )
    if cfg.rate_window_ms < 1:
        raise ValueError(f"rate_window_ms must be >= 1 (got {cfg.rate_window_ms}).")
    if cfg.max_actions_per_window < 1:
        raise ValueError(
            f"max_actions_per_window must be >= 1 (got {cfg.max_actions_per_window})."
        )
    for action, cap in cfg.action_rate_caps.items():
        if not isinstance(cap, int) or cap < 1:
            raise ValueError(
                f"action_rate_caps[{action!r}] must be an integer >= 1 (got {cap!r})."
            )

    # --- manipulation detector ---
    if cfg.board_width < 1 or cfg.board_height < 1:
        raise ValueError(
            f"board dimensions must be >= 1 (got {cfg.board_width}x{cfg.board_height})."
        )
    if not (1 <= cfg.min_level <= cfg.max_level):
        raise ValueError(
            f"level bounds must satisfy 1 <= min_level ({cfg.min_level}) "
            f"<= max_level ({cfg.max_level})."
        )

    # --- pattern detector ---
    if cfg.timing_variance_threshold <= 0.0:
        raise ValueError(
            f"timing_variance_threshold must be > 0.0 (got {cfg.timing_variance_threshold})."
        )
    if cfg.timing_min_events < 3:
        raise ValueError(
            f"timing_min_events must be >= 3 (got {cfg.timing_min_events})."
        )
    if not (2 <= cfg.sequence_min_length <= cfg.sequence_max_length):
        raise ValueError(
            f"sequence lengths must satisfy 2 <= min ({cfg.sequence_min_length}) "
            f"<= max ({cfg.sequence_max_length})."
        )
    if cfg.pattern_window < cfg.automated_min_events:
        raise ValueError(
            f"pattern_window ({cfg.pattern_window}) must be >= "
            f"automated_min_events ({cfg.automated_min_events})."
        )
    if cfg.repetition_run < 2:
        raise ValueError(f"repetition_run must be >= 2 (got {cfg.repetition_run}).")

    # --- aggregation ---
    if cfg.fingerprint_interval_ms < 100:
        raise ValueError(
            f"fingerprint_interval_ms must be >= 100 (got {cfg.fingerprint_interval_ms})."
        )
    if cfg.max_score_jump < 1 or cfg.max_score < cfg.max_score_jump:
        raise ValueError(
            f"score limits must satisfy 1 <= max_score_jump ({cfg.max_score_jump}) "
            f"<= max_score ({cfg.max_score})."
        )

    # --- scoring ---
    missing = _WEIGHTED_CATEGORIES - set(cfg.category_weights)
    if missing:
        raise ValueError(f"category_weights is missing categories: {sorted(missing)}.")
    for category, weight in cfg.category_weights.items():
        if not (0.0 < weight <= 1.0):
            raise ValueError(
                f"category_weights[{category!r}] must be in (0.0, 1.0] (got {weight})."
            )
    if not (0.0 < cfg.fraud_threshold <= 1.0):
        raise ValueError(
            f"fraud_threshold must be in (0.0, 1.0] (got {cfg.fraud_threshold})."
        )
    if cfg.verification_history_size < 1:
        raise ValueError(
            f"verification_history_size must be >= 1 (got {cfg.verification_history_size})."
        )
    if cfg.max_points_per_second <= 0.0:
        raise ValueError(
            f"max_points_per_second must be > 0.0 (got {cfg.max_points_per_second})."
        )
    if cfg.fault_contribution < cfg.fraud_threshold:
        raise ValueError(
            f"fault_contribution ({cfg.fault_contribution}) must be >= "
            f"fraud_threshold ({cfg.fraud_threshold})."
        )

    # --- cross-session ---
    if cfg.player_history_size < 2:
        raise ValueError(
            f"player_history_size must be >= 2 (got {cfg.player_history_size})."
        )
    if not (0.0 < cfg.similarity_threshold <= 1.0):
        raise ValueError(
            f"similarity_threshold must be in (0.0, 1.0] (got {cfg.similarity_threshold})."
        )
    if cfg.shingle_size < 1:
        raise ValueError(f"shingle_size must be >= 1 (got {cfg.shingle_size}).")
    if cfg.history_score_multiplier <= 1.0:
        raise ValueError(
            f"history_score_multiplier must be > 1.0 (got {cfg.history_score_multiplier})."
        )
    if cfg.speed_input_gap_ms < 0.0 or cfg.speed_move_gap_ms < 0.0:
        raise ValueError(
            f"speed gaps must be >= 0.0 (got input={cfg.speed_input_gap_ms}, "
            f"move={cfg.speed_move_gap_ms})."
        )
    if cfg.replay_block < 2:
        raise ValueError(f"replay_block must be >= 2 (got {cfg.replay_block}).")
    if cfg.replay_variance <= 0.0:
        raise ValueError(f"replay_variance must be > 0.0 (got {cfg.replay_variance}).")
    if cfg.replay_min_intervals < 2:
        raise ValueError(
            f"replay_min_intervals must be >= 2 (got {cfg.replay_min_intervals})."
        )
    if cfg.max_analyzed_session_ms < 1:
        raise ValueError(
            f"max_analyzed_session_ms must be >= 1 (got {cfg.max_analyzed_session_ms})."
        )
    if cfg.outlier_min_inputs < 3:
        raise ValueError(
            f"outlier_min_inputs must be >= 3 (got {cfg.outlier_min_inputs})."
        )
    if cfg.outlier_sigma <= 0.0:
        raise ValueError(f"outlier_sigma must be > 0.0 (got {cfg.outlier_sigma}).")
    for name in ("cross_session_weight", "historical_weight", "statistical_weight"):
        weight = getattr(cfg, name)
        if not (0.0 < weight <= 1.0):
            raise ValueError(f"{name} must be in (0.0, 1.0] (got {weight}).")

    # --- alerting ---
    if cfg.report_webhook_url and not cfg.report_webhook_url.startswith(("http://", "https://")):
        raise ValueError(
            f"report_webhook_url must be empty or an http(s) URL (got {cfg.report_webhook_url!r})."
        )
    if cfg.report_timeout_seconds <= 0.0:
        raise ValueError(
            f"report_timeout_seconds must be > 0.0 (got {cfg.report_timeout_seconds})."
        )

    # --- logging ---
    if cfg.log_level not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"log_level must be one of {sorted(_VALID_LOG_LEVELS)} "
            f"(got {cfg.log_level!r})."
        )


# ---------------------------------------------------------------------------
# CLI inspection
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(level=CONFIG.log_level)
    validate_config(CONFIG)
    print(json.dumps(asdict(CONFIG), indent=2))
