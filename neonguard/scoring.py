"""
NEONGUARD — Fraud Score Arithmetic
===================================

Fixed weights and thresholds shared by the VerificationEngine and the
CrossSessionPatternAnalyzer.  Scores are plain additive sums of category
weights; ``finalize_score`` optionally clamps the sum to [0, 1] while the raw
sum is always kept alongside.
"""

from __future__ import annotations

from typing import Iterable

from neonguard.config import CONFIG as _cfg

# Weighted reconstruction categories.
SPEED_HACKING = "speed_hacking"
SCORE_MANIPULATION = "score_manipulation"
INPUT_REPLAY = "input_replay"
TIMING_ANOMALIES = "timing_anomalies"
SESSION_MANIPULATION = "session_manipulation"

# Pattern categories re-run server side and the reconstruction weight each one
# borrows.
PATTERN_CATEGORY_WEIGHTS: dict[str, str] = {
    "exact_repetition":       INPUT_REPLAY,
    "automated_sequence":     INPUT_REPLAY,
    "inhuman_timing":         TIMING_ANOMALIES,
    "impossible_combination": TIMING_ANOMALIES,
}

KNOWN_CHEAT_SIGNATURES: frozenset[str] = frozenset({
    "memory_manipulation",
    "speed_hacking",
    "score_injection",
    "input_replay",
    "timing_manipulation",
})

# Internal category names that describe a catalog signature under another name.
SIGNATURE_ALIASES: dict[str, str] = {
    SCORE_MANIPULATION: "score_injection",
}


def category_weight(category: str) -> float:
    """Return the fixed weight of a reconstruction or pattern category."""
    weighted = PATTERN_CATEGORY_WEIGHTS.get(category, category)
    return float(_cfg.category_weights.get(weighted, 0.0))


def match_signatures(signals: Iterable[str]) -> list[str]:
    """Return the catalog signatures hit by ``signals``, sorted and de-duplicated."""
    hits = {SIGNATURE_ALIASES.get(s, s) for s in signals}
    return sorted(hits & KNOWN_CHEAT_SIGNATURES)


def finalize_score(raw: float, clamp: bool = _cfg.clamp_scores) -> float:
    """Return ``raw`` rounded to 6 dp, clamped to [0, 1] when ``clamp`` is set."""
    score = round(raw, 6)
    if clamp:
        score = min(1.0, max(0.0, score))
    return score


def recommendations_for(score: float) -> list[str]:
    """Advisory text derived purely from fixed score thresholds."""
    if score > 0.8:
        return [
            "Immediate manual review required",
            "Consider temporary account suspension",
        ]
    if score > 0.5:
        return ["Enhanced monitoring recommended", "Flag for follow-up review"]
    if score > 0.2:
        return ["Continue normal monitoring"]
    return ["Session appears legitimate"]
