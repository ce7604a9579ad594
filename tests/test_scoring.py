from neonguard import scoring


def test_category_weights():
    """Verify reconstruction and pattern categories map to their fixed weights."""
    assert scoring.category_weight(scoring.SESSION_MANIPULATION) == 0.6
    assert scoring.category_weight("exact_repetition") == 0.3
    assert scoring.category_weight("inhuman_timing") == 0.2
    assert scoring.category_weight("unknown") == 0.0


def test_match_signatures_applies_aliases():
    """Verify score_manipulation is matched as the score_injection signature."""
    hits = scoring.match_signatures({"score_manipulation", "speed_hacking", "rate_limit"})
    assert hits == ["score_injection", "speed_hacking"]


def test_finalize_score_clamps_when_enabled():
    """Verify clamping bounds the score while the unclamped form is preserved."""
    assert scoring.finalize_score(1.7) == 1.0
    assert scoring.finalize_score(1.7, clamp=False) == 1.7
    assert scoring.finalize_score(0.30000000000000004) == 0.3


def test_recommendation_thresholds():
    """Verify the advisory text for each score band."""
    assert scoring.recommendations_for(0.9)[0] == "Immediate manual review required"
    assert scoring.recommendations_for(0.6)[0] == "Enhanced monitoring recommended"
    assert scoring.recommendations_for(0.3) == ["Continue normal monitoring"]
    assert scoring.recommendations_for(0.0) == ["Session appears legitimate"]
