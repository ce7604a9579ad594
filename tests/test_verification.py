import copy

from neonguard.errors import StructuralError
from neonguard.verification import VerificationEngine, raise_for_structure
import pytest

START = 1_000_000.0
RECEIVED = 2_000_000.0


def _payload(moves=None, input_patterns=None, score=500, **game_state):
    state = {
        "score": score,
        "level": 1,
        "lines": 0,
        "moves": moves or [],
        "pieces": [],
        "inputPatterns": input_patterns or [],
        "startTime": START,
        "endTime": START + 60_000,
    }
    state.update(game_state)
    return {
        "sessionId": "session_test",
        "playerId": "p1",
        "gameState": state,
        "suspiciousPatterns": [],
        "verificationData": [],
        "finalHash": None,
    }


def _even_moves(count=40, gap=200.0):
    actions = ["left", "soft_drop", "rotate_left", "right", "hold", "hard_drop", "drop"]
    return [
        {"timestamp": START + i * gap, "action": actions[(i * 3) % len(actions)]}
        for i in range(count)
    ]


def test_evenly_spaced_moves_score_zero():
    """Verify 40 evenly spaced ordinary moves with no input attempts score zero."""
    verdict = VerificationEngine().verify(_payload(moves=_even_moves()), received_at=RECEIVED)
    assert verdict.is_valid
    assert verdict.fraud_score == 0.0
    assert verdict.issues == []
    assert verdict.recommendations == ["Session appears legitimate"]


def test_repeated_rotation_is_suspicious_but_valid():
    """Verify five identical rotations fire exact_repetition without invalidating."""
    patterns = [
        {"timestamp": START + t, "action": "rotate_left"}
        for t in (0, 130, 390, 470, 800)
    ]
    verdict = VerificationEngine().verify(
        _payload(input_patterns=patterns), received_at=RECEIVED
    )
    assert verdict.is_valid
    assert verdict.fraud_score == pytest.approx(0.3)
    assert "Input pattern detected: exact_repetition" in verdict.issues
    assert "exact_repetition" in verdict.categories


def test_impossible_score_increase_invalidates():
    """Verify a single 1500-point move costs score_manipulation and score_injection."""
    moves = [
        {"timestamp": START, "action": "left", "scoreIncrease": 100},
        {"timestamp": START + 500, "action": "hard_drop", "scoreIncrease": 1_500},
    ]
    verdict = VerificationEngine().verify(
        _payload(moves=moves, score=1_600), received_at=RECEIVED
    )
    assert not verdict.is_valid
    assert verdict.fraud_score == pytest.approx(0.9)
    assert "Impossible score increase in single move: 1500" in verdict.issues
    assert "Known cheating pattern detected: score_injection" in verdict.issues
    assert verdict.recommendations[0] == "Immediate manual review required"


def test_verification_is_deterministic():
    """Verify identical payloads and receive times give identical verdicts."""
    payload = _payload(moves=_even_moves(12, 10.0), score=2_000_000)
    first = VerificationEngine().verify(copy.deepcopy(payload), received_at=RECEIVED)
    second = VerificationEngine().verify(copy.deepcopy(payload), received_at=RECEIVED)
    assert first.to_dict() == second.to_dict()
    assert first.categories == second.categories


def test_future_snapshot_reports_timing_manipulation():
    """Verify a snapshot stamped after receipt yields the timing_manipulation signal."""
    snapshot = {"timestamp": RECEIVED + 10_000, "score": 0, "level": 1, "lines": 0,
                "activePiece": None}
    verdict = VerificationEngine().verify(
        _payload(snapshots=[snapshot]), received_at=RECEIVED
    )
    assert "timing_manipulation" in verdict.categories
    assert "Known cheating pattern detected: timing_manipulation" in verdict.issues


def test_missing_fields_are_penalised_not_rejected():
    """Verify each missing required field adds the structural penalty."""
    payload = _payload()
    del payload["verificationData"]
    del payload["gameState"]["pieces"]
    verdict = VerificationEngine().verify(payload, received_at=RECEIVED)
    assert "Missing required field: verificationData" in verdict.issues
    assert "Missing game state field: pieces" in verdict.issues
    assert verdict.raw_score == pytest.approx(0.6)
    assert verdict.is_valid


def test_empty_payload_is_invalid_with_clamped_score():
    """Verify the raw score is kept while the reported score is clamped."""
    verdict = VerificationEngine().verify({}, received_at=RECEIVED)
    assert not verdict.is_valid
    assert verdict.fraud_score == 1.0
    assert verdict.raw_score == pytest.approx(1.2)


def test_reconstruction_fault_costs_full_contribution():
    """Verify malformed moves are scored as a reconstruction error."""
    verdict = VerificationEngine().verify(_payload(moves="left,left"), received_at=RECEIVED)
    assert not verdict.is_valid
    assert any(issue.startswith("Reconstruction error:") for issue in verdict.issues)


def test_internal_fault_yields_invalid_verdict():
    """Verify an unexpected exception never escapes verify()."""

    class BrokenDetector:
        def scan(self, events):
            raise RuntimeError("boom")

    engine = VerificationEngine(pattern_detector=BrokenDetector())
    patterns = [{"timestamp": START, "action": "left"}]
    verdict = engine.verify(_payload(input_patterns=patterns), received_at=RECEIVED)
    assert not verdict.is_valid
    assert verdict.fraud_score == 1.0
    assert "Verification error: boom" in verdict.issues


def test_conflicting_moves_in_one_tick():
    """Verify opposing moves inside one tick fire speed_hacking and input_replay."""
    moves = [
        {"timestamp": START, "action": "left"},
        {"timestamp": START + 5, "action": "right"},
    ]
    verdict = VerificationEngine().verify(_payload(moves=moves), received_at=RECEIVED)
    assert "Impossible move timing" in verdict.issues
    assert "Conflicting moves detected in the same tick" in verdict.issues
    assert "speed_hacking" in verdict.categories
    assert "input_replay" in verdict.categories


def test_client_reports_are_discounted():
    """Verify client self-reports add a small amount per report."""
    payload = _payload()
    payload["suspiciousPatterns"] = [
        {"type": "rate_limit", "severity": "medium", "timestamp": START},
        {"type": "invalid_input", "severity": "medium", "timestamp": START},
    ]
    verdict = VerificationEngine().verify(payload, received_at=RECEIVED)
    assert "Found 2 suspicious patterns" in verdict.issues
    assert verdict.fraud_score == pytest.approx(0.2)


def test_tampered_fingerprint_is_detected():
    """Verify a fingerprint whose digest does not match its data is flagged."""
    payload = _payload()
    payload["verificationData"] = [{
        "timestamp": START,
        "stateHash": "0" * 64,
        "stateData": {"sessionId": "session_test", "score": 10},
    }]
    verdict = VerificationEngine().verify(payload, received_at=RECEIVED)
    assert "Fingerprint does not match its state data" in verdict.issues
    assert "session_manipulation" in verdict.categories


def test_history_and_stats():
    """Verify verdicts are retained and invalid ones reach the audit list."""
    engine = VerificationEngine(history_size=2)
    engine.verify(_payload(), received_at=RECEIVED)
    engine.verify({}, received_at=RECEIVED)
    engine.verify(_payload(), received_at=RECEIVED)
    stats = engine.stats()
    assert stats["totalVerifications"] == 2
    assert stats["suspiciousSessions"] == 1
    assert len(engine.suspicious_sessions) == 1


def test_audit_list_is_bounded():
    """Verify the audit list keeps only the newest invalid verdicts."""
    engine = VerificationEngine(history_size=2)
    for _ in range(3):
        engine.verify({}, received_at=RECEIVED)
    assert len(engine.suspicious_sessions) == 2
    assert engine.stats()["suspiciousSessions"] == 2


def test_score_impossible_for_duration():
    """Verify a final score above the scoring-rate ceiling for the session length is flagged."""
    verdict = VerificationEngine().verify(
        _payload(score=150_000, endTime=START + 60_000), received_at=RECEIVED
    )
    assert "Score impossible for duration" in verdict.issues
    assert "Unrealistically high score" not in verdict.issues
    assert not verdict.is_valid
    assert verdict.fraud_score == pytest.approx(0.9)

    verdict = VerificationEngine().verify(
        _payload(score=100_000, endTime=START + 60_000), received_at=RECEIVED
    )
    assert "Score impossible for duration" not in verdict.issues


def test_raise_for_structure():
    """Verify the strict structural check lists every missing field."""
    with pytest.raises(StructuralError, match="sessionId"):
        raise_for_structure({"gameState": {}})
    raise_for_structure(_payload())
