import time

from neonguard.aggregate import SessionAggregator, compute_digest
from neonguard.errors import SessionSealedError
from neonguard.instrumentation import GameplayInstrumentation, HookRegistry
from neonguard.models import InputEvent, SessionRecord
from neonguard.verification import VerificationEngine
import pytest


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeEngine:
    def __init__(self):
        self.hooks = HookRegistry()
        self.state = {"score": 0, "level": 1, "lines": 0,
                      "current": {"type": "L", "gridX": 3, "gridY": 1}}

    def subscribe(self, hook, callback):
        self.hooks.subscribe(hook, callback)

    def get_state(self):
        return dict(self.state)


def _record(clock):
    return SessionRecord(session_id="session_abc", player_id="p1", start_time=clock())


def test_digest_ignores_key_order():
    """Verify the fingerprint digest is computed over canonical JSON."""
    assert compute_digest({"a": 1, "b": 2}) == compute_digest({"b": 2, "a": 1})
    assert compute_digest({"a": 1}) != compute_digest({"a": 2})


def test_fingerprint_matches_its_state_data():
    """Verify each fingerprint digest is the digest of its stored state data."""
    clock = FakeClock()
    aggregator = SessionAggregator(_record(clock), clock=clock)
    clock.advance(5_000)
    fp = aggregator.fingerprint()
    assert fp.digest == compute_digest(fp.state_data)
    assert fp.state_data["elapsed"] == 5_000
    assert fp.state_data["sessionId"] == "session_abc"


def test_end_session_seals_record():
    """Verify sealing sets the final hash and rejects further mutation."""
    clock = FakeClock()
    record = _record(clock)
    aggregator = SessionAggregator(record, clock=clock)
    aggregator.fingerprint()
    clock.advance(1_000)
    final = aggregator.end_session()
    assert record.sealed
    assert record.final_fingerprint == final.digest
    assert record.end_time == clock()
    with pytest.raises(SessionSealedError):
        record.add_input(InputEvent(timestamp=clock(), action="left"))


def test_preflight_flags_thin_sessions():
    """Verify fewer than two fingerprints is reported as insufficient data."""
    clock = FakeClock()
    aggregator = SessionAggregator(_record(clock), clock=clock)
    aggregator.end_session()
    result = aggregator.preflight_check()
    assert not result["isValid"]
    assert result["issues"] == ["Insufficient verification data"]


def test_preflight_passes_clean_session():
    """Verify a clean session with enough fingerprints passes preflight."""
    clock = FakeClock()
    aggregator = SessionAggregator(_record(clock), clock=clock)
    aggregator.fingerprint()
    clock.advance(5_000)
    aggregator.end_session()
    result = aggregator.preflight_check()
    assert result == {"isValid": True, "issues": [], "sessionId": "session_abc", "finalScore": 0}


def test_submission_from_instrumented_session_verifies_clean():
    """Verify a played session round-trips through submission and verification."""
    clock = FakeClock()
    engine = FakeEngine()
    instrumentation = GameplayInstrumentation(engine, "p1", clock=clock)
    instrumentation.attach()
    aggregator = SessionAggregator(instrumentation.record, clock=clock)

    for action, gap in zip(
        ["left", "rotate_left", "soft_drop", "right", "hold"], [150, 260, 190, 340, 220]
    ):
        clock.advance(gap)
        assert engine.hooks.emit_input(action)
    aggregator.fingerprint()
    clock.advance(5_000)
    aggregator.end_session()

    payload = aggregator.get_submission()
    assert payload["playerId"] == "p1"
    assert len(payload["gameState"]["moves"]) == 5
    assert len(payload["gameState"]["snapshots"]) == 5
    assert payload["finalHash"] == payload["verificationData"][-1]["stateHash"]

    verdict = VerificationEngine(clock=clock).verify(payload, received_at=clock() + 1_000)
    assert verdict.is_valid
    assert verdict.fraud_score == 0.0
    assert verdict.issues == []


def _wait_for(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def test_timer_fingerprints_until_session_ends():
    """Verify the background timer fingerprints periodically and stops on seal."""
    clock = FakeClock()
    record = _record(clock)
    aggregator = SessionAggregator(record, clock=clock, interval_ms=20)
    aggregator.start()
    thread = aggregator._thread
    assert _wait_for(lambda: len(record.fingerprints) >= 2)

    aggregator.end_session()
    assert not thread.is_alive()
    count = len(record.fingerprints)
    time.sleep(0.1)
    assert len(record.fingerprints) == count
    assert record.final_fingerprint == record.fingerprints[-1].digest


def test_timer_start_is_idempotent():
    """Verify a second start keeps the running timer thread."""
    clock = FakeClock()
    aggregator = SessionAggregator(_record(clock), clock=clock, interval_ms=20)
    aggregator.start()
    thread = aggregator._thread
    aggregator.start()
    assert aggregator._thread is thread
    aggregator.stop()
    assert not thread.is_alive()


def test_timer_exits_when_record_is_sealed_elsewhere():
    """Verify the timer thread ends once the record refuses new fingerprints."""
    clock = FakeClock()
    record = _record(clock)
    aggregator = SessionAggregator(record, clock=clock, interval_ms=20)
    aggregator.start()
    thread = aggregator._thread
    record.seal(clock())
    thread.join(timeout=2.0)
    assert not thread.is_alive()


JITTER = [170, 230, 185, 245, 160, 220, 200]
CYCLE = ["left", "soft_drop", "rotate_left", "hold", "right", "hard_drop", "drop"]


def _play(gaps, count=40):
    """Play ``count`` ordinary inputs through the instrumented client and submit."""
    clock = FakeClock()
    engine = FakeEngine()
    instrumentation = GameplayInstrumentation(engine, "p1", clock=clock)
    instrumentation.attach()
    aggregator = SessionAggregator(instrumentation.record, clock=clock)
    for i in range(count):
        clock.advance(gaps[i % len(gaps)])
        assert engine.hooks.emit_input(CYCLE[i % len(CYCLE)])
        if i % 10 == 9:
            aggregator.fingerprint()
    clock.advance(2_000)
    aggregator.end_session()
    return aggregator.get_submission(), clock


def test_human_paced_session_verifies_clean():
    """Verify ordinary moves at human cadence produce a zero score through the aggregator."""
    payload, clock = _play(JITTER)
    assert payload["suspiciousPatterns"] == []
    assert len(payload["gameState"]["inputPatterns"]) == 40

    verdict = VerificationEngine(clock=clock).verify(payload, received_at=clock() + 1_000)
    assert verdict.is_valid
    assert verdict.fraud_score == 0.0
    assert verdict.issues == []
    assert verdict.recommendations == ["Session appears legitimate"]


def test_metronomic_session_is_noted_but_valid():
    """Verify exactly even cadence costs one client report plus inhuman_timing and stays valid."""
    payload, clock = _play([200])
    assert [r["type"] for r in payload["suspiciousPatterns"]] == ["inhuman_timing"]

    verdict = VerificationEngine(clock=clock).verify(payload, received_at=clock() + 1_000)
    assert verdict.is_valid
    assert verdict.fraud_score == pytest.approx(0.3)
    assert "Input pattern detected: inhuman_timing" in verdict.issues
    assert "Found 1 suspicious patterns" in verdict.issues
