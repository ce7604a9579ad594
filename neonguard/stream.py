"""
NEONGUARD — Streaming Verification
===================================

Pathway graph that turns a table of submitted session payloads into a verdict
table.  Each row is verified once by the VerificationEngine and then analysed
against the player's history by the CrossSessionPatternAnalyzer.

Inputs
------
    submissions: Pathway Table matching SubmissionSchema:
        player_id   (str)   — submitting player
        received_at (float) — server receive time, ms since epoch
        payload     (str)   — submission JSON as sent by the client

Outputs
-------
    pw.Table (named ``verdict_stream`` by convention) with columns:
        player_id   (str)
        session_id  (str | None)
        is_valid    (bool)
        fraud_score (float)  — verdict score, clamped
        risk_score  (float)  — cross-session risk, clamped
        issues      (str)    — JSON list of issue strings

Assumptions
-----------
- Rows are analysed in the order Pathway delivers them; cross-session checks
  that compare consecutive sessions depend on that order per player.
- Pathway engine is already configured by the caller; this module never calls
  pw.run().

Usage
-----
    from neonguard.stream import SubmissionSchema, build_verdict_stream

    submissions = pw.io.jsonlines.read("data/submissions/", schema=SubmissionSchema)
    verdict_stream = build_verdict_stream(submissions)
    attach_audit_sink(verdict_stream, AuditLog())
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import pathway as pw

from neonguard.alert import AuditLog
from neonguard.cross_session import CrossSessionPatternAnalyzer
from neonguard.verification import VerificationEngine

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class SubmissionSchema(pw.Schema):
    """Input schema for submitted sessions."""

    player_id:   str
    received_at: float
    payload:     str


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def parse_payload(payload: str) -> Any:
    """Decode the submission JSON; undecodable text is passed through as-is.

    The VerificationEngine scores a non-object payload as structurally
    malformed, so a bad submission still yields an invalid verdict rather
    than a pipeline error.
    """
    try:
        return json.loads(payload)
    except (TypeError, ValueError):
        logger.warning("submission payload is not valid JSON")
        return payload


def evaluate_submission(
    player_id: str,
    received_at: float,
    payload: str,
    engine: VerificationEngine,
    analyzer: CrossSessionPatternAnalyzer,
) -> dict:
    """Verify one submission and analyse it against the player's history."""
    data = parse_payload(payload)
    verdict = engine.verify(data, received_at)
    report = analyzer.analyze(
        player_id,
        data if isinstance(data, dict) else {},
        verdict,
        received_at,
    )
    return {
        **verdict.to_dict(),
        "playerId": player_id,
        "riskScore": report.risk_score,
        "crossSessionFindings": report.descriptions(),
    }


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------

def build_verdict_stream(
    submissions: pw.Table,
    engine: Optional[VerificationEngine] = None,
    analyzer: Optional[CrossSessionPatternAnalyzer] = None,
) -> pw.Table:
    """Build the verification graph and return the verdict stream.

    No I/O and no pw.run(); pure Pathway graph construction.

    Args:
        submissions: Table matching SubmissionSchema.
        engine:      VerificationEngine to use (a fresh one by default).
        analyzer:    CrossSessionPatternAnalyzer to use (fresh by default).

    Returns:
        verdict_stream with player_id, session_id, is_valid, fraud_score,
        risk_score and issues.
    """
    engine = engine or VerificationEngine()
    analyzer = analyzer or CrossSessionPatternAnalyzer()

    @pw.udf
    def _udf_evaluate(player_id: str, received_at: float, payload: str) -> str:
        return json.dumps(
            evaluate_submission(player_id, received_at, payload, engine, analyzer)
        )

    @pw.udf
    def _udf_session_id(result: str) -> Optional[str]:
        return json.loads(result)["sessionId"]

    @pw.udf
    def _udf_is_valid(result: str) -> bool:
        return json.loads(result)["isValid"]

    @pw.udf
    def _udf_fraud_score(result: str) -> float:
        return float(json.loads(result)["fraudScore"])

    @pw.udf
    def _udf_risk_score(result: str) -> float:
        return float(json.loads(result)["riskScore"])

    @pw.udf
    def _udf_issues(result: str) -> str:
        return json.dumps(json.loads(result)["issues"])

    logger.debug("Stream: building verdict stream")

    # Stage 1: verify + cross-session analysis, once per row
    evaluated: pw.Table = submissions.select(
        player_id = pw.this.player_id,
        result    = _udf_evaluate(pw.this.player_id, pw.this.received_at, pw.this.payload),
    )

    # Stage 2: project the verdict columns
    verdict_stream: pw.Table = evaluated.select(
        player_id   = pw.this.player_id,
        session_id  = _udf_session_id(pw.this.result),
        is_valid    = _udf_is_valid(pw.this.result),
        fraud_score = _udf_fraud_score(pw.this.result),
        risk_score  = _udf_risk_score(pw.this.result),
        issues      = _udf_issues(pw.this.result),
    )
    logger.debug("Stream: graph construction complete")
    return verdict_stream


# ---------------------------------------------------------------------------
# Audit sink
# ---------------------------------------------------------------------------

def _make_audit_callback(audit_log: AuditLog):
    """Return a pw.io.subscribe callback writing invalid verdicts to ``audit_log``."""

    def _callback(key: pw.Pointer, row: dict, time: int, is_addition: bool) -> None:
        # Retractions are skipped to keep the audit trail append-only.
        if not is_addition or row.get("is_valid"):
            return
        audit_log.write({
            "player_id":  row.get("player_id"),
            "sessionId":  row.get("session_id"),
            "isValid":    False,
            "fraudScore": row.get("fraud_score"),
            "riskScore":  row.get("risk_score"),
            "issues":     json.loads(row.get("issues") or "[]"),
        })

    return _callback


def attach_audit_sink(verdict_stream: pw.Table, audit_log: Optional[AuditLog] = None) -> None:
    """Register the JSONL audit sink on ``verdict_stream``."""
    pw.io.subscribe(verdict_stream, on_change=_make_audit_callback(audit_log or AuditLog()))
