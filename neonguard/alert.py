"""
NEONGUARD — Activity Reporting & Audit Log
===========================================

Two outbound channels:

  1. ActivityReporter — client side.  POSTs each flagged SuspiciousActivity to
     REPORT_WEBHOOK_URL on a single background worker.  Fire-and-forget: the
     caller never waits and delivery failures are logged and dropped, so the
     frame loop can never be blocked or failed by the network.

  2. AuditLog — server side.  Appends invalid verdicts to an append-only JSONL
     file for manual review.  Once written, records are never modified; each
     line is a complete, self-contained JSON object.

Usage
-----
    reporter = ActivityReporter()               # disabled when URL is empty
    reporter.report(activity, session_id)

    AuditLog().append(verdict)
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx

from neonguard.config import CONFIG as _cfg
from neonguard.models import SuspiciousActivity, Verdict

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Fire-and-forget activity reporter
# ---------------------------------------------------------------------------

class ActivityReporter:
    """Deliver suspicious-activity reports without blocking the caller."""

    def __init__(
        self,
        url: str = _cfg.report_webhook_url,
        timeout: float = _cfg.report_timeout_seconds,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client
        self._executor: Optional[ThreadPoolExecutor] = None
        self.delivered = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def report(self, activity: SuspiciousActivity, session_id: str) -> None:
        """Queue one activity for delivery; returns immediately."""
        if not self.enabled:
            return
        payload = {"sessionId": session_id, **activity.to_dict()}
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        try:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="neonguard-report"
                )
            self._executor.submit(self._deliver, payload)
        except RuntimeError as exc:
            # Executor already shut down.
            logger.debug("activity report dropped: %s", exc)

    def _deliver(self, payload: dict) -> None:
        try:
            response = self._client.post(self.url, json=payload)
            response.raise_for_status()
            self.delivered += 1
        except Exception as exc:  # noqa: BLE001
            self.failed += 1
            logger.debug("activity report delivery failed: %s", exc)

    def close(self, wait: bool = True) -> None:
        """Drain pending reports and release the HTTP client."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        if self._client is not None:
            self._client.close()
            self._client = None


# ---------------------------------------------------------------------------
# Append-only audit log
# ---------------------------------------------------------------------------

class AuditLog:
    """JSONL sink for verdicts that need manual review."""

    def __init__(self, path: str = _cfg.audit_log_path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def write(self, record: dict) -> dict:
        """Append one record, stamped with logged_at, and return it."""
        record = {"logged_at": datetime.now(tz=timezone.utc).isoformat(), **record}
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        logger.info(
            "verdict written to audit log",
            extra={"session_id": record.get("sessionId"), "fraud_score": record.get("fraudScore")},
        )
        return record

    def append(self, verdict: Verdict, player_id: Optional[str] = None) -> dict:
        """Write one verdict record and return it."""
        return self.write({
            "player_id": player_id,
            **verdict.to_dict(),
            "categories": list(verdict.categories),
            "receivedAt": verdict.received_at,
        })

    def read(self) -> list[dict]:
        """Return every record in file order (empty if the log does not exist)."""
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
