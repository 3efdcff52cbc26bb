"""In-memory counters for payment webhooks and fulfillment saga runs."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class RunLog:
    last_run_at: datetime | None = None
    last_payment_reference: str | None = None
    last_abort_at: datetime | None = None
    last_abort_reason: str | None = None
    last_failure_at: datetime | None = None
    last_failure_stage: str | None = None
    last_failure_reason: str | None = None


@dataclass
class FulfillmentObservabilitySnapshot:
    runs: Dict[str, int]
    enrollments: Dict[str, int]
    stage_failures: Dict[str, int]
    webhooks: Dict[str, Dict[str, int]]
    events: RunLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "runs": self.runs,
            "enrollments": self.enrollments,
            "stage_failures": self.stage_failures,
            "webhooks": self.webhooks,
            "events": {
                "last_run_at": _iso(self.events.last_run_at),
                "last_payment_reference": self.events.last_payment_reference,
                "last_abort_at": _iso(self.events.last_abort_at),
                "last_abort_reason": self.events.last_abort_reason,
                "last_failure_at": _iso(self.events.last_failure_at),
                "last_failure_stage": self.events.last_failure_stage,
                "last_failure_reason": self.events.last_failure_reason,
            },
        }


@dataclass
class FulfillmentObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _runs: Counter = field(default_factory=Counter)
    _enrollments: Counter = field(default_factory=Counter)
    _stage_failures: Counter = field(default_factory=Counter)
    _webhooks: Dict[str, Counter] = field(
        default_factory=lambda: {"processed": Counter(), "skipped": Counter(), "failed": Counter()}
    )
    _events: RunLog = field(default_factory=RunLog)

    def record_run(self, report: Any) -> None:
        """Fold a ``FulfillmentReport`` into the running totals."""
        with self._lock:
            now = _utcnow()
            self._events.last_run_at = now
            self._events.last_payment_reference = report.payment_reference
            if report.aborted_reason:
                self._runs["aborted"] += 1
                self._events.last_abort_at = now
                self._events.last_abort_reason = report.aborted_reason
                return
            self._runs["completed"] += 1
            self._enrollments["succeeded"] += report.succeeded_count
            self._enrollments["failed"] += report.failed_count
            for stage, reason in report.failures.items():
                self._stage_failures[stage.split(":", 1)[0]] += 1
                self._events.last_failure_at = now
                self._events.last_failure_stage = stage
                self._events.last_failure_reason = reason

    def record_webhook(self, event_type: str, outcome: str) -> None:
        with self._lock:
            self._webhooks.setdefault(outcome, Counter())[event_type] += 1

    def snapshot(self) -> FulfillmentObservabilitySnapshot:
        with self._lock:
            return FulfillmentObservabilitySnapshot(
                runs=dict(self._runs),
                enrollments=dict(self._enrollments),
                stage_failures=dict(self._stage_failures),
                webhooks={bucket: dict(counter) for bucket, counter in self._webhooks.items()},
                events=RunLog(**vars(self._events)),
            )

    def reset(self) -> None:
        with self._lock:
            self._runs.clear()
            self._enrollments.clear()
            self._stage_failures.clear()
            for counter in self._webhooks.values():
                counter.clear()
            self._events = RunLog()


_STORE = FulfillmentObservabilityStore()


def get_fulfillment_store() -> FulfillmentObservabilityStore:
    return _STORE


__all__ = [
    "FulfillmentObservabilityStore",
    "FulfillmentObservabilitySnapshot",
    "get_fulfillment_store",
]
