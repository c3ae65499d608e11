"""Approved-result snapshots and their delivery to downstream sinks.

Delivery runs on a background worker with bounded retries. It never touches
case state: an approved case stays approved whether or not the sink accepted
the snapshot.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict

from ..artifacts.models import derive_artifact_id
from ..logging_utils import get_logger, log_event
from ..resolution.models import Contradiction, ResolutionResult
from .cases import AuditEntry, ReviewCase
from .state_machine import ReviewState

logger = get_logger("export")


class ExportedField(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: Optional[str] = None
    normalized_value: Optional[str] = None
    confidence: float


class ExportSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    document_id: str
    case_id: Optional[str] = None
    decision: str
    fields: Dict[str, ExportedField]
    contradictions: Tuple[Contradiction, ...] = ()
    approved_by: str
    approved_at: datetime


def _build(
    document_id: str,
    case_id: Optional[str],
    decision: str,
    resolution: ResolutionResult,
    approved_by: str,
    approved_at: datetime,
) -> ExportSnapshot:
    fields = {
        name: ExportedField(value=f.value, normalized_value=f.normalized_value, confidence=f.confidence)
        for name, f in resolution.fields.items()
    }
    payload: Dict[str, Any] = {
        "document_id": document_id,
        "case_id": case_id,
        "decision": decision,
        "fields": fields,
        "contradictions": resolution.contradictions,
        "approved_by": approved_by,
        "approved_at": approved_at,
    }
    return ExportSnapshot(snapshot_id=derive_artifact_id("snapshot", payload), **payload)


def snapshot_from_case(case: ReviewCase, entry: AuditEntry) -> ExportSnapshot:
    return _build(case.document_id, case.case_id, "approved", case.resolution, entry.actor, entry.at)


def snapshot_from_auto_approval(document_id: str, resolution: ResolutionResult, at: datetime) -> ExportSnapshot:
    return _build(document_id, None, "auto_approved", resolution, "gate", at)


class SnapshotSink(Protocol):
    def deliver(self, snapshot: ExportSnapshot) -> None:
        ...


class InMemorySink(SnapshotSink):
    """Collects delivered snapshots. Optionally fails the first ``fail_times`` deliveries."""

    def __init__(self, fail_times: int = 0) -> None:
        self.snapshots: List[ExportSnapshot] = []
        self.attempts = 0
        self.fail_times = fail_times
        self._lock = threading.Lock()

    def deliver(self, snapshot: ExportSnapshot) -> None:
        with self._lock:
            self.attempts += 1
            if self.attempts <= self.fail_times:
                raise ConnectionError(f"sink unavailable (attempt {self.attempts})")
            self.snapshots.append(snapshot)


class SnapshotDispatcher:
    def __init__(self, sink: SnapshotSink, *, max_attempts: int = 3, retry_delay_sec: float = 0.5) -> None:
        self.sink = sink
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay_sec = max(0.0, float(retry_delay_sec))
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="docresolve-export")
        self._futures: List[Future] = []
        self._lock = threading.Lock()
        self.delivered: List[str] = []
        self.failed: List[str] = []

    def submit(self, snapshot: ExportSnapshot) -> Future:
        future = self._executor.submit(self._deliver, snapshot)
        with self._lock:
            self._futures.append(future)
        return future

    def _deliver(self, snapshot: ExportSnapshot) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.sink.deliver(snapshot)
            except Exception as exc:
                log_event(
                    logger,
                    "export_attempt_failed",
                    {
                        "snapshot_id": snapshot.snapshot_id,
                        "document_id": snapshot.document_id,
                        "attempt": attempt,
                        "error": f"{type(exc).__name__}: {exc}",
                    },
                    level="warning",
                )
                if attempt < self.max_attempts and self.retry_delay_sec:
                    time.sleep(self.retry_delay_sec)
                continue
            with self._lock:
                self.delivered.append(snapshot.snapshot_id)
            log_event(
                logger,
                "export_delivered",
                {"snapshot_id": snapshot.snapshot_id, "document_id": snapshot.document_id, "attempt": attempt},
            )
            return True
        with self._lock:
            self.failed.append(snapshot.snapshot_id)
        log_event(
            logger,
            "export_failed",
            {"snapshot_id": snapshot.snapshot_id, "document_id": snapshot.document_id, "attempts": self.max_attempts},
            level="error",
        )
        return False

    def on_transition(self, case: ReviewCase, entry: AuditEntry) -> None:
        if entry.to_state is ReviewState.APPROVED:
            self.submit(snapshot_from_case(case, entry))

    def join(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            futures = list(self._futures)
        for future in futures:
            future.result(timeout=timeout)

    def close(self) -> None:
        self._executor.shutdown(wait=True)


__all__ = [
    "ExportSnapshot",
    "ExportedField",
    "InMemorySink",
    "SnapshotDispatcher",
    "SnapshotSink",
    "snapshot_from_auto_approval",
    "snapshot_from_case",
]
