# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Decile-bucket confidence calibration with out-of-band recomputation.

The synchronous path (:meth:`ConfidenceCalibrator.calibrate`) only reads the
current immutable :class:`CalibrationSnapshot`. New ground truth goes through
the ledger; after each flush the calibration error of the ledger is compared
with the snapshot's and, when it drifted past ``drift_threshold``, a rebuild
is scheduled on a single background worker that swaps the new snapshot in
with one reference assignment.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..errors import CalibrationUnavailable
from ..logging_utils import get_logger, log_event, utc_now
from .ledger import CalibrationDataPoint, CalibrationLedger

logger = get_logger("calibration")

MAX_CONFIDENCE = 99.99

SOURCE_ORIGINATOR = "originator"
SOURCE_GLOBAL = "global"
SOURCE_GLOBAL_ALL = "global_all"
SOURCE_RAW = "raw"


def bucket_of(confidence: float) -> int:
    """Decile index 0..9 for a confidence in [0, 100]."""

    return max(0, min(9, int(float(confidence) // 10)))


@dataclass(frozen=True)
class BucketStats:
    count: int = 0
    correct: int = 0
    predicted_sum: float = 0.0

    def add(self, point: CalibrationDataPoint) -> "BucketStats":
        return BucketStats(
            count=self.count + 1,
            correct=self.correct + (1 if point.actual_correct else 0),
            predicted_sum=self.predicted_sum + point.predicted_confidence,
        )

    @property
    def accuracy(self) -> float:
        return self.correct / self.count if self.count else 0.0

    @property
    def mean_predicted(self) -> float:
        return self.predicted_sum / self.count if self.count else 0.0


def calibration_error(buckets: Mapping[Any, BucketStats]) -> float:
    """Mean absolute gap between predicted probability and observed accuracy."""

    populated = [stats for stats in buckets.values() if stats.count]
    if not populated:
        return 0.0
    return sum(abs(stats.mean_predicted / 100.0 - stats.accuracy) for stats in populated) / len(populated)


def _global_buckets(points: Iterable[CalibrationDataPoint]) -> Dict[int, BucketStats]:
    buckets: Dict[int, BucketStats] = {}
    for point in points:
        key = bucket_of(point.predicted_confidence)
        buckets[key] = buckets.get(key, BucketStats()).add(point)
    return buckets


@dataclass(frozen=True)
class CalibrationSnapshot:
    by_originator: Mapping[Tuple[str, str, int], BucketStats] = field(default_factory=dict)
    by_field: Mapping[Tuple[str, int], BucketStats] = field(default_factory=dict)
    overall: Mapping[int, BucketStats] = field(default_factory=dict)
    sample_count: int = 0
    calibration_error: float = 0.0
    built_at: Optional[datetime] = None

    @classmethod
    def build(cls, points: Iterable[CalibrationDataPoint]) -> "CalibrationSnapshot":
        points = tuple(points)
        by_originator: Dict[Tuple[str, str, int], BucketStats] = {}
        by_field: Dict[Tuple[str, int], BucketStats] = {}
        for point in points:
            bucket = bucket_of(point.predicted_confidence)
            field_key = (point.field, bucket)
            by_field[field_key] = by_field.get(field_key, BucketStats()).add(point)
            if point.originator_id:
                orig_key = (point.originator_id, point.field, bucket)
                by_originator[orig_key] = by_originator.get(orig_key, BucketStats()).add(point)
        overall = _global_buckets(points)
        return cls(
            by_originator=by_originator,
            by_field=by_field,
            overall=overall,
            sample_count=len(points),
            calibration_error=calibration_error(overall),
            built_at=utc_now(),
        )

    def lookup(self, raw: float, field_name: str, originator_id: Optional[str], min_samples: int) -> Tuple[float, str]:
        """Return ``(accuracy_percent, source)`` or raise :class:`CalibrationUnavailable`."""

        bucket = bucket_of(raw)
        if originator_id:
            stats = self.by_originator.get((originator_id, field_name, bucket))
            if stats is not None and stats.count >= min_samples:
                return stats.accuracy * 100.0, SOURCE_ORIGINATOR
        stats = self.by_field.get((field_name, bucket))
        if stats is not None and stats.count >= min_samples:
            return stats.accuracy * 100.0, SOURCE_GLOBAL
        stats = self.overall.get(bucket)
        if stats is not None and stats.count >= min_samples:
            return stats.accuracy * 100.0, SOURCE_GLOBAL_ALL
        raise CalibrationUnavailable(
            f"no bucket with {min_samples} samples for field={field_name} originator={originator_id} bucket={bucket}"
        )


class ConfidenceCalibrator:
    def __init__(
        self,
        ledger: Optional[CalibrationLedger] = None,
        *,
        min_samples: int = 100,
        drift_threshold: float = 0.05,
    ) -> None:
        self.ledger = ledger or CalibrationLedger()
        self.min_samples = max(1, int(min_samples))
        self.drift_threshold = float(drift_threshold)
        self._snapshot = CalibrationSnapshot.build(self.ledger.points())
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="docresolve-calibration")
        self._schedule_lock = threading.Lock()
        self._pending: Optional[Future] = None
        self.ledger.add_listener(self._on_flush)

    @property
    def snapshot(self) -> CalibrationSnapshot:
        return self._snapshot

    def calibrate_with_source(self, raw: float, field_name: str, originator_id: Optional[str] = None) -> Tuple[float, str]:
        raw = max(0.0, min(MAX_CONFIDENCE, float(raw)))
        try:
            value, source = self._snapshot.lookup(raw, field_name, originator_id, self.min_samples)
        except CalibrationUnavailable as exc:
            log_event(
                logger,
                "calibration_unavailable",
                {"field": field_name, "originator_id": originator_id, "raw": round(raw, 2), "reason": str(exc)},
                level="warning",
            )
            return raw, SOURCE_RAW
        return round(max(0.0, min(MAX_CONFIDENCE, value)), 4), source

    def calibrate(self, raw: float, field_name: str, originator_id: Optional[str] = None) -> float:
        return self.calibrate_with_source(raw, field_name, originator_id)[0]

    def record(
        self,
        predicted_confidence: float,
        actual_correct: bool,
        field_name: str,
        originator_id: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> CalibrationDataPoint:
        return self.ledger.append(predicted_confidence, actual_correct, field_name, originator_id, recorded_at)

    def flush(self) -> int:
        return self.ledger.flush()

    def needs_recalibration(self, points: Optional[Tuple[CalibrationDataPoint, ...]] = None) -> bool:
        points = self.ledger.points() if points is None else points
        if len(points) == self._snapshot.sample_count:
            return False
        if self._snapshot.sample_count == 0:
            return bool(points)
        current = calibration_error(_global_buckets(points))
        return abs(current - self._snapshot.calibration_error) > self.drift_threshold

    def _on_flush(self, points: Tuple[CalibrationDataPoint, ...]) -> None:
        if self.needs_recalibration(points):
            self.schedule_recalibration()

    def schedule_recalibration(self) -> Future:
        with self._schedule_lock:
            if self._pending is not None and not self._pending.done():
                return self._pending
            self._pending = self._executor.submit(self._rebuild)
            return self._pending

    def _rebuild(self) -> CalibrationSnapshot:
        previous = self._snapshot
        snapshot = CalibrationSnapshot.build(self.ledger.points())
        self._snapshot = snapshot
        log_event(
            logger,
            "calibration_rebuilt",
            {
                "samples": snapshot.sample_count,
                "error": round(snapshot.calibration_error, 4),
                "previous_error": round(previous.calibration_error, 4),
            },
        )
        return snapshot

    def recalibrate_now(self) -> CalibrationSnapshot:
        return self._rebuild()

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        with self._schedule_lock:
            pending = self._pending
        if pending is not None:
            pending.result(timeout=timeout)

    def stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        return {
            "samples": snapshot.sample_count,
            "ledger_samples": len(self.ledger),
            "pending_samples": self.ledger.pending_count,
            "calibration_error": round(snapshot.calibration_error, 4),
            "needs_recalibration": self.needs_recalibration(),
            "built_at": snapshot.built_at.isoformat() if snapshot.built_at else None,
            "buckets": {
                str(bucket): {
                    "count": stats.count,
                    "accuracy": round(stats.accuracy, 4),
                    "mean_predicted": round(stats.mean_predicted, 2),
                }
                for bucket, stats in sorted(snapshot.overall.items())
            },
        }

    def sample_count(self) -> int:
        return len(self.ledger)

    def export(self) -> List[Dict[str, Any]]:
        """Committed data points as JSON-ready dicts, oldest first."""

        return [point.model_dump(mode="json") for point in self.ledger.points()]

    def close(self) -> None:
        self._executor.shutdown(wait=True)


__all__ = [
    "BucketStats",
    "CalibrationSnapshot",
    "ConfidenceCalibrator",
    "SOURCE_GLOBAL",
    "SOURCE_GLOBAL_ALL",
    "SOURCE_ORIGINATOR",
    "SOURCE_RAW",
    "bucket_of",
    "calibration_error",
]
