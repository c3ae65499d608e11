# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Append-only ledger of calibration ground truth.

Writers append into a small pending buffer under a lock; the buffer is flushed
in batches into the committed history (and optionally a JSONL file). Readers
only ever see the committed tuple, which is replaced, never edited.
"""
from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from ..logging_utils import get_logger, log_event, utc_now

logger = get_logger("calibration")


class CalibrationDataPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    predicted_confidence: float = Field(..., ge=0.0, le=100.0)
    actual_correct: bool
    field: str
    originator_id: Optional[str] = None
    recorded_at: datetime


FlushListener = Callable[[Tuple[CalibrationDataPoint, ...]], None]


class CalibrationLedger:
    def __init__(self, path: Union[str, Path, None] = None, *, flush_batch_size: int = 50) -> None:
        self.path = Path(path) if path else None
        self.flush_batch_size = max(1, int(flush_batch_size))
        self._lock = threading.Lock()
        self._pending: List[CalibrationDataPoint] = []
        self._committed: Tuple[CalibrationDataPoint, ...] = self._load()
        self._listeners: List[FlushListener] = []

    def _load(self) -> Tuple[CalibrationDataPoint, ...]:
        if self.path is None or not self.path.exists():
            return ()
        points: List[CalibrationDataPoint] = []
        with self.path.open("r", encoding="utf-8") as handle:
            for lineno, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    points.append(CalibrationDataPoint.model_validate_json(line))
                except ValueError as exc:
                    log_event(
                        logger,
                        "ledger_line_skipped",
                        {"path": str(self.path), "line": lineno, "error": str(exc)},
                        level="warning",
                    )
        return tuple(points)

    def add_listener(self, listener: FlushListener) -> None:
        self._listeners.append(listener)

    def append(
        self,
        predicted_confidence: float,
        actual_correct: bool,
        field: str,
        originator_id: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> CalibrationDataPoint:
        point = CalibrationDataPoint(
            predicted_confidence=predicted_confidence,
            actual_correct=actual_correct,
            field=field,
            originator_id=originator_id,
            recorded_at=recorded_at or utc_now(),
        )
        with self._lock:
            self._pending.append(point)
            should_flush = len(self._pending) >= self.flush_batch_size
        if should_flush:
            self.flush()
        return point

    def flush(self) -> int:
        with self._lock:
            batch = self._pending
            self._pending = []
            if not batch:
                return 0
            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    for point in batch:
                        handle.write(point.model_dump_json() + "\n")
            self._committed = self._committed + tuple(batch)
            committed = self._committed
        log_event(logger, "ledger_flushed", {"batch": len(batch), "total": len(committed)}, level="debug")
        for listener in list(self._listeners):
            listener(committed)
        return len(batch)

    def points(self) -> Tuple[CalibrationDataPoint, ...]:
        return self._committed

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def __len__(self) -> int:
        return len(self._committed)


__all__ = ["CalibrationDataPoint", "CalibrationLedger", "FlushListener"]
