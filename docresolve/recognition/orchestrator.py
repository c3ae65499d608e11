# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Bounded, budgeted execution of recognition passes for one document.

Every scheduled (zone, profile) combination runs on a fixed-size worker pool.
The orchestrator always returns whatever completed: a pass that fails or times
out is retried once at reduced fidelity and then recorded as a
:class:`FailedPass`; passes that never started because of early stopping,
budget exhaustion or cancellation are recorded as :class:`SkippedPass`.
"""
from __future__ import annotations

import time
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from statistics import mean
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..artifacts.models import (
    PassMetadata,
    RecognitionArtifact,
    ZoneArtifact,
    ZoneType,
    recognition_artifact_id,
)
from ..artifacts.store import ArtifactStore
from ..cancellation import CancellationToken
from ..errors import RecognitionPassFailure, RecognitionTimeout
from ..logging_utils import get_logger, log_event
from ..utils.json_utils import canonical_json
from .interfaces import EngineResult, RecognitionEngine
from .profiles import RecognitionProfile

logger = get_logger("orchestrator")

EarlyStop = Callable[[Sequence[RecognitionArtifact]], bool]


@dataclass(frozen=True)
class RecognitionPlan:
    zone: ZoneArtifact
    image: Any
    profile: RecognitionProfile


@dataclass(frozen=True)
class FailedPass:
    pass_index: int
    zone_id: str
    zone_type: ZoneType
    profile: str
    error: str
    attempts: int


@dataclass(frozen=True)
class SkippedPass:
    pass_index: int
    zone_id: str
    profile: str
    reason: str


PassOutcome = Union[RecognitionArtifact, FailedPass, SkippedPass]


@dataclass
class OrchestrationResult:
    artifacts: List[RecognitionArtifact] = field(default_factory=list)
    failed: List[FailedPass] = field(default_factory=list)
    skipped: List[SkippedPass] = field(default_factory=list)
    early_stopped: bool = False
    budget_exhausted: bool = False
    cancelled: bool = False
    elapsed_ms: float = 0.0

    def stats(self) -> Dict[str, Any]:
        attempted = len(self.artifacts) + len(self.failed)
        durations = [a.metadata.duration_ms for a in self.artifacts]
        return {
            "scheduled": attempted + len(self.skipped),
            "completed": len(self.artifacts),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "retried": sum(1 for a in self.artifacts if a.metadata.attempts > 1),
            "success_rate": round(len(self.artifacts) / attempted, 4) if attempted else 0.0,
            "avg_pass_ms": round(mean(durations), 2) if durations else 0.0,
            "early_stopped": self.early_stopped,
            "budget_exhausted": self.budget_exhausted,
            "cancelled": self.cancelled,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


class RecognitionOrchestrator:
    def __init__(
        self,
        engine: RecognitionEngine,
        *,
        max_workers: int = 4,
        document_budget_sec: float = 120.0,
        store: Optional[ArtifactStore] = None,
    ) -> None:
        self.engine = engine
        self.max_workers = max(1, int(max_workers))
        self.document_budget_sec = float(document_budget_sec)
        self.store = store

    def run(
        self,
        plans: Sequence[RecognitionPlan],
        *,
        early_stop: Optional[EarlyStop] = None,
        cancel: Optional[CancellationToken] = None,
        pass_offset: int = 0,
    ) -> OrchestrationResult:
        """Execute ``plans`` and return completed artifacts in schedule order.

        ``early_stop`` is consulted on the main thread after passes complete;
        once it returns true no further scheduled pass starts. Passes still in
        flight when the budget runs out are abandoned and reported as skipped.
        """

        started = time.monotonic()
        deadline = started + self.document_budget_sec
        result = OrchestrationResult()
        if not plans:
            return result

        halt = threading.Event()
        outcomes: Dict[int, PassOutcome] = {}
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(plans)),
            thread_name_prefix="docresolve-recognition",
        )
        futures: Dict[Future, int] = {
            executor.submit(self._execute, pass_offset + i, plan, halt, cancel, deadline): i
            for i, plan in enumerate(plans)
        }
        pending = set(futures)
        try:
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    result.budget_exhausted = True
                    break
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=futures.__getitem__):
                    outcomes[futures[fut]] = fut.result()
                if cancel is not None and cancel.cancelled and not result.cancelled:
                    result.cancelled = True
                    halt.set()
                if early_stop is not None and not halt.is_set():
                    completed = [o for _, o in sorted(outcomes.items()) if isinstance(o, RecognitionArtifact)]
                    if completed and self._should_stop(early_stop, completed):
                        result.early_stopped = True
                        halt.set()
        finally:
            halt.set()
            for fut in pending:
                fut.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

        for i, plan in enumerate(plans):
            outcome = outcomes.get(i)
            if outcome is None:
                outcome = SkippedPass(pass_offset + i, plan.zone.artifact_id, plan.profile.name, "budget")
            if isinstance(outcome, RecognitionArtifact):
                result.artifacts.append(outcome)
            elif isinstance(outcome, FailedPass):
                result.failed.append(outcome)
            else:
                result.skipped.append(outcome)

        result.elapsed_ms = (time.monotonic() - started) * 1000.0
        log_event(logger, "recognition_finished", result.stats())
        return result

    def _should_stop(self, early_stop: EarlyStop, completed: List[RecognitionArtifact]) -> bool:
        try:
            return bool(early_stop(completed))
        except Exception as exc:
            log_event(logger, "early_stop_check_failed", {"error": str(exc)}, level="warning")
            return False

    def _execute(
        self,
        pass_index: int,
        plan: RecognitionPlan,
        halt: threading.Event,
        cancel: Optional[CancellationToken],
        deadline: float,
    ) -> PassOutcome:
        def skip(reason: str) -> SkippedPass:
            return SkippedPass(pass_index, plan.zone.artifact_id, plan.profile.name, reason)

        if cancel is not None and cancel.cancelled:
            return skip("cancelled")
        if halt.is_set():
            return skip("early_stop")
        if time.monotonic() >= deadline:
            return skip("budget")

        profile = plan.profile
        last_error: Optional[BaseException] = None
        attempts = 0
        for attempt in (1, 2):
            if attempt == 2:
                if cancel is not None and cancel.cancelled:
                    return skip("cancelled")
                if time.monotonic() >= deadline:
                    break
                profile = plan.profile.reduced()
                log_event(
                    logger,
                    "pass_retry",
                    {"pass_index": pass_index, "zone_id": plan.zone.artifact_id, "profile": profile.name, "error": str(last_error)},
                )
            attempts = attempt
            t0 = time.monotonic()
            try:
                engine_result = self.engine.recognize(plan.image, profile)
            except Exception as exc:
                last_error = exc
                continue
            elapsed = time.monotonic() - t0
            if elapsed > profile.timeout_seconds:
                last_error = RecognitionTimeout(
                    f"{profile.name}: result after {elapsed:.3f}s exceeds {profile.timeout_seconds:.3f}s"
                )
                continue
            return self._artifact(pass_index, plan, profile, engine_result, elapsed, attempt)

        failure = RecognitionPassFailure(pass_index, plan.profile.name, last_error or RuntimeError("budget exhausted"))
        log_event(
            logger,
            "pass_failed",
            {"pass_index": pass_index, "zone_id": plan.zone.artifact_id, "error": str(failure)},
            level="warning",
        )
        return FailedPass(
            pass_index=pass_index,
            zone_id=plan.zone.artifact_id,
            zone_type=plan.zone.zone_type,
            profile=plan.profile.name,
            error=str(failure.cause),
            attempts=max(1, attempts),
        )

    def _artifact(
        self,
        pass_index: int,
        plan: RecognitionPlan,
        profile: RecognitionProfile,
        engine_result: EngineResult,
        elapsed: float,
        attempt: int,
    ) -> RecognitionArtifact:
        tokens = tuple(engine_result.tokens)
        artifact = RecognitionArtifact(
            artifact_id=recognition_artifact_id(
                plan.zone.artifact_id, plan.zone.variant_id, pass_index, profile.name, tokens
            ),
            zone_id=plan.zone.artifact_id,
            variant_id=plan.zone.variant_id,
            zone_type=plan.zone.zone_type,
            pass_index=pass_index,
            tokens=tokens,
            metadata=PassMetadata(
                profile=profile.name,
                engine=getattr(self.engine, "name", type(self.engine).__name__),
                duration_ms=round(elapsed * 1000.0, 3),
                engine_confidence=engine_result.engine_confidence,
                attempts=attempt,
                reduced_fidelity=profile.reduced_fidelity,
            ),
        )
        if self.store is not None:
            self.store.put(canonical_json(artifact), "recognition")
        return artifact


__all__ = [
    "EarlyStop",
    "FailedPass",
    "OrchestrationResult",
    "RecognitionOrchestrator",
    "RecognitionPlan",
    "SkippedPass",
]
