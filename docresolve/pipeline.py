# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""End-to-end document run.

``process`` takes raw bytes through ingest, variants, zones, recognition,
candidates, resolution and the approval gate; an auto-approved document is
exported right away, a blocked one becomes a pending review case. ``reocr``
runs one additional targeted pass for a case and recomputes only the fields
that pass can influence.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set

from .artifacts.models import ZoneType
from .artifacts.store import ArtifactStore, InMemoryArtifactStore, build_artifact_store
from .calibration.calibrator import ConfidenceCalibrator
from .calibration.ledger import CalibrationLedger
from .cancellation import CancellationToken
from .config import Settings, load_settings
from .errors import CancellationRequested, DocumentNotFound
from .extraction.candidates import CandidateGenerator, CandidateSet
from .extraction.lexicon import Lexicon, default_lexicon, load_lexicon
from .extraction.schema import DocumentSchema, default_schema, load_schema
from .gate.approval import ApprovalGate, GateDecision
from .ingest.loader import load_document
from .ingest.variants import VariantGenerator
from .ingest.zones import RenderedZone, ZoneDetector
from .logging_utils import as_utc, get_logger, log_event
from .recognition.interfaces import RecognitionEngine
from .recognition.orchestrator import OrchestrationResult, RecognitionOrchestrator, RecognitionPlan
from .recognition.profiles import ProfileRegistry, default_registry
from .recognition.tesseract import TesseractEngine
from .resolution.early_stop import CriticalFieldEarlyStop
from .resolution.models import ResolutionResult
from .resolution.resolver import FieldResolver
from .review.cases import ReviewCase, ReviewCaseStore
from .review.export import SnapshotDispatcher, SnapshotSink, snapshot_from_auto_approval
from .rules.engine import RuleEngine

logger = get_logger("pipeline")


@dataclass
class DocumentRun:
    document_id: str
    originator_id: Optional[str]
    input_id: str
    zones: List[RenderedZone] = field(default_factory=list)
    recognition: Optional[OrchestrationResult] = None
    candidates: CandidateSet = field(default_factory=CandidateSet)
    resolution: Optional[ResolutionResult] = None
    gate: Optional[GateDecision] = None
    case_id: Optional[str] = None
    snapshot_id: Optional[str] = None
    next_pass_index: int = 0

    def summary(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "originator_id": self.originator_id,
            "input_id": self.input_id,
            "outcome": self.gate.outcome.value if self.gate else None,
            "reasons": list(self.gate.reasons) if self.gate else [],
            "case_id": self.case_id,
            "snapshot_id": self.snapshot_id,
            "overall_confidence": self.resolution.overall_confidence if self.resolution else None,
            "fields": {
                name: {
                    "value": f.normalized_value,
                    "confidence": f.confidence,
                    "flags": [flag.value for flag in f.flags],
                }
                for name, f in (self.resolution.fields.items() if self.resolution else [])
            },
            "contradictions": [
                {"severity": c.severity.value, "rule_id": c.rule_id, "fields": list(c.fields), "message": c.message}
                for c in (self.resolution.contradictions if self.resolution else ())
            ],
            "recognition": self.recognition.stats() if self.recognition else None,
        }


class DocumentPipeline:
    def __init__(
        self,
        engine: RecognitionEngine,
        *,
        settings: Optional[Settings] = None,
        store: Optional[ArtifactStore] = None,
        schema: Optional[DocumentSchema] = None,
        lexicon: Optional[Lexicon] = None,
        profiles: Optional[ProfileRegistry] = None,
        calibrator: Optional[ConfidenceCalibrator] = None,
        rule_engine: Optional[RuleEngine] = None,
        gate: Optional[ApprovalGate] = None,
        cases: Optional[ReviewCaseStore] = None,
        dispatcher: Optional[SnapshotDispatcher] = None,
        variant_generator: Optional[VariantGenerator] = None,
        zone_detector: Optional[ZoneDetector] = None,
    ) -> None:
        self.settings = settings or Settings()
        orch = self.settings.orchestrator
        self.store = store or InMemoryArtifactStore()
        self.schema = schema or default_schema()
        self.lexicon = lexicon or default_lexicon()
        self.profiles = profiles or default_registry()
        self.calibrator = calibrator or ConfidenceCalibrator(
            CalibrationLedger(
                self.settings.calibration.ledger_path,
                flush_batch_size=self.settings.calibration.flush_batch_size,
            ),
            min_samples=self.settings.calibration.min_samples,
            drift_threshold=self.settings.calibration.drift_threshold,
        )
        self.rule_engine = rule_engine or RuleEngine(path=self.settings.rules_path)
        self.gate = gate or ApprovalGate(self.schema, self.settings.gate.mode, self.settings.gate.thresholds)
        self.cases = cases or ReviewCaseStore(max_reopens=self.settings.review.max_reopens)
        self.dispatcher = dispatcher
        if self.dispatcher is not None:
            self.cases.add_listener(self.dispatcher.on_transition)
        self.variant_generator = variant_generator or VariantGenerator(
            top_k=orch.max_variants, min_readiness=orch.min_readiness
        )
        self.zone_detector = zone_detector or ZoneDetector()
        self.orchestrator = RecognitionOrchestrator(
            engine,
            max_workers=orch.max_workers,
            document_budget_sec=orch.document_budget_sec,
            store=self.store,
        )
        self.generator = CandidateGenerator(
            self.schema,
            self.lexicon,
            max_candidates_per_field=self.settings.resolution.max_candidates_per_field,
            boost_per_source=self.settings.resolution.boost_per_source,
            boost_cap=self.settings.resolution.boost_cap,
        )
        self.resolver = FieldResolver(
            self.schema,
            rule_engine=self.rule_engine,
            calibrator=self.calibrator,
            settings=self.settings.resolution,
        )
        self._runs: Dict[str, DocumentRun] = {}
        self._lock = threading.Lock()

    def critical_fields(self) -> List[str]:
        configured = self.settings.orchestrator.critical_fields
        return list(configured) if configured is not None else list(self.schema.critical_fields)

    def plan(self, zones: List[RenderedZone], originator_id: Optional[str] = None) -> List[RecognitionPlan]:
        """One plan per (zone, profile), in variant rank then zone then profile order."""

        plans: List[RecognitionPlan] = []
        for zone in zones:
            for profile in self.profiles.profiles_for(zone.artifact.zone_type, originator_id):
                plans.append(RecognitionPlan(zone=zone.artifact, image=zone.image, profile=profile))
        return plans

    def run(self, document_id: str) -> DocumentRun:
        run = self._runs.get(document_id)
        if run is None:
            raise DocumentNotFound(document_id)
        return run

    def process(
        self,
        data: bytes,
        *,
        document_id: Optional[str] = None,
        originator_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> DocumentRun:
        now = as_utc(now)
        loaded = load_document(data, self.store)
        run = DocumentRun(
            document_id=document_id or loaded.input.artifact_id,
            originator_id=originator_id,
            input_id=loaded.input.artifact_id,
        )
        for page in loaded.pages:
            if cancel is not None:
                cancel.raise_if_cancelled(partial=run)
            for variant in self.variant_generator.generate(page.artifact, page.image, self.store):
                run.zones.extend(
                    self.zone_detector.detect(variant.artifact, variant.image, self.store, originator_id=originator_id)
                )

        plans = self.plan(run.zones, originator_id)
        early_stop = None
        critical = self.critical_fields()
        if self.settings.orchestrator.early_stop and critical:
            early_stop = CriticalFieldEarlyStop(
                self.generator,
                self.resolver,
                critical,
                threshold=self.settings.orchestrator.early_stop_threshold,
                originator_id=originator_id,
            )
        run.recognition = self.orchestrator.run(plans, early_stop=early_stop, cancel=cancel)
        run.next_pass_index = len(plans)
        if run.recognition.cancelled:
            log_event(
                logger,
                "document_cancelled",
                {"document_id": run.document_id, "completed_passes": len(run.recognition.artifacts)},
                level="warning",
            )
            raise CancellationRequested(cancel.reason if cancel else "cancelled", partial=run)

        run.candidates = self.generator.generate(run.recognition.artifacts, originator_id)
        run.resolution = self.resolver.resolve(run.candidates, originator_id=originator_id, now=now)
        run.gate = self.gate.decide(run.resolution, document_id=run.document_id, at=now)

        if run.gate.approved:
            snapshot = snapshot_from_auto_approval(run.document_id, run.resolution, run.gate.decided_at)
            run.snapshot_id = snapshot.snapshot_id
            if self.dispatcher is not None:
                self.dispatcher.submit(snapshot)
        else:
            case = self.cases.create(
                run.document_id,
                run.resolution,
                run.gate,
                originator_id=originator_id,
                created_at=now,
            )
            run.case_id = case.case_id

        with self._lock:
            self._runs[run.document_id] = run
        log_event(
            logger,
            "document_processed",
            {
                "document_id": run.document_id,
                "outcome": run.gate.outcome.value,
                "case_id": run.case_id,
                "overall_confidence": run.resolution.overall_confidence,
                "passes": run.recognition.stats(),
            },
        )
        return run

    def reocr(
        self,
        case_id: str,
        zone: str,
        profile_name: str,
        *,
        actor: str,
        at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> ReviewCase:
        """Re-recognize one zone of a case's document with ``profile_name``.

        Only fields that gained candidates from the new pass, or whose
        existing evidence sits in that zone type, are recomputed; every other
        field of the case keeps its previous resolved value untouched.
        """

        case = self.cases.get(case_id)
        run = self.run(case.document_id)
        zone_type = ZoneType(zone)
        profile = self.profiles.get(profile_name)
        targets = [z for z in run.zones if z.artifact.zone_type is zone_type]
        if not targets:
            raise ValueError(f"document {run.document_id} has no {zone_type.value} zone")
        when = as_utc(at)

        with self._lock:
            pass_index = run.next_pass_index
            run.next_pass_index += 1
        target = targets[0]
        result = self.orchestrator.run(
            [RecognitionPlan(zone=target.artifact, image=target.image, profile=profile)],
            pass_offset=pass_index,
        )
        fresh = self.generator.generate(result.artifacts, run.originator_id)
        affected: Set[str] = set(fresh.fields)
        affected.update(c.field for c in run.candidates.candidates if c.zone_type is zone_type)

        merged = run.candidates.merge(fresh)
        resolution = self.resolver.resolve(
            merged,
            originator_id=run.originator_id,
            now=when,
            only_fields=affected,
            previous=case.resolution,
        )
        decision = self.gate.decide(resolution, document_id=run.document_id, at=when)
        updated = self.cases.revise(
            case_id,
            resolution,
            decision,
            actor=actor,
            at=when,
            note=f"reocr {zone_type.value} with {profile.name}",
            fields=tuple(sorted(affected)),
            expected_version=expected_version,
        )
        with self._lock:
            run.candidates = merged
            run.resolution = resolution
            run.gate = decision
        log_event(
            logger,
            "zone_reocr",
            {
                "case_id": case_id,
                "zone": zone_type.value,
                "profile": profile.name,
                "pass_index": pass_index,
                "new_candidates": len(fresh),
                "recomputed": sorted(affected),
                "failed": len(result.failed),
            },
        )
        return updated

    def record_ground_truth(
        self,
        resolution: ResolutionResult,
        corrections: Optional[Mapping[str, str]] = None,
        originator_id: Optional[str] = None,
    ) -> int:
        """Feed reviewer-confirmed outcomes into the calibration ledger.

        Every resolved (non-missing) field counts as correct unless
        ``corrections`` supplies a different value for it. Points carry the
        boosted confidence, the value calibration buckets are looked up by.
        """

        corrections = corrections or {}
        recorded = 0
        for name, resolved in resolution.fields.items():
            if resolved.missing:
                continue
            corrected = corrections.get(name)
            correct = corrected is None or corrected == resolved.normalized_value
            self.calibrator.record(resolved.boosted_confidence, correct, name, originator_id)
            recorded += 1
        return recorded


def build_pipeline(
    engine: Optional[RecognitionEngine] = None,
    *,
    settings: Optional[Settings] = None,
    store: Optional[ArtifactStore] = None,
    sink: Optional[SnapshotSink] = None,
) -> DocumentPipeline:
    """Wire a pipeline from settings; defaults to the Tesseract engine."""

    settings = settings or load_settings()
    dispatcher = None
    if sink is not None:
        dispatcher = SnapshotDispatcher(
            sink,
            max_attempts=settings.review.export_max_attempts,
            retry_delay_sec=settings.review.export_retry_delay_sec,
        )
    return DocumentPipeline(
        engine or TesseractEngine(),
        settings=settings,
        store=store or build_artifact_store(),
        schema=load_schema(settings.schema_path) if settings.schema_path else None,
        lexicon=load_lexicon(settings.lexicon_path) if settings.lexicon_path else None,
        profiles=ProfileRegistry.load(settings.profiles_path) if settings.profiles_path else None,
        dispatcher=dispatcher,
    )


__all__ = ["DocumentPipeline", "DocumentRun", "build_pipeline"]
