# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Candidate artifacts and the weighted multi-strategy generator.

Within one recognition artifact, every strategy that surfaces the same
normalized value contributes an :class:`Evidence` entry to a single
:class:`CandidateArtifact`. Across artifacts, candidates with the same
normalized value form a :class:`CandidateGroup` whose evidence is the union of
its members. Evidence is only ever aggregated, never dropped.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..artifacts.models import BoundingBox, RecognitionArtifact, ZoneType, derive_artifact_id
from ..logging_utils import get_logger, log_event
from .lexicon import Lexicon
from .schema import DocumentSchema
from .strategies import (
    CandidateStrategy,
    DictionaryStrategy,
    ExtractionContext,
    LabelProximityStrategy,
    PatternStrategy,
    ZonePriorStrategy,
)

logger = get_logger("candidates")

MAX_RAW_CONFIDENCE = 99.99
DEFAULT_BOOST_PER_SOURCE = 10.0
DEFAULT_BOOST_CAP = 20.0


def consensus_boost(
    raw: float, sources: int, per_source: float = DEFAULT_BOOST_PER_SOURCE, cap: float = DEFAULT_BOOST_CAP
) -> float:
    """Raw confidence plus ``min(cap, per_source * (sources - 1))``, unclamped."""

    if sources <= 1:
        return float(raw)
    return float(raw) + min(cap, per_source * (sources - 1))


class Evidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: str
    weight: float = Field(..., gt=0.0, le=1.0)
    recognition_artifact_id: str
    zone_id: str
    zone_type: ZoneType
    pass_index: int = Field(..., ge=0)
    raw_text: str
    raw_confidence: float = Field(..., ge=0.0, lt=100.0)
    bbox: Optional[BoundingBox] = None
    detail: str = ""

    @property
    def source(self) -> Tuple[str, int]:
        """Independence key: one strategy on one pass counts once."""

        return self.strategy, self.pass_index


class CandidateArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate_id: str
    field: str
    raw_value: str
    normalized_value: str
    recognition_artifact_id: str
    zone_id: str
    zone_type: ZoneType
    pass_index: int = Field(..., ge=0)
    raw_confidence: float = Field(..., ge=0.0, lt=100.0)
    evidence: Tuple[Evidence, ...] = Field(..., min_length=1)

    @property
    def strategies(self) -> Tuple[str, ...]:
        return tuple(sorted({e.strategy for e in self.evidence}))


def _evidence_key(evidence: Evidence) -> Tuple:
    return (evidence.pass_index, evidence.strategy, evidence.recognition_artifact_id, -evidence.raw_confidence)


@dataclass(frozen=True)
class CandidateGroup:
    """All candidates for one field that share a normalized value."""

    field: str
    normalized_value: str
    candidates: Tuple[CandidateArtifact, ...]

    @property
    def evidence(self) -> Tuple[Evidence, ...]:
        return tuple(sorted((e for c in self.candidates for e in c.evidence), key=_evidence_key))

    @property
    def raw_confidence(self) -> float:
        return max(c.raw_confidence for c in self.candidates)

    @property
    def raw_value(self) -> str:
        best = max(self.candidates, key=lambda c: (c.raw_confidence, -c.pass_index))
        return best.raw_value

    @property
    def independent_sources(self) -> int:
        return len({e.source for c in self.candidates for e in c.evidence})

    def boosted(self, per_source: float = DEFAULT_BOOST_PER_SOURCE, cap: float = DEFAULT_BOOST_CAP) -> float:
        return consensus_boost(self.raw_confidence, self.independent_sources, per_source, cap)

    @property
    def candidate_ids(self) -> Tuple[str, ...]:
        return tuple(c.candidate_id for c in self.candidates)

    @property
    def zone_ids(self) -> Tuple[str, ...]:
        return tuple(sorted({c.zone_id for c in self.candidates}))

    @property
    def zone_types(self) -> Tuple[ZoneType, ...]:
        return tuple(sorted({c.zone_type for c in self.candidates}, key=lambda z: z.value))


class CandidateSet:
    """Immutable collection of candidates indexed by field and normalized value.

    Groups are ordered by boosted confidence, then normalized value, so a
    ``max_groups_per_field`` cut keeps the groups resolution would rank first.
    Every candidate stays in :attr:`candidates` regardless of the cut.
    """

    def __init__(
        self,
        candidates: Iterable[CandidateArtifact] = (),
        *,
        max_groups_per_field: Optional[int] = None,
        boost_per_source: float = DEFAULT_BOOST_PER_SOURCE,
        boost_cap: float = DEFAULT_BOOST_CAP,
    ) -> None:
        unique: Dict[str, CandidateArtifact] = {}
        for candidate in candidates:
            unique.setdefault(candidate.candidate_id, candidate)
        self._candidates: Tuple[CandidateArtifact, ...] = tuple(
            sorted(unique.values(), key=lambda c: (c.field, c.normalized_value, c.pass_index, c.candidate_id))
        )
        self.max_groups_per_field = max_groups_per_field
        self.boost_per_source = boost_per_source
        self.boost_cap = boost_cap
        grouped: Dict[str, Dict[str, List[CandidateArtifact]]] = {}
        for candidate in self._candidates:
            grouped.setdefault(candidate.field, {}).setdefault(candidate.normalized_value, []).append(candidate)
        self._groups: Dict[str, Tuple[CandidateGroup, ...]] = {}
        for field_name, by_value in grouped.items():
            groups = [CandidateGroup(field_name, value, tuple(members)) for value, members in by_value.items()]
            groups.sort(key=lambda g: (-g.boosted(boost_per_source, boost_cap), g.normalized_value))
            if max_groups_per_field is not None:
                groups = groups[:max_groups_per_field]
            self._groups[field_name] = tuple(groups)

    @property
    def candidates(self) -> Tuple[CandidateArtifact, ...]:
        return self._candidates

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(sorted(self._groups))

    def groups(self, field: str) -> Tuple[CandidateGroup, ...]:
        return self._groups.get(field, ())

    def for_field(self, field: str) -> Tuple[CandidateArtifact, ...]:
        return tuple(c for c in self._candidates if c.field == field)

    def merge(self, other: "CandidateSet") -> "CandidateSet":
        return CandidateSet(
            (*self._candidates, *other.candidates),
            max_groups_per_field=self.max_groups_per_field,
            boost_per_source=self.boost_per_source,
            boost_cap=self.boost_cap,
        )

    def __len__(self) -> int:
        return len(self._candidates)


@dataclass(frozen=True)
class WeightedStrategy:
    strategy: CandidateStrategy
    weight: float


DEFAULT_STRATEGIES: Tuple[WeightedStrategy, ...] = (
    WeightedStrategy(DictionaryStrategy(), 0.95),
    WeightedStrategy(LabelProximityStrategy(), 0.90),
    WeightedStrategy(PatternStrategy(), 0.75),
    WeightedStrategy(ZonePriorStrategy(), 0.60),
)


class CandidateGenerator:
    def __init__(
        self,
        schema: DocumentSchema,
        lexicon: Lexicon,
        strategies: Sequence[WeightedStrategy] = DEFAULT_STRATEGIES,
        *,
        max_candidates_per_field: Optional[int] = 8,
        boost_per_source: float = DEFAULT_BOOST_PER_SOURCE,
        boost_cap: float = DEFAULT_BOOST_CAP,
    ) -> None:
        names = [ws.strategy.name for ws in strategies]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate strategy names: {names}")
        for ws in strategies:
            if not 0.0 < ws.weight <= 1.0:
                raise ValueError(f"strategy {ws.strategy.name} weight must be in (0, 1]")
        self.schema = schema
        self.lexicon = lexicon
        self.strategies = tuple(strategies)
        self.max_candidates_per_field = max_candidates_per_field
        self.boost_per_source = boost_per_source
        self.boost_cap = boost_cap

    def candidates_for_artifact(
        self, artifact: RecognitionArtifact, originator_id: Optional[str] = None
    ) -> List[CandidateArtifact]:
        context = ExtractionContext(lexicon=self.lexicon, originator_id=originator_id)
        out: List[CandidateArtifact] = []
        for spec in self.schema.fields:
            by_value: Dict[str, Dict[str, Evidence]] = {}
            for ws in self.strategies:
                for hit in ws.strategy.propose(spec, artifact, context):
                    confidence = min(MAX_RAW_CONFIDENCE, hit.token_confidence * hit.score * ws.weight)
                    evidence = Evidence(
                        strategy=ws.strategy.name,
                        weight=ws.weight,
                        recognition_artifact_id=artifact.artifact_id,
                        zone_id=artifact.zone_id,
                        zone_type=artifact.zone_type,
                        pass_index=artifact.pass_index,
                        raw_text=hit.raw_value,
                        raw_confidence=round(confidence, 4),
                        bbox=hit.bbox,
                        detail=hit.detail,
                    )
                    per_strategy = by_value.setdefault(hit.normalized_value, {})
                    current = per_strategy.get(evidence.strategy)
                    if current is None or evidence.raw_confidence > current.raw_confidence:
                        per_strategy[evidence.strategy] = evidence
            for normalized, per_strategy in sorted(by_value.items()):
                evidence = tuple(sorted(per_strategy.values(), key=lambda e: (-e.raw_confidence, e.strategy)))
                out.append(
                    CandidateArtifact(
                        candidate_id=derive_artifact_id(
                            "candidate",
                            {"field": spec.name, "value": normalized, "recognition": artifact.artifact_id},
                        ),
                        field=spec.name,
                        raw_value=evidence[0].raw_text,
                        normalized_value=normalized,
                        recognition_artifact_id=artifact.artifact_id,
                        zone_id=artifact.zone_id,
                        zone_type=artifact.zone_type,
                        pass_index=artifact.pass_index,
                        raw_confidence=evidence[0].raw_confidence,
                        evidence=evidence,
                    )
                )
        return out

    def generate(self, artifacts: Sequence[RecognitionArtifact], originator_id: Optional[str] = None) -> CandidateSet:
        candidates: List[CandidateArtifact] = []
        for artifact in artifacts:
            candidates.extend(self.candidates_for_artifact(artifact, originator_id))
        result = CandidateSet(
            candidates,
            max_groups_per_field=self.max_candidates_per_field,
            boost_per_source=self.boost_per_source,
            boost_cap=self.boost_cap,
        )
        log_event(
            logger,
            "candidates_generated",
            {
                "artifacts": len(artifacts),
                "candidates": len(result),
                "fields": {name: len(result.groups(name)) for name in result.fields},
            },
            level="debug",
        )
        return result


__all__ = [
    "CandidateArtifact",
    "CandidateGenerator",
    "CandidateGroup",
    "CandidateSet",
    "DEFAULT_STRATEGIES",
    "Evidence",
    "WeightedStrategy",
    "consensus_boost",
]
