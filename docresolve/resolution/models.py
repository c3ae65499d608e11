# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Resolved field values, contradictions and the per-document result."""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..rules.models import RuleOutcome


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"

    @property
    def rank(self) -> int:
        return 2 if self is Severity.CRITICAL else 1


class ContradictionKind(str, Enum):
    RULE_FAILURE = "rule_failure"
    CANDIDATE_DISAGREEMENT = "candidate_disagreement"


class FieldFlag(str, Enum):
    MISSING = "missing"
    LOW_CONFIDENCE = "low_confidence"
    FUTURE_DATE = "future_date"
    INVALID_AMOUNT = "invalid_amount"
    UNUSUALLY_LARGE_AMOUNT = "unusually_large_amount"
    CROSS_VALIDATION_FAILED = "cross_validation_failed"
    CANDIDATE_DISAGREEMENT = "candidate_disagreement"


class Contradiction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ContradictionKind
    rule_id: Optional[str] = None
    fields: Tuple[str, ...]
    severity: Severity
    message: str


class Alternative(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    normalized_value: str
    confidence: float = Field(..., ge=0.0, lt=100.0)
    sources: int = Field(..., ge=1)
    candidate_ids: Tuple[str, ...] = ()


class ResolvedField(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    value: Optional[str] = None
    normalized_value: Optional[str] = None
    confidence: float = Field(..., ge=0.0, lt=100.0)
    raw_confidence: float = Field(0.0, ge=0.0, lt=100.0)
    boosted_confidence: float = Field(0.0, ge=0.0, lt=100.0)
    calibrated_confidence: float = Field(0.0, ge=0.0, lt=100.0)
    calibration_source: str = "raw"
    penalty: float = Field(0.0, ge=0.0)
    independent_sources: int = Field(0, ge=0)
    alternatives: Tuple[Alternative, ...] = Field((), max_length=5)
    flags: Tuple[FieldFlag, ...] = ()
    explanation: str = ""
    contributing_candidate_ids: Tuple[str, ...] = ()
    evidence_zone_ids: Tuple[str, ...] = ()
    validations: Tuple[RuleOutcome, ...] = ()

    @property
    def missing(self) -> bool:
        return FieldFlag.MISSING in self.flags


class ResolutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    fields: Dict[str, ResolvedField]
    contradictions: Tuple[Contradiction, ...] = ()
    rule_outcomes: Tuple[RuleOutcome, ...] = ()
    overall_confidence: float = Field(0.0, ge=0.0, lt=100.0)

    def field(self, name: str) -> Optional[ResolvedField]:
        return self.fields.get(name)

    def values(self) -> Dict[str, Optional[str]]:
        return {name: resolved.normalized_value for name, resolved in self.fields.items()}

    @property
    def has_critical(self) -> bool:
        return any(c.severity is Severity.CRITICAL for c in self.contradictions)

    @property
    def max_severity(self) -> int:
        return max((c.severity.rank for c in self.contradictions), default=0)


__all__ = [
    "Alternative",
    "Contradiction",
    "ContradictionKind",
    "FieldFlag",
    "ResolutionResult",
    "ResolvedField",
    "Severity",
]
