# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Approval gate: auto-approve a resolved document or route it to review.

Checks run in a fixed order (failed hard rule, critical contradiction, gated
field confidence against the mode threshold); every check is recorded in the
decision even after the first failure, so a blocked document lists all of its
reasons.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from ..extraction.schema import DocumentSchema
from ..logging_utils import as_utc, get_logger, log_event
from ..resolution.models import ResolutionResult, Severity
from ..rules.models import RuleSeverity, RuleStatus

logger = get_logger("gate")


class ReviewMode(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    STRICT = "strict"


DEFAULT_THRESHOLDS: Dict[ReviewMode, float] = {
    ReviewMode.FAST: 60.0,
    ReviewMode.BALANCED: 80.0,
    ReviewMode.STRICT: 92.0,
}


class GateOutcome(str, Enum):
    AUTO_APPROVE = "auto_approve"
    BLOCK = "block"


class GateCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    detail: str = ""


class GateDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: GateOutcome
    mode: ReviewMode
    threshold: float
    reasons: Tuple[str, ...] = ()
    checks: Tuple[GateCheck, ...] = ()
    decided_at: datetime

    @property
    def approved(self) -> bool:
        return self.outcome is GateOutcome.AUTO_APPROVE


def _coerce_mode(mode: Union[str, ReviewMode]) -> ReviewMode:
    try:
        return ReviewMode(mode.value if isinstance(mode, ReviewMode) else str(mode).strip().lower())
    except ValueError as exc:
        raise ValueError(f"unknown review mode {mode!r}; expected one of fast, balanced, strict") from exc


class ApprovalGate:
    def __init__(
        self,
        schema: DocumentSchema,
        mode: Union[str, ReviewMode] = ReviewMode.BALANCED,
        thresholds: Optional[Mapping[str, float]] = None,
    ) -> None:
        self.schema = schema
        self.mode = _coerce_mode(mode)
        self.thresholds: Dict[ReviewMode, float] = dict(DEFAULT_THRESHOLDS)
        for key, value in (thresholds or {}).items():
            self.thresholds[_coerce_mode(key)] = float(value)

    def threshold(self, mode: Union[str, ReviewMode, None] = None) -> float:
        return self.thresholds[_coerce_mode(mode) if mode is not None else self.mode]

    def decide(
        self,
        result: ResolutionResult,
        *,
        mode: Union[str, ReviewMode, None] = None,
        document_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> GateDecision:
        active_mode = _coerce_mode(mode) if mode is not None else self.mode
        threshold = self.thresholds[active_mode]
        checks: List[GateCheck] = []
        reasons: List[str] = []

        hard_failures = [
            o for o in result.rule_outcomes if o.severity is RuleSeverity.HARD and o.status is RuleStatus.FAIL
        ]
        if hard_failures:
            for outcome in hard_failures:
                reasons.append(f"hard rule {outcome.rule_id} failed: {outcome.message}")
            checks.append(GateCheck(name="hard_rules", passed=False, detail=", ".join(o.rule_id for o in hard_failures)))
        else:
            checks.append(GateCheck(name="hard_rules", passed=True))

        critical = [c for c in result.contradictions if c.severity is Severity.CRITICAL]
        if critical:
            for contradiction in critical:
                label = contradiction.rule_id or contradiction.kind.value
                reasons.append(f"critical contradiction {label} on {', '.join(contradiction.fields)}")
            checks.append(GateCheck(name="critical_contradictions", passed=False, detail=f"{len(critical)} critical"))
        else:
            checks.append(GateCheck(name="critical_contradictions", passed=True))

        below: List[str] = []
        for name in self.schema.gated_fields():
            resolved = result.field(name)
            confidence = resolved.confidence if resolved is not None else 0.0
            if confidence < threshold:
                below.append(name)
                reasons.append(f"{name} confidence {confidence:.2f} below {active_mode.value} threshold {threshold:.2f}")
        checks.append(
            GateCheck(
                name="field_confidence",
                passed=not below,
                detail=", ".join(below) if below else f"all gated fields >= {threshold:.2f}",
            )
        )

        outcome = GateOutcome.AUTO_APPROVE if all(c.passed for c in checks) else GateOutcome.BLOCK
        decision = GateDecision(
            outcome=outcome,
            mode=active_mode,
            threshold=threshold,
            reasons=tuple(reasons),
            checks=tuple(checks),
            decided_at=as_utc(at),
        )
        log_event(
            logger,
            "gate_decision",
            {
                "document_id": document_id,
                "outcome": outcome.value,
                "mode": active_mode.value,
                "threshold": threshold,
                "reasons": list(reasons),
                "overall_confidence": result.overall_confidence,
            },
        )
        return decision


__all__ = [
    "ApprovalGate",
    "DEFAULT_THRESHOLDS",
    "GateCheck",
    "GateDecision",
    "GateOutcome",
    "ReviewMode",
]
