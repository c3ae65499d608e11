# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Consensus field resolution.

For each schema field the candidate groups are ranked by boosted confidence
(raw confidence plus a capped bonus per additional independent source), the
winner is passed through the calibrator, cross-field rules are evaluated over
the winning normalized values, and every failed rule subtracts its penalty
from the fields it involves. The result is a pure function of the candidate
set, the calibration snapshot, the rule set and ``now``.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..calibration.calibrator import SOURCE_RAW, ConfidenceCalibrator
from ..config import ResolutionSettings
from ..errors import NoCandidatesError
from ..extraction.candidates import CandidateGroup, CandidateSet, consensus_boost
from ..extraction.schema import DocumentSchema, FieldKind, FieldSpec
from ..logging_utils import get_logger, log_event
from ..rules.engine import RuleEngine
from ..rules.models import RuleOutcome, RuleSeverity, RuleStatus
from .explain import explain_field, explain_missing
from .models import (
    Alternative,
    Contradiction,
    ContradictionKind,
    FieldFlag,
    ResolutionResult,
    ResolvedField,
    Severity,
)

logger = get_logger("resolution")

MAX_CONFIDENCE = 99.99


def clamp_confidence(value: float) -> float:
    return max(0.0, min(MAX_CONFIDENCE, float(value)))


class _Selection:
    __slots__ = ("spec", "ranked", "boosted")

    def __init__(self, spec: FieldSpec, ranked: Sequence[CandidateGroup], boosted: Sequence[float]) -> None:
        self.spec = spec
        self.ranked = tuple(ranked)
        self.boosted = tuple(boosted)

    @property
    def top(self) -> CandidateGroup:
        return self.ranked[0]


def _as_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        return None


def _as_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


class FieldResolver:
    def __init__(
        self,
        schema: DocumentSchema,
        *,
        rule_engine: Optional[RuleEngine] = None,
        calibrator: Optional[ConfidenceCalibrator] = None,
        settings: Optional[ResolutionSettings] = None,
    ) -> None:
        self.schema = schema
        self.rule_engine = rule_engine or RuleEngine()
        self.calibrator = calibrator
        self.settings = settings or ResolutionSettings()

    def _select(self, spec: FieldSpec, candidates: CandidateSet) -> _Selection:
        groups = candidates.groups(spec.name)
        if not groups:
            raise NoCandidatesError(spec.name)
        scored = [(group.boosted(self.settings.boost_per_source, self.settings.boost_cap), group) for group in groups]
        scored.sort(key=lambda item: (-item[0], item[1].normalized_value))
        return _Selection(spec, [g for _, g in scored], [b for b, _ in scored])

    def _calibrate(self, boosted: float, field: str, originator_id: Optional[str]) -> Tuple[float, str]:
        if self.calibrator is None:
            return boosted, SOURCE_RAW
        return self.calibrator.calibrate_with_source(boosted, field, originator_id)

    def _alternatives(self, selection: _Selection) -> Tuple[Alternative, ...]:
        out: List[Alternative] = []
        for group, boosted in list(zip(selection.ranked, selection.boosted))[1 : 1 + self.settings.max_alternatives]:
            out.append(
                Alternative(
                    value=group.raw_value,
                    normalized_value=group.normalized_value,
                    confidence=round(clamp_confidence(boosted), 2),
                    sources=group.independent_sources,
                    candidate_ids=group.candidate_ids,
                )
            )
        return tuple(out)

    def _disagreement(self, selection: _Selection) -> Optional[Contradiction]:
        if len(selection.ranked) < 2:
            return None
        margin = selection.boosted[0] - selection.boosted[1]
        if margin >= self.settings.disagreement_margin:
            return None
        first, second = selection.ranked[0], selection.ranked[1]
        return Contradiction(
            kind=ContradictionKind.CANDIDATE_DISAGREEMENT,
            fields=(selection.spec.name,),
            severity=Severity.WARNING,
            message=(
                f"{selection.spec.name}: {first.normalized_value!r} and {second.normalized_value!r} "
                f"are within {margin:.2f} of each other"
            ),
        )

    def _value_flags(self, spec: FieldSpec, value: Optional[str], today: date) -> List[FieldFlag]:
        flags: List[FieldFlag] = []
        if spec.kind is FieldKind.AMOUNT:
            amount = _as_decimal(value)
            if amount is not None and amount <= 0:
                flags.append(FieldFlag.INVALID_AMOUNT)
            if amount is not None and amount > Decimal(str(self.settings.large_amount_threshold)):
                flags.append(FieldFlag.UNUSUALLY_LARGE_AMOUNT)
        elif spec.kind is FieldKind.DATE:
            parsed = _as_date(value)
            if parsed is not None and parsed > today:
                flags.append(FieldFlag.FUTURE_DATE)
        return flags

    def resolve(
        self,
        candidates: CandidateSet,
        *,
        originator_id: Optional[str] = None,
        now: Optional[datetime] = None,
        only_fields: Optional[Iterable[str]] = None,
        previous: Optional[ResolutionResult] = None,
        validate: bool = True,
    ) -> ResolutionResult:
        """Resolve every schema field, or only ``only_fields``.

        With ``previous`` and ``only_fields`` the fields outside ``only_fields``
        are carried over as the very same objects, and only the recomputed
        fields receive new rule penalties.
        """

        when = now or datetime.now(timezone.utc)
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        targets: Set[str] = set(self.schema.names) if only_fields is None else set(only_fields) & set(self.schema.names)

        selections: Dict[str, _Selection] = {}
        missing: List[str] = []
        for spec in self.schema.fields:
            if spec.name not in targets:
                continue
            try:
                selections[spec.name] = self._select(spec, candidates)
            except NoCandidatesError:
                if spec.required:
                    missing.append(spec.name)

        values: Dict[str, Optional[str]] = {}
        if previous is not None:
            values.update({name: f.normalized_value for name, f in previous.fields.items() if name not in targets})
        values.update({name: sel.top.normalized_value for name, sel in selections.items()})
        values.update({name: None for name in missing})

        outcomes: Tuple[RuleOutcome, ...] = self.rule_engine.evaluate(values, when) if validate else ()
        contradictions: List[Contradiction] = []
        if previous is not None:
            contradictions.extend(
                c
                for c in previous.contradictions
                if c.kind is ContradictionKind.CANDIDATE_DISAGREEMENT and not set(c.fields) & targets
            )
        for outcome in outcomes:
            if not outcome.failed:
                continue
            hard_fail = outcome.status is RuleStatus.FAIL and outcome.severity is RuleSeverity.HARD
            contradictions.append(
                Contradiction(
                    kind=ContradictionKind.RULE_FAILURE,
                    rule_id=outcome.rule_id,
                    fields=outcome.fields,
                    severity=Severity.CRITICAL if hard_fail else Severity.WARNING,
                    message=outcome.message,
                )
            )

        today = when.date()
        resolved: Dict[str, ResolvedField] = {}
        for spec in self.schema.fields:
            name = spec.name
            if name not in targets:
                if previous is not None and name in previous.fields:
                    resolved[name] = previous.fields[name]
                continue
            validations = tuple(o for o in outcomes if name in o.fields)
            failed = [o for o in validations if o.failed]
            if name in missing:
                flags = [FieldFlag.MISSING]
                if failed:
                    flags.append(FieldFlag.CROSS_VALIDATION_FAILED)
                resolved[name] = ResolvedField(
                    field=name,
                    confidence=0.0,
                    flags=tuple(flags),
                    explanation=explain_missing(name),
                    validations=validations,
                )
                continue
            if name not in selections:
                continue
            selection = selections[name]
            top = selection.top
            boosted = clamp_confidence(selection.boosted[0])
            calibrated, source = self._calibrate(boosted, name, originator_id)
            penalty = sum(o.penalty for o in failed)
            confidence = round(clamp_confidence(calibrated - penalty), 2)
            alternatives = self._alternatives(selection)
            disagreement = self._disagreement(selection)
            if disagreement is not None:
                contradictions.append(disagreement)

            flags = self._value_flags(spec, top.normalized_value, today)
            if confidence < self.settings.low_confidence_threshold:
                flags.insert(0, FieldFlag.LOW_CONFIDENCE)
            if failed:
                flags.append(FieldFlag.CROSS_VALIDATION_FAILED)
            if disagreement is not None:
                flags.append(FieldFlag.CANDIDATE_DISAGREEMENT)

            resolved[name] = ResolvedField(
                field=name,
                value=top.raw_value,
                normalized_value=top.normalized_value,
                confidence=confidence,
                raw_confidence=round(clamp_confidence(top.raw_confidence), 4),
                boosted_confidence=round(boosted, 4),
                calibrated_confidence=round(clamp_confidence(calibrated), 4),
                calibration_source=source,
                penalty=round(penalty, 4),
                independent_sources=top.independent_sources,
                alternatives=alternatives,
                flags=tuple(flags),
                explanation=explain_field(
                    name,
                    top,
                    boosted=boosted,
                    calibrated=calibrated,
                    calibration_source=source,
                    penalty=penalty,
                    confidence=confidence,
                    validations=validations,
                    alternatives=alternatives,
                ),
                contributing_candidate_ids=top.candidate_ids,
                evidence_zone_ids=top.zone_ids,
                validations=validations,
            )

        overall = (
            round(sum(f.confidence for f in resolved.values()) / len(resolved), 2) if resolved else 0.0
        )
        result = ResolutionResult(
            fields=resolved,
            contradictions=tuple(contradictions),
            rule_outcomes=outcomes,
            overall_confidence=clamp_confidence(overall),
        )
        log_event(
            logger,
            "fields_resolved",
            {
                "fields": len(resolved),
                "recomputed": sorted(targets & set(resolved)),
                "missing": missing,
                "contradictions": len(result.contradictions),
                "critical": result.has_critical,
                "overall_confidence": result.overall_confidence,
            },
            level="debug",
        )
        return result


def affected_fields(previous: ResolutionResult, zone_ids: Iterable[str]) -> Set[str]:
    """Fields of ``previous`` whose winning evidence came from one of ``zone_ids``."""

    wanted = set(zone_ids)
    return {name for name, f in previous.fields.items() if wanted & set(f.evidence_zone_ids)}


__all__ = [
    "FieldResolver",
    "MAX_CONFIDENCE",
    "affected_fields",
    "clamp_confidence",
    "consensus_boost",
]
