"""Deterministic human-readable explanations for resolved fields."""
from __future__ import annotations

from typing import Iterable, Sequence

from ..extraction.candidates import CandidateGroup
from ..rules.models import RuleOutcome, RuleStatus
from .models import Alternative


def confidence_tier(confidence: float) -> str:
    if confidence >= 95.0:
        return "very confident"
    if confidence >= 85.0:
        return "confident"
    if confidence >= 70.0:
        return "moderately confident"
    return "low confidence"


def explain_missing(field: str) -> str:
    return f"{field}: no candidate found in any recognition pass; marked missing (confidence 0.00)."


def explain_field(
    field: str,
    group: CandidateGroup,
    *,
    boosted: float,
    calibrated: float,
    calibration_source: str,
    penalty: float,
    confidence: float,
    validations: Iterable[RuleOutcome] = (),
    alternatives: Sequence[Alternative] = (),
) -> str:
    """Build the explanation text. Same inputs always give the same string."""

    evidence = sorted(group.evidence, key=lambda e: (e.strategy, e.pass_index, e.zone_type.value, e.zone_id))
    sources = ", ".join(
        f"{e.strategy} (pass {e.pass_index}, {e.zone_type.value} zone, {e.raw_confidence:.2f})" for e in evidence
    )
    parts = [
        f"{field} = {group.normalized_value!r} ({confidence_tier(confidence)}, {confidence:.2f}).",
        f"Evidence: {sources}.",
        f"Raw {group.raw_confidence:.2f}, {group.independent_sources} independent source(s), boosted {boosted:.2f}.",
    ]
    if calibration_source == "raw":
        parts.append("Calibration unavailable; raw confidence kept.")
    else:
        parts.append(f"Calibrated {calibrated:.2f} from {calibration_source} bucket.")
    checked = [o for o in validations if o.status is not RuleStatus.SKIPPED]
    for outcome in sorted(checked, key=lambda o: o.rule_id):
        parts.append(f"Rule {outcome.rule_id}: {outcome.status.value} ({outcome.message}).")
    if penalty:
        parts.append(f"Penalty -{penalty:.2f}.")
    if alternatives:
        listed = ", ".join(f"{a.normalized_value!r} {a.confidence:.2f}" for a in alternatives)
        parts.append(f"Alternatives: {listed}.")
    return " ".join(parts)


__all__ = ["confidence_tier", "explain_field", "explain_missing"]
