"""Field resolution: consensus, calibration, validation and explanations."""

from .early_stop import CriticalFieldEarlyStop
from .explain import confidence_tier, explain_field, explain_missing
from .models import (
    Alternative,
    Contradiction,
    ContradictionKind,
    FieldFlag,
    ResolutionResult,
    ResolvedField,
    Severity,
)
from .resolver import FieldResolver, affected_fields, clamp_confidence, consensus_boost

__all__ = [
    "Alternative",
    "Contradiction",
    "ContradictionKind",
    "CriticalFieldEarlyStop",
    "FieldFlag",
    "FieldResolver",
    "ResolutionResult",
    "ResolvedField",
    "Severity",
    "affected_fields",
    "clamp_confidence",
    "confidence_tier",
    "consensus_boost",
    "explain_field",
    "explain_missing",
]
