# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

import random
from datetime import datetime, timezone

import pytest

from docresolve.extraction.schema import default_schema
from docresolve.gate import ApprovalGate, GateOutcome, ReviewMode
from docresolve.resolution import Contradiction, ContradictionKind, ResolutionResult, ResolvedField, Severity
from docresolve.rules import RuleOutcome, RuleSeverity, RuleStatus

AT = datetime(2024, 4, 1, tzinfo=timezone.utc)
GATED = ("invoice_number", "invoice_date", "vendor_name", "total")


def _result(confidence=95.0, overrides=None, contradictions=(), outcomes=()):
    confidences = {name: confidence for name in GATED}
    confidences.update(overrides or {})
    fields = {
        name: ResolvedField(field=name, value="x", normalized_value="x", confidence=value)
        for name, value in confidences.items()
        if value is not None
    }
    return ResolutionResult(fields=fields, contradictions=tuple(contradictions), rule_outcomes=tuple(outcomes))


def _critical(rule_id="total_equals_subtotal_plus_tax"):
    return Contradiction(
        kind=ContradictionKind.RULE_FAILURE,
        rule_id=rule_id,
        fields=("total",),
        severity=Severity.CRITICAL,
        message="total differs",
    )


def test_gated_fields_are_required_or_critical():
    assert default_schema().gated_fields() == GATED


@pytest.mark.parametrize(
    "mode, confidence, outcome",
    [
        ("fast", 61.0, GateOutcome.AUTO_APPROVE),
        ("fast", 59.0, GateOutcome.BLOCK),
        ("balanced", 80.0, GateOutcome.AUTO_APPROVE),
        ("balanced", 79.99, GateOutcome.BLOCK),
        ("strict", 92.0, GateOutcome.AUTO_APPROVE),
        ("strict", 91.0, GateOutcome.BLOCK),
    ],
)
def test_mode_thresholds(mode, confidence, outcome):
    gate = ApprovalGate(default_schema(), mode=mode)
    decision = gate.decide(_result(overrides={"vendor_name": confidence}), at=AT)
    assert decision.outcome is outcome
    assert decision.mode is ReviewMode(mode)
    assert decision.decided_at == AT


def test_critical_contradiction_always_blocks():
    gate = ApprovalGate(default_schema())
    rng = random.Random(7)
    for _ in range(50):
        mode = rng.choice(list(ReviewMode))
        result = _result(confidence=rng.uniform(0.0, 99.99), contradictions=[_critical()])
        assert gate.decide(result, mode=mode, at=AT).outcome is GateOutcome.BLOCK


def test_warning_contradictions_do_not_block():
    warning = Contradiction(
        kind=ContradictionKind.CANDIDATE_DISAGREEMENT,
        fields=("invoice_number",),
        severity=Severity.WARNING,
        message="close candidates",
    )
    decision = ApprovalGate(default_schema()).decide(_result(contradictions=[warning]), at=AT)
    assert decision.approved


def test_missing_gated_field_counts_as_zero():
    decision = ApprovalGate(default_schema(), mode="fast").decide(_result(overrides={"total": None}), at=AT)
    assert decision.outcome is GateOutcome.BLOCK
    assert any("total confidence 0.00" in reason for reason in decision.reasons)


def test_every_check_is_recorded_after_first_failure():
    failed = RuleOutcome(
        rule_id="invoice_date_not_future",
        kind="date_not_future",
        severity=RuleSeverity.HARD,
        status=RuleStatus.FAIL,
        fields=("invoice_date",),
        message="in the future",
    )
    result = _result(
        overrides={"invoice_number": 40.0},
        contradictions=[_critical("invoice_date_not_future")],
        outcomes=[failed],
    )

    decision = ApprovalGate(default_schema()).decide(result, at=AT)

    assert [check.name for check in decision.checks] == ["hard_rules", "critical_contradictions", "field_confidence"]
    assert not any(check.passed for check in decision.checks)
    assert len(decision.reasons) == 3
    assert decision.checks[2].detail == "invoice_number"


def test_soft_rule_failure_does_not_block():
    soft = RuleOutcome(
        rule_id="invoice_number_format",
        kind="identifier_format",
        severity=RuleSeverity.SOFT,
        status=RuleStatus.FAIL,
    )
    assert ApprovalGate(default_schema()).decide(_result(outcomes=[soft]), at=AT).approved


def test_custom_thresholds_and_unknown_mode():
    gate = ApprovalGate(default_schema(), mode="STRICT", thresholds={"strict": 97.5})
    assert gate.mode is ReviewMode.STRICT
    assert gate.threshold() == 97.5
    assert gate.threshold("fast") == 60.0
    with pytest.raises(ValueError):
        ApprovalGate(default_schema(), mode="reckless")
    with pytest.raises(ValueError):
        gate.decide(_result(), mode="reckless")
