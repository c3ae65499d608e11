# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

from datetime import datetime, timezone

import pytest

from docresolve.calibration.calibrator import bucket_of
from docresolve.cancellation import CancellationToken
from docresolve.config import Settings
from docresolve.errors import CancellationRequested, CaseNotFound, ConcurrentTransitionConflict, DocumentNotFound
from docresolve.gate import GateOutcome
from docresolve.pipeline import DocumentPipeline
from docresolve.recognition.mocks import ScriptedEngine
from docresolve.resolution import Severity
from docresolve.review import InMemorySink, ReviewState, SnapshotDispatcher

WRONG_TOTALS = "Subtotal: $100.00\nTax: $8.00\nTotal: $120.00"


def _settings():
    settings = Settings()
    settings.orchestrator.early_stop = False
    return settings


def _pipeline(script, dispatcher=None):
    return DocumentPipeline(ScriptedEngine(script), settings=_settings(), dispatcher=dispatcher)


def test_consistent_bill_is_auto_approved_and_exported(page_png, bill_script, now):
    dispatcher = SnapshotDispatcher(InMemorySink(), retry_delay_sec=0)
    pipeline = _pipeline(bill_script, dispatcher)

    run = pipeline.process(page_png, document_id="doc-1", now=now)
    dispatcher.join(timeout=5)
    dispatcher.close()

    assert run.gate.outcome is GateOutcome.AUTO_APPROVE
    assert run.case_id is None
    assert run.resolution.values()["invoice_number"] == "INV-1001"
    assert run.resolution.values()["total"] == "108.00"
    assert dispatcher.delivered == [run.snapshot_id]
    assert dispatcher.sink.snapshots[0].decision == "auto_approved"
    assert len(pipeline.cases) == 0
    assert pipeline.run("doc-1") is run

    summary = run.summary()
    assert summary["outcome"] == "auto_approve"
    assert summary["recognition"]["failed"] == 0
    assert summary["fields"]["invoice_date"]["value"] == "2024-03-05"


def test_every_zone_of_every_variant_is_recognized(page_png, bill_script, now):
    pipeline = _pipeline(bill_script)

    run = pipeline.process(page_png, document_id="doc-1", now=now)

    zone_types = [z.artifact.zone_type.value for z in run.zones]
    assert len(pipeline.orchestrator.engine.calls) == len(run.zones)
    assert {key for key, _ in pipeline.orchestrator.engine.calls} == set(zone_types)
    assert run.next_pass_index == len(run.zones)
    assert len(run.recognition.artifacts) == len(run.zones)


def test_wrong_total_creates_review_case(page_png, bill_script, now):
    pipeline = _pipeline(dict(bill_script, totals=WRONG_TOTALS))

    run = pipeline.process(page_png, document_id="doc-2", now=now)

    assert run.gate.outcome is GateOutcome.BLOCK
    assert run.snapshot_id is None
    case = pipeline.cases.get(run.case_id)
    assert case.state is ReviewState.PENDING
    assert case.document_id == "doc-2"
    assert case.created_at == now
    assert any(
        c.rule_id == "total_equals_subtotal_plus_tax" and c.severity is Severity.CRITICAL
        for c in case.resolution.contradictions
    )
    assert any("total_equals_subtotal_plus_tax" in reason for reason in case.gate.reasons)
    assert pipeline.cases.queue() == [case]


def test_reocr_recomputes_only_totals_fields(page_png, bill_script, now):
    script = dict(bill_script, totals=WRONG_TOTALS)
    script[("totals", "numbers-only-totals")] = bill_script["totals"]
    pipeline = _pipeline(script)
    run = pipeline.process(page_png, document_id="doc-3", now=now)
    before = pipeline.cases.get(run.case_id)

    after = pipeline.reocr(run.case_id, "totals", "numbers-only-totals", actor="alice", at=now, expected_version=1)

    assert after.version == 2
    assert after.state is ReviewState.PENDING
    revision = after.revisions[0]
    assert revision.actor == "alice"
    assert revision.fields == ("subtotal", "tax", "total")
    assert "numbers-only-totals" in revision.note
    for name in ("invoice_number", "invoice_date", "vendor_name"):
        assert after.resolution.field(name) is before.resolution.field(name)
    total = after.resolution.field("total")
    assert total.normalized_value == "108.00"
    assert "120.00" in [alt.normalized_value for alt in total.alternatives]
    assert not after.resolution.has_critical
    assert ("totals", "numbers-only-totals") in pipeline.orchestrator.engine.calls
    assert pipeline.run("doc-3").next_pass_index == run.next_pass_index


def test_reocr_errors(page_png, bill_script, now):
    pipeline = _pipeline(dict(bill_script, totals=WRONG_TOTALS))
    run = pipeline.process(page_png, document_id="doc-4", now=now)

    with pytest.raises(CaseNotFound):
        pipeline.reocr("case-missing", "totals", "totals-block", actor="a", at=now)
    with pytest.raises(ValueError):
        pipeline.reocr(run.case_id, "full_page", "totals-block", actor="a", at=now)
    with pytest.raises(ConcurrentTransitionConflict):
        pipeline.reocr(run.case_id, "totals", "totals-block", actor="a", at=now, expected_version=7)


def test_unknown_document():
    pipeline = _pipeline({})
    with pytest.raises(DocumentNotFound):
        pipeline.run("doc-missing")


def test_cancelled_run_raises_with_partial_result(page_png, bill_script, now):
    pipeline = _pipeline(bill_script)
    token = CancellationToken()
    token.cancel("operator abort")

    with pytest.raises(CancellationRequested) as excinfo:
        pipeline.process(page_png, document_id="doc-5", cancel=token, now=now)

    assert excinfo.value.reason == "operator abort"
    assert excinfo.value.partial.document_id == "doc-5"
    assert pipeline.orchestrator.engine.calls == []
    with pytest.raises(DocumentNotFound):
        pipeline.run("doc-5")


def test_ground_truth_feeds_calibration(page_png, bill_script, now):
    pipeline = _pipeline(bill_script)
    run = pipeline.process(page_png, document_id="doc-6", now=now)
    resolved = [name for name, f in run.resolution.fields.items() if not f.missing]

    recorded = pipeline.record_ground_truth(run.resolution, {"total": "180.00"})
    pipeline.calibrator.flush()
    pipeline.calibrator.wait_idle(timeout=5)

    assert recorded == len(resolved)
    points = {p.field: p for p in pipeline.calibrator.ledger.points()}
    assert points["total"].actual_correct is False
    assert points["invoice_number"].actual_correct is True
    for name in resolved:
        assert points[name].predicted_confidence == run.resolution.fields[name].boosted_confidence
    pipeline.calibrator.close()


def test_ground_truth_lands_in_the_bucket_calibration_reads(page_png, bill_script, now):
    settings = _settings()
    settings.calibration.min_samples = 4
    pipeline = DocumentPipeline(ScriptedEngine(bill_script), settings=settings)
    calibrator = pipeline.calibrator
    boosted = pipeline.process(page_png, document_id="doc-7", now=now).resolution.fields["total"].boosted_confidence
    for correct in (True, False, True, False):
        calibrator.record(boosted, correct, "total")
    calibrator.flush()
    calibrator.wait_idle(timeout=5)
    assert calibrator.calibrate_with_source(boosted, "total") == (50.0, "global")

    total = pipeline.process(page_png, document_id="doc-8", now=now).resolution.fields["total"]
    assert total.calibration_source == "global"
    assert total.calibrated_confidence == 50.0
    assert total.confidence < total.boosted_confidence == boosted

    pipeline.record_ground_truth(pipeline.run("doc-8").resolution)
    calibrator.flush()
    calibrator.wait_idle(timeout=5)

    latest = [p for p in calibrator.ledger.points() if p.field == "total"][-1]
    assert latest.predicted_confidence == boosted
    assert bucket_of(latest.predicted_confidence) == bucket_of(boosted)
    snapshot = calibrator.recalibrate_now()
    assert snapshot.by_field[("total", bucket_of(boosted))].count == 5
    assert calibrator.calibrate(boosted, "total") == 60.0
    calibrator.close()


def test_naive_and_aware_timestamps_share_one_queue(page_png, bill_script):
    pipeline = _pipeline(dict(bill_script, totals=WRONG_TOTALS))

    older = pipeline.process(page_png, document_id="doc-a", now=datetime(2024, 4, 1, 12, 0))
    newer = pipeline.process(page_png, document_id="doc-b")

    assert older.gate.decided_at == datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)
    queue = pipeline.cases.queue()
    assert [case.document_id for case in queue] == ["doc-a", "doc-b"]
    assert all(case.created_at.tzinfo is not None for case in queue)
    assert pipeline.cases.get(newer.case_id).gate.decided_at.tzinfo is not None
