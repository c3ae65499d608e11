# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

from datetime import datetime, timezone

import pytest

from docresolve.calibration import (
    BucketStats,
    CalibrationLedger,
    CalibrationSnapshot,
    ConfidenceCalibrator,
    bucket_of,
    calibration_error,
)
from docresolve.calibration.ledger import CalibrationDataPoint
from docresolve.errors import CalibrationUnavailable

AT = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _point(conf, correct, field="total", originator=None):
    return CalibrationDataPoint(
        predicted_confidence=conf, actual_correct=correct, field=field, originator_id=originator, recorded_at=AT
    )


def test_bucket_of_deciles():
    assert bucket_of(0) == 0
    assert bucket_of(9.99) == 0
    assert bucket_of(85) == 8
    assert bucket_of(99.99) == 9
    assert bucket_of(100) == 9


def test_calibration_error_of_perfect_and_overconfident_buckets():
    perfect = {9: BucketStats().add(_point(95, True)).add(_point(95, True))}
    overconfident = {9: BucketStats().add(_point(90, True)).add(_point(90, False))}
    assert calibration_error(perfect) == pytest.approx(0.05)
    assert calibration_error(overconfident) == pytest.approx(0.4)
    assert calibration_error({}) == 0.0


def test_snapshot_lookup_prefers_originator_then_field_then_global():
    points = (
        [_point(92, True, "total", "acme")] * 3
        + [_point(92, False, "total", "acme")]
        + [_point(93, False, "total")] * 4
        + [_point(94, True, "tax")] * 4
    )
    snapshot = CalibrationSnapshot.build(points)

    assert snapshot.lookup(91, "total", "acme", 4) == (pytest.approx(75.0), "originator")
    assert snapshot.lookup(91, "total", "other", 4) == (pytest.approx(37.5), "global")
    assert snapshot.lookup(91, "invoice_date", None, 4)[1] == "global_all"
    with pytest.raises(CalibrationUnavailable):
        snapshot.lookup(55, "total", None, 4)
    assert snapshot.sample_count == 12


def test_calibrator_falls_back_to_raw_below_min_samples():
    calibrator = ConfidenceCalibrator(min_samples=100)
    try:
        calibrator.record(90.0, True, "total")
        calibrator.flush()
        calibrator.wait_idle(timeout=5)
        assert calibrator.calibrate_with_source(87.5, "total") == (87.5, "raw")
        assert calibrator.calibrate(150.0, "total") == 99.99
    finally:
        calibrator.close()


def test_calibrated_value_never_reaches_100():
    calibrator = ConfidenceCalibrator(min_samples=1)
    try:
        calibrator.record(98.0, True, "total")
        calibrator.flush()
        calibrator.wait_idle(timeout=5)
        value, source = calibrator.calibrate_with_source(97.0, "total")
        assert source == "global"
        assert value == 99.99
    finally:
        calibrator.close()


def test_flush_triggers_background_rebuild_on_drift():
    calibrator = ConfidenceCalibrator(CalibrationLedger(flush_batch_size=1000), min_samples=2, drift_threshold=0.05)
    try:
        for _ in range(4):
            calibrator.record(95.0, True, "total")
        calibrator.flush()
        calibrator.wait_idle(timeout=5)
        first = calibrator.snapshot
        assert first.sample_count == 4
        assert calibrator.calibrate_with_source(95.0, "total") == (pytest.approx(99.99), "global")

        # small batch that barely moves the error: no rebuild
        calibrator.record(95.0, True, "total")
        calibrator.flush()
        calibrator.wait_idle(timeout=5)
        assert calibrator.snapshot is first
        assert calibrator.needs_recalibration() is False

        # a burst of wrong answers in the same decile drifts the error past the threshold
        for _ in range(5):
            calibrator.record(95.0, False, "total")
        calibrator.flush()
        calibrator.wait_idle(timeout=5)
        assert calibrator.snapshot is not first
        assert calibrator.snapshot.sample_count == 10
        assert calibrator.calibrate_with_source(95.0, "total") == (pytest.approx(50.0), "global")
    finally:
        calibrator.close()


def test_ledger_batches_and_persists(tmp_path):
    path = tmp_path / "ledger.jsonl"
    ledger = CalibrationLedger(path, flush_batch_size=2)

    ledger.append(90.0, True, "total", "acme", AT)
    assert len(ledger) == 0
    assert ledger.pending_count == 1
    ledger.append(40.0, False, "tax", None, AT)
    assert len(ledger) == 2
    assert ledger.pending_count == 0

    reloaded = CalibrationLedger(path)
    assert [p.field for p in reloaded.points()] == ["total", "tax"]
    assert reloaded.points()[0].originator_id == "acme"


def test_ledger_skips_corrupt_lines(tmp_path):
    path = tmp_path / "ledger.jsonl"
    path.write_text(_point(80, True).model_dump_json() + "\n{not json\n\n", encoding="utf-8")

    assert len(CalibrationLedger(path)) == 1


def test_stats_and_export():
    calibrator = ConfidenceCalibrator(min_samples=1)
    try:
        calibrator.record(91.0, True, "total", recorded_at=AT)
        calibrator.record(15.0, False, "tax", recorded_at=AT)
        calibrator.flush()
        calibrator.wait_idle(timeout=5)

        stats = calibrator.stats()
        assert stats["samples"] == 2
        assert stats["ledger_samples"] == 2
        assert stats["pending_samples"] == 0
        assert set(stats["buckets"]) == {"1", "9"}
        assert stats["needs_recalibration"] is False
        exported = calibrator.export()
        assert exported[0]["field"] == "total"
        assert exported[1]["actual_correct"] is False
        assert calibrator.sample_count() == 2
    finally:
        calibrator.close()
