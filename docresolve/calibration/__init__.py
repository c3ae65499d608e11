"""Confidence calibration: ground-truth ledger and bucketed calibrator."""

from .calibrator import (
    BucketStats,
    CalibrationSnapshot,
    ConfidenceCalibrator,
    bucket_of,
    calibration_error,
)
from .ledger import CalibrationDataPoint, CalibrationLedger

__all__ = [
    "BucketStats",
    "CalibrationDataPoint",
    "CalibrationLedger",
    "CalibrationSnapshot",
    "ConfidenceCalibrator",
    "bucket_of",
    "calibration_error",
]
