# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Runtime settings.

Settings are layered: pydantic defaults, then an optional YAML file
(``DOCRESOLVE_CONFIG`` or an explicit path), then ``DOCRESOLVE_*`` environment
overrides for the knobs operators typically tune per deployment.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_truthy(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


class OrchestratorSettings(BaseModel):
    max_workers: int = Field(4, ge=1)
    document_budget_sec: float = Field(120.0, gt=0)
    max_variants: int = Field(3, ge=1)
    min_readiness: float = Field(0.0, ge=0.0, le=1.0)
    early_stop: bool = True
    early_stop_threshold: float = Field(95.0, ge=0.0, le=100.0)
    # None means "use the schema's critical fields"
    critical_fields: Optional[List[str]] = None


class ResolutionSettings(BaseModel):
    boost_per_source: float = Field(10.0, ge=0.0)
    boost_cap: float = Field(20.0, ge=0.0)
    max_alternatives: int = Field(5, ge=0)
    disagreement_margin: float = Field(5.0, ge=0.0)
    low_confidence_threshold: float = Field(70.0, ge=0.0, le=100.0)
    large_amount_threshold: float = Field(1_000_000.0, gt=0.0)
    max_candidates_per_field: int = Field(8, ge=1)


class CalibrationSettings(BaseModel):
    min_samples: int = Field(100, ge=1)
    drift_threshold: float = Field(0.05, ge=0.0)
    flush_batch_size: int = Field(50, ge=1)
    ledger_path: Optional[str] = None


class GateSettings(BaseModel):
    mode: str = "balanced"
    thresholds: Dict[str, float] = Field(
        default_factory=lambda: {"fast": 60.0, "balanced": 80.0, "strict": 92.0}
    )


class ReviewSettings(BaseModel):
    max_reopens: int = Field(1, ge=0)
    export_max_attempts: int = Field(3, ge=1)
    export_retry_delay_sec: float = Field(0.5, ge=0.0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    resolution: ResolutionSettings = Field(default_factory=ResolutionSettings)
    calibration: CalibrationSettings = Field(default_factory=CalibrationSettings)
    gate: GateSettings = Field(default_factory=GateSettings)
    review: ReviewSettings = Field(default_factory=ReviewSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    schema_path: Optional[str] = None
    lexicon_path: Optional[str] = None
    profiles_path: Optional[str] = None
    rules_path: Optional[str] = None


def read_yaml_mapping(path: Union[str, Path]) -> Dict[str, Any]:
    """Load a YAML (or JSON, which YAML accepts) mapping from ``path``."""

    text = Path(path).read_text(encoding="utf-8")
    loaded = yaml.safe_load(text)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return loaded


def _apply_env_overrides(settings: Settings) -> Settings:
    orch = settings.orchestrator
    orch.max_workers = max(1, _env_int("DOCRESOLVE_MAX_WORKERS", orch.max_workers))
    orch.document_budget_sec = _env_float("DOCRESOLVE_DOCUMENT_BUDGET_SEC", orch.document_budget_sec)
    orch.max_variants = max(1, _env_int("DOCRESOLVE_MAX_VARIANTS", orch.max_variants))
    orch.early_stop = _env_truthy("DOCRESOLVE_EARLY_STOP", orch.early_stop)
    orch.early_stop_threshold = _env_float("DOCRESOLVE_EARLY_STOP_THRESHOLD", orch.early_stop_threshold)

    cal = settings.calibration
    cal.min_samples = max(1, _env_int("DOCRESOLVE_CALIBRATION_MIN_SAMPLES", cal.min_samples))
    cal.drift_threshold = _env_float("DOCRESOLVE_CALIBRATION_DRIFT", cal.drift_threshold)
    cal.ledger_path = os.environ.get("DOCRESOLVE_CALIBRATION_LEDGER") or cal.ledger_path

    mode = os.environ.get("DOCRESOLVE_REVIEW_MODE")
    if mode and mode.strip():
        settings.gate.mode = mode.strip().lower()

    settings.logging.level = os.environ.get("DOCRESOLVE_LOG_LEVEL") or settings.logging.level
    settings.logging.format = os.environ.get("DOCRESOLVE_LOG_FORMAT") or settings.logging.format
    settings.rules_path = os.environ.get("DOCRESOLVE_RULES") or settings.rules_path
    return settings


def load_settings(path: Union[str, Path, None] = None, *, env: bool = True) -> Settings:
    """Build :class:`Settings` from defaults, an optional YAML file and the environment."""

    source = path if path is not None else (os.environ.get("DOCRESOLVE_CONFIG") if env else None)
    data: Dict[str, Any] = read_yaml_mapping(source) if source else {}
    settings = Settings.model_validate(data)
    if env:
        settings = _apply_env_overrides(settings)
    return settings


__all__ = [
    "CalibrationSettings",
    "GateSettings",
    "LoggingSettings",
    "OrchestratorSettings",
    "ResolutionSettings",
    "ReviewSettings",
    "Settings",
    "load_settings",
    "read_yaml_mapping",
]
