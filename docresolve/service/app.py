# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""FastAPI surface for reviewers.

Request bodies are validated against :mod:`docresolve.api_spec` with
``jsonschema`` and domain errors are mapped onto status codes: unknown case or
document 404, stale version 409, illegal transition or bad argument 422,
schema violation 400.
"""
import functools
from typing import Any, Dict, Optional

from jsonschema import Draft202012Validator, ValidationError

from .._version import __version__
from ..api_spec import DECIDE_REQUEST_SCHEMA_V1, REOCR_REQUEST_SCHEMA_V1, TRANSITION_REQUEST_SCHEMA_V1
from ..errors import (
    CaseNotFound,
    ConcurrentTransitionConflict,
    DocresolveError,
    DocumentNotFound,
    IllegalTransition,
    IngestError,
    ProfileConfigError,
)
from ..logging_utils import configure_logging, get_logger, log_event, utc_now
from ..pipeline import DocumentPipeline, build_pipeline
from ..review.cases import ReviewCase
from ..review.state_machine import ReviewAction, ReviewState
from ..utils.json_utils import json_ready

__all__ = ["create_app", "case_payload"]

logger = get_logger("api")

_VALIDATORS = {
    "decide": Draft202012Validator(DECIDE_REQUEST_SCHEMA_V1),
    "transition": Draft202012Validator(TRANSITION_REQUEST_SCHEMA_V1),
    "reocr": Draft202012Validator(REOCR_REQUEST_SCHEMA_V1),
}


def case_payload(case: ReviewCase) -> Dict[str, Any]:
    return json_ready(case)


def _queue_entry(case: ReviewCase) -> Dict[str, Any]:
    return {
        "case_id": case.case_id,
        "document_id": case.document_id,
        "state": case.state.value,
        "version": case.version,
        "severity": case.severity_rank,
        "overall_confidence": case.resolution.overall_confidence,
        "created_at": case.created_at.isoformat(),
        "reasons": list(case.gate.reasons),
    }


def create_app(pipeline: Optional[DocumentPipeline] = None):
    try:
        from fastapi import FastAPI, HTTPException, Request
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("FastAPI is missing. Install with `pip install -e '.[api]'`.") from exc

    try:
        import anyio
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("anyio is required (it is installed with FastAPI).") from exc

    if pipeline is None:
        pipeline = build_pipeline()
        configure_logging(pipeline.settings.logging.level, pipeline.settings.logging.format)
    cases = pipeline.cases

    def _validate(kind: str, payload: Any) -> None:
        try:
            _VALIDATORS[kind].validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc

    def _http_error(exc: Exception) -> HTTPException:
        if isinstance(exc, (CaseNotFound, DocumentNotFound)):
            status = 404
        elif isinstance(exc, ConcurrentTransitionConflict):
            status = 409
        elif isinstance(exc, (IllegalTransition, ProfileConfigError, IngestError, ValueError)):
            status = 422
        else:
            status = 500
        log_event(
            logger,
            "request_failed",
            {"status": status, "error": f"{type(exc).__name__}: {exc}"},
            level="warning" if status < 500 else "error",
        )
        return HTTPException(status_code=status, detail=str(exc))

    app = FastAPI(title="docresolve review API", version=__version__)

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {
            "ok": True,
            "version": __version__,
            "engine": pipeline.orchestrator.engine.name,
            "review_mode": pipeline.gate.mode.value,
            "rules_version": pipeline.rule_engine.ruleset.version,
            "queue": cases.stats(),
            "calibration": {"samples": pipeline.calibrator.sample_count()},
        }

    @app.post("/documents")
    async def process_document(
        request: Request, document_id: Optional[str] = None, originator_id: Optional[str] = None
    ) -> Dict[str, Any]:
        data = await request.body()
        try:
            run = await anyio.to_thread.run_sync(
                functools.partial(pipeline.process, data, document_id=document_id, originator_id=originator_id)
            )
        except DocresolveError as exc:
            raise _http_error(exc) from exc
        return json_ready(run.summary())

    @app.get("/cases/{case_id}")
    def get_case(case_id: str) -> Dict[str, Any]:
        try:
            return case_payload(cases.get(case_id))
        except CaseNotFound as exc:
            raise _http_error(exc) from exc

    @app.get("/queue")
    def queue() -> Dict[str, Any]:
        return {"cases": [_queue_entry(case) for case in cases.queue()], "stats": cases.stats()}

    @app.post("/cases/{case_id}/decide")
    def decide(case_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        _validate("decide", payload)
        try:
            case = cases.decide(
                case_id,
                payload["decision"],
                actor=payload["actor"],
                at=utc_now(),
                expected_version=payload.get("expected_version"),
                reason=payload.get("reason"),
            )
        except (DocresolveError, ValueError) as exc:
            raise _http_error(exc) from exc
        if case.state is ReviewState.APPROVED:
            pipeline.record_ground_truth(case.resolution, payload.get("corrections"), case.originator_id)
        return case_payload(case)

    @app.post("/cases/{case_id}/transition")
    def transition(case_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        _validate("transition", payload)
        try:
            case = cases.transition(
                case_id,
                ReviewAction(payload["action"]),
                actor=payload["actor"],
                at=utc_now(),
                expected_version=payload.get("expected_version"),
                reason=payload.get("reason"),
            )
        except (DocresolveError, ValueError) as exc:
            raise _http_error(exc) from exc
        return case_payload(case)

    @app.post("/cases/{case_id}/reocr")
    def reocr(case_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        _validate("reocr", payload)
        try:
            case = pipeline.reocr(
                case_id,
                payload["zone"],
                payload["profile"],
                actor=payload.get("actor", "reviewer"),
                expected_version=payload.get("expected_version"),
            )
        except (DocresolveError, ValueError) as exc:
            raise _http_error(exc) from exc
        return case_payload(case)

    return app
