# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Command line entry points.

Every subcommand prints a single JSON document to stdout so the output can be
piped into other tools:

* ``process``           run documents through the pipeline
* ``rules-check``       validate a rule file and optionally evaluate it
* ``calibration-stats`` summarize a calibration ledger
* ``serve``             start the review API with uvicorn
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .calibration.calibrator import ConfidenceCalibrator
from .calibration.ledger import CalibrationLedger
from .config import load_settings
from .errors import CancellationRequested, DocresolveError, RuleConfigError
from .logging_utils import configure_logging
from .pipeline import build_pipeline
from .rules.engine import evaluate_all, load_ruleset
from .utils.json_utils import json_ready


class _KeyValueAction(argparse.Action):
    """Collect ``KEY=VALUE`` pairs into a dictionary of strings."""

    def __call__(self, parser, namespace, values, option_string=None):  # type: ignore[override]
        parsed: Dict[str, str] = {}
        for value in values:
            if "=" not in value:
                raise argparse.ArgumentError(self, "Expected KEY=VALUE pairs")
            key, raw = value.split("=", 1)
            parsed[key.strip()] = raw
        setattr(namespace, self.dest, parsed)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docresolve", description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--config", help="YAML settings file (defaults to $DOCRESOLVE_CONFIG)")
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Resolve fields of one or more documents")
    process.add_argument("files", nargs="+", help="Image files (PNG, JPEG, TIFF, ...)")
    process.add_argument("--originator", dest="originator_id")
    process.add_argument("--mode", choices=["fast", "balanced", "strict"], help="Override the review mode")

    rules = sub.add_parser("rules-check", help="Validate a rule file and evaluate it against values")
    rules.add_argument("rules", help="Rule set in YAML or JSON")
    rules.add_argument(
        "--values",
        nargs="*",
        action=_KeyValueAction,
        default={},
        metavar="FIELD=VALUE",
        help="Normalized field values to evaluate the rules against",
    )

    stats = sub.add_parser("calibration-stats", help="Summarize a calibration ledger")
    stats.add_argument("ledger", nargs="?", help="JSONL ledger (defaults to the configured ledger)")
    stats.add_argument("--min-samples", type=int)

    serve = sub.add_parser("serve", help="Run the review API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--log-level", default="info")
    return parser


def _print_json(payload: Any) -> None:
    json.dump(json_ready(payload), sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")


def _handle_process(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    if args.mode:
        settings.gate.mode = args.mode
    configure_logging(settings.logging.level, settings.logging.format)
    pipeline = build_pipeline(settings=settings)
    results: List[Dict[str, Any]] = []
    status = 0
    for name in args.files:
        path = Path(name)
        try:
            run = pipeline.process(path.read_bytes(), document_id=path.name, originator_id=args.originator_id)
        except CancellationRequested as exc:
            results.append({"document_id": path.name, "error": str(exc)})
            status = 1
            continue
        except (DocresolveError, OSError) as exc:
            results.append({"document_id": path.name, "error": f"{type(exc).__name__}: {exc}"})
            status = 1
            continue
        results.append(run.summary())
    _print_json({"documents": results})
    return status


def _handle_rules_check(args: argparse.Namespace) -> int:
    try:
        ruleset = load_ruleset(args.rules)
    except RuleConfigError as exc:
        _print_json({"ok": False, "error": str(exc)})
        return 2
    payload: Dict[str, Any] = {
        "ok": True,
        "version": ruleset.version,
        "rules": [{"id": r.id, "kind": r.kind, "severity": r.severity, "enabled": r.enabled} for r in ruleset.rules],
    }
    if args.values:
        payload["outcomes"] = [o.model_dump(mode="json") for o in evaluate_all(ruleset, args.values)]
    _print_json(payload)
    return 0


def _handle_calibration_stats(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    ledger_path = args.ledger or settings.calibration.ledger_path
    if not ledger_path:
        _print_json({"ok": False, "error": "no ledger given and none configured"})
        return 2
    calibrator = ConfidenceCalibrator(
        CalibrationLedger(ledger_path),
        min_samples=args.min_samples or settings.calibration.min_samples,
        drift_threshold=settings.calibration.drift_threshold,
    )
    try:
        _print_json({"ok": True, "ledger": str(ledger_path), **calibrator.stats()})
    finally:
        calibrator.close()
    return 0


def _handle_serve(args: argparse.Namespace) -> int:
    try:
        import uvicorn  # type: ignore
    except ImportError as exc:  # pragma: no cover
        raise SystemExit("uvicorn is not installed. Install with `pip install -e '.[api]'`.") from exc

    uvicorn.run(
        "docresolve.service.app:create_app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        factory=True,
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = _parser()
    args = parser.parse_args(argv)
    handlers = {
        "process": _handle_process,
        "rules-check": _handle_rules_check,
        "calibration-stats": _handle_calibration_stats,
        "serve": _handle_serve,
    }
    handler = handlers.get(args.command)
    if handler is None:  # pragma: no cover - argparse enforces choices
        parser.error(f"Unknown command {args.command}")
    return handler(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
