# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Structured event logging.

Every component logs through a ``docresolve.<component>`` logger. Records are
single-line events ``{"ts": ..., "event": ..., **payload}`` so gate decisions,
pass failures and calibration fallbacks stay explainable after the fact.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .utils.json_utils import json_ready

_ROOT_LOGGER = "docresolve"
_state: Dict[str, str] = {"format": "json"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def as_utc(moment: Optional[datetime]) -> datetime:
    """Return ``moment`` as an aware UTC datetime; naive values are taken as UTC."""

    if moment is None:
        return utc_now()
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"{_ROOT_LOGGER}.{component}")


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> logging.Logger:
    """Attach a stderr handler to the ``docresolve`` logger once.

    ``level`` and ``fmt`` default to ``DOCRESOLVE_LOG_LEVEL`` (``INFO``) and
    ``DOCRESOLVE_LOG_FORMAT`` (``json`` or ``text``).
    """

    level_name = (level or os.environ.get("DOCRESOLVE_LOG_LEVEL") or "INFO").strip().upper()
    log_format = (fmt or os.environ.get("DOCRESOLVE_LOG_FORMAT") or "json").strip().lower()
    if log_format not in {"json", "text"}:
        log_format = "json"
    _state["format"] = log_format

    logger = logging.getLogger(_ROOT_LOGGER)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.propagate = False
    return logger


def format_event(event: str, payload: Optional[Dict[str, Any]] = None) -> str:
    body = json_ready(dict(payload or {}))
    record = {"ts": utc_now_iso(), "event": event, **body}
    if _state["format"] == "json":
        return json.dumps(record, ensure_ascii=False, sort_keys=False)
    return f"{record['ts']} {event} {body}"


def log_event(
    logger: logging.Logger,
    event: str,
    payload: Optional[Dict[str, Any]] = None,
    *,
    level: str = "info",
) -> None:
    fn = getattr(logger, level, logger.info)
    if not logger.isEnabledFor(getattr(logging, level.upper(), logging.INFO)):
        return
    fn(format_event(event, payload))


__all__ = [
    "as_utc",
    "configure_logging",
    "format_event",
    "get_logger",
    "log_event",
    "utc_now",
    "utc_now_iso",
]
