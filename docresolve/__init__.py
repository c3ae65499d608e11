"""docresolve: multi-pass recognition, consensus field resolution and review for vendor bills."""

from __future__ import annotations

from ._version import __version__
from .cancellation import CancellationToken
from .config import Settings, load_settings
from .errors import DocresolveError
from .pipeline import DocumentPipeline, DocumentRun, build_pipeline

__all__ = [
    "CancellationToken",
    "DocresolveError",
    "DocumentPipeline",
    "DocumentRun",
    "Settings",
    "__version__",
    "build_pipeline",
    "load_settings",
]
