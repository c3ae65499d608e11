# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Exception taxonomy shared across the resolution pipeline.

Only ingest-level and store-level failures are fatal to a document. The other
errors are raised at component boundaries and absorbed by the caller (a failed
recognition pass becomes a recorded failure, a field without candidates becomes
a ``missing`` field, a calibration gap falls back to the raw confidence).
Validation failures are never raised: they always materialize as
:class:`~docresolve.resolution.models.Contradiction` records.
"""
from __future__ import annotations

from typing import Any, Optional


class DocresolveError(Exception):
    """Base class for every error raised by :mod:`docresolve`."""


class IngestError(DocresolveError):
    """Input bytes could not be decoded into pages."""


class ArtifactNotFound(DocresolveError):
    def __init__(self, artifact_id: str) -> None:
        super().__init__(f"artifact not found: {artifact_id}")
        self.artifact_id = artifact_id


class RecognitionEngineError(DocresolveError):
    """The recognition backend failed (as opposed to returning no tokens)."""


class RecognitionTimeout(RecognitionEngineError):
    """A pass exceeded its profile timeout."""


class RecognitionPassFailure(DocresolveError):
    """A pass failed at full and at reduced fidelity."""

    def __init__(self, pass_index: int, profile: str, cause: BaseException) -> None:
        super().__init__(f"pass {pass_index} ({profile}) failed: {cause}")
        self.pass_index = pass_index
        self.profile = profile
        self.cause = cause


class NoCandidatesError(DocresolveError):
    def __init__(self, field: str) -> None:
        super().__init__(f"no candidates for field {field!r}")
        self.field = field


class CalibrationUnavailable(DocresolveError):
    """No calibration bucket has enough samples for the lookup."""


class ConcurrentTransitionConflict(DocresolveError):
    """A review case changed since the caller last read it."""

    def __init__(self, case_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"case {case_id} is at version {actual_version}, expected {expected_version}; refetch and retry"
        )
        self.case_id = case_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class IllegalTransition(DocresolveError):
    def __init__(self, state: Any, action: Any, detail: Optional[str] = None) -> None:
        state_name = getattr(state, "value", state)
        action_name = getattr(action, "value", action)
        message = f"action {action_name!r} is not allowed from state {state_name!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.state = state
        self.action = action


class CaseNotFound(DocresolveError):
    def __init__(self, case_id: str) -> None:
        super().__init__(f"review case not found: {case_id}")
        self.case_id = case_id


class DocumentNotFound(DocresolveError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"document not found: {document_id}")
        self.document_id = document_id


class CancellationRequested(DocresolveError):
    """Cooperative abort of a document run.

    ``partial`` carries whatever was produced before the signal was observed;
    those artifacts remain in the store for audit.
    """

    def __init__(self, reason: str, partial: Any = None) -> None:
        super().__init__(f"cancelled: {reason}")
        self.reason = reason
        self.partial = partial


class RuleConfigError(DocresolveError):
    """A rule file could not be parsed or failed validation."""


class ProfileConfigError(DocresolveError):
    """Recognition profile configuration is inconsistent."""


__all__ = [
    "ArtifactNotFound",
    "CalibrationUnavailable",
    "CancellationRequested",
    "CaseNotFound",
    "ConcurrentTransitionConflict",
    "DocresolveError",
    "DocumentNotFound",
    "IllegalTransition",
    "IngestError",
    "NoCandidatesError",
    "ProfileConfigError",
    "RecognitionEngineError",
    "RecognitionPassFailure",
    "RecognitionTimeout",
    "RuleConfigError",
]
