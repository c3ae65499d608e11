# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Review cases with optimistic versioning and an append-only audit trail.

A case is an immutable snapshot; every change produces a new snapshot with
``version + 1``. Changes to one case are serialized by a per-case lock and
callers may pass the version they last read to detect concurrent edits.
"""
from __future__ import annotations

import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import CaseNotFound, ConcurrentTransitionConflict, IllegalTransition
from ..gate.approval import GateDecision
from ..logging_utils import as_utc, get_logger, log_event
from ..resolution.models import ResolutionResult
from .state_machine import OPEN_STATES, ReviewAction, ReviewState, next_state

logger = get_logger("review")


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence: int = Field(..., ge=1)
    from_state: ReviewState
    to_state: ReviewState
    action: ReviewAction
    actor: str
    at: datetime
    reason: Optional[str] = None
    version: int


class RevisionEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int
    actor: str
    at: datetime
    note: str
    fields: Tuple[str, ...] = ()


class ReviewCase(BaseModel):
    model_config = ConfigDict(frozen=True)

    case_id: str
    document_id: str
    originator_id: Optional[str] = None
    state: ReviewState = ReviewState.PENDING
    version: int = 1
    reopen_count: int = 0
    resolution: ResolutionResult
    gate: GateDecision
    created_at: datetime
    audit: Tuple[AuditEntry, ...] = ()
    revisions: Tuple[RevisionEntry, ...] = ()

    @property
    def severity_rank(self) -> int:
        return self.resolution.max_severity


CaseListener = Callable[[ReviewCase, AuditEntry], None]


class ReviewCaseStore:
    def __init__(self, *, max_reopens: int = 1) -> None:
        self.max_reopens = max(0, int(max_reopens))
        self._cases: Dict[str, ReviewCase] = {}
        self._by_document: Dict[str, str] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._listeners: List[CaseListener] = []

    def add_listener(self, listener: CaseListener) -> None:
        self._listeners.append(listener)

    def create(
        self,
        document_id: str,
        resolution: ResolutionResult,
        gate: GateDecision,
        *,
        originator_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> ReviewCase:
        case = ReviewCase(
            case_id=f"case-{uuid.uuid4().hex}",
            document_id=document_id,
            originator_id=originator_id,
            resolution=resolution,
            gate=gate,
            created_at=as_utc(created_at),
        )
        with self._registry_lock:
            self._cases[case.case_id] = case
            self._by_document[document_id] = case.case_id
            self._locks[case.case_id] = threading.Lock()
        log_event(
            logger,
            "case_created",
            {
                "case_id": case.case_id,
                "document_id": document_id,
                "reasons": list(gate.reasons),
                "severity": case.severity_rank,
            },
        )
        return case

    def get(self, case_id: str) -> ReviewCase:
        case = self._cases.get(case_id)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    def for_document(self, document_id: str) -> Optional[ReviewCase]:
        case_id = self._by_document.get(document_id)
        return self._cases.get(case_id) if case_id else None

    def _lock_for(self, case_id: str) -> threading.Lock:
        lock = self._locks.get(case_id)
        if lock is None:
            raise CaseNotFound(case_id)
        return lock

    @staticmethod
    def _check_version(case: ReviewCase, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != case.version:
            raise ConcurrentTransitionConflict(case.case_id, expected_version, case.version)

    def _apply(
        self,
        case: ReviewCase,
        action: ReviewAction,
        actor: str,
        at: datetime,
        reason: Optional[str],
    ) -> Tuple[ReviewCase, AuditEntry]:
        if not actor or not str(actor).strip():
            raise ValueError("actor is required for every transition")
        if at is None:
            raise ValueError("timestamp is required for every transition")
        if action is ReviewAction.REJECT and not (reason and reason.strip()):
            raise ValueError("reject requires a reason")
        target = next_state(case.state, action)
        reopen_count = case.reopen_count
        if action is ReviewAction.REOPEN:
            if reopen_count >= self.max_reopens:
                raise IllegalTransition(case.state, action, f"case may be reopened at most {self.max_reopens} time(s)")
            reopen_count += 1
        entry = AuditEntry(
            sequence=len(case.audit) + 1,
            from_state=case.state,
            to_state=target,
            action=action,
            actor=actor,
            at=as_utc(at),
            reason=reason,
            version=case.version + 1,
        )
        updated = case.model_copy(
            update={
                "state": target,
                "version": case.version + 1,
                "reopen_count": reopen_count,
                "audit": case.audit + (entry,),
            }
        )
        return updated, entry

    def _notify(self, changes: List[Tuple[ReviewCase, AuditEntry]]) -> None:
        for case, entry in changes:
            log_event(
                logger,
                "case_transition",
                {
                    "case_id": case.case_id,
                    "document_id": case.document_id,
                    "action": entry.action.value,
                    "from": entry.from_state.value,
                    "to": entry.to_state.value,
                    "actor": entry.actor,
                    "version": case.version,
                },
            )
            for listener in list(self._listeners):
                listener(case, entry)

    def transition(
        self,
        case_id: str,
        action: Union[str, ReviewAction],
        *,
        actor: str,
        at: datetime,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> ReviewCase:
        action = ReviewAction(action)
        with self._lock_for(case_id):
            case = self.get(case_id)
            self._check_version(case, expected_version)
            updated, entry = self._apply(case, action, actor, at, reason)
            self._cases[case_id] = updated
        self._notify([(updated, entry)])
        return updated

    def decide(
        self,
        case_id: str,
        decision: str,
        *,
        actor: str,
        at: datetime,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> ReviewCase:
        """Approve or reject, starting the review first when the case is still pending."""

        action = ReviewAction(decision)
        if action not in (ReviewAction.APPROVE, ReviewAction.REJECT):
            raise ValueError(f"decision must be approve or reject, got {decision!r}")
        changes: List[Tuple[ReviewCase, AuditEntry]] = []
        with self._lock_for(case_id):
            case = self.get(case_id)
            self._check_version(case, expected_version)
            if case.state is ReviewState.PENDING:
                case, entry = self._apply(case, ReviewAction.START_REVIEW, actor, at, None)
                changes.append((case, entry))
            case, entry = self._apply(case, action, actor, at, reason)
            changes.append((case, entry))
            self._cases[case_id] = case
        self._notify(changes)
        return case

    def revise(
        self,
        case_id: str,
        resolution: ResolutionResult,
        gate: GateDecision,
        *,
        actor: str,
        at: datetime,
        note: str,
        fields: Tuple[str, ...] = (),
        expected_version: Optional[int] = None,
    ) -> ReviewCase:
        """Replace the resolution of an open case (for example after a targeted re-recognition)."""

        with self._lock_for(case_id):
            case = self.get(case_id)
            self._check_version(case, expected_version)
            if case.state not in OPEN_STATES:
                raise IllegalTransition(case.state, "revise", "only pending or in-review cases can be revised")
            revision = RevisionEntry(
                version=case.version + 1, actor=actor, at=as_utc(at), note=note, fields=tuple(fields)
            )
            updated = case.model_copy(
                update={
                    "resolution": resolution,
                    "gate": gate,
                    "version": case.version + 1,
                    "revisions": case.revisions + (revision,),
                }
            )
            self._cases[case_id] = updated
        log_event(
            logger,
            "case_revised",
            {"case_id": case_id, "version": updated.version, "note": note, "fields": list(fields)},
        )
        return updated

    def queue(self) -> List[ReviewCase]:
        """Open cases, most severe first, then oldest, then by document id."""

        open_cases = [c for c in self._cases.values() if c.state in OPEN_STATES]
        return sorted(open_cases, key=lambda c: (-c.severity_rank, c.created_at, c.document_id))

    def stats(self) -> Dict[str, Any]:
        cases = list(self._cases.values())
        counts = {state.value: 0 for state in ReviewState}
        for case in cases:
            counts[case.state.value] += 1
        open_cases = [c for c in cases if c.state in OPEN_STATES]
        average = (
            round(sum(c.resolution.overall_confidence for c in open_cases) / len(open_cases), 2)
            if open_cases
            else None
        )
        return {
            "total": len(cases),
            "by_state": counts,
            "queue_depth": len(open_cases),
            "avg_queue_confidence": average,
        }

    def __len__(self) -> int:
        return len(self._cases)


__all__ = ["AuditEntry", "CaseListener", "ReviewCase", "ReviewCaseStore", "RevisionEntry"]
