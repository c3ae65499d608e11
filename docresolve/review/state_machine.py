# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Review case lifecycle as an explicit transition table.

Every (state, action) pair has an entry; ``None`` marks an illegal move. The
table is checked for completeness when the module is imported.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from ..errors import IllegalTransition


class ReviewState(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class ReviewAction(str, Enum):
    START_REVIEW = "start_review"
    APPROVE = "approve"
    REJECT = "reject"
    REOPEN = "reopen"
    ARCHIVE = "archive"


_S = ReviewState
_A = ReviewAction

TRANSITIONS: Dict[Tuple[ReviewState, ReviewAction], Optional[ReviewState]] = {
    (_S.PENDING, _A.START_REVIEW): _S.IN_REVIEW,
    (_S.PENDING, _A.APPROVE): None,
    (_S.PENDING, _A.REJECT): None,
    (_S.PENDING, _A.REOPEN): None,
    (_S.PENDING, _A.ARCHIVE): None,
    (_S.IN_REVIEW, _A.START_REVIEW): None,
    (_S.IN_REVIEW, _A.APPROVE): _S.APPROVED,
    (_S.IN_REVIEW, _A.REJECT): _S.REJECTED,
    (_S.IN_REVIEW, _A.REOPEN): None,
    (_S.IN_REVIEW, _A.ARCHIVE): None,
    (_S.APPROVED, _A.START_REVIEW): None,
    (_S.APPROVED, _A.APPROVE): None,
    (_S.APPROVED, _A.REJECT): None,
    (_S.APPROVED, _A.REOPEN): _S.IN_REVIEW,
    (_S.APPROVED, _A.ARCHIVE): _S.ARCHIVED,
    (_S.REJECTED, _A.START_REVIEW): None,
    (_S.REJECTED, _A.APPROVE): None,
    (_S.REJECTED, _A.REJECT): None,
    (_S.REJECTED, _A.REOPEN): None,
    (_S.REJECTED, _A.ARCHIVE): _S.ARCHIVED,
    (_S.ARCHIVED, _A.START_REVIEW): None,
    (_S.ARCHIVED, _A.APPROVE): None,
    (_S.ARCHIVED, _A.REJECT): None,
    (_S.ARCHIVED, _A.REOPEN): None,
    (_S.ARCHIVED, _A.ARCHIVE): None,
}

_missing = [(s.value, a.value) for s in ReviewState for a in ReviewAction if (s, a) not in TRANSITIONS]
if _missing:
    raise RuntimeError(f"review transition table is incomplete: {_missing}")

TERMINAL_STATES = frozenset({ReviewState.ARCHIVED})
OPEN_STATES = frozenset({ReviewState.PENDING, ReviewState.IN_REVIEW})


def next_state(state: ReviewState, action: ReviewAction) -> ReviewState:
    target = TRANSITIONS[(ReviewState(state), ReviewAction(action))]
    if target is None:
        raise IllegalTransition(state, action)
    return target


def allowed_actions(state: ReviewState) -> Tuple[ReviewAction, ...]:
    return tuple(a for a in ReviewAction if TRANSITIONS[(state, a)] is not None)


def is_legal_path(states: Sequence[ReviewState]) -> bool:
    """True if each consecutive pair is connected by some legal action."""

    for current, following in zip(states, states[1:]):
        if following not in {TRANSITIONS[(current, a)] for a in ReviewAction}:
            return False
    return True


__all__ = [
    "OPEN_STATES",
    "ReviewAction",
    "ReviewState",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "allowed_actions",
    "is_legal_path",
    "next_state",
]
