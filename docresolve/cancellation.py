# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Cooperative cancellation signal threaded through a document run."""
from __future__ import annotations

import threading
from typing import Any, Optional

from .errors import CancellationRequested


class CancellationToken:
    """Set once, observed between steps. Work in flight is never preempted."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._lock = threading.Lock()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._reason is None:
                self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self, partial: Any = None) -> None:
        if self._event.is_set():
            raise CancellationRequested(self._reason or "cancelled", partial=partial)


__all__ = ["CancellationToken"]
