# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Interfaces for recognition backends."""
from __future__ import annotations

from typing import Any, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..artifacts.models import RecognitionToken
from .profiles import RecognitionProfile


class EngineResult(BaseModel):
    """Raw engine output. An empty ``tokens`` tuple is a legitimate result."""

    model_config = ConfigDict(frozen=True)

    tokens: Tuple[RecognitionToken, ...] = ()
    engine_confidence: float = Field(0.0, ge=0.0, le=100.0)


class RecognitionEngine(Protocol):
    name: str

    def recognize(self, image: Any, profile: RecognitionProfile) -> EngineResult:
        """Raise :class:`~docresolve.errors.RecognitionEngineError` on failure."""
        ...


__all__ = ["EngineResult", "RecognitionEngine"]
