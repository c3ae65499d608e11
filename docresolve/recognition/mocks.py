"""Scripted recognition engine for tests and dry runs."""
from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Tuple, Union

from ..artifacts.models import BoundingBox, RecognitionToken
from ..errors import RecognitionEngineError
from .interfaces import EngineResult, RecognitionEngine
from .profiles import RecognitionProfile


class Responses(list):
    """Successive outcomes for one key; the last one repeats."""


Outcome = Union[EngineResult, BaseException, str]


def make_tokens(text: str, confidence: float = 90.0) -> Tuple[RecognitionToken, ...]:
    """Lay out ``text`` as word tokens, one line per newline, 12px per character."""

    tokens: List[RecognitionToken] = []
    for line_no, line in enumerate(text.splitlines()):
        x = 10
        for word in line.split():
            width = max(1, 12 * len(word))
            tokens.append(
                RecognitionToken(
                    text=word,
                    bbox=BoundingBox(x=x, y=10 + 30 * line_no, width=width, height=20),
                    confidence=confidence,
                    line=line_no,
                )
            )
            x += width + 12
    return tuple(tokens)


def _default_key(image: Any) -> Hashable:
    if isinstance(image, (str, int, tuple)):
        return image
    info = getattr(image, "info", None)
    if isinstance(info, dict) and "zone_type" in info:
        return info["zone_type"]
    return None


class ScriptedEngine(RecognitionEngine):
    """Replay canned outcomes keyed by image (or ``image.info["zone_type"]``).

    A key may also be ``(key, profile_name)`` to script a specific profile.
    Outcomes are an :class:`EngineResult`, an exception instance to raise, or
    plain text turned into tokens at ``confidence``.
    """

    name = "scripted"

    def __init__(
        self,
        script: Optional[Mapping[Hashable, Union[Outcome, Responses]]] = None,
        *,
        confidence: float = 90.0,
        delay: float = 0.0,
        delays: Optional[Mapping[Hashable, float]] = None,
        key_fn: Callable[[Any], Hashable] = _default_key,
    ) -> None:
        self.script: Dict[Hashable, Union[Outcome, Responses]] = dict(script or {})
        self.confidence = confidence
        self.delay = delay
        self.delays = dict(delays or {})
        self.key_fn = key_fn
        self.calls: List[Tuple[Hashable, str]] = []
        self._served: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def _next(self, key: Hashable) -> Optional[Outcome]:
        entry = self.script.get(key)
        if entry is None:
            return None
        if isinstance(entry, Responses):
            with self._lock:
                served = self._served.get(key, 0)
                self._served[key] = served + 1
            return entry[min(served, len(entry) - 1)]
        return entry

    def recognize(self, image: Any, profile: RecognitionProfile) -> EngineResult:
        key = self.key_fn(image)
        with self._lock:
            self.calls.append((key, profile.name))
        delay = self.delays.get((key, profile.name), self.delays.get(key, self.delay))
        if delay:
            time.sleep(delay)

        outcome = self._next((key, profile.name))
        if outcome is None:
            outcome = self._next(key)
        if outcome is None:
            return EngineResult()
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, EngineResult):
            return outcome
        tokens = make_tokens(str(outcome), self.confidence)
        return EngineResult(tokens=tokens, engine_confidence=self.confidence if tokens else 0.0)


class FailingEngine(RecognitionEngine):
    name = "failing"

    def __init__(self, message: str = "engine unavailable") -> None:
        self.message = message
        self.calls: List[str] = []

    def recognize(self, image: Any, profile: RecognitionProfile) -> EngineResult:
        self.calls.append(profile.name)
        raise RecognitionEngineError(self.message)


__all__ = ["FailingEngine", "Responses", "ScriptedEngine", "make_tokens"]
