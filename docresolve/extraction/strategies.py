# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Independent candidate extraction strategies.

A strategy looks at one recognition artifact for one field and proposes
values with a match quality in ``[0, 1]``. Strategies do not know their own
weight: the generator composes them in an explicit weighted list.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple

from ..artifacts.models import BoundingBox, RecognitionArtifact, RecognitionToken
from .lexicon import Lexicon
from .normalize import looks_like_amount, normalize, normalize_amount, normalize_date, normalize_identifier
from .schema import FieldKind, FieldSpec

_STRICT_IDENTIFIER_RE = re.compile(r"^(?:[A-Z]{1,6}[-_/]?\d[A-Z0-9\-_/]*|#\d{3,}[A-Z0-9\-]*)$")
_SEPARATORS = {":", "#", "-", "=", "no", "no.", "nr", "nr."}

# how many tokens a value of each kind may span
_VALUE_SPAN = {
    FieldKind.AMOUNT: 2,
    FieldKind.DATE: 3,
    FieldKind.IDENTIFIER: 1,
    FieldKind.TEXT: 6,
}


@dataclass(frozen=True)
class ExtractionContext:
    lexicon: Lexicon
    originator_id: Optional[str] = None


@dataclass(frozen=True)
class StrategyHit:
    raw_value: str
    normalized_value: str
    score: float
    token_confidence: float
    bbox: Optional[BoundingBox]
    detail: str


class CandidateStrategy(Protocol):
    name: str

    def propose(self, field: FieldSpec, artifact: RecognitionArtifact, context: ExtractionContext) -> Iterable[StrategyHit]:
        ...


def token_lines(artifact: RecognitionArtifact) -> List[List[RecognitionToken]]:
    by_line: Dict[int, List[RecognitionToken]] = {}
    for token in artifact.tokens:
        by_line.setdefault(token.line, []).append(token)
    return [sorted(by_line[line], key=lambda t: (t.bbox.x, t.bbox.y)) for line in sorted(by_line)]


def span_text(tokens: Sequence[RecognitionToken]) -> str:
    return " ".join(token.text for token in tokens)


def span_bbox(tokens: Sequence[RecognitionToken]) -> Optional[BoundingBox]:
    if not tokens:
        return None
    x0 = min(t.bbox.x for t in tokens)
    y0 = min(t.bbox.y for t in tokens)
    x1 = max(t.bbox.right for t in tokens)
    y1 = max(t.bbox.bottom for t in tokens)
    return BoundingBox(x=x0, y=y0, width=max(1, x1 - x0), height=max(1, y1 - y0))


def span_confidence(tokens: Sequence[RecognitionToken]) -> float:
    if not tokens:
        return 0.0
    return sum(t.confidence for t in tokens) / len(tokens)


def windows(line: Sequence[RecognitionToken], max_len: int) -> Iterator[Tuple[int, int]]:
    for start in range(len(line)):
        for end in range(start + 1, min(len(line), start + max_len) + 1):
            yield start, end


def _hit(tokens: Sequence[RecognitionToken], normalized: str, score: float, detail: str) -> StrategyHit:
    return StrategyHit(
        raw_value=span_text(tokens),
        normalized_value=normalized,
        score=max(0.0, min(1.0, score)),
        token_confidence=span_confidence(tokens),
        bbox=span_bbox(tokens),
        detail=detail,
    )


def _best_per_value(hits: Iterable[StrategyHit]) -> List[StrategyHit]:
    best: Dict[str, StrategyHit] = {}
    for hit in hits:
        current = best.get(hit.normalized_value)
        if current is None or hit.score * hit.token_confidence > current.score * current.token_confidence:
            best[hit.normalized_value] = hit
    return list(best.values())


def _formatted_value(kind: FieldKind, tokens: Sequence[RecognitionToken]) -> Optional[str]:
    """Normalized value when ``tokens`` carry the format of ``kind``."""

    text = span_text(tokens)
    if kind is FieldKind.AMOUNT:
        return normalize_amount(text) if looks_like_amount(text) else None
    if kind is FieldKind.DATE:
        return normalize_date(text)
    if kind is FieldKind.IDENTIFIER:
        if len(tokens) != 1 or not _STRICT_IDENTIFIER_RE.match(text.strip().upper()):
            return None
        return normalize_identifier(text)
    return None


class DictionaryStrategy:
    """Exact or fuzzy match against known values for the field."""

    name = "dictionary"

    def __init__(self, max_span: int = 4) -> None:
        self.max_span = max_span

    def propose(self, field: FieldSpec, artifact: RecognitionArtifact, context: ExtractionContext) -> Iterable[StrategyHit]:
        lexicon, originator = context.lexicon, context.originator_id
        if not lexicon.has_dictionary(field.name, originator):
            return []
        hits: List[StrategyHit] = []
        for line in token_lines(artifact):
            for start, end in windows(line, self.max_span):
                tokens = line[start:end]
                match = lexicon.match_value(field.name, span_text(tokens), originator)
                if match is None:
                    continue
                normalized = normalize(field.kind, match.value)
                if normalized is None:
                    continue
                hits.append(_hit(tokens, normalized, match.score, f"{match.source} dictionary entry {match.value!r}"))
        return _best_per_value(hits)


class PatternStrategy:
    """Currency, date and identifier formats anywhere in the artifact."""

    name = "pattern"

    def propose(self, field: FieldSpec, artifact: RecognitionArtifact, context: ExtractionContext) -> Iterable[StrategyHit]:
        if field.kind is FieldKind.TEXT:
            return []
        hits: List[StrategyHit] = []
        for line in token_lines(artifact):
            for start, end in windows(line, _VALUE_SPAN[field.kind]):
                tokens = line[start:end]
                normalized = _formatted_value(field.kind, tokens)
                if normalized is not None:
                    hits.append(_hit(tokens, normalized, 1.0, f"{field.kind.value} format"))
        return _best_per_value(hits)


class LabelProximityStrategy:
    """Value immediately right of (or just below) a label for the field."""

    name = "label_proximity"

    def __init__(self, max_label_tokens: int = 3, below_penalty: float = 0.9) -> None:
        self.max_label_tokens = max_label_tokens
        self.below_penalty = below_penalty

    def _labels(self, field: FieldSpec, line: Sequence[RecognitionToken], context: ExtractionContext) -> Iterator[Tuple[int, int, float]]:
        lexicon, originator = context.lexicon, context.originator_id
        start = 0
        while start < len(line):
            found = None
            for n in range(min(self.max_label_tokens, len(line) - start), 0, -1):
                match = lexicon.classify_label(span_text(line[start : start + n]), originator)
                if match is None:
                    continue
                if match.field != field.name:
                    # the longest reading of this span belongs to another field
                    break
                if start > 0:
                    left = lexicon.classify_label(span_text(line[start - 1 : start + n]), originator)
                    if left is not None and left.field != field.name:
                        break
                if start + n < len(line):
                    right = lexicon.classify_label(span_text(line[start : start + n + 1]), originator)
                    if right is not None and right.field != field.name:
                        break
                found = (start, start + n, match.score)
                break
            if found is not None:
                yield found
                start = found[1]
            else:
                start += 1

    def _value(self, field: FieldSpec, tokens: Sequence[RecognitionToken]) -> Optional[Tuple[Sequence[RecognitionToken], str]]:
        rest = list(tokens)
        while rest and rest[0].text.strip().lower() in _SEPARATORS:
            rest = rest[1:]
        if not rest:
            return None
        span = _VALUE_SPAN[field.kind]
        if field.kind is FieldKind.TEXT:
            chosen = rest[:span]
            normalized = normalize(field.kind, span_text(chosen))
            return (chosen, normalized) if normalized else None
        for n in range(1, min(span, len(rest)) + 1):
            chosen = rest[:n]
            normalized = normalize(field.kind, span_text(chosen))
            if normalized is not None:
                return chosen, normalized
        return None

    def propose(self, field: FieldSpec, artifact: RecognitionArtifact, context: ExtractionContext) -> Iterable[StrategyHit]:
        lines = token_lines(artifact)
        hits: List[StrategyHit] = []
        for idx, line in enumerate(lines):
            for start, end, score in self._labels(field, line, context):
                label_box = span_bbox(line[start:end])
                found = self._value(field, line[end:])
                detail = f"right of label {span_text(line[start:end])!r}"
                if found is None and idx + 1 < len(lines) and label_box is not None:
                    below = [t for t in lines[idx + 1] if t.bbox.right >= label_box.x]
                    found = self._value(field, below)
                    score *= self.below_penalty
                    detail = f"below label {span_text(line[start:end])!r}"
                if found is None:
                    continue
                tokens, normalized = found
                hits.append(_hit(tokens, normalized, score, detail))
        return _best_per_value(hits)


class ZonePriorStrategy:
    """Format-conforming values inside the zone type the field is expected in."""

    name = "zone_prior"

    def propose(self, field: FieldSpec, artifact: RecognitionArtifact, context: ExtractionContext) -> Iterable[StrategyHit]:
        if not field.zones or artifact.zone_type not in field.zones:
            return []
        lines = token_lines(artifact)
        detail = f"expected in {artifact.zone_type.value} zone"
        if field.kind is FieldKind.TEXT:
            for line in lines:
                text = span_text(line)
                if context.lexicon.classify_label(text, context.originator_id) is not None:
                    continue
                normalized = normalize(field.kind, text)
                if normalized:
                    return [_hit(line, normalized, 1.0, f"first line of {artifact.zone_type.value} zone")]
            return []
        hits: List[StrategyHit] = []
        for line in lines:
            for start, end in windows(line, _VALUE_SPAN[field.kind]):
                normalized = _formatted_value(field.kind, line[start:end])
                if normalized is not None:
                    hits.append(_hit(line[start:end], normalized, 1.0, detail))
        return _best_per_value(hits)


__all__ = [
    "CandidateStrategy",
    "DictionaryStrategy",
    "ExtractionContext",
    "LabelProximityStrategy",
    "PatternStrategy",
    "StrategyHit",
    "ZonePriorStrategy",
    "span_bbox",
    "span_text",
    "token_lines",
]
