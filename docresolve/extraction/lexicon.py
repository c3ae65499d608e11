# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Label synonyms and known-value dictionaries, global and per originator.

Matching is fuzzy (rapidfuzz ``ratio`` on default-processed strings). For both
labels and dictionary values an originator's override entries are consulted
first and win whenever they clear the threshold; the global entries are only a
fallback.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field
from rapidfuzz import fuzz, process, utils

from ..config import read_yaml_mapping
from ..resources import defaults

ORIGINATOR = "originator"
GLOBAL = "global"


class FieldLexicon(BaseModel):
    synonyms: List[str] = Field(default_factory=list)
    known_values: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class DictionaryMatch:
    value: str
    score: float
    source: str


@dataclass(frozen=True)
class LabelMatch:
    field: str
    score: float
    source: str


def _processed(text: str) -> str:
    return utils.default_process(text or "")


class Lexicon(BaseModel):
    fields: Dict[str, FieldLexicon] = Field(default_factory=dict)
    originator_overrides: Dict[str, Dict[str, FieldLexicon]] = Field(default_factory=dict)
    fuzzy_threshold: float = Field(85.0, ge=0.0, le=100.0)
    label_threshold: float = Field(80.0, ge=0.0, le=100.0)

    def _layers(self, field: str, originator_id: Optional[str]) -> List[Tuple[str, FieldLexicon]]:
        layers: List[Tuple[str, FieldLexicon]] = []
        if originator_id:
            override = self.originator_overrides.get(originator_id, {}).get(field)
            if override is not None:
                layers.append((ORIGINATOR, override))
        base = self.fields.get(field)
        if base is not None:
            layers.append((GLOBAL, base))
        return layers

    def synonyms(self, field: str, originator_id: Optional[str] = None) -> List[str]:
        seen: List[str] = []
        for _, layer in self._layers(field, originator_id):
            for synonym in layer.synonyms:
                if synonym not in seen:
                    seen.append(synonym)
        return seen

    def has_dictionary(self, field: str, originator_id: Optional[str] = None) -> bool:
        return any(layer.known_values for _, layer in self._layers(field, originator_id))

    def match_value(self, field: str, text: str, originator_id: Optional[str] = None) -> Optional[DictionaryMatch]:
        """Best known value for ``text``; score is in ``[0, 1]``."""

        query = _processed(text)
        if not query:
            return None
        for source, layer in self._layers(field, originator_id):
            if not layer.known_values:
                continue
            for value in layer.known_values:
                if _processed(value) == query:
                    return DictionaryMatch(value=value, score=1.0, source=source)
            best = process.extractOne(
                query,
                layer.known_values,
                scorer=fuzz.ratio,
                processor=utils.default_process,
                score_cutoff=self.fuzzy_threshold,
            )
            if best is not None:
                return DictionaryMatch(value=best[0], score=round(best[1] / 100.0, 4), source=source)
        return None

    def classify_label(self, text: str, originator_id: Optional[str] = None) -> Optional[LabelMatch]:
        """Which field's label ``text`` reads as, if any clears ``label_threshold``.

        Ties go to the originator layer, then to the higher score, then to the
        field declared first.
        """

        query = _processed(text)
        if not query:
            return None
        best: Optional[Tuple[Tuple[int, float, int], LabelMatch]] = None
        field_names = list(self.fields)
        for name in self.originator_overrides.get(originator_id or "", {}):
            if name not in field_names:
                field_names.append(name)
        for order, name in enumerate(field_names):
            for source, layer in self._layers(name, originator_id):
                if not layer.synonyms:
                    continue
                hit = process.extractOne(
                    query,
                    layer.synonyms,
                    scorer=fuzz.ratio,
                    processor=utils.default_process,
                    score_cutoff=self.label_threshold,
                )
                if hit is None:
                    continue
                rank = (1 if source == ORIGINATOR else 0, float(hit[1]), -order)
                if best is None or rank > best[0]:
                    best = (rank, LabelMatch(field=name, score=round(hit[1] / 100.0, 4), source=source))
        return best[1] if best else None


def default_lexicon() -> Lexicon:
    return Lexicon.model_validate(defaults.lexicon())


def load_lexicon(path: Union[str, Path]) -> Lexicon:
    return Lexicon.model_validate(read_yaml_mapping(path))


__all__ = [
    "DictionaryMatch",
    "FieldLexicon",
    "LabelMatch",
    "Lexicon",
    "default_lexicon",
    "load_lexicon",
]
