# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Immutable artifact records produced while processing a document.

Artifacts form a read-only lineage ``input -> page -> variant -> zone ->
recognition``. Every model is frozen; identifiers are derived from content so
producing the same artifact twice yields the same id.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..utils.json_utils import content_digest


class ZoneType(str, Enum):
    HEADER = "header"
    TOTALS = "totals"
    LINE_ITEMS = "line_items"
    FOOTER = "footer"
    FULL_PAGE = "full_page"


class BoundingBox(BaseModel):
    """Axis-aligned bounding box in pixel coordinates."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(..., ge=0)
    y: int = Field(..., ge=0)
    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2.0

    def horizontal_overlap(self, other: "BoundingBox") -> int:
        return max(0, min(self.right, other.right) - max(self.x, other.x))


class Artifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    artifact_id: str


class InputArtifact(Artifact):
    byte_size: int = Field(..., ge=1)
    media_type: str
    page_count: int = Field(..., ge=1)


class PageArtifact(Artifact):
    input_id: str
    blob_id: str
    page_number: int = Field(..., ge=1)
    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)


class VariantArtifact(Artifact):
    page_id: str
    blob_id: str
    variant_type: str
    rank: int = Field(..., ge=0)
    readiness_score: float = Field(..., ge=0.0, le=1.0)
    score_breakdown: Dict[str, float] = Field(default_factory=dict)
    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)


class ZoneArtifact(Artifact):
    variant_id: str
    page_id: str
    blob_id: str
    zone_type: ZoneType
    bbox: BoundingBox
    confidence: float = Field(..., ge=0.0, le=1.0)
    masked: bool = False
    manual: bool = False


class RecognitionToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    bbox: BoundingBox
    confidence: float = Field(..., ge=0.0, le=100.0)
    line: int = Field(0, ge=0)


class PassMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    profile: str
    engine: str
    duration_ms: float = Field(..., ge=0.0)
    engine_confidence: float = Field(..., ge=0.0, le=100.0)
    attempts: int = Field(1, ge=1)
    reduced_fidelity: bool = False


class RecognitionArtifact(Artifact):
    zone_id: str
    variant_id: str
    zone_type: ZoneType
    pass_index: int = Field(..., ge=0)
    tokens: Tuple[RecognitionToken, ...] = ()
    metadata: PassMetadata

    @property
    def text(self) -> str:
        return " ".join(token.text for token in self.tokens)


def derive_artifact_id(kind: str, payload: object) -> str:
    """Content-addressed id for artifacts that have no binary payload of their own."""

    return f"{kind}-{content_digest(payload)[:32]}"


def recognition_artifact_id(
    zone_id: str,
    variant_id: str,
    pass_index: int,
    profile: str,
    tokens: Tuple[RecognitionToken, ...],
) -> str:
    payload = {
        "zone_id": zone_id,
        "variant_id": variant_id,
        "pass_index": pass_index,
        "profile": profile,
        "tokens": [token.model_dump(mode="json") for token in tokens],
    }
    return derive_artifact_id("recognition", payload)


def zone_artifact_id(variant_id: str, zone_type: ZoneType, bbox: BoundingBox, blob_id: str) -> str:
    return derive_artifact_id(
        "zone",
        {"variant_id": variant_id, "zone_type": zone_type.value, "bbox": bbox.model_dump(), "blob": blob_id},
    )


def optional_bbox(x: int, y: int, width: int, height: int) -> Optional[BoundingBox]:
    if width < 1 or height < 1:
        return None
    return BoundingBox(x=max(0, x), y=max(0, y), width=width, height=height)


__all__ = [
    "Artifact",
    "BoundingBox",
    "InputArtifact",
    "PageArtifact",
    "PassMetadata",
    "RecognitionArtifact",
    "RecognitionToken",
    "VariantArtifact",
    "ZoneArtifact",
    "ZoneType",
    "derive_artifact_id",
    "optional_bbox",
    "recognition_artifact_id",
    "zone_artifact_id",
]
