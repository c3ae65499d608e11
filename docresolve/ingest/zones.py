# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Layout-prior zone detection and noise masking for vendor bills."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw

from ..artifacts.models import BoundingBox, VariantArtifact, ZoneArtifact, ZoneType, zone_artifact_id
from ..artifacts.store import ArtifactStore
from ..logging_utils import get_logger, log_event
from .loader import encode_png

logger = get_logger("zones")

Fractions = Tuple[float, float, float, float]

# (left, top, right, bottom) as page fractions
DEFAULT_LAYOUT: Dict[ZoneType, Fractions] = {
    ZoneType.HEADER: (0.0, 0.0, 1.0, 0.2),
    ZoneType.LINE_ITEMS: (0.0, 0.2, 1.0, 0.6),
    ZoneType.TOTALS: (0.5, 0.6, 1.0, 0.9),
    ZoneType.FOOTER: (0.0, 0.9, 1.0, 1.0),
}

ZONE_ORDER: Tuple[ZoneType, ...] = (
    ZoneType.HEADER,
    ZoneType.TOTALS,
    ZoneType.LINE_ITEMS,
    ZoneType.FOOTER,
    ZoneType.FULL_PAGE,
)


@dataclass(frozen=True)
class Mask:
    """Rectangle painted white before cropping (logos, stamps, signatures)."""

    left: float
    top: float
    right: float
    bottom: float
    label: str = "mask"


@dataclass(frozen=True)
class RenderedZone:
    artifact: ZoneArtifact
    image: Image.Image


def _to_pixels(fractions: Fractions, width: int, height: int) -> BoundingBox:
    left, top, right, bottom = (max(0.0, min(1.0, float(v))) for v in fractions)
    x0 = int(round(left * width))
    y0 = int(round(top * height))
    x1 = max(x0 + 1, int(round(right * width)))
    y1 = max(y0 + 1, int(round(bottom * height)))
    return BoundingBox(x=x0, y=y0, width=min(x1, width) - x0 or 1, height=min(y1, height) - y0 or 1)


def ink_density(image: Image.Image) -> float:
    arr = np.asarray(image.convert("L"), dtype=np.uint8)
    if arr.size == 0:
        return 0.0
    return float((arr < 128).mean())


def zone_confidence(density: float) -> float:
    """Blank regions keep a floor of 0.5; printed regions approach 1.0."""

    return round(min(1.0, 0.5 + min(density, 0.25) * 2.0), 4)


class ZoneDetector:
    def __init__(
        self,
        layout: Optional[Mapping[ZoneType, Fractions]] = None,
        masks_by_originator: Optional[Mapping[str, Sequence[Mask]]] = None,
    ) -> None:
        self.layout: Dict[ZoneType, Fractions] = dict(layout or DEFAULT_LAYOUT)
        self.masks_by_originator: Dict[str, List[Mask]] = {
            key: list(value) for key, value in (masks_by_originator or {}).items()
        }

    def masks_for(self, originator_id: Optional[str]) -> List[Mask]:
        if not originator_id:
            return []
        return list(self.masks_by_originator.get(originator_id, []))

    def _apply_masks(self, image: Image.Image, masks: Sequence[Mask]) -> Image.Image:
        if not masks:
            return image
        masked = image.copy()
        draw = ImageDraw.Draw(masked)
        fill = 255 if masked.mode == "L" else (255,) * len(masked.getbands())
        for mask in masks:
            box = _to_pixels((mask.left, mask.top, mask.right, mask.bottom), masked.width, masked.height)
            draw.rectangle([box.x, box.y, box.right - 1, box.bottom - 1], fill=fill)
        return masked

    def detect(
        self,
        variant: VariantArtifact,
        image: Image.Image,
        store: ArtifactStore,
        *,
        originator_id: Optional[str] = None,
        overrides: Optional[Mapping[ZoneType, Fractions]] = None,
    ) -> List[RenderedZone]:
        """Crop the layout zones out of ``image``.

        ``overrides`` replaces the layout rectangle of individual zone types
        (manual correction from a reviewer); those zones are marked ``manual``.
        """

        masks = self.masks_for(originator_id)
        canvas = self._apply_masks(image, masks)
        layout = dict(self.layout)
        manual = set()
        for zone_type, fractions in (overrides or {}).items():
            layout[ZoneType(zone_type)] = fractions
            manual.add(ZoneType(zone_type))

        zones: List[RenderedZone] = []
        for zone_type in sorted(layout, key=ZONE_ORDER.index):
            bbox = _to_pixels(layout[zone_type], canvas.width, canvas.height)
            crop = canvas.crop((bbox.x, bbox.y, bbox.right, bbox.bottom))
            crop.info["zone_type"] = zone_type.value
            crop.info["variant_type"] = variant.variant_type
            blob_id = store.put(encode_png(crop), "zone")
            artifact = ZoneArtifact(
                artifact_id=zone_artifact_id(variant.artifact_id, zone_type, bbox, blob_id),
                variant_id=variant.artifact_id,
                page_id=variant.page_id,
                blob_id=blob_id,
                zone_type=zone_type,
                bbox=bbox,
                confidence=zone_confidence(ink_density(crop)),
                masked=bool(masks),
                manual=zone_type in manual,
            )
            zones.append(RenderedZone(artifact=artifact, image=crop))

        log_event(
            logger,
            "zones_detected",
            {
                "variant_id": variant.artifact_id,
                "zones": [z.artifact.zone_type.value for z in zones],
                "masks": len(masks),
            },
            level="debug",
        )
        return zones


__all__ = [
    "DEFAULT_LAYOUT",
    "Mask",
    "RenderedZone",
    "ZONE_ORDER",
    "ZoneDetector",
    "ink_density",
    "zone_confidence",
]
