# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Preprocessing variants of a page image ranked by recognition readiness.

Each variant is scored on four cues computed on the grayscale pixels
(contrast, edge density, residual noise, sharpness). Only the top ``top_k``
variants are kept so the orchestrator spends its budget on the images most
likely to read well.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from ..artifacts.models import PageArtifact, VariantArtifact, derive_artifact_id
from ..artifacts.store import ArtifactStore
from ..logging_utils import get_logger, log_event
from .loader import encode_png

logger = get_logger("variants")

SCORE_WEIGHTS: Dict[str, float] = {
    "contrast": 0.30,
    "edge_density": 0.25,
    "noise": 0.20,
    "sharpness": 0.25,
}


def _box_mean(gray: np.ndarray, k: int = 15) -> np.ndarray:
    """Local mean over a ``k``x``k`` window using an integral image."""

    k = max(3, int(k)) | 1
    r = k // 2
    h, w = gray.shape
    pad = np.pad(gray.astype(np.int64), ((1, 0), (1, 0)), mode="constant")
    ii = pad.cumsum(0).cumsum(1)
    y0 = np.clip(np.arange(h) - r, 0, h)
    y1 = np.clip(np.arange(h) + r + 1, 0, h)
    x0 = np.clip(np.arange(w) - r, 0, w)
    x1 = np.clip(np.arange(w) + r + 1, 0, w)
    Y0, X0 = np.meshgrid(y0, x0, indexing="ij")
    Y1, X1 = np.meshgrid(y1, x1, indexing="ij")
    total = ii[Y1, X1] - ii[Y0, X1] - ii[Y1, X0] + ii[Y0, X0]
    area = (Y1 - Y0) * (X1 - X0)
    area[area == 0] = 1
    return (total / area).astype(np.float32)


def adaptive_threshold(gray: np.ndarray, block_size: int = 15, offset: float = 10.0) -> np.ndarray:
    """Dark ink on white paper: pixels darker than the local mean minus ``offset`` become 0."""

    mean = _box_mean(gray, block_size)
    return np.where(gray.astype(np.float32) < (mean - offset), 0, 255).astype(np.uint8)


def readiness_score(gray: np.ndarray) -> Tuple[float, Dict[str, float]]:
    """Return ``(score, breakdown)`` with every cue in ``[0, 1]``."""

    arr = gray.astype(np.float32)
    if arr.size == 0:
        return 0.0, {name: 0.0 for name in SCORE_WEIGHTS}

    contrast = min(1.0, float(arr.std()) / 64.0)

    gx = np.abs(np.diff(arr, axis=1))
    gy = np.abs(np.diff(arr, axis=0))
    edges = 0
    total = 0
    if gx.size:
        edges += int((gx > 32).sum())
        total += gx.size
    if gy.size:
        edges += int((gy > 32).sum())
        total += gy.size
    density = edges / total if total else 0.0
    edge_density = min(1.0, density * 10.0)

    residual = np.abs(arr - _box_mean(gray, 3))
    noise = 1.0 - min(1.0, float(residual.mean()) / 32.0)

    if arr.shape[0] >= 3 and arr.shape[1] >= 3:
        lap = (
            4.0 * arr[1:-1, 1:-1]
            - arr[:-2, 1:-1]
            - arr[2:, 1:-1]
            - arr[1:-1, :-2]
            - arr[1:-1, 2:]
        )
        sharpness = min(1.0, float(lap.var()) / 1000.0)
    else:
        sharpness = 0.0

    breakdown = {
        "contrast": round(contrast, 4),
        "edge_density": round(edge_density, 4),
        "noise": round(noise, 4),
        "sharpness": round(sharpness, 4),
    }
    score = sum(SCORE_WEIGHTS[name] * value for name, value in breakdown.items())
    return round(max(0.0, min(1.0, score)), 4), breakdown


@dataclass(frozen=True)
class RenderedVariant:
    artifact: VariantArtifact
    image: Image.Image


Transform = Callable[[Image.Image], Image.Image]


class VariantGenerator:
    """Build, score and rank preprocessing variants of a page."""

    def __init__(
        self,
        *,
        top_k: int = 3,
        min_readiness: float = 0.0,
        block_size: int = 15,
        contrast_factor: float = 1.3,
        upscale_factor: float = 1.5,
    ) -> None:
        self.top_k = max(1, int(top_k))
        self.min_readiness = float(min_readiness)
        self.block_size = block_size
        self.contrast_factor = contrast_factor
        self.upscale_factor = upscale_factor

    def transforms(self) -> Sequence[Tuple[str, Transform]]:
        return (
            ("grayscale", lambda img: ImageOps.grayscale(img)),
            ("adaptive_threshold", self._threshold),
            ("denoise_sharpen", lambda img: ImageOps.grayscale(img).filter(ImageFilter.MedianFilter(3)).filter(ImageFilter.SHARPEN)),
            ("contrast", lambda img: ImageEnhance.Contrast(ImageOps.grayscale(img)).enhance(self.contrast_factor)),
            ("upscale", self._upscale),
        )

    def _threshold(self, image: Image.Image) -> Image.Image:
        gray = np.asarray(ImageOps.grayscale(image), dtype=np.uint8)
        return Image.fromarray(adaptive_threshold(gray, self.block_size))

    def _upscale(self, image: Image.Image) -> Image.Image:
        gray = ImageOps.grayscale(image)
        size = (max(1, int(gray.width * self.upscale_factor)), max(1, int(gray.height * self.upscale_factor)))
        return gray.resize(size, Image.Resampling.LANCZOS)

    def generate(self, page: PageArtifact, image: Image.Image, store: ArtifactStore) -> List[RenderedVariant]:
        scored: List[Tuple[float, str, Image.Image, Dict[str, float]]] = []
        for name, transform in self.transforms():
            rendered = transform(image)
            score, breakdown = readiness_score(np.asarray(rendered.convert("L"), dtype=np.uint8))
            scored.append((score, name, rendered, breakdown))

        scored.sort(key=lambda item: (-item[0], item[1]))
        # a page always keeps its best variant, even below the readiness floor
        eligible = [item for item in scored if item[0] >= self.min_readiness] or scored[:1]
        kept: List[RenderedVariant] = []
        for rank, (score, name, rendered, breakdown) in enumerate(eligible[: self.top_k]):
            blob_id = store.put(encode_png(rendered), "variant")
            artifact = VariantArtifact(
                artifact_id=derive_artifact_id("variant", {"page": page.artifact_id, "type": name, "blob": blob_id}),
                page_id=page.artifact_id,
                blob_id=blob_id,
                variant_type=name,
                rank=rank,
                readiness_score=score,
                score_breakdown=breakdown,
                width=rendered.width,
                height=rendered.height,
            )
            kept.append(RenderedVariant(artifact=artifact, image=rendered))

        log_event(
            logger,
            "variants_ranked",
            {
                "page_id": page.artifact_id,
                "kept": [v.artifact.variant_type for v in kept],
                "scores": {name: score for score, name, _, _ in scored},
            },
            level="debug",
        )
        return kept


__all__ = [
    "RenderedVariant",
    "SCORE_WEIGHTS",
    "VariantGenerator",
    "adaptive_threshold",
    "readiness_score",
]
