"""Ingest, preprocessing variants and zone detection."""

from .loader import LoadedDocument, LoadedPage, load_document
from .variants import RenderedVariant, VariantGenerator, adaptive_threshold, readiness_score
from .zones import DEFAULT_LAYOUT, Mask, RenderedZone, ZoneDetector

__all__ = [
    "DEFAULT_LAYOUT",
    "LoadedDocument",
    "LoadedPage",
    "Mask",
    "RenderedVariant",
    "RenderedZone",
    "VariantGenerator",
    "ZoneDetector",
    "adaptive_threshold",
    "load_document",
    "readiness_score",
]
