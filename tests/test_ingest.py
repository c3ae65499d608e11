# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

import io

import numpy as np
import pytest
from PIL import Image

from docresolve.artifacts.models import ZoneType
from docresolve.artifacts.store import InMemoryArtifactStore
from docresolve.errors import IngestError
from docresolve.ingest import Mask, VariantGenerator, ZoneDetector, load_document
from docresolve.ingest.variants import adaptive_threshold, readiness_score
from docresolve.ingest.zones import ink_density, zone_confidence


def _multipage_tiff(pages: int) -> bytes:
    frames = [Image.new("RGB", (80, 100), "white") for _ in range(pages)]
    buf = io.BytesIO()
    frames[0].save(buf, format="TIFF", save_all=True, append_images=frames[1:])
    return buf.getvalue()


def test_load_document_registers_input_and_pages(page_png):
    store = InMemoryArtifactStore()

    loaded = load_document(page_png, store)

    assert loaded.input.media_type == "image/png"
    assert loaded.input.page_count == 1
    assert store.exists(loaded.input.artifact_id)
    page = loaded.pages[0]
    assert page.artifact.page_number == 1
    assert (page.artifact.width, page.artifact.height) == page.image.size
    assert store.exists(page.artifact.blob_id)


def test_load_document_is_deterministic(page_png):
    first = load_document(page_png, InMemoryArtifactStore())
    second = load_document(page_png, InMemoryArtifactStore())
    assert first.input.artifact_id == second.input.artifact_id
    assert first.pages[0].artifact.artifact_id == second.pages[0].artifact.artifact_id


def test_load_document_splits_multipage_tiff():
    loaded = load_document(_multipage_tiff(3), InMemoryArtifactStore())
    assert loaded.input.page_count == 3
    assert [p.artifact.page_number for p in loaded.pages] == [1, 2, 3]


@pytest.mark.parametrize("data", [b"", b"definitely not an image"])
def test_load_document_rejects_bad_input(data):
    with pytest.raises(IngestError):
        load_document(data, InMemoryArtifactStore())


def test_load_document_rejects_oversized_image(page_png, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
    store = InMemoryArtifactStore()

    with pytest.raises(IngestError, match="unreadable image"):
        load_document(page_png, store)


def test_readiness_prefers_printed_page_over_blank():
    blank = np.full((60, 60), 255, dtype=np.uint8)
    printed = blank.copy()
    printed[10:50:6, 5:55] = 0

    blank_score, _ = readiness_score(blank)
    printed_score, breakdown = readiness_score(printed)

    assert 0.0 <= blank_score < printed_score <= 1.0
    assert set(breakdown) == {"contrast", "edge_density", "noise", "sharpness"}
    assert all(0.0 <= value <= 1.0 for value in breakdown.values())


def test_adaptive_threshold_is_binary():
    gray = np.full((20, 20), 200, dtype=np.uint8)
    gray[8:12, 4:16] = 20
    out = adaptive_threshold(gray, block_size=7)
    assert set(np.unique(out)) <= {0, 255}
    assert out[10, 10] == 0
    assert out[0, 0] == 255


def test_variant_generator_keeps_top_k_ranked(page_png):
    store = InMemoryArtifactStore()
    page = load_document(page_png, store).pages[0]

    variants = VariantGenerator(top_k=3).generate(page.artifact, page.image, store)

    assert len(variants) == 3
    assert [v.artifact.rank for v in variants] == [0, 1, 2]
    scores = [v.artifact.readiness_score for v in variants]
    assert scores == sorted(scores, reverse=True)
    assert len({v.artifact.variant_type for v in variants}) == 3
    for variant in variants:
        assert variant.artifact.page_id == page.artifact.artifact_id
        assert store.exists(variant.artifact.blob_id)


def test_variant_generator_keeps_best_even_below_floor(page_png):
    store = InMemoryArtifactStore()
    page = load_document(page_png, store).pages[0]

    variants = VariantGenerator(top_k=3, min_readiness=1.0).generate(page.artifact, page.image, store)

    assert len(variants) >= 1
    assert variants[0].artifact.rank == 0


def test_zone_detector_crops_layout_zones(page_png):
    store = InMemoryArtifactStore()
    page = load_document(page_png, store).pages[0]
    variant = VariantGenerator(top_k=1).generate(page.artifact, page.image, store)[0]

    zones = ZoneDetector().detect(variant.artifact, variant.image, store)

    assert [z.artifact.zone_type for z in zones] == [
        ZoneType.HEADER,
        ZoneType.TOTALS,
        ZoneType.LINE_ITEMS,
        ZoneType.FOOTER,
    ]
    for zone in zones:
        assert zone.image.info["zone_type"] == zone.artifact.zone_type.value
        assert zone.artifact.variant_id == variant.artifact.artifact_id
        assert 0.5 <= zone.artifact.confidence <= 1.0
        assert zone.artifact.masked is False
    header = zones[0].artifact.bbox
    assert (header.x, header.y) == (0, 0)
    assert header.width == variant.image.width


def test_zone_detector_applies_originator_masks_and_overrides(page_png):
    store = InMemoryArtifactStore()
    page = load_document(page_png, store).pages[0]
    variant = VariantGenerator(top_k=1).generate(page.artifact, page.image, store)[0]
    detector = ZoneDetector(masks_by_originator={"acme": [Mask(0.0, 0.0, 1.0, 0.2, "logo")]})

    zones = detector.detect(
        variant.artifact,
        variant.image,
        store,
        originator_id="acme",
        overrides={ZoneType.TOTALS: (0.0, 0.5, 1.0, 1.0)},
    )

    by_type = {z.artifact.zone_type: z for z in zones}
    assert all(z.artifact.masked for z in zones)
    assert ink_density(by_type[ZoneType.HEADER].image) == 0.0
    assert by_type[ZoneType.TOTALS].artifact.manual is True
    assert by_type[ZoneType.HEADER].artifact.manual is False
    assert detector.masks_for("other") == []


def test_zone_confidence_floor_and_ceiling():
    assert zone_confidence(0.0) == 0.5
    assert zone_confidence(1.0) == 1.0
