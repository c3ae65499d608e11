# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

import pytest

from docresolve.artifacts.models import (
    BoundingBox,
    RecognitionToken,
    ZoneType,
    derive_artifact_id,
    recognition_artifact_id,
    zone_artifact_id,
)
from docresolve.artifacts.store import (
    InMemoryArtifactStore,
    LocalArtifactStore,
    build_artifact_store,
    content_address,
    split_artifact_id,
)
from docresolve.errors import ArtifactNotFound


def test_put_is_idempotent_and_content_addressed():
    store = InMemoryArtifactStore()

    first = store.put(b"hello", "page")
    second = store.put(b"hello", "page")

    assert first == second
    assert first.startswith("page-")
    assert len(store) == 1
    assert store.put_calls == 2
    assert store.get(first) == b"hello"


def test_same_bytes_different_kind_get_different_ids():
    store = InMemoryArtifactStore()
    assert store.put(b"x", "page") != store.put(b"x", "zone")


def test_missing_artifact_raises():
    store = InMemoryArtifactStore()
    with pytest.raises(ArtifactNotFound):
        store.get(content_address(b"nothing", "page"))
    assert store.exists("page-" + "0" * 64) is False


def test_invalid_kind_is_rejected():
    with pytest.raises(ValueError):
        content_address(b"x", "Bad Kind")


def test_local_store_round_trip(tmp_path):
    store = LocalArtifactStore(tmp_path / "artifacts")

    artifact_id = store.put(b"\x89PNG...", "variant")
    kind, digest = split_artifact_id(artifact_id)

    assert kind == "variant"
    assert (tmp_path / "artifacts" / "variant" / digest[:2] / digest).exists()
    assert store.get(artifact_id) == b"\x89PNG..."
    assert store.put(b"\x89PNG...", "variant") == artifact_id
    assert store.exists(artifact_id)
    assert store.exists("not-an-id") is False


def test_local_store_missing_blob(tmp_path):
    store = LocalArtifactStore(tmp_path)
    with pytest.raises(ArtifactNotFound):
        store.get(content_address(b"absent", "zone"))


def test_build_artifact_store_backends(monkeypatch, tmp_path):
    monkeypatch.delenv("DOCRESOLVE_STORE_BACKEND", raising=False)
    assert isinstance(build_artifact_store(), InMemoryArtifactStore)

    monkeypatch.setenv("DOCRESOLVE_STORE_BACKEND", "local")
    monkeypatch.setenv("DOCRESOLVE_STORE_DIR", str(tmp_path / "blobs"))
    store = build_artifact_store()
    assert isinstance(store, LocalArtifactStore)
    assert store.root == tmp_path / "blobs"

    monkeypatch.setenv("DOCRESOLVE_STORE_BACKEND", "s3")
    with pytest.raises(RuntimeError):
        build_artifact_store()


def test_derived_ids_are_deterministic():
    bbox = BoundingBox(x=0, y=0, width=10, height=10)
    token = RecognitionToken(text="Total", bbox=bbox, confidence=90.0)

    assert zone_artifact_id("variant-a", ZoneType.TOTALS, bbox, "zone-b") == zone_artifact_id(
        "variant-a", ZoneType.TOTALS, bbox, "zone-b"
    )
    first = recognition_artifact_id("zone-1", "variant-1", 0, "totals-block", (token,))
    assert first == recognition_artifact_id("zone-1", "variant-1", 0, "totals-block", (token,))
    assert first != recognition_artifact_id("zone-1", "variant-1", 1, "totals-block", (token,))
    assert derive_artifact_id("page", {"a": 1, "b": 2}) == derive_artifact_id("page", {"b": 2, "a": 1})


def test_bounding_box_geometry():
    a = BoundingBox(x=10, y=5, width=20, height=10)
    b = BoundingBox(x=25, y=40, width=20, height=10)

    assert a.right == 30
    assert a.bottom == 15
    assert a.center_y == 10.0
    assert a.horizontal_overlap(b) == 5
