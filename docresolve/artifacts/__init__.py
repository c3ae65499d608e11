"""Artifact records and the content-addressed store they live in."""

from .models import (
    Artifact,
    BoundingBox,
    InputArtifact,
    PageArtifact,
    PassMetadata,
    RecognitionArtifact,
    RecognitionToken,
    VariantArtifact,
    ZoneArtifact,
    ZoneType,
    derive_artifact_id,
    recognition_artifact_id,
)
from .store import (
    ArtifactStore,
    InMemoryArtifactStore,
    LocalArtifactStore,
    build_artifact_store,
    content_address,
)

__all__ = [
    "Artifact",
    "ArtifactStore",
    "BoundingBox",
    "InMemoryArtifactStore",
    "InputArtifact",
    "LocalArtifactStore",
    "PageArtifact",
    "PassMetadata",
    "RecognitionArtifact",
    "RecognitionToken",
    "VariantArtifact",
    "ZoneArtifact",
    "ZoneType",
    "build_artifact_store",
    "content_address",
    "derive_artifact_id",
    "recognition_artifact_id",
]
