# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Decode uploaded bytes into page images and register them as artifacts."""
from __future__ import annotations

import io
from dataclasses import dataclass
from typing import List, Optional

from PIL import Image, ImageSequence, UnidentifiedImageError

from ..artifacts.models import InputArtifact, PageArtifact, derive_artifact_id
from ..artifacts.store import ArtifactStore
from ..errors import IngestError
from ..logging_utils import get_logger, log_event

logger = get_logger("ingest")

_FORMAT_MEDIA_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "TIFF": "image/tiff",
    "BMP": "image/bmp",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}

MAX_PAGES = 50


@dataclass(frozen=True)
class LoadedPage:
    artifact: PageArtifact
    image: Image.Image


@dataclass(frozen=True)
class LoadedDocument:
    input: InputArtifact
    pages: List[LoadedPage]


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def load_document(data: bytes, store: ArtifactStore, *, media_type: Optional[str] = None) -> LoadedDocument:
    """Validate ``data`` and split it into RGB pages.

    Raises :class:`IngestError` for empty, undecodable or oversize input. This
    is the only failure that aborts a document before recognition starts.
    """

    if not data:
        raise IngestError("empty input")
    try:
        source = Image.open(io.BytesIO(data))
        frames = [frame.convert("RGB") for frame in ImageSequence.Iterator(source)]
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise IngestError(f"unreadable image: {exc}") from exc
    if not frames:
        raise IngestError("input contains no pages")
    if len(frames) > MAX_PAGES:
        raise IngestError(f"input has {len(frames)} pages; limit is {MAX_PAGES}")

    detected = _FORMAT_MEDIA_TYPES.get(source.format or "", "application/octet-stream")
    input_blob = store.put(data, "input")
    input_artifact = InputArtifact(
        artifact_id=input_blob,
        byte_size=len(data),
        media_type=media_type or detected,
        page_count=len(frames),
    )

    pages: List[LoadedPage] = []
    for page_number, frame in enumerate(frames, start=1):
        blob_id = store.put(encode_png(frame), "page")
        page = PageArtifact(
            artifact_id=derive_artifact_id(
                "page", {"input": input_blob, "page_number": page_number, "blob": blob_id}
            ),
            input_id=input_blob,
            blob_id=blob_id,
            page_number=page_number,
            width=frame.width,
            height=frame.height,
        )
        pages.append(LoadedPage(artifact=page, image=frame))

    log_event(
        logger,
        "document_ingested",
        {"input_id": input_blob, "pages": len(pages), "media_type": input_artifact.media_type},
    )
    return LoadedDocument(input=input_artifact, pages=pages)


__all__ = ["LoadedDocument", "LoadedPage", "MAX_PAGES", "encode_png", "load_document"]
