# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

"""Content-addressed artifact storage.

``put`` is idempotent: the id is ``"{kind}-{sha256}"`` of the payload, so
writing the same bytes twice returns the same id and never rewrites the blob.
The in-memory store backs tests and single-process runs; the filesystem store
is the default for on-prem deployments and can be swapped for an object-store
backend implementing the same protocol.
"""
from __future__ import annotations

import hashlib
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, Protocol, Tuple

from ..errors import ArtifactNotFound

_KIND_RE = re.compile(r"^[a-z0-9_]+$")
_ID_RE = re.compile(r"^(?P<kind>[a-z0-9_]+)-(?P<digest>[a-f0-9]{64})$")


class ArtifactStore(Protocol):
    def put(self, data: bytes, kind: str) -> str:
        ...

    def get(self, artifact_id: str) -> bytes:
        ...

    def exists(self, artifact_id: str) -> bool:
        ...


def content_address(data: bytes, kind: str) -> str:
    if not _KIND_RE.match(kind or ""):
        raise ValueError(f"invalid artifact kind: {kind!r}")
    return f"{kind}-{hashlib.sha256(data).hexdigest()}"


def split_artifact_id(artifact_id: str) -> Tuple[str, str]:
    match = _ID_RE.match(artifact_id or "")
    if match is None:
        raise ArtifactNotFound(artifact_id)
    return match.group("kind"), match.group("digest")


class InMemoryArtifactStore:
    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.put_calls = 0

    def put(self, data: bytes, kind: str) -> str:
        artifact_id = content_address(bytes(data), kind)
        with self._lock:
            self.put_calls += 1
            self._blobs.setdefault(artifact_id, bytes(data))
        return artifact_id

    def get(self, artifact_id: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[artifact_id]
            except KeyError:
                raise ArtifactNotFound(artifact_id) from None

    def exists(self, artifact_id: str) -> bool:
        with self._lock:
            return artifact_id in self._blobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


class LocalArtifactStore:
    """Filesystem-backed store laid out as ``<root>/<kind>/<digest[:2]>/<digest>``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, artifact_id: str) -> Path:
        kind, digest = split_artifact_id(artifact_id)
        return self.root / kind / digest[:2] / digest

    def put(self, data: bytes, kind: str) -> str:
        artifact_id = content_address(bytes(data), kind)
        path = self._path(artifact_id)
        if path.exists():
            return artifact_id
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            Path(tmp_name).replace(path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return artifact_id

    def get(self, artifact_id: str) -> bytes:
        path = self._path(artifact_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ArtifactNotFound(artifact_id) from None

    def exists(self, artifact_id: str) -> bool:
        try:
            return self._path(artifact_id).exists()
        except ArtifactNotFound:
            return False


def build_artifact_store() -> ArtifactStore:
    backend = (os.environ.get("DOCRESOLVE_STORE_BACKEND") or "memory").strip().lower()
    if backend in {"memory", "mem", "inmemory"}:
        return InMemoryArtifactStore()
    if backend in {"local", "filesystem", "fs"}:
        root = os.environ.get("DOCRESOLVE_STORE_DIR") or str(Path(tempfile.gettempdir()) / "docresolve_artifacts")
        return LocalArtifactStore(Path(root))
    raise RuntimeError(
        f"Unsupported DOCRESOLVE_STORE_BACKEND={backend!r}. "
        "Supported backends: memory, local (filesystem)."
    )


__all__ = [
    "ArtifactStore",
    "InMemoryArtifactStore",
    "LocalArtifactStore",
    "build_artifact_store",
    "content_address",
    "split_artifact_id",
]
