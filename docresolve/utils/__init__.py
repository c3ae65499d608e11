"""Shared utility helpers for docresolve."""

from .json_utils import canonical_json, content_digest, json_ready

__all__ = ["canonical_json", "content_digest", "json_ready"]
