"""Bundled default configuration resources."""

from . import defaults

__all__ = ["defaults"]
