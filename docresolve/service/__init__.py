"""HTTP service for the review workflow."""

from .app import case_payload, create_app

__all__ = ["case_payload", "create_app"]
