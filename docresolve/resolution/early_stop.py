"""Early-stop predicate for the recognition orchestrator."""
from __future__ import annotations

from typing import Optional, Sequence

from ..artifacts.models import RecognitionArtifact
from ..extraction.candidates import CandidateGenerator
from .resolver import FieldResolver


class CriticalFieldEarlyStop:
    """True once every critical field resolves above ``threshold``.

    Rules are not evaluated here; the full resolution after recognition still
    applies them.
    """

    def __init__(
        self,
        generator: CandidateGenerator,
        resolver: FieldResolver,
        fields: Sequence[str],
        threshold: float = 95.0,
        originator_id: Optional[str] = None,
    ) -> None:
        self.generator = generator
        self.resolver = resolver
        self.fields = tuple(fields)
        self.threshold = float(threshold)
        self.originator_id = originator_id

    def __call__(self, artifacts: Sequence[RecognitionArtifact]) -> bool:
        if not self.fields or not artifacts:
            return False
        candidates = self.generator.generate(artifacts, self.originator_id)
        result = self.resolver.resolve(
            candidates,
            originator_id=self.originator_id,
            only_fields=self.fields,
            validate=False,
        )
        for name in self.fields:
            resolved = result.field(name)
            if resolved is None or resolved.missing or resolved.confidence < self.threshold:
                return False
        return True


__all__ = ["CriticalFieldEarlyStop"]
