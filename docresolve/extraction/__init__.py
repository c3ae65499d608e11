"""Field extraction: schema, lexicon, normalizers, strategies and candidates."""

from .candidates import (
    DEFAULT_STRATEGIES,
    CandidateArtifact,
    CandidateGenerator,
    CandidateGroup,
    CandidateSet,
    Evidence,
    WeightedStrategy,
)
from .lexicon import FieldLexicon, Lexicon, default_lexicon, load_lexicon
from .normalize import normalize
from .schema import DocumentSchema, FieldKind, FieldSpec, default_schema, load_schema
from .strategies import (
    CandidateStrategy,
    DictionaryStrategy,
    ExtractionContext,
    LabelProximityStrategy,
    PatternStrategy,
    ZonePriorStrategy,
)

__all__ = [
    "CandidateArtifact",
    "CandidateGenerator",
    "CandidateGroup",
    "CandidateSet",
    "CandidateStrategy",
    "DEFAULT_STRATEGIES",
    "DictionaryStrategy",
    "DocumentSchema",
    "Evidence",
    "ExtractionContext",
    "FieldKind",
    "FieldLexicon",
    "FieldSpec",
    "LabelProximityStrategy",
    "Lexicon",
    "PatternStrategy",
    "WeightedStrategy",
    "ZonePriorStrategy",
    "default_lexicon",
    "default_schema",
    "load_lexicon",
    "load_schema",
    "normalize",
]
