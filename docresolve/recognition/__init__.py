"""Recognition engine adapters, profiles and the pass orchestrator."""

from .interfaces import EngineResult, RecognitionEngine
from .orchestrator import (
    FailedPass,
    OrchestrationResult,
    RecognitionOrchestrator,
    RecognitionPlan,
    SkippedPass,
)
from .profiles import ProfileRegistry, RecognitionProfile, default_registry
from .tesseract import TesseractEngine

__all__ = [
    "EngineResult",
    "FailedPass",
    "OrchestrationResult",
    "ProfileRegistry",
    "RecognitionEngine",
    "RecognitionOrchestrator",
    "RecognitionPlan",
    "RecognitionProfile",
    "SkippedPass",
    "TesseractEngine",
    "default_registry",
]
