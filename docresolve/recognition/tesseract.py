"""Recognition engine backed by pytesseract.

Word-level boxes and confidences are kept so the candidate strategies can
reason about label proximity and per-token evidence. The profile decides page
segmentation, resolution and an optional character whitelist; its
``timeout_seconds`` is forwarded to pytesseract so a hung engine process is
killed and surfaces as :class:`~docresolve.errors.RecognitionTimeout`.
"""
from __future__ import annotations

import os
from statistics import mean
from typing import Any, Dict, List, Tuple

import pytesseract
from PIL import Image
from pytesseract import Output

from ..artifacts.models import BoundingBox, RecognitionToken
from ..errors import RecognitionEngineError, RecognitionTimeout
from .interfaces import EngineResult, RecognitionEngine
from .profiles import RecognitionProfile


def _pytesseract_allowed() -> bool:
    raw = os.environ.get("DOCRESOLVE_ALLOW_PYTESSERACT")
    if raw is None:
        return True
    return raw.strip().lower() not in {"0", "false", "no", "off"}


class TesseractEngine(RecognitionEngine):
    """Run a profile against an image crop with pytesseract.

    Args:
        source_dpi: Resolution the crops were rasterized at. Profiles asking for
            a lower dpi get a downscaled image; boxes are mapped back to source
            pixels.
    """

    name = "tesseract"

    def __init__(self, source_dpi: int = 300) -> None:
        if not _pytesseract_allowed():
            raise RuntimeError(
                "pytesseract is disabled by DOCRESOLVE_ALLOW_PYTESSERACT; set it to 1/true to enable"
            )
        self.source_dpi = max(72, int(source_dpi))

    def _scaled(self, image: Any, profile: RecognitionProfile) -> Tuple[Any, float]:
        if not isinstance(image, Image.Image) or profile.dpi >= self.source_dpi:
            return image, 1.0
        scale = profile.dpi / float(self.source_dpi)
        size = (max(1, int(image.width * scale)), max(1, int(image.height * scale)))
        return image.resize(size, Image.Resampling.BILINEAR), scale

    def recognize(self, image: Any, profile: RecognitionProfile) -> EngineResult:
        if image is None:
            raise RecognitionEngineError("image is required for recognition")

        prepared, scale = self._scaled(image, profile)
        try:
            data = pytesseract.image_to_data(
                prepared,
                lang=profile.language,
                config=profile.tesseract_config(),
                output_type=Output.DICT,
                timeout=profile.timeout_seconds,
            )
        except RuntimeError as exc:
            # pytesseract signals a killed process with a bare RuntimeError
            if "timeout" in str(exc).lower():
                raise RecognitionTimeout(f"{profile.name}: {exc}") from exc
            raise RecognitionEngineError(f"{profile.name}: {exc}") from exc
        except (pytesseract.TesseractError, OSError) as exc:
            raise RecognitionEngineError(f"{profile.name}: {exc}") from exc

        return _tokens_from_data(data, scale)


def _tokens_from_data(data: Dict[str, List[Any]], scale: float) -> EngineResult:
    tokens: List[RecognitionToken] = []
    confidences: List[float] = []
    line_ids: Dict[Tuple[int, int, int], int] = {}

    count = len(data.get("text", []))
    for i in range(count):
        text = str(data["text"][i] or "").strip()
        conf_raw = data.get("conf", ["-1"] * count)[i]
        if not text or conf_raw is None or str(conf_raw).strip() in {"-1", "-1.0", ""}:
            continue
        conf = max(0.0, min(100.0, float(conf_raw)))
        key = (
            int(data.get("block_num", [0] * count)[i]),
            int(data.get("par_num", [0] * count)[i]),
            int(data.get("line_num", [0] * count)[i]),
        )
        line = line_ids.setdefault(key, len(line_ids))
        inv = 1.0 / scale if scale else 1.0
        bbox = BoundingBox(
            x=max(0, int(round(int(data["left"][i]) * inv))),
            y=max(0, int(round(int(data["top"][i]) * inv))),
            width=max(1, int(round(int(data["width"][i]) * inv))),
            height=max(1, int(round(int(data["height"][i]) * inv))),
        )
        tokens.append(RecognitionToken(text=text, bbox=bbox, confidence=conf, line=line))
        confidences.append(conf)

    return EngineResult(tokens=tuple(tokens), engine_confidence=mean(confidences) if confidences else 0.0)


__all__ = ["TesseractEngine"]
