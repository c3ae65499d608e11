import pytest
import pytesseract
from PIL import Image

from docresolve.errors import RecognitionEngineError, RecognitionTimeout
from docresolve.recognition.profiles import RecognitionProfile
from docresolve.recognition.tesseract import TesseractEngine


def _data():
    return {
        "text": ["Total:", "$108.00", "", "Tax"],
        "conf": ["91", "87", "-1", "60"],
        "left": [10, 80, 0, 10],
        "top": [5, 5, 0, 40],
        "width": [50, 60, 0, 30],
        "height": [12, 12, 0, 12],
        "block_num": [1, 1, 1, 1],
        "par_num": [1, 1, 1, 1],
        "line_num": [1, 1, 1, 2],
    }


def test_tesseract_engine_extracts_tokens(monkeypatch):
    calls = []

    def fake_image_to_data(image, **kwargs):
        calls.append((image, kwargs))
        return _data()

    monkeypatch.setattr("docresolve.recognition.tesseract.pytesseract.image_to_data", fake_image_to_data)

    engine = TesseractEngine()
    profile = RecognitionProfile(name="totals-block", psm=6, timeout_seconds=7.0)
    result = engine.recognize(Image.new("L", (200, 60), 255), profile)

    kwargs = calls[0][1]
    assert kwargs["lang"] == "eng"
    assert "--psm 6" in kwargs["config"]
    assert kwargs["timeout"] == 7.0
    assert [t.text for t in result.tokens] == ["Total:", "$108.00", "Tax"]
    assert [t.line for t in result.tokens] == [0, 0, 1]
    assert result.engine_confidence == pytest.approx((91 + 87 + 60) / 3)
    assert result.tokens[1].bbox.x == 80


def test_tesseract_engine_maps_boxes_back_from_lower_dpi(monkeypatch):
    seen = []

    def fake_image_to_data(image, **kwargs):
        seen.append(image.size)
        return _data()

    monkeypatch.setattr("docresolve.recognition.tesseract.pytesseract.image_to_data", fake_image_to_data)

    engine = TesseractEngine(source_dpi=300)
    profile = RecognitionProfile(name="coarse", dpi=150)
    result = engine.recognize(Image.new("L", (200, 60), 255), profile)

    assert seen == [(100, 30)]
    assert result.tokens[1].bbox.x == 160
    assert result.tokens[1].bbox.width == 120


def test_tesseract_engine_empty_output_is_not_an_error(monkeypatch):
    monkeypatch.setattr(
        "docresolve.recognition.tesseract.pytesseract.image_to_data",
        lambda image, **kwargs: {"text": [], "conf": [], "left": [], "top": [], "width": [], "height": []},
    )

    result = TesseractEngine().recognize(Image.new("L", (20, 20), 255), RecognitionProfile(name="p"))

    assert result.tokens == ()
    assert result.engine_confidence == 0.0


def test_tesseract_engine_maps_failures(monkeypatch):
    def timeout(image, **kwargs):
        raise RuntimeError("Tesseract process timeout")

    def broken(image, **kwargs):
        raise pytesseract.TesseractError(1, "bad input")

    engine = TesseractEngine()
    image = Image.new("L", (20, 20), 255)

    monkeypatch.setattr("docresolve.recognition.tesseract.pytesseract.image_to_data", timeout)
    with pytest.raises(RecognitionTimeout):
        engine.recognize(image, RecognitionProfile(name="p"))

    monkeypatch.setattr("docresolve.recognition.tesseract.pytesseract.image_to_data", broken)
    with pytest.raises(RecognitionEngineError):
        engine.recognize(image, RecognitionProfile(name="p"))

    with pytest.raises(RecognitionEngineError):
        engine.recognize(None, RecognitionProfile(name="p"))


def test_tesseract_engine_respects_env_toggle(monkeypatch):
    monkeypatch.setenv("DOCRESOLVE_ALLOW_PYTESSERACT", "0")

    with pytest.raises(RuntimeError):
        TesseractEngine()
