import sys

import numpy as np
import pytest

from textblocker.core.detectors import paddle
from textblocker.core.errors import DetectorError
from textblocker.core.types import Box


class FakeEngine:
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.frames = []

    def predict(self, frame):
        self.frames.append(frame)
        if self.error:
            raise self.error
        return self.results


def test_denormalize_top_left():
    boxes = paddle.denormalize_boxes([Box(0.1, 0.2, 0.5, 0.25)], 200, 100)
    assert boxes == [Box(20, 20, 100, 25)]


def test_denormalize_bottom_left_flips_y():
    boxes = paddle.denormalize_boxes([Box(0.1, 0.2, 0.5, 0.25)], 200, 100, origin="bottom-left")
    assert boxes == [Box(20, pytest.approx(55), 100, 25)]


def test_denormalize_rejects_unknown_origin():
    with pytest.raises(ValueError):
        paddle.denormalize_boxes([], 10, 10, origin="center")


@pytest.mark.parametrize(
    "languages, expected",
    [
        (["en"], "en"),
        (["de"], "german"),
        (["fr", "fr"], "french"),
        (["en", "fr", "de"], "latin"),
        (["ja", "en"], "ja"),
        ([], "en"),
    ],
)
def test_paddle_lang(languages, expected):
    assert paddle.paddle_lang(languages) == expected


def test_boxes_from_result_prefers_rec_boxes():
    item = {
        "rec_boxes": np.array([[10, 20, 60, 40]]),
        "dt_polys": [np.array([[0, 0], [1, 0], [1, 1], [0, 1]])],
    }
    assert paddle.boxes_from_result(item, 200, 100) == [Box(0.05, 0.2, 0.25, 0.2)]


def test_boxes_from_result_reads_polygons_and_clips():
    item = {"rec_polys": [np.array([[-10, 90], [50, 90], [50, 120], [-10, 120]])]}
    (box,) = paddle.boxes_from_result(item, 100, 100)
    assert box == Box(0.0, 0.9, 0.5, 0.1)


def test_boxes_from_result_handles_empty_items():
    assert paddle.boxes_from_result({}, 100, 100) == []
    assert paddle.boxes_from_result({"rec_boxes": np.zeros((0, 4))}, 100, 100) == []


def test_detect_uses_cached_engine():
    detector = paddle.PaddleTextDetector()
    engine = FakeEngine(results=[{"rec_boxes": np.array([[10, 20, 60, 40]])}])
    detector._engines["en"] = engine
    frame = np.zeros((100, 200, 3), dtype=np.uint8)

    first = detector.detect(frame, ["en"])
    second = detector.detect(frame, ["en"])

    assert first == second == [Box(0.05, 0.2, 0.25, 0.2)]
    assert len(engine.frames) == 2
    assert detector.origin == "top-left"


def test_detect_wraps_engine_errors():
    detector = paddle.PaddleTextDetector()
    detector._engines["en"] = FakeEngine(error=RuntimeError("model crashed"))
    with pytest.raises(DetectorError, match="model crashed"):
        detector.detect(np.zeros((10, 10, 3), dtype=np.uint8), ["en"])


def test_empty_frame_skips_engine():
    detector = paddle.PaddleTextDetector()
    assert detector.detect(np.zeros((0, 0, 3), dtype=np.uint8), ["en"]) == []
    assert detector._engines == {}


def test_missing_paddleocr_raises_detector_error(monkeypatch):
    monkeypatch.setitem(sys.modules, "paddleocr", None)
    detector = paddle.PaddleTextDetector()
    with pytest.raises(DetectorError, match="PaddleOCR not found"):
        detector.detect(np.zeros((10, 10, 3), dtype=np.uint8), ["en"])
