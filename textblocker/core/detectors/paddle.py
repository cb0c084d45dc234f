"""Text detection backed by PaddleOCR.

Detectors return boxes in normalized [0, 1] coordinates together with the
origin convention they use; `denormalize_boxes` maps them onto source pixels.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol, Sequence

import numpy as np

from textblocker.core.errors import DetectorError
from textblocker.core.types import Box, Frame

logger = logging.getLogger(__name__)

ORIGIN_TOP_LEFT = "top-left"
ORIGIN_BOTTOM_LEFT = "bottom-left"

# Languages served by PaddleOCR's shared latin recognition model.
_LATIN_LANGS = {"en", "fr", "de", "es", "it", "pt", "nl"}
_PADDLE_LANG = {"fr": "french", "de": "german"}


class TextDetector(Protocol):
    origin: str

    def detect(self, frame: Frame, languages: Sequence[str]) -> list[Box]:
        """Return normalized text boxes for one frame."""


def denormalize_boxes(
    boxes: Sequence[Box], width: int, height: int, origin: str = ORIGIN_TOP_LEFT
) -> list[Box]:
    """Scale normalized boxes to pixels with a top-left origin.

    Bottom-left boxes (y measured up from the bottom edge) are flipped.
    """

    if origin not in (ORIGIN_TOP_LEFT, ORIGIN_BOTTOM_LEFT):
        raise ValueError(f"Unknown box origin: {origin}")
    out: list[Box] = []
    for b in boxes:
        y = b.y if origin == ORIGIN_TOP_LEFT else 1.0 - b.y - b.height
        out.append(Box(b.x * width, y * height, b.width * width, b.height * height))
    return out


def paddle_lang(languages: Sequence[str]) -> str:
    """Pick the PaddleOCR model language for a set of hints."""

    langs = [str(x).strip().lower() for x in languages if str(x).strip()]
    if not langs:
        return "en"
    if len(set(langs)) == 1:
        return _PADDLE_LANG.get(langs[0], langs[0])
    if all(lang in _LATIN_LANGS for lang in langs):
        return "latin"
    return _PADDLE_LANG.get(langs[0], langs[0])


def _polygon_bounds(poly: Any) -> tuple[float, float, float, float] | None:
    """(x1, y1, x2, y2) for a 4-point polygon or an xyxy row."""

    try:
        arr = np.asarray(poly, dtype=float)
    except (TypeError, ValueError):
        return None
    if arr.ndim == 2 and arr.shape[1] == 2 and arr.shape[0] >= 3:
        return float(arr[:, 0].min()), float(arr[:, 1].min()), float(arr[:, 0].max()), float(arr[:, 1].max())
    if arr.ndim == 1 and arr.shape[0] == 4:
        x1, y1, x2, y2 = arr.tolist()
        return min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2)
    return None


def boxes_from_result(item: Any, width: int, height: int) -> list[Box]:
    """Read pixel boxes out of one PaddleOCR result and normalize them."""

    if width <= 0 or height <= 0:
        return []
    shapes: Any = None
    for key in ("rec_boxes", "rec_polys", "dt_polys"):
        try:
            value = item[key]
        except (KeyError, TypeError, IndexError):
            continue
        if value is not None and len(value) > 0:
            shapes = value
            break
    if shapes is None:
        return []

    out: list[Box] = []
    for shape in shapes:
        bounds = _polygon_bounds(shape)
        if bounds is None:
            continue
        x1, y1, x2, y2 = bounds
        x1, x2 = max(0.0, x1), min(float(width), x2)
        y1, y2 = max(0.0, y1), min(float(height), y2)
        box = Box(x1 / width, y1 / height, (x2 - x1) / width, (y2 - y1) / height)
        if box.area > 0:
            out.append(box)
    return out


class PaddleTextDetector:
    """Runs PaddleOCR text detection on BGR frames.

    One engine is created lazily per model language and reused across frames.
    """

    origin = ORIGIN_TOP_LEFT

    def __init__(self, use_textline_orientation: bool = False) -> None:
        self.use_textline_orientation = use_textline_orientation
        self._engines: dict[str, Any] = {}
        self._lock = threading.Lock()

    def _create_engine(self, lang: str) -> Any:
        try:
            from paddleocr import PaddleOCR
        except ImportError as e:
            msg = "PaddleOCR not found. Please install via `pip install paddlepaddle paddleocr`"
            logger.error(msg)
            raise DetectorError(msg) from e

        logger.info("Initializing PaddleOCR (lang=%s)...", lang)
        # Older releases still accept show_log; newer ones reject it.
        try:
            return PaddleOCR(
                use_textline_orientation=self.use_textline_orientation,
                lang=lang,
                show_log=False,
            )
        except Exception as e:
            if "show_log" not in str(e):
                raise DetectorError(f"Failed to initialize PaddleOCR: {e}") from e
            logger.warning("PaddleOCR rejected show_log argument; retrying with compatible kwargs")
        try:
            return PaddleOCR(use_textline_orientation=self.use_textline_orientation, lang=lang)
        except Exception as e:
            raise DetectorError(f"Failed to initialize PaddleOCR: {e}") from e

    def engine(self, languages: Sequence[str]) -> Any:
        lang = paddle_lang(languages)
        with self._lock:
            if lang not in self._engines:
                self._engines[lang] = self._create_engine(lang)
            return self._engines[lang]

    def detect(self, frame: Frame, languages: Sequence[str]) -> list[Box]:
        if frame is None or frame.size == 0:
            return []
        engine = self.engine(languages)
        h, w = frame.shape[:2]
        try:
            results = engine.predict(frame)
        except Exception as e:
            raise DetectorError(f"Text detection failed: {e}") from e

        boxes: list[Box] = []
        for item in results or []:
            boxes.extend(boxes_from_result(item, w, h))
        return boxes
