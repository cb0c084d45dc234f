"""Difference-hash (dHash) fingerprints for cheap frame similarity checks.

A frame is shrunk to a 9x8 luminance grid; each of the 8x8 horizontal neighbour
pairs contributes one bit (1 when the left pixel is strictly brighter). Bits are
ordered row-major with bit 63 holding the first comparison of the first row.
"""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from textblocker.core.types import Fingerprint, Frame

HASH_WIDTH = 9
HASH_HEIGHT = 8
HASH_BITS = (HASH_WIDTH - 1) * HASH_HEIGHT


def _to_gray(frame: Frame) -> np.ndarray:
    if frame.ndim == 2:
        return frame
    channels = frame.shape[2]
    if channels == 1:
        return frame[:, :, 0]
    if channels == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)


def fingerprint(frame: Frame | None) -> Fingerprint:
    """Compute the 64-bit dHash of a frame.

    Degenerate input (None, empty or zero-sized arrays) yields 0 rather than an
    error.
    """

    if frame is None or frame.size == 0 or frame.ndim not in (2, 3):
        return 0
    h, w = frame.shape[:2]
    if h == 0 or w == 0:
        return 0

    gray = _to_gray(frame)
    if gray.dtype != np.uint8:
        gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    small = cv2.resize(gray, (HASH_WIDTH, HASH_HEIGHT), interpolation=cv2.INTER_AREA)
    small = small.astype(np.int16)

    diff = small[:, :-1] > small[:, 1:]
    value = 0
    for bit in diff.flatten():
        value = (value << 1) | int(bit)
    return value


def fingerprint_file(path: str | Path) -> Fingerprint:
    """Fingerprint an image on disk; unreadable files hash to 0."""

    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    return fingerprint(image)


def distance(a: Fingerprint, b: Fingerprint) -> int:
    """Hamming distance between two fingerprints (0..64)."""

    return bin((a ^ b) & ((1 << HASH_BITS) - 1)).count("1")


def similar(a: Fingerprint, b: Fingerprint, threshold: int) -> bool:
    return distance(a, b) <= threshold
