"""Per-frame detection gate.

Skips text detection on frames that look like the previous one, but never for
longer than a fixed number of frames so slowly drifting text is re-detected.
"""

from __future__ import annotations

from textblocker.core.fingerprint import similar
from textblocker.core.types import Box, Fingerprint


def force_interval_frames(force_interval_seconds: float, sample_fps: float) -> int:
    """Convert the force interval to a frame count at the sampling rate."""

    return int(round(float(force_interval_seconds) * float(sample_fps)))


class FrameGate:
    """Decide whether a frame needs fresh detection or can reuse the last boxes.

    Usage per frame::

        boxes = gate.check(index, fp)
        if boxes is None:
            boxes = run_detector(...)
            gate.record(index, boxes)
    """

    def __init__(
        self,
        scene_threshold: int,
        force_interval_frames: int,
        enabled: bool = True,
    ) -> None:
        self.scene_threshold = int(scene_threshold)
        self.force_interval_frames = int(force_interval_frames)
        self.enabled = bool(enabled)
        self.last_fingerprint: Fingerprint | None = None
        self.last_boxes: list[Box] = []
        self.last_detected_index = 0
        self.detections_run = 0
        self.detections_skipped = 0

    def should_reuse(self, index: int, fp: Fingerprint) -> bool:
        """Pure decision for frame `index`; does not touch gate state."""

        if not self.enabled or self.last_fingerprint is None:
            return False
        if not similar(fp, self.last_fingerprint, self.scene_threshold):
            return False
        return index - self.last_detected_index < self.force_interval_frames

    def check(self, index: int, fp: Fingerprint) -> list[Box] | None:
        """Return reused boxes for a skippable frame, or None when detection must run.

        The last fingerprint is updated on every call regardless of the outcome.
        """

        reuse = self.should_reuse(index, fp)
        self.last_fingerprint = fp
        if reuse:
            self.detections_skipped += 1
            return list(self.last_boxes)
        return None

    def record(self, index: int, boxes: list[Box]) -> None:
        """Store the result of a fresh detection for frame `index`."""

        self.last_boxes = list(boxes)
        self.last_detected_index = int(index)
        self.detections_run += 1

    def reset(self) -> None:
        self.last_fingerprint = None
        self.last_boxes = []
        self.last_detected_index = 0
        self.detections_run = 0
        self.detections_skipped = 0
