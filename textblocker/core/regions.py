"""Region consolidation.

Turns raw per-frame text boxes into a small set of time-bounded regions:

- within a frame, boxes whose padded rectangles overlap are unioned until a
  fixed point is reached;
- across frames, a merged box extends an existing region when its geometry is
  within `merge_pad` of the region's box and the region ended recently enough,
  otherwise it opens a new region.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from textblocker.core.types import Box, FrameSample, Region

DEFAULT_MAX_GAP_SECONDS = 2.0


def merge_boxes(boxes: Iterable[Box], pad: float) -> list[Box]:
    """Union boxes whose `pad`-expanded rectangles intersect.

    Worklist pass: a popped box that overlaps an accepted box is unioned with it
    and pushed back for another round; otherwise it is accepted. Accepted boxes
    never overlap each other (padded), so the result is a fixed point. Every
    union removes one box, bounding the work at O(n^2) comparisons per merge.
    """

    pending: deque[Box] = deque(boxes)
    accepted: list[Box] = []

    while pending:
        cur = pending.popleft()
        padded = cur.expand(pad)
        for i, other in enumerate(accepted):
            if padded.intersects(other.expand(pad)):
                del accepted[i]
                pending.appendleft(cur.union(other))
                break
        else:
            accepted.append(cur)

    return accepted


def boxes_similar(a: Box, b: Box, tolerance: float) -> bool:
    """Per-field tolerance check (x, y, width, height).

    Coarse stand-in for an overlap test; boxes with very different aspect
    ratios can be misjudged.
    """

    return (
        abs(a.x - b.x) <= tolerance
        and abs(a.y - b.y) <= tolerance
        and abs(a.width - b.width) <= tolerance
        and abs(a.height - b.height) <= tolerance
    )


class RegionConsolidator:
    """Incremental cross-frame consolidation.

    Samples must be fed in ascending timestamp order; region extension depends
    on seeing detections chronologically.
    """

    def __init__(
        self,
        merge_pad: float,
        frame_duration: float,
        max_gap_seconds: float = DEFAULT_MAX_GAP_SECONDS,
    ) -> None:
        self.merge_pad = float(merge_pad)
        self.frame_duration = float(frame_duration)
        self.max_gap_seconds = float(max_gap_seconds)
        self._regions: list[Region] = []
        self._last_timestamp: float | None = None

    def _find_extendable(self, box: Box, timestamp: float) -> Region | None:
        for region in self._regions:
            if timestamp - region.end_time > self.max_gap_seconds:
                continue
            if boxes_similar(region.box, box, self.merge_pad):
                return region
        return None

    def add(self, sample: FrameSample) -> None:
        """Fold one frame's detections into the region set."""

        if self._last_timestamp is not None and sample.timestamp < self._last_timestamp:
            raise ValueError(
                f"samples must be added in timestamp order "
                f"({sample.timestamp} < {self._last_timestamp})"
            )
        self._last_timestamp = sample.timestamp

        if not sample.boxes:
            return

        end = sample.timestamp + self.frame_duration
        for box in merge_boxes(sample.boxes, self.merge_pad):
            region = self._find_extendable(box, sample.timestamp)
            if region is not None:
                # Only the time extent grows; the box keeps its first geometry.
                region.end_time = max(region.end_time, end)
            else:
                self._regions.append(Region(box=box, start_time=sample.timestamp, end_time=end))

    def regions(self) -> list[Region]:
        """Return copies of every region opened so far, in creation order."""

        return [r.copy() for r in self._regions]

    def __len__(self) -> int:
        return len(self._regions)


def consolidate(
    samples: Iterable[FrameSample],
    merge_pad: float,
    frame_duration: float,
    max_gap_seconds: float = DEFAULT_MAX_GAP_SECONDS,
) -> list[Region]:
    """Consolidate a batch of samples (sorted by timestamp first)."""

    consolidator = RegionConsolidator(merge_pad, frame_duration, max_gap_seconds)
    for sample in sorted(samples, key=lambda s: (s.timestamp, s.index)):
        consolidator.add(sample)
    return consolidator.regions()
