"""Shared type definitions used across the pipeline.

This module centralizes small, stable types (boxes, frame samples, regions and
masking instructions) so gate/consolidation/encoder code can stay strongly typed.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

Frame = np.ndarray

# 64-bit dHash value; only the Hamming distance between two values is meaningful.
Fingerprint = int


@dataclass(frozen=True)
class Box:
    """Axis-aligned rectangle in pixel space (top-left origin)."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        # Never negative-area.
        if self.width < 0:
            object.__setattr__(self, "width", 0.0)
        if self.height < 0:
            object.__setattr__(self, "height", 0.0)

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> Box:
        return cls(min(x1, x2), min(y1, y2), abs(x2 - x1), abs(y2 - y1))

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def expand(self, pad: float) -> Box:
        """Return the box grown outward by `pad` on all four sides."""

        return Box(self.x - pad, self.y - pad, self.width + 2 * pad, self.height + 2 * pad)

    def union(self, other: Box) -> Box:
        return Box.from_corners(
            min(self.x, other.x),
            min(self.y, other.y),
            max(self.x2, other.x2),
            max(self.y2, other.y2),
        )

    def intersects(self, other: Box) -> bool:
        """Return True when the two rectangles share a positive-area overlap."""

        return (
            self.x < other.x2
            and other.x < self.x2
            and self.y < other.y2
            and other.y < self.y2
        )


@dataclass(frozen=True)
class FrameSample:
    """One sampled frame after the gate decision (boxes reused or fresh)."""

    index: int
    timestamp: float
    boxes: tuple[Box, ...]
    fingerprint: Fingerprint


@dataclass
class Region:
    """A rectangle plus the time interval during which it must be masked.

    Mutable while a consolidation pass owns it; handed downstream by value.
    """

    box: Box
    start_time: float
    end_time: float

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def copy(self) -> Region:
        return Region(box=self.box, start_time=self.start_time, end_time=self.end_time)


@dataclass(frozen=True)
class MaskInstruction:
    """Inflated, integer rectangle + interval passed to the encoder."""

    x: int
    y: int
    width: int
    height: int
    start_time: float
    end_time: float
    color: str = "black"

    def to_filter(self, tail_seconds: float = 0.5) -> str:
        """Render an ffmpeg `drawbox` filter for this instruction.

        `tail_seconds` keeps the box up a little past the end of the interval.
        """

        enable = f"between(t,{self.start_time:.2f},{self.end_time + tail_seconds:.2f})"
        return (
            f"drawbox=x={self.x}:y={self.y}:w={self.width}:h={self.height}"
            f":color={self.color}:t=fill:enable='{enable}'"
        )
