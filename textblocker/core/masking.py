"""Masking instructions and output-complexity control."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from textblocker.core.types import MaskInstruction, Region

logger = logging.getLogger(__name__)

MASK_TAIL_SECONDS = 0.5


def collapse_regions(regions: Sequence[Region], max_count: int) -> list[Region]:
    """Bound the number of regions handed to the encoder.

    Below or at the ceiling the regions come back unchanged (as copies). Above
    it, a single region covering every box and the full time span replaces them.
    """

    if not regions or len(regions) <= max_count:
        return [r.copy() for r in regions]

    cover = regions[0].box
    start = regions[0].start_time
    end = regions[0].end_time
    for region in regions[1:]:
        cover = cover.union(region.box)
        start = min(start, region.start_time)
        end = max(end, region.end_time)

    logger.warning(
        "Region count %d exceeds max %d, collapsing to one region", len(regions), max_count
    )
    return [Region(box=cover, start_time=start, end_time=end)]


def region_to_instruction(region: Region, padding: int, color: str = "black") -> MaskInstruction:
    """Inflate a region by `padding` pixels; the negative side clamps at 0."""

    box = region.box
    pad = int(padding)
    return MaskInstruction(
        x=max(0, int(box.x) - pad),
        y=max(0, int(box.y) - pad),
        width=int(box.width) + pad * 2,
        height=int(box.height) + pad * 2,
        start_time=region.start_time,
        end_time=region.end_time,
        color=color,
    )


def build_mask_instructions(regions: Iterable[Region], padding: int) -> list[MaskInstruction]:
    return [region_to_instruction(r, padding) for r in regions]


def filter_spec(
    instructions: Iterable[MaskInstruction], tail_seconds: float = MASK_TAIL_SECONDS
) -> str:
    """Join instructions into a single ffmpeg `-vf` filter chain."""

    return ",".join(i.to_filter(tail_seconds) for i in instructions)
