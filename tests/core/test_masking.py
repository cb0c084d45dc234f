from textblocker.core.masking import (
    build_mask_instructions,
    collapse_regions,
    filter_spec,
    region_to_instruction,
)
from textblocker.core.types import Box, MaskInstruction, Region


def test_collapse_is_noop_at_or_below_max():
    regions = [Region(Box(0, 0, 5, 5), 0.0, 1.0), Region(Box(50, 50, 5, 5), 2.0, 3.0)]
    assert collapse_regions(regions, 2) == regions
    assert collapse_regions([], 0) == []


def test_collapse_above_max_covers_everything():
    regions = [
        Region(Box(10, 10, 5, 5), 1.0, 2.0),
        Region(Box(50, 40, 10, 10), 0.5, 1.5),
        Region(Box(0, 30, 5, 5), 3.0, 4.0),
    ]
    collapsed = collapse_regions(regions, 2)
    assert len(collapsed) == 1
    assert collapsed[0].box == Box(0, 10, 60, 40)
    assert (collapsed[0].start_time, collapsed[0].end_time) == (0.5, 4.0)


def test_instruction_inflates_and_clamps():
    inst = region_to_instruction(Region(Box(5, 10, 20, 30), 0.0, 1.0), padding=5)
    assert (inst.x, inst.y, inst.width, inst.height) == (0, 5, 30, 40)

    inst = region_to_instruction(Region(Box(2, 3, 20, 30), 0.0, 1.0), padding=5)
    assert (inst.x, inst.y) == (0, 0)


def test_instruction_truncates_fractional_pixels():
    inst = region_to_instruction(Region(Box(10.9, 20.7, 100.6, 50.2), 0.0, 1.0), padding=4)
    assert (inst.x, inst.y, inst.width, inst.height) == (6, 16, 108, 58)


def test_drawbox_filter_text():
    inst = build_mask_instructions([Region(Box(10, 20, 100, 50), 1.0, 2.5)], padding=5)[0]
    assert inst.to_filter() == (
        "drawbox=x=5:y=15:w=110:h=60:color=black:t=fill:enable='between(t,1.00,3.00)'"
    )


def test_filter_spec_joins_with_commas():
    a = MaskInstruction(0, 0, 10, 10, 0.0, 1.0)
    b = MaskInstruction(20, 20, 10, 10, 2.0, 3.0)
    spec = filter_spec([a, b], tail_seconds=0.0)
    assert spec.count("drawbox=") == 2
    assert spec.split(",drawbox")[0] == a.to_filter(0.0)
    assert filter_spec([]) == ""
