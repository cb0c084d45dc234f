from __future__ import annotations

from typing import Any

# Trade-offs between detection freshness, mask coverage and encode cost.
#
# Notes:
# - sample_fps / force_interval: how often frames are looked at and re-detected
# - merge_pad / scene_threshold: how eagerly boxes and frames are treated as "the same"
# - padding: extra pixels blacked out around each region


PRESETS: dict[str, dict[str, Any]] = {
    "default": {
        "ocr_height": 360,
        "sample_fps": 1.0,
        "padding": 14,
        "merge_pad": 6,
        "scene_threshold": 8,
        "force_interval": 2.0,
        "quality": "balanced",
    },
    # Quick look; misses short-lived text.
    "fast_preview": {
        "ocr_height": 240,
        "sample_fps": 0.5,
        "padding": 12,
        "merge_pad": 8,
        "scene_threshold": 12,
        "force_interval": 3.0,
        "quality": "fast",
    },
    "high_quality": {
        "ocr_height": 480,
        "sample_fps": 2.0,
        "padding": 16,
        "merge_pad": 4,
        "scene_threshold": 6,
        "force_interval": 1.0,
        "quality": "high",
    },
    # Larger masks, looser merging.
    "aggressive": {
        "ocr_height": 360,
        "sample_fps": 1.0,
        "padding": 20,
        "merge_pad": 10,
        "scene_threshold": 10,
        "force_interval": 2.0,
        "quality": "balanced",
    },
}


PRESET_LABELS: dict[str, str] = {
    "default": "Default",
    "fast_preview": "Fast Preview",
    "high_quality": "High Quality",
    "aggressive": "Aggressive",
}


def list_presets() -> list[dict[str, Any]]:
    return [
        {
            "id": preset_id,
            "label": PRESET_LABELS.get(preset_id, preset_id),
            "settings": PRESETS[preset_id],
        }
        for preset_id in PRESETS.keys()
    ]


def preset_patch(preset_id: str) -> dict[str, Any]:
    if preset_id not in PRESETS:
        raise KeyError(preset_id)
    return dict(PRESETS[preset_id])
