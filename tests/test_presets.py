import pytest

from textblocker.core.config.presets import PRESETS, list_presets, preset_patch
from textblocker.core.config.settings import BlockerSettings


def test_list_presets_has_labels_and_settings():
    presets = list_presets()
    ids = [p["id"] for p in presets]
    assert ids == ["default", "fast_preview", "high_quality", "aggressive"]
    assert all(p["label"] for p in presets)
    assert presets[0]["settings"]["sample_fps"] == 1.0


def test_preset_patch_returns_copy():
    patch = preset_patch("fast_preview")
    patch["sample_fps"] = 99
    assert PRESETS["fast_preview"]["sample_fps"] == 0.5


def test_preset_patch_unknown_raises():
    with pytest.raises(KeyError):
        preset_patch("nope")


@pytest.mark.parametrize("preset_id", list(PRESETS))
def test_every_preset_is_valid_settings(preset_id):
    s = BlockerSettings(**preset_patch(preset_id))
    assert s.quality in {"lossless", "high", "balanced", "fast"}
