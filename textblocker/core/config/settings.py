"""Pipeline configuration.

Settings are loaded from YAML defaults and overridden by environment variables
prefixed with `TB_`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

QUALITY_CHOICES = ("lossless", "high", "balanced", "fast")
DEFAULT_LANGUAGES = ["en", "fr", "de", "es", "it", "pt", "nl"]
DEFAULT_YTDLP_FORMAT = (
    "bestvideo[height<=720][ext=mp4]+bestaudio[ext=m4a]/best[height<=720][ext=mp4]/best"
)


class BlockerSettings(BaseSettings):
    """Runtime configuration loaded from YAML defaults and `TB_` env overrides."""

    # Sampling: frames are decoded at `sample_fps` and resized to `ocr_height` for detection.
    ocr_height: int = 360
    sample_fps: float = 1.0
    # Mask inflation in pixels around each region.
    padding: int = 14
    # Tolerance (pixels) for merging boxes within a frame and matching regions across frames.
    merge_pad: int = 6
    # Max Hamming distance at which two frames count as similar.
    scene_threshold: int = 8
    # Seconds of video after which detection is forced even for similar frames.
    force_interval: float = 2.0
    # A region is only extended if it ended at most this many seconds before the new frame.
    max_gap_seconds: float = 2.0
    quality: str = Field("balanced", description="lossless|high|balanced|fast")
    languages: list[str] = Field(default_factory=lambda: list(DEFAULT_LANGUAGES))
    # Above this many regions the mask collapses into one covering region.
    max_filters: int = 1200
    skip_similar: bool = True

    output_dir: str | None = None
    work_dir: str | None = None
    ffmpeg_path: str | None = None
    ffprobe_path: str | None = None
    ytdlp_format: str = DEFAULT_YTDLP_FORMAT

    log_level: str = "INFO"
    log_file: str | None = None

    model_config = SettingsConfigDict(env_prefix="TB_", validate_assignment=True)

    @field_validator("ocr_height")
    @classmethod
    def _validate_ocr_height(cls, v: int) -> int:
        if v < 16:
            raise ValueError("ocr_height must be >= 16")
        return v

    @field_validator("sample_fps")
    @classmethod
    def _validate_sample_fps(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("sample_fps must be > 0")
        return float(v)

    @field_validator("padding", "merge_pad")
    @classmethod
    def _validate_non_negative_px(cls, v: int) -> int:
        if v < 0:
            raise ValueError("padding values must be >= 0")
        return v

    @field_validator("scene_threshold")
    @classmethod
    def _validate_scene_threshold(cls, v: int) -> int:
        if not 0 <= v <= 64:
            raise ValueError("scene_threshold must be in [0, 64]")
        return v

    @field_validator("force_interval", "max_gap_seconds")
    @classmethod
    def _validate_non_negative_seconds(cls, v: float) -> float:
        if v < 0:
            raise ValueError("intervals must be >= 0")
        return float(v)

    @field_validator("quality")
    @classmethod
    def _validate_quality(cls, v: str) -> str:
        v2 = str(v).strip().lower()
        if v2 not in QUALITY_CHOICES:
            raise ValueError("quality must be lossless|high|balanced|fast")
        return v2

    @field_validator("languages")
    @classmethod
    def _validate_languages(cls, v: list[str]) -> list[str]:
        langs = [str(x).strip() for x in v if str(x).strip()]
        if not langs:
            raise ValueError("languages must not be empty")
        return langs

    @field_validator("max_filters")
    @classmethod
    def _validate_max_filters(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_filters must be >= 1")
        return v

    @property
    def frame_duration(self) -> float:
        return 1.0 / self.sample_fps


def settings_to_dict(settings: BlockerSettings) -> dict[str, Any]:
    return settings.model_dump()


def _config_path() -> Path:
    """Return the YAML configuration path (defaults to config/textblocker.config.yml)."""

    return Path(os.getenv("TB_CONFIG", "config/textblocker.config.yml"))


def load_settings() -> BlockerSettings:
    """Load settings from YAML and environment variables.

    YAML provides defaults; environment variables override.
    """

    data: dict[str, Any] = {}
    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    env_settings = BlockerSettings()
    env_overrides: dict[str, Any] = {
        name: getattr(env_settings, name) for name in env_settings.model_fields_set
    }

    merged = {**data, **env_overrides}
    return BlockerSettings(**merged)
