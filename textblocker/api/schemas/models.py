"""Pydantic models for the HTTP/WS API."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from textblocker.core.config.settings import DEFAULT_LANGUAGES, DEFAULT_YTDLP_FORMAT, QUALITY_CHOICES
from textblocker.core.jobs import Job, display_text, overall_progress


class ConfigSchema(BaseModel):
    """Runtime configuration payload."""

    ocr_height: int = Field(default=360, ge=16)
    sample_fps: float = Field(default=1.0, gt=0.0)
    padding: int = Field(default=14, ge=0)
    merge_pad: int = Field(default=6, ge=0)
    scene_threshold: int = Field(default=8, ge=0, le=64)
    force_interval: float = Field(default=2.0, ge=0.0)
    max_gap_seconds: float = Field(default=2.0, ge=0.0)
    quality: str = "balanced"
    languages: list[str] = Field(default_factory=lambda: list(DEFAULT_LANGUAGES))
    max_filters: int = Field(default=1200, ge=1)
    skip_similar: bool = True
    output_dir: str | None = None
    work_dir: str | None = None
    ffmpeg_path: str | None = None
    ffprobe_path: str | None = None
    ytdlp_format: str = DEFAULT_YTDLP_FORMAT
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator("quality")
    @classmethod
    def _validate_quality(cls, v: str) -> str:
        v2 = str(v).strip().lower()
        if v2 not in QUALITY_CHOICES:
            raise ValueError("quality must be lossless|high|balanced|fast")
        return v2


class FileJobRequest(BaseModel):
    path: str


class FolderJobRequest(BaseModel):
    path: str


class UrlJobRequest(BaseModel):
    url: str = Field(min_length=1)


class JobSchema(BaseModel):
    """Job snapshot payload."""

    id: str
    title: str
    kind: str
    input_path: str
    source_url: str | None = None
    phase: str
    progress: float
    overall_progress: float
    status_text: str
    message: str | None = None
    output_path: str | None = None
    detected_region_count: int = 0
    cancellation_requested: bool = False
    processing_started_at: float | None = None
    created_at: float

    @classmethod
    def from_job(cls, job: Job) -> JobSchema:
        return cls(
            id=job.id,
            title=job.title or job.input_path.stem,
            kind=job.kind.value,
            input_path=str(job.input_path),
            source_url=job.source_url,
            phase=job.status.phase.value,
            progress=job.status.progress,
            overall_progress=overall_progress(job.status),
            status_text=display_text(job.status),
            message=job.status.message,
            output_path=str(job.output_path) if job.output_path else None,
            detected_region_count=job.detected_region_count,
            cancellation_requested=job.cancellation_requested,
            processing_started_at=job.processing_started_at,
            created_at=job.created_at,
        )
