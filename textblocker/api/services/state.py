"""In-process state for settings and the job queue.

FastAPI routes use this module to access (and hot-reload) the settings and the
singleton `JobQueue`. Settings changes apply to the next job the queue starts.
"""

from __future__ import annotations

from threading import RLock

from textblocker.api.services.queue import JobQueue
from textblocker.core.config.settings import BlockerSettings, load_settings, settings_to_dict
from textblocker.core.detectors.paddle import PaddleTextDetector
from textblocker.core.pipeline import TextBlockPipeline
from textblocker.core.sources.youtube import YouTubeFetcher
from textblocker.core.video.ffmpeg import FFmpegEncoder, FrameSampler

_settings: BlockerSettings | None = None
_queue: JobQueue | None = None
_detector: PaddleTextDetector | None = None
_lock = RLock()


def get_settings() -> BlockerSettings:
    """Return cached settings, loading them on first use."""

    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
    return _settings


def reload_settings(data: dict | None = None) -> BlockerSettings:
    """Reload settings from YAML/env.

    Args:
        data: Optional patch dict merged into the loaded settings.
    """

    global _settings
    with _lock:
        base = load_settings()
        if data:
            _settings = BlockerSettings(**{**settings_to_dict(base), **data})
        else:
            _settings = base
    return _settings


def _get_detector() -> PaddleTextDetector:
    # OCR models are expensive to load; one detector serves every job.
    global _detector
    with _lock:
        if _detector is None:
            _detector = PaddleTextDetector()
    return _detector


def make_fetcher() -> YouTubeFetcher:
    settings = get_settings()
    return YouTubeFetcher(settings.ytdlp_format, settings.ffmpeg_path)


def make_pipeline() -> TextBlockPipeline:
    """Build a pipeline from the current settings."""

    settings = get_settings()
    return TextBlockPipeline(
        settings,
        sampler=FrameSampler(),
        detector=_get_detector(),
        encoder=FFmpegEncoder(settings.ffmpeg_path, settings.ffprobe_path),
        fetcher=make_fetcher(),
    )


def get_queue() -> JobQueue:
    """Return the singleton queue, creating and starting it if needed."""

    global _queue
    with _lock:
        if _queue is None:
            _queue = JobQueue(make_pipeline, make_fetcher)
            _queue.start()
    return _queue


def stop_queue() -> None:
    """Stop and discard the singleton queue (if present)."""

    global _queue
    with _lock:
        if _queue is not None:
            _queue.stop()
            _queue = None
