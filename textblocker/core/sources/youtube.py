"""Remote video source backed by yt-dlp."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yt_dlp

from textblocker.core.config.settings import DEFAULT_YTDLP_FORMAT
from textblocker.core.errors import FetchError

logger = logging.getLogger(__name__)

FetchProgress = Callable[[str, float], None]

STAGE_DOWNLOAD = "download"
STAGE_MERGE = "merge"

_UNSAFE_CHARS = re.compile(r'[:/\\?%*|"<>]')
MAX_FILENAME_LENGTH = 100


def sanitize_filename(name: str) -> str:
    """Drop characters that are unsafe in file names and cap the length."""

    cleaned = _UNSAFE_CHARS.sub("", name).strip()
    return cleaned[:MAX_FILENAME_LENGTH] or "video"


@dataclass(frozen=True)
class RemoteVideo:
    id: str
    title: str
    url: str
    duration: float | None = None


@dataclass(frozen=True)
class FetchResult:
    path: Path
    video: RemoteVideo


def _video_from_info(info: dict[str, Any], fallback_url: str) -> RemoteVideo:
    video_id = str(info.get("id") or "")
    url = info.get("webpage_url") or info.get("url") or fallback_url
    if video_id and not str(url).startswith("http"):
        url = f"https://www.youtube.com/watch?v={video_id}"
    duration = info.get("duration")
    return RemoteVideo(
        id=video_id,
        title=str(info.get("title") or video_id or fallback_url),
        url=str(url),
        duration=float(duration) if duration is not None else None,
    )


class _DownloadProgress:
    """Aggregate per-format yt-dlp hook calls into one download fraction."""

    def __init__(self, on_progress: FetchProgress | None) -> None:
        self.on_progress = on_progress
        self.finished = 0
        self.best = 0.0

    def _emit(self, stage: str, fraction: float) -> None:
        if self.on_progress is not None:
            self.on_progress(stage, fraction)

    def download_hook(self, d: dict[str, Any]) -> None:
        info = d.get("info_dict") or {}
        parts = max(1, len(info.get("requested_formats") or []) or 1)
        status = d.get("status")
        if status == "finished":
            self.finished += 1
            current = 0.0
        elif status == "downloading":
            total = d.get("total_bytes") or d.get("total_bytes_estimate") or 0
            done = d.get("downloaded_bytes") or 0
            current = min(1.0, done / total) if total else 0.0
        else:
            return
        fraction = min(1.0, (min(self.finished, parts) + current) / parts)
        if fraction > self.best:
            self.best = fraction
            self._emit(STAGE_DOWNLOAD, fraction)

    def postprocessor_hook(self, d: dict[str, Any]) -> None:
        if d.get("postprocessor") != "Merger":
            return
        if d.get("status") == "started":
            self._emit(STAGE_MERGE, 0.0)
        elif d.get("status") == "finished":
            self._emit(STAGE_MERGE, 1.0)


class YouTubeFetcher:
    """Resolve and download remote videos as merged mp4 files."""

    def __init__(self, video_format: str = DEFAULT_YTDLP_FORMAT, ffmpeg_path: str | None = None) -> None:
        self.video_format = video_format
        self.ffmpeg_path = ffmpeg_path

    def _base_opts(self) -> dict[str, Any]:
        opts: dict[str, Any] = {"quiet": True, "no_warnings": True, "noprogress": True}
        if self.ffmpeg_path:
            opts["ffmpeg_location"] = self.ffmpeg_path
        return opts

    def get_video_info(self, url: str) -> RemoteVideo:
        opts = {**self._base_opts(), "skip_download": True, "noplaylist": True}
        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                info = ydl.extract_info(url, download=False)
        except yt_dlp.utils.DownloadError as e:
            raise FetchError(f"Failed to read video info: {e}") from e
        if not info:
            raise FetchError(f"No video info for {url}")
        return _video_from_info(info, url)

    def get_playlist_videos(self, url: str) -> list[RemoteVideo]:
        opts = {**self._base_opts(), "skip_download": True, "extract_flat": "in_playlist"}
        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                info = ydl.extract_info(url, download=False)
        except yt_dlp.utils.DownloadError as e:
            raise FetchError(f"Failed to read playlist: {e}") from e
        entries = (info or {}).get("entries") or []
        videos = [_video_from_info(entry, url) for entry in entries if entry and entry.get("id")]
        logger.info("Playlist %s has %d videos", url, len(videos))
        return videos

    def download(
        self,
        url: str,
        output_dir: str | Path,
        on_progress: FetchProgress | None = None,
    ) -> FetchResult:
        """Download `url` into `output_dir` as `<title>_<id>.mp4`."""

        outdir = Path(output_dir)
        outdir.mkdir(parents=True, exist_ok=True)
        video = self.get_video_info(url)
        stem = f"{sanitize_filename(video.title)}_{video.id}" if video.id else sanitize_filename(video.title)

        progress = _DownloadProgress(on_progress)
        opts = {
            **self._base_opts(),
            "format": self.video_format,
            "merge_output_format": "mp4",
            "noplaylist": True,
            "outtmpl": str(outdir / f"{stem}.%(ext)s"),
            "progress_hooks": [progress.download_hook],
            "postprocessor_hooks": [progress.postprocessor_hook],
        }
        logger.info("Downloading %s -> %s", url, outdir)
        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                ydl.download([url])
        except yt_dlp.utils.DownloadError as e:
            raise FetchError(f"Failed to download video: {e}") from e

        path = outdir / f"{stem}.mp4"
        if not path.exists():
            candidates = sorted(outdir.glob(f"{stem}.*"))
            if not candidates:
                raise FetchError("Downloaded video file not found")
            path = candidates[0]
        return FetchResult(path=path, video=video)
