"""Decoder and encoder adapters.

Frame sampling goes through OpenCV (`cv2.VideoCapture`); probing and the final
masked encode go through ffmpeg via ffmpeg-python. Both report fractional
progress while the blocking work runs.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import cv2
import ffmpeg

from textblocker.core.errors import DecoderError, EncoderError
from textblocker.core.masking import filter_spec
from textblocker.core.progress import ProgressCallback, ProgressTracker
from textblocker.core.types import MaskInstruction

logger = logging.getLogger(__name__)

COMMON_BIN_DIRS = (
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/usr/bin",
    "/bin",
    "/usr/sbin",
    "/sbin",
)

# Codec arguments per quality profile (ffmpeg-python output kwargs).
QUALITY_PROFILES: dict[str, dict[str, Any]] = {
    "lossless": {"vcodec": "libx264", "crf": 0, "preset": "veryslow"},
    "high": {"vcodec": "libx264", "crf": 18, "preset": "slow"},
    "balanced": {"vcodec": "libx264", "crf": 23, "preset": "medium"},
    "fast": {"vcodec": "libx264", "crf": 28, "preset": "fast"},
}


def find_executable(name: str) -> str | None:
    """Locate a tool on PATH, then in common install directories."""

    found = shutil.which(name)
    if found:
        return found
    for directory in COMMON_BIN_DIRS:
        candidate = Path(directory) / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


def _resolve_tool(explicit: str | None, name: str) -> str:
    if explicit:
        return explicit
    return find_executable(name) or name


@dataclass(frozen=True)
class VideoInfo:
    width: int
    height: int
    duration: float
    fps: float = 30.0
    bitrate: int | None = None
    pixel_format: str = "yuv420p"


def _parse_rate(rate: str | None) -> float | None:
    """Parse an ffprobe rate like "30000/1001"."""

    if not rate:
        return None
    num, _, den = str(rate).partition("/")
    try:
        n = float(num)
        d = float(den) if den else 1.0
    except ValueError:
        return None
    if d <= 0:
        return None
    return n / d


def probe(path: str | Path, ffprobe_path: str | None = None) -> VideoInfo:
    """Read resolution, duration and pixel format of the first video stream."""

    cmd = _resolve_tool(ffprobe_path, "ffprobe")
    try:
        data = ffmpeg.probe(str(path), cmd=cmd)
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors="replace") if e.stderr else str(e)
        raise DecoderError(f"ffprobe failed for {path}: {stderr.strip()}") from e
    except FileNotFoundError as e:
        raise DecoderError(f"ffprobe not installed ({cmd})") from e

    stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "video"), None)
    if stream is None:
        raise DecoderError(f"No video stream found in {path}")

    fmt = data.get("format", {})
    try:
        duration = float(fmt.get("duration") or stream.get("duration") or 0.0)
    except ValueError:
        duration = 0.0
    bitrate = fmt.get("bit_rate")

    return VideoInfo(
        width=int(stream.get("width") or 0),
        height=int(stream.get("height") or 0),
        duration=duration,
        fps=_parse_rate(stream.get("r_frame_rate")) or 30.0,
        bitrate=int(bitrate) if bitrate and str(bitrate).isdigit() else None,
        pixel_format=stream.get("pix_fmt") or "yuv420p",
    )


def parse_progress_line(line: str, total_duration: float) -> float | None:
    """Turn one `-progress` line into a fraction of `total_duration`.

    ffmpeg reports both `out_time_us` and `out_time_ms`; both carry microseconds.
    """

    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms") or total_duration <= 0:
        return None
    try:
        us = float(value)
    except ValueError:
        return None
    if us <= 0:
        return None
    return min(max((us / 1_000_000.0) / total_duration, 0.0), 1.0)


def _even(v: int) -> int:
    return v if v % 2 == 0 else v + 1


@dataclass
class SampleSet:
    """Frames sampled from one video, in presentation order."""

    frames: list[Path]
    duration: float
    width: int
    height: int
    fps: float = 0.0
    sample_size: tuple[int, int] = field(default=(0, 0))

    def __len__(self) -> int:
        return len(self.frames)


class FrameSampler:
    """Sample frames at a fixed rate and write them as JPEGs into a work directory."""

    def __init__(self, jpeg_quality: int = 95) -> None:
        self.jpeg_quality = int(jpeg_quality)

    def sample(
        self,
        path: str | Path,
        fps: float,
        height: int,
        workdir: str | Path,
        on_progress: ProgressCallback | None = None,
    ) -> SampleSet:
        if fps <= 0:
            raise ValueError("fps must be > 0")
        cap = cv2.VideoCapture(str(path))
        if not cap.isOpened():
            raise DecoderError(f"Failed to open video: {path}")

        tracker = ProgressTracker(on_progress)
        outdir = Path(workdir)
        outdir.mkdir(parents=True, exist_ok=True)
        try:
            src_fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
            frame_count = float(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0)
            src_w = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
            src_h = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
            duration = frame_count / src_fps if src_fps > 0 else 0.0

            out_h = int(height)
            out_w = _even(int(round(out_h * src_w / src_h))) if src_w > 0 and src_h > 0 else 0

            step = 1.0 / float(fps)
            next_t = 0.0
            pos = 0
            frames: list[Path] = []
            while True:
                if not cap.grab():
                    break
                t = pos / src_fps if src_fps > 0 else cap.get(cv2.CAP_PROP_POS_MSEC) / 1000.0
                pos += 1
                if t + 1e-6 < next_t:
                    continue
                ok, frame = cap.retrieve()
                if not ok or frame is None:
                    continue
                if src_w <= 0 or src_h <= 0:
                    src_h, src_w = frame.shape[:2]
                    out_w = _even(int(round(out_h * src_w / src_h)))
                if (frame.shape[1], frame.shape[0]) != (out_w, out_h):
                    frame = cv2.resize(frame, (out_w, out_h), interpolation=cv2.INTER_AREA)
                frame_path = outdir / f"frame_{len(frames) + 1:06d}.jpg"
                if not cv2.imwrite(
                    str(frame_path), frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality]
                ):
                    raise DecoderError(f"Failed to write sampled frame: {frame_path}")
                frames.append(frame_path)
                while next_t <= t + 1e-6:
                    next_t += step
                if duration > 0:
                    tracker.update(t / duration)
        finally:
            cap.release()

        logger.info("Sampled %d frames from %s at %.2f fps", len(frames), path, fps)
        return SampleSet(
            frames=frames,
            duration=duration,
            width=src_w,
            height=src_h,
            fps=src_fps,
            sample_size=(out_w, out_h),
        )


class FFmpegEncoder:
    """Encode the source with the masking filter chain applied."""

    def __init__(self, ffmpeg_path: str | None = None, ffprobe_path: str | None = None) -> None:
        self.ffmpeg_path = _resolve_tool(ffmpeg_path, "ffmpeg")
        self.ffprobe_path = ffprobe_path

    def build_stream(
        self,
        input_path: str | Path,
        output_path: str | Path,
        instructions: list[MaskInstruction],
        quality: str = "balanced",
        pixel_format: str = "yuv420p",
    ):
        if quality not in QUALITY_PROFILES:
            raise ValueError(f"Unknown quality profile: {quality}")
        kwargs: dict[str, Any] = dict(QUALITY_PROFILES[quality])
        spec = filter_spec(instructions)
        if spec:
            kwargs["vf"] = spec
        kwargs.update(
            acodec="aac",
            audio_bitrate="192k",
            pix_fmt=pixel_format,
            movflags="+faststart",
        )
        return (
            ffmpeg.input(str(input_path))
            .output(str(output_path), **kwargs)
            .global_args("-progress", "pipe:1", "-nostats")
            .overwrite_output()
        )

    def build_command(
        self,
        input_path: str | Path,
        output_path: str | Path,
        instructions: list[MaskInstruction],
        quality: str = "balanced",
        pixel_format: str = "yuv420p",
    ) -> list[str]:
        stream = self.build_stream(input_path, output_path, instructions, quality, pixel_format)
        return stream.compile(cmd=self.ffmpeg_path)

    def encode(
        self,
        input_path: str | Path,
        output_path: str | Path,
        instructions: list[MaskInstruction],
        quality: str = "balanced",
        on_progress: ProgressCallback | None = None,
        info: VideoInfo | None = None,
    ) -> None:
        """Run ffmpeg to completion, forwarding progress from a reader thread."""

        info = info or probe(input_path, self.ffprobe_path)
        stream = self.build_stream(
            input_path, output_path, instructions, quality, pixel_format=info.pixel_format
        )
        logger.info("Encoding %s -> %s (%d masks)", input_path, output_path, len(instructions))

        try:
            process = ffmpeg.run_async(
                stream, cmd=self.ffmpeg_path, pipe_stdout=True, pipe_stderr=True
            )
        except FileNotFoundError as e:
            raise EncoderError(f"ffmpeg not installed ({self.ffmpeg_path})") from e

        tracker = ProgressTracker(on_progress)
        stderr_chunks: list[bytes] = []

        def _read_progress() -> None:
            for raw in iter(process.stdout.readline, b""):
                fraction = parse_progress_line(raw.decode(errors="replace"), info.duration)
                if fraction is not None:
                    tracker.update(fraction)

        def _drain_stderr() -> None:
            for chunk in iter(lambda: process.stderr.read(4096), b""):
                stderr_chunks.append(chunk)

        readers = [
            threading.Thread(target=_read_progress, daemon=True),
            threading.Thread(target=_drain_stderr, daemon=True),
        ]
        for t in readers:
            t.start()
        returncode = process.wait()
        for t in readers:
            t.join(timeout=5)

        if returncode != 0:
            stderr = b"".join(stderr_chunks).decode(errors="replace").strip()
            raise EncoderError(f"ffmpeg exited with {returncode}: {stderr[-2000:]}")
