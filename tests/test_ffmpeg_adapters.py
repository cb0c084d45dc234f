import io
from pathlib import Path

import cv2
import numpy as np
import pytest

from textblocker.core.errors import DecoderError, EncoderError
from textblocker.core.types import MaskInstruction
from textblocker.core.video import ffmpeg as ff


class FakeProcess:
    def __init__(self, stdout: bytes, stderr: bytes = b"", returncode: int = 0):
        self.stdout = io.BytesIO(stdout)
        self.stderr = io.BytesIO(stderr)
        self.returncode = returncode

    def wait(self):
        return self.returncode


def test_parse_progress_line():
    assert ff.parse_progress_line("out_time_us=5000000", 10.0) == 0.5
    # out_time_ms carries microseconds as well.
    assert ff.parse_progress_line("out_time_ms=2500000\n", 10.0) == 0.25
    assert ff.parse_progress_line("out_time_us=99000000", 10.0) == 1.0
    assert ff.parse_progress_line("frame=12", 10.0) is None
    assert ff.parse_progress_line("out_time_us=N/A", 10.0) is None
    assert ff.parse_progress_line("out_time_us=100", 0.0) is None


def test_find_executable_prefers_path(monkeypatch):
    monkeypatch.setattr(ff.shutil, "which", lambda name: f"/custom/{name}")
    assert ff.find_executable("ffmpeg") == "/custom/ffmpeg"


def test_find_executable_falls_back_to_common_dirs(tmp_path: Path, monkeypatch):
    tool = tmp_path / "ffprobe"
    tool.write_text("#!/bin/sh\n")
    tool.chmod(0o755)
    monkeypatch.setattr(ff.shutil, "which", lambda name: None)
    monkeypatch.setattr(ff, "COMMON_BIN_DIRS", (str(tmp_path / "nope"), str(tmp_path)))
    assert ff.find_executable("ffprobe") == str(tool)
    assert ff.find_executable("missing-tool") is None


def test_probe_reads_first_video_stream(monkeypatch):
    data = {
        "streams": [
            {"codec_type": "audio"},
            {
                "codec_type": "video",
                "width": 1920,
                "height": 1080,
                "r_frame_rate": "30000/1001",
                "pix_fmt": "yuv420p10le",
            },
        ],
        "format": {"duration": "12.5", "bit_rate": "800000"},
    }
    seen = {}

    def _probe(path, cmd="ffprobe", **kwargs):
        seen["cmd"] = cmd
        return data

    monkeypatch.setattr(ff.ffmpeg, "probe", _probe)
    info = ff.probe("clip.mp4", ffprobe_path="/opt/ffprobe")

    assert seen["cmd"] == "/opt/ffprobe"
    assert (info.width, info.height) == (1920, 1080)
    assert info.duration == 12.5
    assert info.fps == pytest.approx(29.97, abs=0.01)
    assert info.bitrate == 800000
    assert info.pixel_format == "yuv420p10le"


def test_probe_without_video_stream(monkeypatch):
    monkeypatch.setattr(ff.ffmpeg, "probe", lambda path, cmd="ffprobe", **kw: {"streams": []})
    with pytest.raises(DecoderError):
        ff.probe("clip.mp4", ffprobe_path="ffprobe")


def test_build_command_carries_filters_and_profile():
    encoder = ff.FFmpegEncoder(ffmpeg_path="/usr/bin/ffmpeg")
    inst = MaskInstruction(5, 15, 110, 60, 1.0, 2.5)
    args = encoder.build_command("in.mp4", "out.mp4", [inst], quality="high", pixel_format="yuv420p")

    assert args[0] == "/usr/bin/ffmpeg"
    assert args[args.index("-vf") + 1] == inst.to_filter()
    assert args[args.index("-crf") + 1] == "18"
    assert args[args.index("-preset") + 1] == "slow"
    assert args[args.index("-b:a") + 1] == "192k"
    assert args[args.index("-movflags") + 1] == "+faststart"
    assert args[args.index("-progress") + 1] == "pipe:1"
    assert "-nostats" in args
    assert "-y" in args


def test_build_command_without_masks_has_no_filter():
    args = ff.FFmpegEncoder(ffmpeg_path="ffmpeg").build_command("in.mp4", "out.mp4", [])
    assert "-vf" not in args
    with pytest.raises(ValueError):
        ff.FFmpegEncoder(ffmpeg_path="ffmpeg").build_command("in.mp4", "out.mp4", [], quality="ultra")


def test_encode_reports_progress(monkeypatch):
    out = b"frame=1\nout_time_us=500000\nout_time_ms=250000\nout_time_ms=1000000\nprogress=end\n"
    monkeypatch.setattr(ff.ffmpeg, "run_async", lambda args, **kw: FakeProcess(out))
    seen = []

    ff.FFmpegEncoder(ffmpeg_path="ffmpeg").encode(
        "in.mp4",
        "out.mp4",
        [],
        on_progress=seen.append,
        info=ff.VideoInfo(width=640, height=360, duration=1.0),
    )

    assert seen == [0.5, 1.0]


def test_encode_failure_carries_stderr(monkeypatch):
    monkeypatch.setattr(
        ff.ffmpeg, "run_async", lambda args, **kw: FakeProcess(b"", b"Invalid filter graph", 1)
    )
    with pytest.raises(EncoderError, match="Invalid filter graph"):
        ff.FFmpegEncoder(ffmpeg_path="ffmpeg").encode(
            "in.mp4", "out.mp4", [], info=ff.VideoInfo(width=640, height=360, duration=1.0)
        )


def test_frame_sampler_writes_frames_at_rate(tmp_path: Path):
    video = tmp_path / "clip.avi"
    writer = cv2.VideoWriter(str(video), cv2.VideoWriter_fourcc(*"MJPG"), 10.0, (64, 48))
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG")
    for i in range(20):
        writer.write(np.full((48, 64, 3), i * 10, dtype=np.uint8))
    writer.release()

    seen = []
    samples = ff.FrameSampler().sample(video, fps=2.0, height=24, workdir=tmp_path / "frames", on_progress=seen.append)

    assert len(samples) == 4
    assert samples.sample_size == (32, 24)
    assert (samples.width, samples.height) == (64, 48)
    assert samples.duration == pytest.approx(2.0)
    assert all(p.exists() for p in samples.frames)
    assert cv2.imread(str(samples.frames[0])).shape[:2] == (24, 32)
    assert seen == sorted(seen)


def test_frame_sampler_rejects_unreadable_input(tmp_path: Path):
    bad = tmp_path / "bad.mp4"
    bad.write_bytes(b"nope")
    with pytest.raises(DecoderError):
        ff.FrameSampler().sample(bad, fps=1.0, height=24, workdir=tmp_path / "frames")
