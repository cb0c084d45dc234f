from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from pathlib import Path

from textblocker.core.config.presets import preset_patch
from textblocker.core.config.settings import BlockerSettings, load_settings, settings_to_dict
from textblocker.core.detectors.paddle import PaddleTextDetector
from textblocker.core.jobs import Job, JobStateMachine, Phase, display_text, overall_progress
from textblocker.core.pipeline import TextBlockPipeline
from textblocker.core.video.ffmpeg import FFmpegEncoder, FrameSampler
from textblocker.logging_setup import setup_logging

logger = logging.getLogger("textblocker.tools.run_on_video")


class _DummyDetector:
    origin = "top-left"

    def detect(self, frame, languages):  # pragma: no cover - trivial
        return []


def _settings_from_args(args) -> BlockerSettings:
    data = settings_to_dict(load_settings())
    if args.preset:
        data.update(preset_patch(args.preset))
    if args.sample_fps is not None:
        data["sample_fps"] = args.sample_fps
    if args.output_dir:
        data["output_dir"] = args.output_dir
    if args.quality:
        data["quality"] = args.quality
    return BlockerSettings(**data)


def run(args) -> int:
    settings = _settings_from_args(args)
    setup_logging(settings.log_level, settings.log_file)

    pipeline = TextBlockPipeline(
        settings,
        sampler=FrameSampler(),
        detector=_DummyDetector() if args.mock else PaddleTextDetector(),
        encoder=FFmpegEncoder(settings.ffmpeg_path, settings.ffprobe_path),
    )
    machine = JobStateMachine(Job(input_path=Path(args.input)))
    last_pct = [-1]

    def _on_change(job: Job) -> None:
        pct = int(overall_progress(job.status) * 100)
        if pct // 10 != last_pct[0] // 10:
            logger.info("%s (%d%%)", display_text(job.status), pct)
        last_pct[0] = pct

    machine.subscribe(_on_change)
    job = pipeline.run(machine)

    if args.json:
        stats = pipeline.last_stats
        report = {
            "input": str(job.input_path),
            "output": str(job.output_path) if job.output_path else None,
            "status": job.status.phase.value,
            "message": job.status.message,
            "frames": stats.frames,
            "detections_run": stats.detections_run,
            "detections_skipped": stats.detections_skipped,
            "collapsed": stats.collapsed,
            "regions": [
                {**asdict(r.box), "start_time": r.start_time, "end_time": r.end_time}
                for r in stats.regions
            ],
            "filters": [i.to_filter() for i in stats.instructions],
        }
        out_path = Path(args.json)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)
        logger.info("Wrote report to %s", out_path)

    if job.status.phase is Phase.COMPLETED:
        print(f"Wrote {job.output_path} ({job.detected_region_count} regions)")
        return 0
    print(f"Job {job.status.phase.value}: {job.status.message or ''}".rstrip())
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Black out on-screen text in a video")
    parser.add_argument("--input", required=True, help="Path to video file")
    parser.add_argument("--output-dir", default=None, help="Directory for <name>_blocked.mp4")
    parser.add_argument("--preset", default=None, help="default|fast_preview|high_quality|aggressive")
    parser.add_argument("--sample-fps", type=float, default=None, help="Frames per second to analyse")
    parser.add_argument("--quality", default=None, help="lossless|high|balanced|fast")
    parser.add_argument("--json", default=None, help="Where to save a JSON report of the regions")
    parser.add_argument(
        "--mock", action="store_true", help="Use dummy detector (no OCR model download)"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    return run(build_parser().parse_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
