"""End-to-end text blocking for one job.

fetch (remote only) -> sample frames -> detect with frame skipping ->
consolidate regions -> encode with masks.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import cv2

from textblocker.core.config.settings import BlockerSettings
from textblocker.core.detectors.paddle import TextDetector, denormalize_boxes
from textblocker.core.errors import DecoderError, InputError, JobCancelled, ResourceError
from textblocker.core.fingerprint import fingerprint
from textblocker.core.gate import FrameGate, force_interval_frames
from textblocker.core.jobs import Job, JobStateMachine, Phase
from textblocker.core.masking import build_mask_instructions, collapse_regions
from textblocker.core.regions import RegionConsolidator
from textblocker.core.types import FrameSample, MaskInstruction, Region

logger = logging.getLogger(__name__)

OUTPUT_SUFFIX = "_blocked"


def output_path_for(input_path: Path, output_dir: str | Path | None = None) -> Path:
    base = Path(output_dir) if output_dir else input_path.parent
    return base / f"{input_path.stem}{OUTPUT_SUFFIX}.mp4"


@dataclass
class RunStats:
    frames: int = 0
    detections_run: int = 0
    detections_skipped: int = 0
    regions: list[Region] = field(default_factory=list)
    instructions: list[MaskInstruction] = field(default_factory=list)
    collapsed: bool = False


class TextBlockPipeline:
    """Runs one job at a time through every processing phase.

    Collaborators are injected so they can be swapped for fakes:
    `sampler.sample(...)`, `detector.detect(...)`, `encoder.encode(...)` and,
    for remote jobs, `fetcher.download(...)`.
    """

    def __init__(
        self,
        settings: BlockerSettings,
        sampler: Any,
        detector: TextDetector,
        encoder: Any,
        fetcher: Any | None = None,
    ) -> None:
        self.settings = settings
        self.sampler = sampler
        self.detector = detector
        self.encoder = encoder
        self.fetcher = fetcher
        self.last_stats = RunStats()

    def run(self, machine: JobStateMachine) -> Job:
        """Process the job to a terminal state and return its final snapshot.

        Never raises: cancellation ends in CANCELLED, every other error in FAILED.
        Partial output is removed in both cases.
        """

        self.last_stats = RunStats()
        outputs: list[Path] = []
        try:
            with self._workdir() as tmp:
                output = self._process(machine, Path(tmp), outputs)
            machine.complete(output)
            logger.info("Job %s completed: %s", machine.id, output)
        except JobCancelled:
            self._discard(outputs)
            machine.cancel()
            logger.info("Job %s cancelled", machine.id)
        except Exception as e:
            self._discard(outputs)
            logger.exception("Job %s failed", machine.id)
            machine.fail(str(e) or type(e).__name__)
        return machine.snapshot()

    def _workdir(self) -> tempfile.TemporaryDirectory:
        base = self.settings.work_dir
        try:
            if base:
                Path(base).mkdir(parents=True, exist_ok=True)
            return tempfile.TemporaryDirectory(
                prefix="textblocker-", dir=base, ignore_cleanup_errors=True
            )
        except OSError as e:
            raise ResourceError(f"Could not create working directory: {e}") from e

    @staticmethod
    def _discard(outputs: list[Path]) -> None:
        for path in outputs:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove partial output %s", path)

    # -- phases ----------------------------------------------------------

    def _process(self, machine: JobStateMachine, workdir: Path, outputs: list[Path]) -> Path:
        s = self.settings
        job = machine.snapshot()

        if job.kind.is_remote:
            machine.checkpoint()
            self._fetch(machine, job, workdir)
            job = machine.snapshot()

        machine.checkpoint()
        input_path = job.input_path
        if not input_path.is_file():
            raise InputError(f"Input file not found: {input_path}")

        machine.start_phase(Phase.EXTRACTING)
        samples = self.sampler.sample(
            input_path,
            s.sample_fps,
            s.ocr_height,
            workdir / "frames",
            lambda p: machine.report(Phase.EXTRACTING, p),
        )
        if not samples.frames:
            raise InputError(f"No frames could be sampled from {input_path}")
        logger.info("Job %s: %d frames sampled", machine.id, len(samples.frames))

        machine.start_phase(Phase.DETECTING)
        regions = self._detect(machine, samples)

        machine.set_region_count(len(regions))
        kept = collapse_regions(regions, s.max_filters)
        instructions = build_mask_instructions(kept, s.padding)
        self.last_stats.regions = regions
        self.last_stats.instructions = instructions
        self.last_stats.collapsed = len(kept) < len(regions)

        machine.checkpoint()
        base_dir = s.output_dir or (Path.cwd() if job.kind.is_remote else None)
        output = output_path_for(input_path, base_dir)
        output.parent.mkdir(parents=True, exist_ok=True)
        outputs.append(output)

        machine.start_phase(Phase.ENCODING)
        self.encoder.encode(
            input_path,
            output,
            instructions,
            quality=s.quality,
            on_progress=lambda p: machine.report(Phase.ENCODING, p),
        )
        machine.checkpoint()
        return output

    def _fetch(self, machine: JobStateMachine, job: Job, workdir: Path) -> None:
        if self.fetcher is None:
            raise InputError("Remote job without a fetcher")
        if not job.source_url:
            raise InputError("Remote job without a source URL")

        machine.start_phase(Phase.DOWNLOADING)

        def _on_progress(stage: str, fraction: float) -> None:
            if stage == "merge":
                machine.start_phase(Phase.MERGING)
                machine.report(Phase.MERGING, fraction)
            else:
                machine.report(Phase.DOWNLOADING, fraction)

        result = self.fetcher.download(job.source_url, workdir / "download", _on_progress)
        machine.start_phase(Phase.MERGING)
        machine.report(Phase.MERGING, 1.0)
        machine.set_input(result.path, result.video.title)

    def _detect(self, machine: JobStateMachine, samples: Any) -> list[Region]:
        s = self.settings
        gate = FrameGate(
            s.scene_threshold,
            force_interval_frames(s.force_interval, s.sample_fps),
            enabled=s.skip_similar,
        )
        consolidator = RegionConsolidator(s.merge_pad, s.frame_duration, s.max_gap_seconds)
        origin = getattr(self.detector, "origin", "top-left")
        count = len(samples.frames)

        for index, frame_path in enumerate(samples.frames):
            machine.checkpoint()
            frame = cv2.imread(str(frame_path))
            if frame is None:
                raise DecoderError(f"Failed to read sampled frame: {frame_path}")

            fp = fingerprint(frame)
            boxes = gate.check(index, fp)
            if boxes is None:
                found = self.detector.detect(frame, s.languages)
                boxes = denormalize_boxes(found, samples.width, samples.height, origin)
                gate.record(index, boxes)

            consolidator.add(
                FrameSample(
                    index=index,
                    timestamp=index / s.sample_fps,
                    boxes=tuple(boxes),
                    fingerprint=fp,
                )
            )
            machine.report(Phase.DETECTING, (index + 1) / count)

        self.last_stats.frames = count
        self.last_stats.detections_run = gate.detections_run
        self.last_stats.detections_skipped = gate.detections_skipped
        logger.info(
            "Job %s: detection ran on %d frames, skipped %d, %d regions",
            machine.id,
            gate.detections_run,
            gate.detections_skipped,
            len(consolidator),
        )
        return consolidator.regions()
