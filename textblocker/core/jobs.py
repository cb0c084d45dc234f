"""Job model and the progress/cancellation state machine.

`JobStatus` is a small tagged value (phase + progress + message) dispatched with
`match`; `JobStateMachine` owns the only mutable copy of a job's status and
publishes immutable snapshots to subscribers after every change.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from textblocker.core.errors import InvalidTransition, JobCancelled

logger = logging.getLogger(__name__)


class JobKind(str, Enum):
    LOCAL = "local"
    REMOTE_SINGLE = "remote-single"
    REMOTE_PLAYLIST_ITEM = "remote-playlist-item"

    @property
    def is_remote(self) -> bool:
        return self is not JobKind.LOCAL


class Phase(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    MERGING = "merging"
    EXTRACTING = "extracting"
    DETECTING = "detecting"
    ENCODING = "encoding"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


PROCESSING_PHASES = (
    Phase.DOWNLOADING,
    Phase.MERGING,
    Phase.EXTRACTING,
    Phase.DETECTING,
    Phase.ENCODING,
)
TERMINAL_PHASES = (Phase.COMPLETED, Phase.CANCELLED, Phase.FAILED)

# Position in the forward-only ordering; terminal phases share the last slot.
_PHASE_ORDER: dict[Phase, int] = {
    Phase.PENDING: 0,
    Phase.DOWNLOADING: 1,
    Phase.MERGING: 2,
    Phase.EXTRACTING: 3,
    Phase.DETECTING: 4,
    Phase.ENCODING: 5,
    Phase.COMPLETED: 6,
    Phase.CANCELLED: 6,
    Phase.FAILED: 6,
}

# Slice of the overall progress bar covered by each processing phase.
# Merging is a short post-process step and holds the bar at the boundary.
PHASE_SPANS: dict[Phase, tuple[float, float]] = {
    Phase.DOWNLOADING: (0.00, 0.10),
    Phase.MERGING: (0.10, 0.10),
    Phase.EXTRACTING: (0.10, 0.33),
    Phase.DETECTING: (0.33, 0.66),
    Phase.ENCODING: (0.66, 1.00),
}


def _clamp01(v: float) -> float:
    v = float(v)
    if v != v:  # NaN
        return 0.0
    return 0.0 if v < 0.0 else 1.0 if v > 1.0 else v


@dataclass(frozen=True)
class JobStatus:
    """Tagged status value. `progress` is phase-local and only meaningful while processing."""

    phase: Phase
    progress: float = 0.0
    message: str | None = None

    @classmethod
    def pending(cls) -> JobStatus:
        return cls(Phase.PENDING)

    @classmethod
    def downloading(cls, progress: float = 0.0) -> JobStatus:
        return cls(Phase.DOWNLOADING, _clamp01(progress))

    @classmethod
    def merging(cls, progress: float = 0.0) -> JobStatus:
        return cls(Phase.MERGING, _clamp01(progress))

    @classmethod
    def extracting(cls, progress: float = 0.0) -> JobStatus:
        return cls(Phase.EXTRACTING, _clamp01(progress))

    @classmethod
    def detecting(cls, progress: float = 0.0) -> JobStatus:
        return cls(Phase.DETECTING, _clamp01(progress))

    @classmethod
    def encoding(cls, progress: float = 0.0) -> JobStatus:
        return cls(Phase.ENCODING, _clamp01(progress))

    @classmethod
    def completed(cls) -> JobStatus:
        return cls(Phase.COMPLETED, 1.0)

    @classmethod
    def cancelled(cls) -> JobStatus:
        return cls(Phase.CANCELLED)

    @classmethod
    def failed(cls, message: str) -> JobStatus:
        return cls(Phase.FAILED, 0.0, message)

    @property
    def is_processing(self) -> bool:
        return self.phase in PROCESSING_PHASES

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


def overall_progress(status: JobStatus) -> float:
    """Map a status onto one normalized [0, 1] value across all phases."""

    match status.phase:
        case Phase.PENDING | Phase.CANCELLED | Phase.FAILED:
            return 0.0
        case Phase.COMPLETED:
            return 1.0
        case _:
            lo, hi = PHASE_SPANS[status.phase]
            return lo + (hi - lo) * _clamp01(status.progress)


def display_text(status: JobStatus) -> str:
    pct = int(_clamp01(status.progress) * 100)
    match status.phase:
        case Phase.PENDING:
            return "Pending"
        case Phase.DOWNLOADING:
            return f"Downloading {pct}%"
        case Phase.MERGING:
            return f"Merging {pct}%"
        case Phase.EXTRACTING:
            return f"Extracting frames {pct}%"
        case Phase.DETECTING:
            return f"Detecting text {pct}%"
        case Phase.ENCODING:
            return f"Encoding {pct}%"
        case Phase.COMPLETED:
            return "Completed"
        case Phase.CANCELLED:
            return "Cancelled"
        case Phase.FAILED:
            return f"Failed: {status.message}"


@dataclass
class Job:
    """A unit of work in the queue. Mutated only through `JobStateMachine`."""

    input_path: Path
    kind: JobKind = JobKind.LOCAL
    title: str | None = None
    source_url: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = field(default_factory=JobStatus.pending)
    output_path: Path | None = None
    detected_region_count: int = 0
    cancellation_requested: bool = False
    processing_started_at: float | None = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.input_path = Path(self.input_path)
        if self.title is None:
            self.title = self.input_path.stem


JobListener = Callable[[Job], None]


class JobStateMachine:
    """Drives one job through its phases.

    Every read and write of the job's status goes through `_lock` because
    progress callbacks arrive on collaborator threads while cancellation is
    requested from API/UI threads. Listeners are called outside `_lock` with a
    copy of the job. `_publish_lock` serializes taking and delivering snapshots
    so listeners see changes in order.
    """

    def __init__(self, job: Job) -> None:
        self.job = job
        self._lock = threading.Lock()
        self._publish_lock = threading.RLock()
        self._listeners: list[JobListener] = []

    @property
    def id(self) -> str:
        return self.job.id

    @property
    def status(self) -> JobStatus:
        with self._lock:
            return self.job.status

    @property
    def cancellation_requested(self) -> bool:
        with self._lock:
            return self.job.cancellation_requested

    def snapshot(self) -> Job:
        with self._lock:
            return replace(self.job)

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""

        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        with self._publish_lock:
            with self._lock:
                snap = replace(self.job)
                listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(snap)
                except Exception:
                    logger.exception("Job listener failed for job %s", snap.id)

    # -- transitions -----------------------------------------------------

    def start_phase(self, phase: Phase) -> None:
        """Enter a processing phase with progress 0. Re-entering the current phase is a no-op."""

        if phase not in PROCESSING_PHASES:
            raise InvalidTransition(f"{phase.value} is not a processing phase")
        with self._lock:
            cur = self.job.status
            if cur.is_terminal:
                raise InvalidTransition(f"job {self.job.id} already {cur.phase.value}")
            if phase in (Phase.DOWNLOADING, Phase.MERGING) and not self.job.kind.is_remote:
                raise InvalidTransition(f"{phase.value} only applies to remote jobs")
            if _PHASE_ORDER[phase] < _PHASE_ORDER[cur.phase]:
                raise InvalidTransition(f"cannot move from {cur.phase.value} back to {phase.value}")
            if phase == cur.phase:
                return
            self.job.status = JobStatus(phase, 0.0)
            if self.job.processing_started_at is None:
                self.job.processing_started_at = time.time()
        self._publish()

    def report(self, phase: Phase, progress: float) -> bool:
        """Record phase-local progress. Stale phases and regressions are dropped."""

        value = _clamp01(progress)
        with self._lock:
            cur = self.job.status
            if cur.phase != phase or value <= cur.progress:
                return False
            self.job.status = JobStatus(phase, value)
        self._publish()
        return True

    def set_input(self, path: Path | str, title: str | None = None) -> None:
        """Point the job at a fetched local file."""

        with self._lock:
            self.job.input_path = Path(path)
            if title:
                self.job.title = title
        self._publish()

    def set_region_count(self, count: int) -> None:
        with self._lock:
            self.job.detected_region_count = int(count)
        self._publish()

    def complete(self, output_path: Path | str) -> None:
        with self._lock:
            cur = self.job.status
            if cur.is_terminal:
                raise InvalidTransition(f"job {self.job.id} already {cur.phase.value}")
            self.job.output_path = Path(output_path)
            self.job.status = JobStatus.completed()
        self._publish()

    def cancel(self) -> bool:
        """Move to CANCELLED; returns False if the job had already finished."""

        with self._lock:
            if self.job.status.is_terminal:
                return False
            self.job.status = JobStatus.cancelled()
            self.job.output_path = None
        self._publish()
        return True

    def fail(self, message: str) -> bool:
        """Move to FAILED from any non-terminal state; ignored once terminal."""

        with self._lock:
            if self.job.status.is_terminal:
                return False
            self.job.status = JobStatus.failed(message)
        self._publish()
        return True

    # -- cancellation ----------------------------------------------------

    def request_cancel(self) -> None:
        """Ask the job to stop at its next checkpoint. Safe from any thread."""

        with self._lock:
            if self.job.cancellation_requested:
                return
            self.job.cancellation_requested = True
        logger.info("Cancellation requested for job %s", self.job.id)
        self._publish()

    def checkpoint(self) -> None:
        """Raise `JobCancelled` if cancellation has been requested."""

        if self.cancellation_requested:
            raise JobCancelled(f"job {self.job.id} cancelled")

    # -- derived values --------------------------------------------------

    def overall_progress(self) -> float:
        return overall_progress(self.status)

    def display_text(self) -> str:
        return display_text(self.status)

    def eta_seconds(self, now: float | None = None) -> float | None:
        """Estimate remaining time from elapsed time and overall progress."""

        with self._lock:
            started = self.job.processing_started_at
            status = self.job.status
        if started is None or not status.is_processing:
            return None
        done = overall_progress(status)
        if done <= 0.0:
            return None
        elapsed = max(0.0, (now if now is not None else time.time()) - started)
        return elapsed * (1.0 - done) / done
