"""Serial job queue.

Jobs are submitted from request threads and processed one at a time on a
single background worker thread. Every state change of every job is
forwarded to queue listeners (the WebSocket endpoint subscribes here).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path
from queue import Empty, Queue
from typing import Any

from textblocker.core.errors import InputError
from textblocker.core.jobs import Job, JobKind, JobListener, JobStateMachine
from textblocker.core.pipeline import TextBlockPipeline
from textblocker.core.sources.youtube import sanitize_filename

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".mkv", ".mov", ".avi", ".webm", ".m4v"}


def scan_folder(folder: str | Path) -> list[Path]:
    """Video files under `folder` (recursive), skipping hidden files and directories."""

    root = Path(folder)
    if not root.is_dir():
        raise InputError(f"Not a directory: {root}")
    found = []
    for path in root.rglob("*"):
        rel = path.relative_to(root)
        if any(part.startswith(".") for part in rel.parts):
            continue
        if path.is_file() and path.suffix.lower() in VIDEO_EXTENSIONS:
            found.append(path)
    return sorted(found)


class JobQueue:
    """Thread-safe job registry plus a serial worker."""

    def __init__(
        self,
        pipeline_factory: Callable[[], TextBlockPipeline],
        fetcher_factory: Callable[[], Any] | None = None,
        poll_interval: float = 0.2,
    ) -> None:
        self._pipeline_factory = pipeline_factory
        self._fetcher_factory = fetcher_factory
        self.poll_interval = float(poll_interval)

        self._lock = threading.RLock()
        self._machines: dict[str, JobStateMachine] = {}
        self._listeners: list[JobListener] = []
        self._pending: Queue[str] = Queue()
        self._current: str | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -- lifecycle -------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread. Subsequent calls while running are ignored."""

        with self._lock:
            if self.running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._worker_loop, name="textblocker-queue", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the worker; a running job is asked to cancel first."""

        self._stop_event.set()
        with self._lock:
            current = self._machines.get(self._current) if self._current else None
        if current is not None:
            current.request_cancel()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                job_id = self._pending.get(timeout=self.poll_interval)
            except Empty:
                continue
            with self._lock:
                machine = self._machines.get(job_id)
                if machine is None or machine.status.is_terminal:
                    continue
                self._current = job_id
            try:
                logger.info("Starting job %s (%s)", job_id, machine.job.title)
                self._pipeline_factory().run(machine)
            except Exception as e:
                # Building the pipeline can fail before the job ever runs.
                logger.exception("Job %s could not be run", job_id)
                machine.fail(str(e) or type(e).__name__)
            finally:
                with self._lock:
                    self._current = None

    # -- observers -------------------------------------------------------

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _forward(self, job: Job) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(job)
            except Exception:
                logger.exception("Queue listener failed for job %s", job.id)

    # -- submission ------------------------------------------------------

    def _enqueue(self, job: Job) -> Job:
        machine = JobStateMachine(job)
        machine.subscribe(self._forward)
        with self._lock:
            self._machines[job.id] = machine
        self._pending.put(job.id)
        snap = machine.snapshot()
        self._forward(snap)
        return snap

    def submit_file(self, path: str | Path) -> Job:
        p = Path(path).expanduser()
        if not p.is_file():
            raise InputError(f"Input file not found: {p}")
        return self._enqueue(Job(input_path=p.resolve()))

    def submit_folder(self, folder: str | Path) -> list[Job]:
        files = scan_folder(Path(folder).expanduser())
        logger.info("Found %d videos in %s", len(files), folder)
        return [self._enqueue(Job(input_path=p.resolve())) for p in files]

    def _fetcher(self) -> Any:
        if self._fetcher_factory is None:
            raise InputError("Remote sources are not configured")
        return self._fetcher_factory()

    def submit_youtube(self, url: str) -> Job:
        video = self._fetcher().get_video_info(url)
        return self._enqueue(
            Job(
                input_path=Path(f"{sanitize_filename(video.title)}.mp4"),
                kind=JobKind.REMOTE_SINGLE,
                title=video.title,
                source_url=video.url or url,
            )
        )

    def submit_playlist(self, url: str) -> list[Job]:
        videos = self._fetcher().get_playlist_videos(url)
        return [
            self._enqueue(
                Job(
                    input_path=Path(f"{sanitize_filename(v.title)}.mp4"),
                    kind=JobKind.REMOTE_PLAYLIST_ITEM,
                    title=v.title,
                    source_url=v.url,
                )
            )
            for v in videos
        ]

    # -- queries and control ---------------------------------------------

    def list_jobs(self) -> list[Job]:
        with self._lock:
            machines = list(self._machines.values())
        return [m.snapshot() for m in machines]

    def get(self, job_id: str) -> JobStateMachine | None:
        with self._lock:
            return self._machines.get(job_id)

    def cancel(self, job_id: str) -> bool:
        """Cancel a job. Pending jobs end immediately; running ones at their next checkpoint."""

        machine = self.get(job_id)
        if machine is None:
            raise KeyError(job_id)
        with self._lock:
            running = job_id == self._current
        if machine.status.is_terminal:
            return False
        if running or machine.status.is_processing:
            machine.request_cancel()
            return True
        return machine.cancel()

    def remove(self, job_id: str) -> bool:
        """Drop a job that is not being processed. Returns False if it is still running."""

        with self._lock:
            machine = self._machines.get(job_id)
            if machine is None:
                raise KeyError(job_id)
            if job_id == self._current or machine.status.is_processing:
                return False
            del self._machines[job_id]
        return True

    def clear_finished(self) -> int:
        """Remove completed, failed and cancelled jobs; returns how many were removed."""

        with self._lock:
            done = [jid for jid, m in self._machines.items() if m.status.is_terminal]
            for jid in done:
                del self._machines[jid]
        return len(done)
