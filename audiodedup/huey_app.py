"""Audio Dedup Pipeline - Huey task queue configuration.

Huey setup with SQLite backend so queued analyses survive restarts.

How to run:
1. Start the ingest API (runs an embedded pool of analysis workers):
   uvicorn services.ingest_api.main:app

2. Or, with AUDIODEDUP_ANALYSIS_WORKERS=0, run a stand-alone consumer:
   huey_consumer audiodedup.huey_app.huey -k thread -w 2

Live similarity notifications reach only the subscribers of the process that
ran the analysis, so the embedded pool is the normal deployment.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from huey import SqliteHuey

from audiodedup.config import ANALYSIS_WORKERS, HUEY_DB_PATH

logger = logging.getLogger(__name__)


def _ensure_queue_dir() -> None:
    """Ensure the queue directory exists."""
    Path(HUEY_DB_PATH).parent.mkdir(parents=True, exist_ok=True)


# Ensure queue directory exists before creating Huey instance
_ensure_queue_dir()

huey = SqliteHuey(
    name="audiodedup",
    filename=str(HUEY_DB_PATH),
    results=False,  # Outcomes are logged, never read back
    immediate=False,  # Tasks queued for worker processing
)


@huey.task()
def analyze_audio_task(audio_id: str) -> None:
    """Huey task to fingerprint an audio file and check it for similar files.

    The task body is idempotent: analysis of a file that is no longer pending
    is a no-op, so a redelivered task does no harm.

    Args:
        audio_id: The audio ID to analyze.
    """
    # Import here to avoid circular imports
    from services.worker_fingerprint.run import run_fingerprint_worker

    logger.info("Analysis task started for audio_id=%s", audio_id)
    result = run_fingerprint_worker(audio_id)
    logger.info(
        "Analysis task completed for audio_id=%s: ok=%s state=%s error=%s",
        audio_id,
        result.ok,
        result.analysis_state,
        result.error_code,
    )


def enqueue_analysis(audio_id: str) -> None:
    """Enqueue fingerprint analysis for an admitted audio file.

    Non-blocking: the task is persisted in SQLite and picked up by a worker.
    In immediate mode (tests) it runs inline before this returns.

    Raises:
        Exception: Whatever the queue backend raises if the task cannot be stored.
    """
    logger.info("Enqueueing analysis for audio_id=%s", audio_id)
    analyze_audio_task(audio_id)


class AnalysisWorkerPool:
    """A bounded pool of threads executing queued huey tasks in this process.

    Each worker loops: dequeue one task, execute it, sleep briefly when the
    queue is empty. stop() lets in-flight tasks finish.
    """

    def __init__(self, workers: int = ANALYSIS_WORKERS, poll_interval: float = 0.5, queue=None):
        self.workers = workers
        self.poll_interval = poll_interval
        self.huey = queue if queue is not None else huey
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        """Start the worker threads (no-op when already running or workers=0)."""
        if self.running or self.workers <= 0:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._run, name=f"analysis-worker-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Started %d analysis worker(s)", self.workers)

    def stop(self, timeout: float = 10.0) -> None:
        """Signal the workers and wait for them to exit."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Analysis worker %s did not stop within %.1fs", thread.name, timeout)
        self._threads = []

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                task = self.huey.dequeue()
            except Exception:
                logger.error("Failed to dequeue analysis task", exc_info=True)
                self._stop.wait(self.poll_interval)
                continue

            if task is None:
                self._stop.wait(self.poll_interval)
                continue

            try:
                self.huey.execute(task)
            except Exception:
                logger.error("Analysis task %s raised", task.id, exc_info=True)
