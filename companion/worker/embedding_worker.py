"""
Embedding Backfill Worker
=========================

Embeds chunks that are still missing a vector (provider outage during
ingestion, partial batch failures) on a fixed interval.

Usage:
    # Start worker daemon
    python -m companion.worker.embedding_worker

    # Or use programmatically
    job = EmbeddingBackfillJob(repository, embedder)
    scheduler = EmbeddingWorkerScheduler(job)
    scheduler.start()

Configuration:
    WORKER_INTERVAL_SECONDS: Seconds between runs (default: 60)
    WORKER_BATCH_LIMIT: Max chunks per run (default: 100)
    WORKER_MAX_FAILURES: Consecutive failures before alerting (default: 5)
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from threading import Event, Lock
from typing import Optional, Dict, Any

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import WorkerConfig
from ..rag.embedder import RAGEmbedder
from ..rag.vector_index import ChunkRepository

logger = logging.getLogger(__name__)

JOB_ID = "embedding_backfill"


class BackfillStatus(Enum):
    """Outcome of a backfill run."""
    IDLE = "idle"  # nothing pending
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


@dataclass
class BackfillResult:
    """Result of one backfill run."""
    status: BackfillStatus
    pending: int = 0
    embedded: int = 0
    failed: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "pending": self.pending,
            "embedded": self.embedded,
            "failed": self.failed,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
        }


class EmbeddingBackfillJob:
    """Embeds up to ``batch_limit`` pending chunks per run."""

    def __init__(self, repository: ChunkRepository, embedder: RAGEmbedder, batch_limit: int = 100):
        self.repository = repository
        self.embedder = embedder
        self.batch_limit = batch_limit

    async def run_once(self) -> BackfillResult:
        start = time.monotonic()
        pending = self.repository.pending_chunks(self.batch_limit)

        if not pending:
            return BackfillResult(status=BackfillStatus.IDLE, duration_seconds=time.monotonic() - start)

        items = await self.embedder.embed_batch([p.text for p in pending])

        embedded = 0
        for chunk, item in zip(pending, items):
            if item.ok:
                self.repository.set_chunk_embedding(chunk.chunk_id, item.result.embedding, item.result.tag)
                embedded += 1

        failed = len(pending) - embedded
        if failed == 0:
            status = BackfillStatus.COMPLETED
        elif embedded > 0:
            status = BackfillStatus.PARTIAL_FAILURE
        else:
            status = BackfillStatus.FAILED

        duration = time.monotonic() - start
        logger.info(
            f"Backfill run: {embedded}/{len(pending)} chunks embedded",
            extra={"stage": "backfill", "chunks": embedded, "duration_ms": int(duration * 1000)},
        )

        return BackfillResult(
            status=status,
            pending=len(pending),
            embedded=embedded,
            failed=failed,
            duration_seconds=duration,
        )


@dataclass
class RunHistory:
    """Tracks worker run history."""
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_run_duration: Optional[float] = None
    consecutive_failures: int = 0
    total_runs: int = 0
    total_successes: int = 0
    total_failures: int = 0
    chunks_embedded: int = 0

    def record_run(self, result: BackfillResult):
        """Record a backfill run."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = result.status.value
        self.last_run_duration = result.duration_seconds
        self.total_runs += 1
        self.chunks_embedded += result.embedded

        if result.status == BackfillStatus.FAILED:
            self.total_failures += 1
            self.consecutive_failures += 1
        else:
            self.total_successes += 1
            self.consecutive_failures = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration": self.last_run_duration,
            "consecutive_failures": self.consecutive_failures,
            "total_runs": self.total_runs,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "chunks_embedded": self.chunks_embedded,
            "success_rate": (
                self.total_successes / self.total_runs * 100
                if self.total_runs > 0 else 0
            ),
        }


class EmbeddingWorkerScheduler:
    """
    Runs the backfill job on an APScheduler interval trigger.

    Runs share one event loop owned by the scheduler, so async SDK clients
    cached by the embedder stay bound to a live loop between ticks.
    """

    def __init__(self, job: EmbeddingBackfillJob, config: Optional[WorkerConfig] = None):
        self.job = job
        self.config = config or WorkerConfig()
        self._scheduler: Optional[BackgroundScheduler] = None
        self._stop_event = Event()
        self._history = RunHistory()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._run_lock = Lock()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self, blocking: bool = False):
        """
        Start the scheduler.

        Args:
            blocking: If True, blocks until the worker is stopped
        """
        if self.is_running:
            logger.warning("Embedding worker is already running")
            return

        self._stop_event.clear()
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.trigger_now,
            trigger=IntervalTrigger(seconds=self.config.interval_seconds),
            id=JOB_ID,
            name="Embedding backfill",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        self._scheduler.start()

        logger.info(f"Embedding worker started (every {self.config.interval_seconds}s)")

        if blocking:
            self._run_blocking()

    def stop(self, wait: bool = True):
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=wait)
            self._scheduler = None
            logger.info("Embedding worker stopped")

        with self._run_lock:
            if self._loop is not None:
                self._loop.close()
                self._loop = None
        self._stop_event.set()

    def _run_blocking(self):
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, stopping worker...")
            self.stop(wait=False)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)
        self._stop_event.wait()

    def trigger_now(self) -> BackfillResult:
        """Run one backfill synchronously and record it."""
        with self._run_lock:
            try:
                result = self._event_loop().run_until_complete(self.job.run_once())
            except Exception as e:
                logger.exception(f"Backfill run failed: {e}")
                result = BackfillResult(status=BackfillStatus.FAILED, error=str(e))

            self._history.record_run(result)

        if self._history.consecutive_failures >= self.config.max_consecutive_failures:
            logger.error(
                f"Embedding backfill has failed {self._history.consecutive_failures} "
                f"consecutive times. Check the embedding provider."
            )

        return result

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        """The worker's loop, created on first run and kept until stop()."""
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop

    def _on_job_error(self, event: JobExecutionEvent):
        logger.error(f"Job {event.job_id} raised an exception: {event.exception}")

    def _on_job_missed(self, event: JobExecutionEvent):
        logger.warning(f"Job {event.job_id} missed its scheduled time")

    def get_status(self) -> Dict[str, Any]:
        next_run = None
        if self._scheduler is not None:
            job = self._scheduler.get_job(JOB_ID)
            if job is not None and job.next_run_time is not None:
                next_run = job.next_run_time.isoformat()

        return {
            "is_running": self.is_running,
            "interval_seconds": self.config.interval_seconds,
            "batch_limit": self.job.batch_limit,
            "next_run": next_run,
            "history": self._history.to_dict(),
        }

    def get_run_history(self) -> RunHistory:
        return self._history


def main():
    """Run the worker as a daemon."""
    from ..services import build_services
    from ..config import get_settings
    from ..logging_config import setup_logging

    settings = get_settings()
    setup_logging(
        level=settings.logging.level,
        json_output=settings.logging.json_logs,
        log_file=settings.logging.log_file,
    )

    services = build_services(settings)
    job = EmbeddingBackfillJob(services.chunks, services.embedder, settings.worker.batch_limit)
    scheduler = EmbeddingWorkerScheduler(job, settings.worker)
    try:
        scheduler.start(blocking=True)
    finally:
        services.close()


if __name__ == "__main__":
    main()
