"""
Tests for the embedding backfill scheduler.

Usage:
    pytest tests/test_embedding_worker.py -v
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai

from companion.config import WorkerConfig
from companion.rag.embedder import OpenAIEmbeddingProvider, RAGEmbedder
from companion.rag.models import Chunk, Document
from companion.rag.vector_index import InMemoryChunkRepository
from companion.worker.embedding_worker import (
    JOB_ID,
    BackfillResult,
    BackfillStatus,
    EmbeddingBackfillJob,
    EmbeddingWorkerScheduler,
    RunHistory,
)


def make_job(*results, error: Exception = None):
    """Helper to create a job double returning the given results in order."""
    job = MagicMock()
    job.batch_limit = 100
    if error is not None:
        job.run_once = AsyncMock(side_effect=error)
    else:
        job.run_once = AsyncMock(side_effect=list(results))
    return job


def make_config(**kwargs) -> WorkerConfig:
    defaults = dict(interval_seconds=3600, batch_limit=100, max_consecutive_failures=2)
    defaults.update(kwargs)
    return WorkerConfig(**defaults)


class TestRunHistory:
    """Tests for RunHistory."""

    def test_records_success(self):
        history = RunHistory()
        history.record_run(BackfillResult(status=BackfillStatus.COMPLETED, pending=3, embedded=3))
        data = history.to_dict()
        assert data["total_runs"] == 1
        assert data["total_successes"] == 1
        assert data["chunks_embedded"] == 3
        assert data["success_rate"] == 100.0
        assert data["last_run_status"] == "completed"

    def test_partial_failure_counts_as_success(self):
        history = RunHistory()
        history.record_run(BackfillResult(status=BackfillStatus.PARTIAL_FAILURE, pending=3, embedded=1, failed=2))
        assert history.consecutive_failures == 0

    def test_consecutive_failures_reset(self):
        history = RunHistory()
        history.record_run(BackfillResult(status=BackfillStatus.FAILED))
        history.record_run(BackfillResult(status=BackfillStatus.FAILED))
        assert history.consecutive_failures == 2
        history.record_run(BackfillResult(status=BackfillStatus.IDLE))
        assert history.consecutive_failures == 0
        assert history.total_failures == 2


class TestEmbeddingWorkerScheduler:
    """Tests for EmbeddingWorkerScheduler."""

    def test_trigger_now_records_result(self):
        job = make_job(BackfillResult(status=BackfillStatus.COMPLETED, pending=2, embedded=2))
        scheduler = EmbeddingWorkerScheduler(job, make_config())

        result = scheduler.trigger_now()

        assert result.status == BackfillStatus.COMPLETED
        assert scheduler.get_run_history().total_runs == 1
        assert scheduler.get_run_history().chunks_embedded == 2

    def test_trigger_now_catches_job_errors(self):
        scheduler = EmbeddingWorkerScheduler(make_job(error=RuntimeError("db down")), make_config())

        result = scheduler.trigger_now()

        assert result.status == BackfillStatus.FAILED
        assert result.error == "db down"
        assert scheduler.get_run_history().consecutive_failures == 1

    def test_consecutive_failures_logged(self, caplog):
        scheduler = EmbeddingWorkerScheduler(make_job(error=RuntimeError("db down")), make_config())
        scheduler.trigger_now()
        scheduler.trigger_now()
        assert any("consecutive times" in r.getMessage() for r in caplog.records)

    def test_status_when_stopped(self):
        scheduler = EmbeddingWorkerScheduler(make_job(), make_config(interval_seconds=30))
        status = scheduler.get_status()
        assert status["is_running"] is False
        assert status["interval_seconds"] == 30
        assert status["next_run"] is None
        assert status["history"]["total_runs"] == 0

    def test_start_and_stop(self):
        scheduler = EmbeddingWorkerScheduler(make_job(), make_config())
        scheduler.start()
        try:
            assert scheduler.is_running
            status = scheduler.get_status()
            assert status["next_run"] is not None
            assert scheduler._scheduler.get_job(JOB_ID) is not None
        finally:
            scheduler.stop()
        assert not scheduler.is_running


# ============================================================================
# EVENT LOOP
# ============================================================================

class LoopRecordingJob:
    """Job double that remembers the loop each run executed on."""

    batch_limit = 10

    def __init__(self):
        self.loops = []

    async def run_once(self) -> BackfillResult:
        self.loops.append(asyncio.get_running_loop())
        return BackfillResult(status=BackfillStatus.IDLE)


def embeddings_endpoint(request: httpx.Request) -> httpx.Response:
    """OpenAI-compatible /embeddings handler returning fixed 4-d vectors."""
    body = json.loads(request.content)
    data = [
        {"object": "embedding", "index": i, "embedding": [0.5, 0.5, 0.5, 0.5]}
        for i, _ in enumerate(body["input"])
    ]
    return httpx.Response(200, json={
        "object": "list",
        "data": data,
        "model": body["model"],
        "usage": {"prompt_tokens": 3, "total_tokens": 3},
    })


def add_pending_chunk(repo: InMemoryChunkRepository, source_id: str) -> None:
    document = Document(tenant_id="org-1", source_id=source_id, uri="", title=source_id, hash=source_id)
    repo.save_document(document)
    repo.replace_chunks(document.id, [Chunk(
        document_id=document.id,
        chunk_index=0,
        text=f"Pending text of {source_id} waiting for its vector.",
        token_count=12,
        content_hash=source_id,
    )])


class TestWorkerEventLoop:
    """The scheduler keeps one event loop across runs."""

    def test_runs_share_a_live_loop(self):
        job = LoopRecordingJob()
        scheduler = EmbeddingWorkerScheduler(job, make_config())

        scheduler.trigger_now()
        scheduler.trigger_now()

        assert len(job.loops) == 2
        assert job.loops[0] is job.loops[1]
        assert not job.loops[0].is_closed()

        scheduler.stop()
        assert job.loops[0].is_closed()

    def test_openai_client_survives_consecutive_runs(self):
        provider = OpenAIEmbeddingProvider(api_key="sk-test", model="text-embedding-3-small", dimensions=4)
        provider._client = openai.AsyncOpenAI(
            api_key="sk-test",
            base_url="http://embeddings.test/v1",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(embeddings_endpoint)),
        )
        repo = InMemoryChunkRepository()
        job = EmbeddingBackfillJob(repo, RAGEmbedder(provider, batch_delay=0))
        scheduler = EmbeddingWorkerScheduler(job, make_config())

        try:
            add_pending_chunk(repo, "first.md")
            first = scheduler.trigger_now()
            add_pending_chunk(repo, "second.md")
            second = scheduler.trigger_now()
        finally:
            scheduler.stop()

        assert first.status == BackfillStatus.COMPLETED
        assert second.status == BackfillStatus.COMPLETED
        assert second.embedded == 1
        assert repo.stats("org-1")["pending"] == 0
