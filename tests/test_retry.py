"""
Tests de la planification des retries et du balayage automatique.
"""

import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from doc_translator.config import RetryPolicy, SchedulerConfig
from doc_translator.errors import (
    AuthenticationError,
    InputError,
    PipelineStageError,
    ProviderTimeoutError,
    RateLimitError,
    UnsupportedLanguageError,
)
from doc_translator.models import ChunkStatus
from doc_translator.retry import RetryScheduler, describe_error, is_retryable, next_retry_time
from doc_translator.store import utcnow


class TestRetryPolicy:
    def test_backoff_is_exponential_and_capped(self):
        policy = RetryPolicy()

        assert policy.backoff(0) == 30
        assert policy.backoff(1) == 60
        assert policy.backoff(2) == 120
        assert policy.backoff(20) == policy.max_delay


class TestRetryable:
    @pytest.mark.parametrize(
        "error",
        [
            RateLimitError("quota", provider="deepl"),
            ProviderTimeoutError("timeout", provider="google"),
            PipelineStageError("rewrite", RuntimeError("boom")),
            RuntimeError("inattendu"),
        ],
    )
    def test_retryable(self, error):
        assert is_retryable(error)

    @pytest.mark.parametrize(
        "error",
        [
            AuthenticationError("bad key", provider="deepl"),
            UnsupportedLanguageError("xx", provider="deepl"),
            InputError("missing"),
        ],
    )
    def test_not_retryable(self, error):
        assert not is_retryable(error)

    def test_describe_error_embeds_category(self):
        assert describe_error(RateLimitError("quota", provider="deepl")).startswith("rate-limit")
        described = describe_error(PipelineStageError("validation", RuntimeError("boom")))
        assert "validation" in described
        assert describe_error(ValueError("x")).startswith("internal: ValueError")


class TestNextRetryTime:
    def test_strictly_in_the_future(self):
        now = utcnow()

        retry_at = next_retry_time(RateLimitError("quota"), 0, now=now)

        assert retry_at == now + timedelta(seconds=30)
        assert retry_at > now

    def test_monotonic_in_retry_count(self):
        now = utcnow()
        times = [next_retry_time(RateLimitError("quota"), n, now=now) for n in range(5)]

        assert all(later > earlier for earlier, later in zip(times, times[1:]))

    def test_non_retryable_error_gets_no_retry(self):
        assert next_retry_time(AuthenticationError("bad key"), 0) is None

    def test_budget_exhausted(self):
        assert next_retry_time(RateLimitError("quota"), RetryPolicy().max_retries) is None

    def test_auto_retry_disabled(self):
        SchedulerConfig().auto_retry = False

        assert next_retry_time(RateLimitError("quota"), 0) is None
        assert next_retry_time(RateLimitError("quota"), 0, auto_retry=True) is not None


class TestRetryScheduler:
    def test_rate_limited_chunk_is_retried_after_backoff(self, store, chunked_job):
        """Échec rate-limit : balayage avant l'échéance sans effet, après → pending."""
        job, chunks = chunked_job(1)
        chunk_id = chunks[0].id
        failed_at = utcnow()
        store.claim_chunk(chunk_id)
        store.fail_chunk(chunk_id, "rate_limit: quota", next_retry_time(RateLimitError("quota"), 0, now=failed_at))
        dispatch = MagicMock()
        scheduler = RetryScheduler(store, dispatch=dispatch)

        assert scheduler.sweep(now=failed_at + timedelta(seconds=10)) == []
        assert store.get_chunk(chunk_id).status == ChunkStatus.FAILED
        dispatch.assert_not_called()

        reset = scheduler.sweep(now=failed_at + timedelta(seconds=31))

        assert [chunk.id for chunk in reset] == [chunk_id]
        chunk = store.get_chunk(chunk_id)
        assert chunk.status == ChunkStatus.PENDING
        assert chunk.retry_count == 1
        assert chunk.next_retry_at is None
        dispatch.assert_called_once_with(job.id)

    def test_auto_retry_disabled_skips_reset(self, store, chunked_job):
        _, chunks = chunked_job(1)
        store.claim_chunk(chunks[0].id)
        store.fail_chunk(chunks[0].id, "network: down", utcnow())
        SchedulerConfig().auto_retry = False
        SchedulerConfig().auto_resume = False

        scheduler = RetryScheduler(store, dispatch=MagicMock())

        assert scheduler.sweep(now=utcnow() + timedelta(hours=1)) == []
        assert store.get_chunk(chunks[0].id).status == ChunkStatus.FAILED

    def test_auto_resume_dispatches_pending_jobs(self, store, chunked_job):
        job, _ = chunked_job(2)
        dispatch = MagicMock()

        RetryScheduler(store, dispatch=dispatch).sweep()

        dispatch.assert_called_once_with(job.id)

    def test_dispatch_error_does_not_stop_sweep(self, store, chunked_job):
        first, _ = chunked_job(1)
        second, _ = chunked_job(1)
        dispatch = MagicMock(side_effect=[RuntimeError("boom"), True])

        RetryScheduler(store, dispatch=dispatch).sweep()

        assert dispatch.call_count == 2

    def test_background_thread(self, store, chunked_job):
        job, _ = chunked_job(1)
        dispatch = MagicMock()
        scheduler = RetryScheduler(store, dispatch=dispatch, interval=0.01)

        scheduler.start()
        try:
            assert scheduler.running
            deadline = time.monotonic() + 5
            while not dispatch.called and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            scheduler.stop(timeout=2)

        assert not scheduler.running
        dispatch.assert_called_with(job.id)


class TestInterruptedChunks:
    """Chunks restés en vol sans worker (arrêt du process pendant une traduction)."""

    def test_lease_still_valid_is_kept(self, store, chunked_job):
        _, chunks = chunked_job(1)
        store.claim_chunk(chunks[0].id)

        RetryScheduler(store, dispatch=MagicMock()).sweep(now=utcnow())

        assert store.get_chunk(chunks[0].id).status == ChunkStatus.TRANSLATING

    def test_expired_lease_schedules_retry(self, store, chunked_job):
        job, chunks = chunked_job(1)
        chunk_id = chunks[0].id
        store.claim_chunk(chunk_id)
        later = utcnow() + timedelta(seconds=SchedulerConfig().lease_timeout + 1)
        scheduler = RetryScheduler(store, dispatch=MagicMock())

        assert scheduler.sweep(now=later) == []

        chunk = store.get_chunk(chunk_id)
        assert chunk.status == ChunkStatus.FAILED
        assert chunk.error.startswith("interrupted:")
        assert chunk.next_retry_at == later + timedelta(seconds=30)

        reset = scheduler.sweep(now=later + timedelta(seconds=31))

        assert [c.id for c in reset] == [chunk_id]
        assert store.get_chunk(chunk_id).status == ChunkStatus.PENDING
        assert store.get_chunk(chunk_id).retry_count == 1

    def test_recover_all_at_startup(self, store, chunked_job):
        _, chunks = chunked_job(2)
        store.claim_chunk(chunks[0].id)
        store.claim_chunk(chunks[1].id)
        store.start_enhancing(chunks[1].id, "traduit")

        interrupted = RetryScheduler(store, dispatch=MagicMock()).recover_interrupted()

        assert {chunk.id for chunk in interrupted} == {chunks[0].id, chunks[1].id}
        assert all(c.status == ChunkStatus.FAILED for c in store.get_chunks(chunks[0].job_id))

    def test_cancelled_job_gets_no_retry(self, store, chunked_job):
        job, chunks = chunked_job(1)
        store.claim_chunk(chunks[0].id)
        store.set_cancel_requested(job.id, True)

        RetryScheduler(store, dispatch=MagicMock()).recover_interrupted()

        chunk = store.get_chunk(chunks[0].id)
        assert chunk.status == ChunkStatus.FAILED
        assert chunk.next_retry_at is None
