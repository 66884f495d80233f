"""
Tests for FollowupQueue: claiming, backoff retry, completion and stats
"""
import json
import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest
from freezegun import freeze_time

from scheduling.models import JobStatus
from scheduling.queue import (
    COMPLETED_KEY, FAILED_KEY, PROCESSING_KEY, QUEUE_KEY,
    FollowupQueue, calculate_retry_delay, create_followup_queue,
)
from utils.time_utils import now_utc, to_epoch_millis

START = "2025-01-15 08:00:00"
START_DT = datetime(2025, 1, 15, 8, 0, 0, tzinfo=timezone.utc)


class TestCalculateRetryDelay:
    """Tests for the backoff formula"""

    @pytest.mark.parametrize("retry_count,minutes", [(0, 5), (1, 10), (2, 20), (3, 40)])
    def test_doubles_from_five_minutes(self, retry_count, minutes):
        assert calculate_retry_delay(retry_count) == timedelta(minutes=minutes)

    def test_custom_base(self):
        assert calculate_retry_delay(2, base_minutes=1) == timedelta(minutes=4)


class TestEnqueue:
    """Tests for FollowupQueue.enqueue"""

    @freeze_time(START)
    def test_enqueue_creates_pending_job(self, followup_queue, memory_store):
        """Job is pending, stored in its hash and indexed by due time"""
        due = now_utc() + timedelta(minutes=15)
        job = followup_queue.enqueue("f-1", due)

        assert job.id == "followup_f-1"
        assert job.status == JobStatus.PENDING
        assert job.retry_count == 0
        assert job.max_retries == 3

        assert memory_store.zscore(QUEUE_KEY, job.id) == to_epoch_millis(due)
        stored = followup_queue.get_job(job.id)
        assert stored.scheduled_at == due
        assert memory_store.hget(followup_queue.job_key(job.id), "status") == "pending"

    @freeze_time(START)
    def test_enqueue_same_followup_replaces_job(self, followup_queue, memory_store):
        followup_queue.enqueue("f-1", now_utc() + timedelta(minutes=15))
        later = now_utc() + timedelta(hours=2)
        followup_queue.enqueue("f-1", later)

        assert memory_store.zcard(QUEUE_KEY) == 1
        assert memory_store.zscore(QUEUE_KEY, "followup_f-1") == to_epoch_millis(later)

    @freeze_time(START)
    def test_naive_scheduled_at_is_utc(self, followup_queue, memory_store):
        job = followup_queue.enqueue("f-1", datetime(2025, 1, 15, 8, 15))

        assert job.scheduled_at == START_DT + timedelta(minutes=15)
        assert memory_store.zscore(QUEUE_KEY, job.id) == to_epoch_millis(START_DT + timedelta(minutes=15))
        assert followup_queue.process_queue() == []

    def test_job_data_kept_until_due_plus_retention(self, followup_queue, memory_store):
        """A +24h followup must not expire before it is due"""
        with freeze_time(START) as frozen:
            job = followup_queue.enqueue("f-1", now_utc() + timedelta(hours=24))

            frozen.tick(timedelta(hours=30))
            assert followup_queue.get_job(job.id) is not None

            frozen.tick(timedelta(hours=19))
            assert followup_queue.get_job(job.id) is None


class TestProcessQueue:
    """Tests for FollowupQueue.process_queue"""

    @freeze_time(START)
    def test_future_jobs_are_not_claimed(self, followup_queue):
        followup_queue.enqueue("f-1", now_utc() + timedelta(minutes=15))
        assert followup_queue.process_queue() == []

    @freeze_time(START)
    def test_due_job_is_claimed_and_marked_processing(self, followup_queue, memory_store):
        job = followup_queue.enqueue("f-1", now_utc())

        claimed = followup_queue.process_queue()

        assert [j.id for j in claimed] == [job.id]
        assert claimed[0].status == JobStatus.PROCESSING
        assert memory_store.hget(PROCESSING_KEY, job.id) == str(to_epoch_millis(now_utc()))
        assert followup_queue.get_job(job.id).status == JobStatus.PROCESSING

    def test_job_becomes_claimable_once_due(self, followup_queue):
        with freeze_time(START) as frozen:
            followup_queue.enqueue("f-1", now_utc() + timedelta(minutes=15))

            frozen.tick(timedelta(minutes=14, seconds=59))
            assert followup_queue.process_queue() == []

            frozen.tick(timedelta(seconds=1))
            assert len(followup_queue.process_queue()) == 1

    @freeze_time(START)
    def test_claims_in_due_order(self, followup_queue):
        base = now_utc() - timedelta(minutes=10)
        followup_queue.enqueue("c", base + timedelta(minutes=3))
        followup_queue.enqueue("a", base + timedelta(minutes=1))
        followup_queue.enqueue("b", base + timedelta(minutes=2))

        claimed = followup_queue.process_queue()

        assert [j.followup_id for j in claimed] == ["a", "b", "c"]

    @freeze_time(START)
    def test_batch_size_caps_claims(self, memory_store):
        queue = FollowupQueue(memory_store, batch_size=100, max_retries=3)
        for i in range(105):
            queue.enqueue(f"f-{i:03d}", now_utc() - timedelta(seconds=105 - i))

        first = queue.process_queue()
        second = queue.process_queue()

        assert len(first) == 100
        assert len(second) == 5
        assert not {j.id for j in first} & {j.id for j in second}

    @freeze_time(START)
    def test_already_claimed_job_is_skipped(self, followup_queue, memory_store):
        """A second poller on the same store sees the job as taken"""
        other_poller = FollowupQueue(memory_store, max_retries=3)
        followup_queue.enqueue("f-1", now_utc())

        assert len(followup_queue.process_queue()) == 1
        assert other_poller.process_queue() == []
        # skipped, not removed
        assert memory_store.zcard(QUEUE_KEY) == 1

    def test_concurrent_pollers_claim_each_job_once(self, memory_store):
        with freeze_time(START):
            pollers = [FollowupQueue(memory_store, max_retries=3) for _ in range(5)]
            for i in range(40):
                pollers[0].enqueue(f"f-{i}", now_utc() - timedelta(minutes=1))

            results = []
            lock = threading.Lock()

            def poll(queue):
                claimed = queue.process_queue()
                with lock:
                    results.extend(job.id for job in claimed)

            threads = [threading.Thread(target=poll, args=(q,)) for q in pollers]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert len(results) == 40
        assert len(set(results)) == 40

    @freeze_time(START)
    def test_orphaned_index_entry_is_purged(self, followup_queue, memory_store, caplog):
        memory_store.zadd(QUEUE_KEY, {"followup_ghost": to_epoch_millis(now_utc())})
        job = followup_queue.enqueue("f-1", now_utc())

        with caplog.at_level(logging.WARNING, logger="followup-queue"):
            claimed = followup_queue.process_queue()

        assert [j.id for j in claimed] == [job.id]
        assert memory_store.zscore(QUEUE_KEY, "followup_ghost") is None
        assert "followup_ghost" in caplog.text

    @freeze_time(START)
    def test_corrupt_job_data_is_purged(self, followup_queue, memory_store):
        memory_store.zadd(QUEUE_KEY, {"followup_bad": to_epoch_millis(now_utc())})
        memory_store.hset(followup_queue.job_key("followup_bad"), {"data": "{not json"})

        assert followup_queue.process_queue() == []
        assert memory_store.zscore(QUEUE_KEY, "followup_bad") is None
        assert not memory_store.exists(followup_queue.job_key("followup_bad"))

    def test_stale_claim_is_taken_over_after_timeout(self, followup_queue, memory_store):
        with freeze_time(START) as frozen:
            job = followup_queue.enqueue("f-1", now_utc())
            assert len(followup_queue.process_queue()) == 1

            frozen.tick(timedelta(minutes=10))
            assert followup_queue.process_queue() == []

            frozen.tick(timedelta(minutes=6))
            reclaimed = followup_queue.process_queue()

            assert [j.id for j in reclaimed] == [job.id]
            assert memory_store.hget(PROCESSING_KEY, job.id) == str(to_epoch_millis(now_utc()))


class TestCompleteJob:
    """Tests for FollowupQueue.complete_job"""

    @freeze_time(START)
    def test_complete_removes_job_everywhere(self, followup_queue, memory_store):
        job = followup_queue.enqueue("f-1", now_utc())
        followup_queue.process_queue()

        followup_queue.complete_job(job.id)

        assert memory_store.zscore(QUEUE_KEY, job.id) is None
        assert memory_store.hget(PROCESSING_KEY, job.id) is None
        assert followup_queue.get_job(job.id) is None
        assert memory_store.hget(COMPLETED_KEY, job.id) is not None

    @freeze_time(START)
    def test_complete_is_idempotent(self, followup_queue):
        job = followup_queue.enqueue("f-1", now_utc())
        followup_queue.process_queue()

        followup_queue.complete_job(job.id)
        followup_queue.complete_job(job.id)

        stats = followup_queue.get_queue_stats()
        assert stats.completed == 1
        assert stats.pending == 0
        assert stats.processing == 0


class TestFailJob:
    """Tests for FollowupQueue.fail_job and the retry policy"""

    def _claim(self, queue):
        claimed = queue.process_queue()
        assert len(claimed) == 1
        return claimed[0]

    def test_backoff_sequence(self, followup_queue, memory_store):
        """Delays before retries 1, 2, 3 are 5, 10 and 20 minutes"""
        with freeze_time(START) as frozen:
            followup_queue.enqueue("f-1", now_utc())

            for k, minutes in enumerate([5, 10, 20], start=1):
                job = self._claim(followup_queue)
                failed_at = now_utc()

                updated = followup_queue.fail_job(job.id, "gateway timeout", job.retry_count, job.max_retries)

                assert updated.retry_count == k
                assert updated.status == JobStatus.PENDING
                assert updated.error == "gateway timeout"
                assert updated.scheduled_at == failed_at + timedelta(minutes=minutes)
                assert memory_store.zscore(QUEUE_KEY, job.id) == to_epoch_millis(updated.scheduled_at)
                assert memory_store.hget(PROCESSING_KEY, job.id) is None

                frozen.tick(timedelta(minutes=minutes))

    def test_retry_not_claimable_before_backoff(self, followup_queue):
        with freeze_time(START) as frozen:
            followup_queue.enqueue("f-1", now_utc())
            job = self._claim(followup_queue)
            followup_queue.fail_job(job.id, "boom", job.retry_count, job.max_retries)

            frozen.tick(timedelta(minutes=4))
            assert followup_queue.process_queue() == []

            frozen.tick(timedelta(minutes=1))
            assert len(followup_queue.process_queue()) == 1

    @pytest.mark.parametrize("failures", [1, 2, 3, 4, 5])
    def test_retry_count_is_bounded(self, followup_queue, memory_store, failures):
        """After n consecutive failures retry_count == min(n, max_retries)"""
        with freeze_time(START) as frozen:
            followup_queue.enqueue("f-1", now_utc())
            retry_count = 0

            for _ in range(failures):
                claimed = followup_queue.process_queue()
                if not claimed:
                    break
                job = claimed[0]
                updated = followup_queue.fail_job(job.id, "boom", job.retry_count, job.max_retries)
                if updated is None:
                    retry_count = job.retry_count
                    break
                retry_count = updated.retry_count
                frozen.move_to(updated.scheduled_at)

            assert retry_count == min(failures, 3)

    @freeze_time(START)
    def test_exhausted_job_fails_permanently(self, followup_queue, memory_store):
        job = followup_queue.enqueue("f-1", now_utc())
        followup_queue.process_queue()

        result = followup_queue.fail_job(job.id, "number blocked", 3, 3)

        assert result is None
        assert memory_store.zscore(QUEUE_KEY, job.id) is None
        assert memory_store.hget(PROCESSING_KEY, job.id) is None
        failure = json.loads(memory_store.hget(FAILED_KEY, job.id))
        assert failure["error"] == "number blocked"
        assert failure["retry_count"] == 3
        assert followup_queue.get_queue_stats().failed == 1

    @freeze_time(START)
    def test_fail_after_data_expired_cleans_up(self, followup_queue, memory_store):
        job = followup_queue.enqueue("f-1", now_utc())
        followup_queue.process_queue()
        memory_store.delete(followup_queue.job_key(job.id))

        assert followup_queue.fail_job(job.id, "boom", 0, 3) is None
        assert memory_store.zscore(QUEUE_KEY, job.id) is None
        assert memory_store.hget(PROCESSING_KEY, job.id) is None


class TestDequeueFollowup:
    """Tests for FollowupQueue.dequeue_followup"""

    @freeze_time(START)
    def test_dequeue_removes_pending_job(self, followup_queue, memory_store):
        followup_queue.enqueue("f-1", now_utc() + timedelta(minutes=15))

        assert followup_queue.dequeue_followup("f-1") is True
        assert memory_store.zcard(QUEUE_KEY) == 0
        assert followup_queue.get_job("followup_f-1") is None

    @freeze_time(START)
    def test_dequeue_unknown_followup(self, followup_queue):
        assert followup_queue.dequeue_followup("missing") is False

    def test_dequeue_releases_a_claim(self, followup_queue, memory_store):
        with freeze_time(START) as frozen:
            followup_queue.enqueue("f-1", now_utc())
            followup_queue.enqueue("f-2", now_utc() + timedelta(days=2))
            followup_queue.process_queue()

            # the claiming poller never completes the job
            assert followup_queue.dequeue_followup("f-1") is True
            assert memory_store.hget(PROCESSING_KEY, "followup_f-1") is None

            frozen.tick(timedelta(days=2, hours=1))
            [job] = followup_queue.process_queue()

            assert job.id == "followup_f-2"
            stats = followup_queue.get_queue_stats()
            assert (stats.pending, stats.processing) == (0, 1)

    @freeze_time(START)
    def test_complete_after_dequeue_is_harmless(self, followup_queue, memory_store):
        followup_queue.enqueue("f-1", now_utc())
        followup_queue.process_queue()
        followup_queue.dequeue_followup("f-1")

        assert followup_queue.complete_job("followup_f-1") is True
        assert memory_store.hlen(PROCESSING_KEY) == 0


class TestQueueStats:
    """Tests for FollowupQueue.get_queue_stats"""

    @freeze_time(START)
    def test_stats_track_lifecycle(self, followup_queue):
        followup_queue.enqueue("a", now_utc() - timedelta(minutes=2))
        followup_queue.enqueue("b", now_utc() - timedelta(minutes=1))
        followup_queue.enqueue("c", now_utc() + timedelta(hours=2))

        stats = followup_queue.get_queue_stats()
        assert (stats.pending, stats.processing, stats.completed, stats.failed) == (3, 0, 0, 0)

        followup_queue.process_queue()
        stats = followup_queue.get_queue_stats()
        assert (stats.pending, stats.processing) == (1, 2)

        followup_queue.complete_job("followup_a")
        followup_queue.fail_job("followup_b", "blocked", 3, 3)

        stats = followup_queue.get_queue_stats()
        assert stats.to_dict() == {"pending": 1, "processing": 0, "completed": 1, "failed": 1}


class TestCreateFollowupQueue:
    """Tests for the queue factory"""

    def test_uses_given_store_and_settings(self, memory_store):
        queue = create_followup_queue(memory_store)

        assert queue.store is memory_store
        assert queue.batch_size == 100
        assert queue.max_retries == 3
