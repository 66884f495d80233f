"""
FollowupQueue - time-ordered queue of followup message jobs

Layout in the job store:
    followup:queue          sorted set, job id -> due time (epoch millis)
    followup:job:<id>       hash with the JSON job under "data" plus mirror fields
    followup:processing     hash, job id -> claim time (epoch millis)
    followup:completed      hash, job id -> completion time
    followup:failed         hash, job id -> JSON failure summary

The hash is the source of truth; the sorted-set score is an index derived
from data.scheduled_at and is rewritten together with it.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from config import settings
from shared.job_store import JobStore
from utils.time_utils import now_utc, to_epoch_millis, from_epoch_millis, to_utc

from .models import FollowupJob, JobStatus, QueueStats, job_id_for

logger = logging.getLogger("followup-queue")

QUEUE_KEY = "followup:queue"
PROCESSING_KEY = "followup:processing"
COMPLETED_KEY = "followup:completed"
FAILED_KEY = "followup:failed"
JOB_PREFIX = "followup:job:"


def calculate_retry_delay(retry_count: int, base_minutes: int = 5) -> timedelta:
    """
    Backoff before the next attempt of a job that has already used
    retry_count retries: 5, 10, 20... minutes.
    """
    return timedelta(minutes=base_minutes * (2 ** retry_count))


class FollowupQueue:
    """
    Owns the lifecycle of followup jobs: pending -> processing -> completed,
    or back to pending with backoff until retries run out.

    Store errors are not retried here; they propagate to whoever called
    the operation.
    """

    def __init__(
        self,
        store: JobStore,
        batch_size: int = None,
        job_ttl_seconds: int = None,
        max_retries: int = None,
        claim_timeout_seconds: int = None,
        retry_base_minutes: int = None,
    ):
        self.store = store
        self.batch_size = batch_size or settings.FOLLOWUP_BATCH_SIZE
        self.job_ttl_seconds = job_ttl_seconds or settings.FOLLOWUP_JOB_RETENTION_SECONDS
        self.max_retries = settings.FOLLOWUP_MAX_RETRIES if max_retries is None else max_retries
        self.claim_timeout_seconds = claim_timeout_seconds or settings.FOLLOWUP_CLAIM_TIMEOUT_SECONDS
        self.retry_base_minutes = retry_base_minutes or settings.FOLLOWUP_RETRY_BASE_MINUTES

    @staticmethod
    def job_key(job_id: str) -> str:
        return f"{JOB_PREFIX}{job_id}"

    def _ttl_for(self, job: FollowupJob, now: datetime) -> int:
        # keep the hash at least until it is due, then for the retention window
        until_due = max(0, int((job.scheduled_at - now).total_seconds()))
        return until_due + self.job_ttl_seconds

    def _write_job(self, job: FollowupJob, now: datetime):
        key = self.job_key(job.id)
        self.store.hset(key, {
            "data": job.to_json(),
            "status": job.status.value,
            "retry_count": str(job.retry_count),
            "created_at": job.created_at.isoformat(),
        })
        self.store.expire(key, self._ttl_for(job, now))
        self.store.zadd(QUEUE_KEY, {job.id: to_epoch_millis(job.scheduled_at)})

    def _purge_orphan(self, job_id: str, reason: str):
        logger.warning(f"Removing orphaned job {job_id} from queue: {reason}")
        self.store.zrem(QUEUE_KEY, job_id)
        self.store.delete(self.job_key(job_id))
        self.store.hdel(PROCESSING_KEY, job_id)

    def _load(self, job_id: str):
        """Returns (raw, job); job is None when the data is missing or unreadable"""
        raw = self.store.hget(self.job_key(job_id), "data")
        if not raw:
            return raw, None
        try:
            return raw, FollowupJob.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Corrupt data for job {job_id}: {e}")
            return raw, None

    def enqueue(
        self,
        followup_id: str,
        scheduled_at: datetime,
        max_retries: Optional[int] = None,
        generation: int = 0,
    ) -> FollowupJob:
        """
        Add a followup to the queue, due at scheduled_at

        Enqueueing the same followup again replaces the earlier job. A naive
        scheduled_at is taken as UTC.
        """
        now = now_utc()
        scheduled_at = to_utc(scheduled_at)
        job = FollowupJob(
            followup_id=followup_id,
            scheduled_at=scheduled_at,
            created_at=now,
            max_retries=self.max_retries if max_retries is None else max_retries,
            generation=generation,
        )
        self._write_job(job, now)
        logger.info(f"Enqueued job {job.id} for {scheduled_at.isoformat()}")
        return job

    def process_queue(self, now: Optional[datetime] = None) -> List[FollowupJob]:
        """
        Claim due jobs for execution

        Claims at most batch_size due jobs in due order. A job is claimed by
        the single poller whose set-if-absent on the processing marker
        succeeds; everyone else skips it. Claims older than the claim
        timeout are treated as abandoned and may be taken over.

        Returns:
            The jobs this caller now owns, in due order
        """
        now = now or now_utc()
        now_ms = to_epoch_millis(now)
        claim_value = str(now_ms)

        # claimed jobs stay indexed until they finish; look past them so they
        # cannot crowd newer due jobs out of the batch
        window = self.batch_size + self.store.hlen(PROCESSING_KEY)
        due_ids = self.store.zrangebyscore(QUEUE_KEY, 0, now_ms, start=0, num=window)
        if not due_ids:
            return []

        claimed = []
        for job_id in due_ids:
            if len(claimed) >= self.batch_size:
                break
            raw, job = self._load(job_id)
            if job is None:
                self._purge_orphan(job_id, "job data missing" if not raw else "job data unreadable")
                continue

            if not self.store.hsetnx(PROCESSING_KEY, job_id, claim_value):
                if not self._take_over_stale_claim(job_id, now_ms, claim_value):
                    logger.debug(f"Job {job_id} is already being processed, skipping")
                    continue

            job.status = JobStatus.PROCESSING
            updated = self.store.conditional_update(
                self.job_key(job_id), "data", raw,
                {"data": job.to_json(), "status": job.status.value},
            )
            if not updated:
                # rewritten or removed between our read and our claim
                self.store.hdel(PROCESSING_KEY, job_id)
                logger.info(f"Job {job_id} changed while claiming, leaving it for the next poll")
                continue

            claimed.append(job)

        if claimed:
            logger.info(f"Claimed {len(claimed)} of {len(due_ids)} due followup jobs")
        return claimed

    def _take_over_stale_claim(self, job_id: str, now_ms: int, claim_value: str) -> bool:
        existing = self.store.hget(PROCESSING_KEY, job_id)
        if existing is None:
            return False
        try:
            claimed_at = int(existing)
        except ValueError:
            claimed_at = 0
        if now_ms - claimed_at < self.claim_timeout_seconds * 1000:
            return False
        if self.store.compare_and_set(PROCESSING_KEY, job_id, existing, claim_value):
            logger.warning(
                f"Reclaimed job {job_id}; previous claim from "
                f"{from_epoch_millis(claimed_at).isoformat()} timed out"
            )
            return True
        return False

    def complete_job(self, job_id: str) -> bool:
        """
        Mark a job done and drop it from the queue. Safe to call twice.
        """
        self.store.zrem(QUEUE_KEY, job_id)
        self.store.delete(self.job_key(job_id))
        self.store.hdel(PROCESSING_KEY, job_id)
        self.store.hset(COMPLETED_KEY, {job_id: now_utc().isoformat()})
        self.store.expire(COMPLETED_KEY, self.job_ttl_seconds)
        logger.info(f"Completed job {job_id}")
        return True

    def fail_job(
        self,
        job_id: str,
        error: str,
        retry_count: int,
        max_retries: int,
        now: Optional[datetime] = None,
    ) -> Optional[FollowupJob]:
        """
        Record a failed attempt

        Args:
            job_id: The failed job
            error: Why the attempt failed
            retry_count: Retries the job had already used before this attempt
            max_retries: Retry ceiling for the job

        Returns:
            The rescheduled job, or None when the job is now terminally failed
            (or its data is gone)
        """
        now = now or now_utc()
        key = self.job_key(job_id)

        if retry_count >= max_retries:
            self.store.hset(FAILED_KEY, {job_id: json.dumps({
                "error": error,
                "retry_count": retry_count,
                "failed_at": now.isoformat(),
            })})
            self.store.expire(FAILED_KEY, self.job_ttl_seconds)
            self.store.zrem(QUEUE_KEY, job_id)
            self.store.hset(key, {"status": JobStatus.FAILED.value, "error": error})
            self.store.expire(key, self.job_ttl_seconds)
            self.store.hdel(PROCESSING_KEY, job_id)
            logger.error(f"Job {job_id} failed permanently after {retry_count} retries: {error}")
            return None

        raw, job = self._load(job_id)
        if job is None:
            self._purge_orphan(job_id, "job data gone before retry could be scheduled")
            return None

        delay = calculate_retry_delay(retry_count, self.retry_base_minutes)
        job.scheduled_at = now + delay
        job.retry_count = retry_count + 1
        job.max_retries = max_retries
        job.error = error
        job.status = JobStatus.PENDING

        self._write_job(job, now)
        self.store.hdel(PROCESSING_KEY, job_id)
        logger.info(
            f"Job {job_id} failed ({error}); retry {job.retry_count}/{max_retries} "
            f"in {int(delay.total_seconds() // 60)} minutes"
        )
        return job

    def dequeue_followup(self, followup_id: str) -> bool:
        """
        Best-effort removal of a followup's job.

        A poller that already claimed the job is not interrupted; the executor
        checks the followup's generation before sending. The claim marker is
        dropped too, since nothing indexes the job once it leaves the due set.
        """
        job_id = job_id_for(followup_id)
        removed = self.store.zrem(QUEUE_KEY, job_id)
        self.store.delete(self.job_key(job_id))
        self.store.hdel(PROCESSING_KEY, job_id)
        if removed:
            logger.info(f"Dequeued job {job_id}")
        return bool(removed)

    def get_job(self, job_id: str) -> Optional[FollowupJob]:
        """Read a job without changing it"""
        _, job = self._load(job_id)
        return job

    def list_jobs(self, limit: int = 50) -> List[FollowupJob]:
        """Queued jobs in due order, for tooling"""
        jobs = []
        for job_id in self.store.zrangebyscore(QUEUE_KEY, 0, "+inf", start=0, num=limit):
            job = self.get_job(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    def get_queue_stats(self) -> QueueStats:
        """Counts from index sizes only; no scan over jobs"""
        total = self.store.zcard(QUEUE_KEY)
        processing = self.store.hlen(PROCESSING_KEY)
        return QueueStats(
            pending=max(0, total - processing),
            processing=processing,
            completed=self.store.hlen(COMPLETED_KEY),
            failed=self.store.hlen(FAILED_KEY),
        )


def create_followup_queue(store: Optional[JobStore] = None) -> FollowupQueue:
    """Factory function to create a queue on the configured store"""
    if store is None:
        from shared.job_store import create_job_store
        store = create_job_store()
    return FollowupQueue(store)
