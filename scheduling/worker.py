"""
RQ worker and polling daemon for the PRIMA followup queue
"""
import logging
import signal
import time
from datetime import datetime
from typing import Optional

import redis
from rq import Queue, Worker
from rq_scheduler import Scheduler

from config import settings
from config.redis import get_redis_url

from .tasks import process_followup_queue

logger = logging.getLogger("followup-worker")


class FollowupWorker:
    """
    Manages the RQ worker that delivers followups, and the rq-scheduler
    entry that claims due jobs on an interval
    """

    def __init__(self, redis_url: Optional[str] = None, queue_name: str = None):
        self.redis_conn = redis.Redis.from_url(redis_url or get_redis_url())
        self.queue = Queue(queue_name or settings.RQ_QUEUE_NAME, connection=self.redis_conn)
        self.scheduler = Scheduler(queue=self.queue, connection=self.redis_conn)
        self.worker: Optional[Worker] = None
        self.running = False

        # Set up signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.stop()

    def start_worker(self, worker_name: Optional[str] = None):
        """
        Start the RQ worker to process delivery jobs

        Args:
            worker_name: Optional name for the worker (defaults to a timestamped name)
        """
        if self.running:
            logger.warning("Worker is already running")
            return

        logger.info("Starting PRIMA followup delivery worker...")
        self.worker = Worker(
            [self.queue],
            connection=self.redis_conn,
            name=worker_name or f"prima-followup-worker-{int(time.time())}"
        )
        self.running = True

        try:
            self.worker.work(with_scheduler=True, logging_level="INFO")
        except KeyboardInterrupt:
            logger.info("Worker interrupted by user")
        finally:
            self.running = False
            logger.info("Worker stopped")

    def schedule_queue_polling(self, check_interval: int = None):
        """
        Register the recurring process_followup_queue job with rq-scheduler

        Existing registrations are cancelled first so restarts do not stack
        duplicate pollers.
        """
        check_interval = check_interval or settings.QUEUE_CHECK_INTERVAL_SECONDS
        for scheduled in self.scheduler.get_jobs():
            if scheduled.func_name.endswith("process_followup_queue"):
                self.scheduler.cancel(scheduled)

        self.scheduler.schedule(
            scheduled_time=datetime.utcnow(),
            func=process_followup_queue,
            interval=check_interval,
            repeat=None  # Repeat indefinitely
        )
        logger.info(f"Followup queue polling scheduled every {check_interval}s")

    def stop(self):
        """Stop the worker gracefully"""
        if self.worker and self.running:
            logger.info("Stopping worker...")
            self.worker.request_stop(signal.SIGTERM, None)
            self.running = False
        else:
            logger.info("Worker not running")

    def get_worker_stats(self) -> dict:
        """Statistics about the RQ queue and worker"""
        return {
            "queue_size": len(self.queue),
            "failed_jobs": len(self.queue.failed_job_registry),
            "finished_jobs": len(self.queue.finished_job_registry),
            "started_jobs": len(self.queue.started_job_registry),
            "scheduled_jobs": len(self.queue.scheduled_job_registry),
            "worker_count": len(Worker.all(connection=self.redis_conn)),
            "is_running": self.running
        }


class FollowupQueueDaemon:
    """
    Standalone poller: claims and delivers due followups in-process,
    without RQ. Several daemons may run at once; claims are atomic.
    """

    def __init__(self, executor=None):
        if executor is None:
            from followup.executor import create_followup_executor
            executor = create_followup_executor()
        self.executor = executor
        self.running = False

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        logger.info(f"Queue daemon received signal {signum}, shutting down...")
        self.running = False

    def run_once(self):
        summary = self.executor.run_once()
        if summary.claimed:
            logger.info(f"Processed {summary.claimed} followups: {summary.to_dict()}")
        else:
            logger.debug("No due followups found")
        return summary

    def run(self, check_interval: int = None, max_iterations: Optional[int] = None):
        """
        Poll the queue until stopped

        Args:
            check_interval: Seconds between polls
            max_iterations: Stop after this many polls (used by tests)
        """
        check_interval = check_interval or settings.QUEUE_CHECK_INTERVAL_SECONDS
        logger.info(f"Starting followup queue daemon (checking every {check_interval}s)")
        self.running = True
        iterations = 0

        while self.running:
            try:
                self.run_once()
            except redis.RedisError as e:
                logger.error(f"Job store unavailable, will retry next cycle: {e}")
            except Exception as e:
                logger.error(f"Error in followup queue daemon: {e}", exc_info=True)

            iterations += 1
            if max_iterations is not None and iterations >= max_iterations:
                break
            time.sleep(check_interval)

        self.running = False
        logger.info("Followup queue daemon stopped")


def main():
    """
    Main function for running the worker or the polling daemon
    """
    import argparse

    parser = argparse.ArgumentParser(description="PRIMA Reminder Followup Worker")
    parser.add_argument(
        "mode",
        choices=["worker", "scheduler", "daemon"],
        help="worker (RQ delivery worker with interval polling), "
             "scheduler (only register interval polling), or daemon (standalone poller)"
    )
    parser.add_argument(
        "--check-interval",
        type=int,
        default=settings.QUEUE_CHECK_INTERVAL_SECONDS,
        help=f"Queue check interval in seconds (default: {settings.QUEUE_CHECK_INTERVAL_SECONDS})"
    )
    parser.add_argument(
        "--worker-name",
        help="Name for the worker process"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.mode == "worker":
        worker = FollowupWorker()
        worker.schedule_queue_polling(args.check_interval)
        worker.start_worker(worker_name=args.worker_name)

    elif args.mode == "scheduler":
        FollowupWorker().schedule_queue_polling(args.check_interval)

    elif args.mode == "daemon":
        FollowupQueueDaemon().run(check_interval=args.check_interval)


if __name__ == "__main__":
    main()
