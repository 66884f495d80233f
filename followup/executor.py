"""
Followup Executor - delivers claimed followup jobs over the message channel
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from scheduling.models import FollowupJob, FollowupStatus
from scheduling.queue import FollowupQueue
from scheduling.scheduler import FollowupScheduler
from shared.audit import AuditSink, log_access_safely
from shared.reminder_log import ReminderLogRepository

from .business_logic import (
    FollowupAction, build_followup_message, decide_followup_action, should_escalate_no_response
)
from .channel_adapter import MessageChannelAdapter, SendResult

logger = logging.getLogger("followup-executor")


class JobOutcome(Enum):
    SENT = "sent"
    RETRYING = "retrying"
    FAILED = "failed"
    SKIPPED = "skipped"
    DISCARDED = "discarded"


@dataclass
class ExecutionSummary:
    """Counts for one run_once() pass"""
    claimed: int = 0
    outcomes: dict = field(default_factory=dict)
    escalated: int = 0

    def record(self, outcome: JobOutcome):
        self.outcomes[outcome.value] = self.outcomes.get(outcome.value, 0) + 1

    def count(self, outcome: JobOutcome) -> int:
        return self.outcomes.get(outcome.value, 0)

    def to_dict(self) -> dict:
        return {"claimed": self.claimed, "escalated": self.escalated, **self.outcomes}


class FollowupExecutor:
    """
    Executes followup jobs claimed from the queue

    Uses dependency injection for the message channel and escalation
    classifier to improve testability. Decisions are pure functions in
    business_logic.
    """

    def __init__(
        self,
        queue: FollowupQueue,
        scheduler: FollowupScheduler,
        channel: MessageChannelAdapter,
        classifier=None,
        reminder_log: Optional[ReminderLogRepository] = None,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.queue = queue
        self.scheduler = scheduler
        self.channel = channel
        self.classifier = classifier
        self.reminder_log = reminder_log or scheduler.reminder_log
        self.audit_sink = audit_sink

    def run_once(self, now: Optional[datetime] = None) -> ExecutionSummary:
        """
        Claim due jobs and execute each one

        Every claimed job is attempted even if an earlier one raised; the
        first error is re-raised once the batch is done.
        """
        jobs = self.queue.process_queue(now)
        summary = ExecutionSummary(claimed=len(jobs))
        first_error = None

        for job in jobs:
            try:
                outcome, escalated = self._execute(job)
                summary.record(outcome)
                summary.escalated += escalated
            except Exception as e:
                logger.error(f"Error executing followup job {job.id}: {e}", exc_info=True)
                if first_error is None:
                    first_error = e

        if jobs:
            logger.info(f"Followup run complete: {summary.to_dict()}")
        if first_error is not None:
            raise first_error
        return summary

    def execute_job(self, job: FollowupJob) -> JobOutcome:
        """Execute one claimed job and report what happened"""
        outcome, _ = self._execute(job)
        return outcome

    def _execute(self, job: FollowupJob):
        record = self.scheduler.get_followup(job.followup_id)
        delivery = self.reminder_log.get(record.reminder_log_id) if record else None
        resolved = delivery is not None and not delivery.is_pending

        action = decide_followup_action(
            record,
            job.generation,
            self.scheduler.current_generation(job.followup_id),
            resolved,
        )

        if action == FollowupAction.FAIL_MISSING:
            logger.error(f"Followup {job.followup_id} for job {job.id} not found, failing permanently")
            self.queue.fail_job(job.id, "Followup record not found", job.max_retries, job.max_retries)
            return JobOutcome.FAILED, 0

        if action == FollowupAction.DISCARD_STALE:
            logger.info(f"Discarding stale job {job.id} (followup {job.followup_id} was cancelled or already handled)")
            self.queue.complete_job(job.id)
            return JobOutcome.DISCARDED, 0

        if action == FollowupAction.SKIP_RESOLVED:
            logger.info(f"Reminder {record.reminder_log_id} already answered, skipping followup {record.id}")
            self.scheduler.mark_status(record.id, FollowupStatus.SKIPPED)
            self.queue.complete_job(job.id)
            return JobOutcome.SKIPPED, 0

        body = build_followup_message(record)
        logger.info(f"Sending {record.stage.value} followup {record.id} to patient {record.patient_id}")
        try:
            result = self.channel.send(record.phone_number, body)
        except Exception as e:
            logger.error(f"Channel error sending followup {record.id}: {e}")
            result = SendResult(success=False, error=str(e))

        if not result.success:
            error = result.error or "Unknown send failure"
            retried = self.queue.fail_job(job.id, error, job.retry_count, job.max_retries)
            if retried is None:
                self.scheduler.mark_status(record.id, FollowupStatus.FAILED, error)
                return JobOutcome.FAILED, 0
            return JobOutcome.RETRYING, 0

        self.queue.complete_job(job.id)
        self.scheduler.mark_sent(record.id, result.message_id)
        log_access_safely(
            self.audit_sink,
            "send_followup",
            "followup",
            resource_id=record.id,
            patient_id=record.patient_id,
            metadata={"stage": record.stage.value, "message_id": result.message_id},
        )

        escalated = 0
        if self.classifier is not None and should_escalate_no_response(record, resolved):
            escalated = len(self.classifier.analyze_no_response(record.patient_id, record.id))
        return JobOutcome.SENT, escalated


def create_followup_executor(store=None, mock_channel: bool = False) -> FollowupExecutor:
    """Wire an executor from configuration"""
    from config import settings
    from shared.job_store import create_job_store
    from shared.notifications import StoreNotificationSink
    from shared.audit import LoggingAuditSink
    from triage.escalation import EscalationClassifier
    from triage.intent_client import IntentClassifierClient
    from .channel_adapter import create_channel_adapter

    store = store or create_job_store()
    queue = FollowupQueue(store)
    scheduler = FollowupScheduler(store, queue=queue)
    channel = create_channel_adapter(mock=mock_channel)
    sink = StoreNotificationSink(store, channel=channel, volunteer_numbers=settings.VOLUNTEER_WHATSAPP_NUMBERS)
    classifier = EscalationClassifier(sink, intent_client=IntentClassifierClient())
    return FollowupExecutor(
        queue=queue,
        scheduler=scheduler,
        channel=channel,
        classifier=classifier,
        audit_sink=LoggingAuditSink(),
    )
