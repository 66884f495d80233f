"""
RQ tasks for driving the followup queue and handling inbound replies
"""
import logging

import redis
from rq.decorators import job

from config import settings
from config.redis import get_redis_url
from utils.time_utils import parse_iso_to_utc

from .models import FollowupJob, ReminderPriority, ReminderType

logger = logging.getLogger("followup-tasks")

# RQ stores pickled payloads, so this connection must not decode responses
redis_conn = redis.Redis.from_url(get_redis_url())


def _build_executor():
    # imported lazily: the executor wires every component from configuration
    from followup.executor import create_followup_executor
    return create_followup_executor()


@job(settings.RQ_QUEUE_NAME, connection=redis_conn, timeout=120)
def process_followup_queue() -> str:
    """
    RQ task to claim due followup jobs and fan them out for delivery.
    This is typically run by rq-scheduler on a regular interval.

    Returns:
        Status message with number of jobs claimed
    """
    executor = _build_executor()
    claimed = executor.queue.process_queue()
    if not claimed:
        return "No due followups to process"

    queued_count = 0
    for followup_job in claimed:
        try:
            deliver_followup_job.delay(followup_job.to_dict())
            queued_count += 1
        except Exception as e:
            logger.error(f"Failed to queue followup job {followup_job.id}: {e}")
            executor.queue.fail_job(
                followup_job.id,
                f"Failed to queue for delivery: {e}",
                followup_job.retry_count,
                followup_job.max_retries,
            )

    result_msg = f"Claimed {len(claimed)} due followups, queued {queued_count} for delivery"
    logger.info(result_msg)
    return result_msg


@job(settings.RQ_QUEUE_NAME, connection=redis_conn, timeout=300)
def deliver_followup_job(job_data: dict) -> str:
    """
    RQ task to send one claimed followup job

    Args:
        job_data: FollowupJob.to_dict() of a job claimed by process_followup_queue

    Returns:
        The job outcome ("sent", "retrying", ...)
    """
    followup_job = FollowupJob.from_dict(job_data)
    logger.info(f"Starting delivery of followup job {followup_job.id}")
    outcome = _build_executor().execute_job(followup_job)
    return outcome.value


@job(settings.RQ_QUEUE_NAME, connection=redis_conn, timeout=60)
def register_reminder_delivery(
    patient_id: str,
    reminder_log_id: str,
    phone_number: str,
    patient_name: str,
    reminder_title: str,
    reminder_type: str = "MEDICATION",
    priority: str = "MEDIUM",
    sent_at_iso: str = None,
    message_id: str = None,
) -> list:
    """
    RQ task called by the reminder sender after a reminder went out

    Returns:
        Ids of the followups scheduled for the reminder
    """
    executor = _build_executor()
    records = executor.scheduler.register_reminder_delivery(
        patient_id=patient_id,
        reminder_log_id=reminder_log_id,
        phone_number=phone_number,
        patient_name=patient_name,
        reminder_title=reminder_title,
        reminder_type=ReminderType.from_string(reminder_type),
        priority=ReminderPriority.from_string(priority),
        sent_at=parse_iso_to_utc(sent_at_iso) if sent_at_iso else None,
        message_id=message_id,
    )
    return [record.id for record in records]


@job(settings.RQ_QUEUE_NAME, connection=redis_conn, timeout=60)
def process_inbound_reply(patient_id: str, text: str, conversation_context: dict = None,
                          phone_number: str = None) -> dict:
    """
    RQ task for the WhatsApp webhook: link the reply, escalate if needed and
    acknowledge the sender when phone_number is given.
    Escalation failures fail the RQ job so they show up in the failed registry.
    """
    from shared.audit import LoggingAuditSink
    from triage.inbound import InboundReplyProcessor
    from triage.linker import ConfirmationLinker

    executor = _build_executor()
    processor = InboundReplyProcessor(
        linker=ConfirmationLinker(executor.reminder_log, audit_sink=LoggingAuditSink()),
        classifier=executor.classifier,
        scheduler=executor.scheduler,
        channel=executor.channel,
    )
    result = processor.process_reply(patient_id, text, conversation_context, phone_number=phone_number)
    confirmation = result.link.linked_confirmation
    return {
        "linked": result.link.success,
        "message": result.link.message,
        "response_type": confirmation.response_type.value if confirmation else None,
        "requires_follow_up": result.link.requires_follow_up,
        "cancelled_followups": result.cancelled_followups,
        "escalations": [event.reason.value for event in result.escalations],
        "acknowledged": result.acknowledged,
    }
