"""
FollowupScheduler - creates and cancels followup chains for delivered reminders
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from config import settings
from shared.job_store import JobStore
from shared.reminder_log import ReminderDelivery, ReminderLogRepository
from utils.time_utils import now_utc, to_epoch_millis

from .models import (
    FollowupRecord, FollowupStage, FollowupStatus, ReminderPriority, ReminderType
)
from .queue import FollowupQueue

logger = logging.getLogger("followup-scheduler")

RECORD_PREFIX = "followup:record:"
REMINDER_INDEX_PREFIX = "followup:reminder:"
GENERATION_PREFIX = "followup:generation:"

BASE_TIMINGS = {
    FollowupStage.FOLLOWUP_15MIN: timedelta(minutes=15),
    FollowupStage.FOLLOWUP_2H: timedelta(hours=2),
    FollowupStage.FOLLOWUP_24H: timedelta(hours=24),
}

PRIORITY_MULTIPLIERS = {
    ReminderPriority.HIGH: 0.5,
    ReminderPriority.MEDIUM: 1.0,
    ReminderPriority.LOW: 1.5,
}


def get_followup_timings(
    reminder_type: ReminderType,
    priority: ReminderPriority = ReminderPriority.MEDIUM,
) -> Dict[FollowupStage, timedelta]:
    """
    Delay after the reminder for each followup stage

    Medication chains speed up or slow down with priority; appointment
    chains wait longer before the second check; general reminders are the
    most relaxed (30 min / 4 h / 36 h).
    """
    if reminder_type == ReminderType.MEDICATION:
        multiplier = PRIORITY_MULTIPLIERS[priority]
        return {stage: delay * multiplier for stage, delay in BASE_TIMINGS.items()}

    if reminder_type == ReminderType.APPOINTMENT:
        timings = dict(BASE_TIMINGS)
        timings[FollowupStage.FOLLOWUP_2H] = BASE_TIMINGS[FollowupStage.FOLLOWUP_2H] * 1.5
        return timings

    return {
        FollowupStage.FOLLOWUP_15MIN: BASE_TIMINGS[FollowupStage.FOLLOWUP_15MIN] * 2,
        FollowupStage.FOLLOWUP_2H: BASE_TIMINGS[FollowupStage.FOLLOWUP_2H] * 2,
        FollowupStage.FOLLOWUP_24H: BASE_TIMINGS[FollowupStage.FOLLOWUP_24H] * 1.5,
    }


class FollowupScheduler:
    """
    Manages followup records and their queue jobs.

    Handles:
    - Recording reminder deliveries and scheduling their followup chain
    - Status updates on followup records
    - Cancelling a chain once the patient has answered
    """

    def __init__(
        self,
        store: JobStore,
        queue: Optional[FollowupQueue] = None,
        reminder_log: Optional[ReminderLogRepository] = None,
        retention_seconds: int = None,
    ):
        self.store = store
        self.queue = queue or FollowupQueue(store)
        self.reminder_log = reminder_log or ReminderLogRepository(store)
        self.retention_seconds = retention_seconds or settings.FOLLOWUP_JOB_RETENTION_SECONDS

    @staticmethod
    def record_key(followup_id: str) -> str:
        return f"{RECORD_PREFIX}{followup_id}"

    def register_reminder_delivery(
        self,
        patient_id: str,
        reminder_log_id: str,
        phone_number: str,
        patient_name: str,
        reminder_title: str,
        reminder_type: ReminderType = ReminderType.MEDICATION,
        priority: ReminderPriority = ReminderPriority.MEDIUM,
        sent_at: Optional[datetime] = None,
        message_id: Optional[str] = None,
    ) -> List[FollowupRecord]:
        """
        Record that a reminder went out and schedule its followups

        Returns:
            The followup records created, in chain order
        """
        sent_at = sent_at or now_utc()
        self.reminder_log.record_delivery(ReminderDelivery(
            id=reminder_log_id,
            patient_id=patient_id,
            sent_at=sent_at,
            reminder_title=reminder_title,
            reminder_type=reminder_type.value,
            message_id=message_id,
        ))
        return self.schedule_followups(
            patient_id=patient_id,
            reminder_log_id=reminder_log_id,
            phone_number=phone_number,
            patient_name=patient_name,
            reminder_title=reminder_title,
            reminder_type=reminder_type,
            priority=priority,
            sent_at=sent_at,
        )

    def schedule_followups(
        self,
        patient_id: str,
        reminder_log_id: str,
        phone_number: str,
        patient_name: str,
        reminder_title: str,
        reminder_type: ReminderType,
        priority: ReminderPriority,
        sent_at: datetime,
    ) -> List[FollowupRecord]:
        """Create the 15 min / 2 h / 24 h chain (adjusted by type and priority)"""
        records = []
        for stage, delay in get_followup_timings(reminder_type, priority).items():
            record = FollowupRecord(
                patient_id=patient_id,
                reminder_log_id=reminder_log_id,
                phone_number=phone_number,
                patient_name=patient_name,
                reminder_title=reminder_title,
                reminder_type=reminder_type,
                priority=priority,
                stage=stage,
                scheduled_at=sent_at + delay,
            )
            self.save_followup(record)
            self.store.zadd(
                f"{REMINDER_INDEX_PREFIX}{reminder_log_id}",
                {record.id: to_epoch_millis(record.scheduled_at)},
            )
            self.queue.enqueue(
                record.id,
                record.scheduled_at,
                generation=self.current_generation(record.id),
            )
            records.append(record)

        self.store.expire(
            f"{REMINDER_INDEX_PREFIX}{reminder_log_id}",
            self._ttl_until(max(r.scheduled_at for r in records)),
        )
        logger.info(f"Scheduled {len(records)} followups for reminder {reminder_log_id} (patient {patient_id})")
        return records

    def _ttl_until(self, when: datetime) -> int:
        return max(0, int((when - now_utc()).total_seconds())) + self.retention_seconds

    def save_followup(self, record: FollowupRecord):
        key = self.record_key(record.id)
        self.store.hset(key, record.to_dict())
        self.store.expire(key, self._ttl_until(record.scheduled_at))

    def get_followup(self, followup_id: str) -> Optional[FollowupRecord]:
        data = self.store.hgetall(self.record_key(followup_id))
        if not data:
            return None
        try:
            return FollowupRecord.from_dict(data)
        except (KeyError, ValueError) as e:
            logger.error(f"Error deserializing followup {followup_id}: {e}")
            return None

    def get_followups_for_reminder(self, reminder_log_id: str) -> List[FollowupRecord]:
        ids = self.store.zrangebyscore(f"{REMINDER_INDEX_PREFIX}{reminder_log_id}", 0, "+inf")
        records = []
        for followup_id in ids:
            record = self.get_followup(followup_id)
            if record is not None:
                records.append(record)
        return records

    def mark_status(self, followup_id: str, status: FollowupStatus, error: Optional[str] = None) -> bool:
        """Update the delivery status of a followup record"""
        key = self.record_key(followup_id)
        if not self.store.exists(key):
            logger.warning(f"Followup {followup_id} not found for status update")
            return False
        updates = {"status": status.value, "updated_at": now_utc().isoformat()}
        if error:
            updates["error"] = error
        self.store.hset(key, updates)
        logger.info(f"Updated followup {followup_id} status to {status.value}")
        return True

    def mark_sent(self, followup_id: str, message_id: Optional[str] = None,
                  sent_at: Optional[datetime] = None) -> bool:
        key = self.record_key(followup_id)
        if not self.store.exists(key):
            logger.warning(f"Followup {followup_id} not found when marking sent")
            return False
        sent_at = sent_at or now_utc()
        self.store.hset(key, {
            "status": FollowupStatus.SENT.value,
            "sent_at": sent_at.isoformat(),
            "message_id": message_id or "",
            "updated_at": sent_at.isoformat(),
        })
        return True

    def current_generation(self, followup_id: str) -> int:
        value = self.store.get(f"{GENERATION_PREFIX}{followup_id}")
        return int(value) if value else 0

    def cancel_followups_for_reminder(self, reminder_log_id: str) -> List[str]:
        """
        Cancel every still-pending followup of a reminder

        The generation bump makes any job already claimed by a poller stale,
        so it is dropped without sending even though dequeue cannot stop it.

        Returns:
            Ids of the followups that were cancelled
        """
        cancelled = []
        for record in self.get_followups_for_reminder(reminder_log_id):
            if record.status != FollowupStatus.PENDING:
                continue
            generation_key = f"{GENERATION_PREFIX}{record.id}"
            self.store.incr(generation_key)
            self.store.expire(generation_key, self._ttl_until(record.scheduled_at))
            self.mark_status(record.id, FollowupStatus.CANCELLED)
            self.queue.dequeue_followup(record.id)
            cancelled.append(record.id)

        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} followups for reminder {reminder_log_id}")
        return cancelled
