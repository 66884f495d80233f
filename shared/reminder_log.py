"""
Reminder log - outbound reminder deliveries and the replies linked to them

Keys:
    reminder:log:<id>                 hash describing one delivered reminder
    reminder:patient:<patient_id>     sorted set, reminder log id -> sent_at millis
    reminder:confirmations:<id>       sorted set, confirmation id -> linked_at millis
    reminder:confirmation:<cid>       hash for one linked reply
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from config import settings
from shared.job_store import JobStore
from utils.time_utils import now_utc, parse_iso_to_utc, to_epoch_millis

logger = logging.getLogger("reminder-log")

LOG_PREFIX = "reminder:log:"
PATIENT_PREFIX = "reminder:patient:"
CONFIRMATIONS_PREFIX = "reminder:confirmations:"
CONFIRMATION_PREFIX = "reminder:confirmation:"


class ConfirmationStatus(Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    MISSED = "MISSED"


@dataclass
class ReminderDelivery:
    """A reminder that was sent to a patient and may still await a reply"""
    id: str
    patient_id: str
    sent_at: datetime
    reminder_title: str = ""
    reminder_type: str = "MEDICATION"
    message_id: Optional[str] = None
    confirmation_status: ConfirmationStatus = ConfirmationStatus.PENDING
    active_confirmation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = {
            "id": self.id,
            "patient_id": self.patient_id,
            "sent_at": self.sent_at.isoformat(),
            "reminder_title": self.reminder_title,
            "reminder_type": self.reminder_type,
            "message_id": self.message_id or "",
            "confirmation_status": self.confirmation_status.value,
        }
        # absent until a reply resolves the reminder; claimed with HSETNX
        if self.active_confirmation_id:
            data["active_confirmation_id"] = self.active_confirmation_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "ReminderDelivery":
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            sent_at=parse_iso_to_utc(data["sent_at"]),
            reminder_title=data.get("reminder_title", ""),
            reminder_type=data.get("reminder_type", "MEDICATION"),
            message_id=data.get("message_id") or None,
            confirmation_status=ConfirmationStatus(data.get("confirmation_status", "PENDING")),
            active_confirmation_id=data.get("active_confirmation_id") or None,
        )

    @property
    def is_pending(self) -> bool:
        return self.confirmation_status == ConfirmationStatus.PENDING


class ReminderLogRepository:
    """Store-backed access to reminder deliveries and their confirmations"""

    def __init__(self, store: JobStore, retention_seconds: int = None):
        self.store = store
        self.retention_seconds = retention_seconds or settings.REMINDER_LOG_RETENTION_SECONDS

    def record_delivery(self, delivery: ReminderDelivery) -> ReminderDelivery:
        key = f"{LOG_PREFIX}{delivery.id}"
        patient_key = f"{PATIENT_PREFIX}{delivery.patient_id}"
        self.store.hset(key, delivery.to_dict())
        self.store.expire(key, self.retention_seconds)
        self.store.zadd(patient_key, {delivery.id: to_epoch_millis(delivery.sent_at)})
        # entries older than retention point at log hashes that have expired
        cutoff = to_epoch_millis(now_utc() - timedelta(seconds=self.retention_seconds))
        self.store.zremrangebyscore(patient_key, 0, cutoff - 1)
        self.store.expire(patient_key, self.retention_seconds)
        logger.info(f"Recorded reminder delivery {delivery.id} for patient {delivery.patient_id}")
        return delivery

    def get(self, reminder_log_id: str) -> Optional[ReminderDelivery]:
        data = self.store.hgetall(f"{LOG_PREFIX}{reminder_log_id}")
        if not data:
            return None
        try:
            return ReminderDelivery.from_dict(data)
        except (KeyError, ValueError) as e:
            logger.error(f"Unreadable reminder log {reminder_log_id}: {e}")
            return None

    def find_latest_pending(
        self,
        patient_id: str,
        since: datetime,
        now: Optional[datetime] = None,
    ) -> Optional[ReminderDelivery]:
        """Most recently sent reminder in [since, now] still awaiting a reply"""
        now = now or now_utc()
        candidate_ids = self.store.zrevrangebyscore(
            f"{PATIENT_PREFIX}{patient_id}",
            to_epoch_millis(now),
            to_epoch_millis(since),
        )
        for reminder_log_id in candidate_ids:
            delivery = self.get(reminder_log_id)
            if delivery and delivery.is_pending:
                return delivery
        return None

    def save_confirmation(self, reminder_log_id: str, confirmation_id: str,
                          fields: Dict[str, str], linked_at: datetime):
        """Append a reply to the reminder's history. Records are never rewritten."""
        key = f"{CONFIRMATION_PREFIX}{confirmation_id}"
        history_key = f"{CONFIRMATIONS_PREFIX}{reminder_log_id}"
        self.store.hset(key, fields)
        self.store.expire(key, self.retention_seconds)
        self.store.zadd(history_key, {confirmation_id: to_epoch_millis(linked_at)})
        self.store.expire(history_key, self.retention_seconds)

    def resolve(self, reminder_log_id: str, confirmation_id: str, status: ConfirmationStatus) -> bool:
        """
        Make confirmation_id the active resolution of the reminder.

        Only the first caller wins; an existing resolution is never replaced.
        """
        key = f"{LOG_PREFIX}{reminder_log_id}"
        if not self.store.hsetnx(key, "active_confirmation_id", confirmation_id):
            logger.info(f"Reminder {reminder_log_id} already resolved, keeping existing confirmation")
            return False
        self.store.hset(key, {"confirmation_status": status.value})
        logger.info(f"Reminder {reminder_log_id} resolved as {status.value} by {confirmation_id}")
        return True

    def list_confirmations(self, reminder_log_id: str) -> List[Dict[str, str]]:
        """Linked replies for a reminder, oldest first"""
        ids = self.store.zrangebyscore(f"{CONFIRMATIONS_PREFIX}{reminder_log_id}", 0, "+inf")
        confirmations = []
        for confirmation_id in ids:
            data = self.store.hgetall(f"{CONFIRMATION_PREFIX}{confirmation_id}")
            if data:
                confirmations.append(data)
        return confirmations
