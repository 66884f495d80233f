"""
Volunteer notifications raised by the escalation classifier

A notification that fails to be created is a safety problem (a volunteer
may never see an emergency), so create_notification() raises on store
errors. The optional WhatsApp fan-out to volunteers is best effort.
"""
import json
import logging
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from shared.job_store import JobStore
from triage.models import EscalationEvent, EscalationReason
from utils.time_utils import now_utc, to_epoch_millis

logger = logging.getLogger("volunteer-notifications")

NOTIFICATION_PREFIX = "volunteer:notification:"
PENDING_KEY = "volunteer:notifications:pending"


class NotificationPriority(Enum):
    EMERGENCY = "emergency"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_LABELS = {
    NotificationPriority.EMERGENCY: "🚨 DARURAT",
    NotificationPriority.HIGH: "⚠️ PRIORITAS TINGGI",
    NotificationPriority.MEDIUM: "📋 PERLU TINDAK LANJUT",
    NotificationPriority.LOW: "ℹ️ INFO",
}


def determine_priority(reason: EscalationReason, confidence: int) -> NotificationPriority:
    """Map an escalation reason (and classifier confidence) to a volunteer priority"""
    if reason == EscalationReason.EMERGENCY_DETECTION:
        return NotificationPriority.EMERGENCY
    if reason == EscalationReason.LOW_CONFIDENCE:
        return NotificationPriority.HIGH if confidence < 30 else NotificationPriority.MEDIUM
    if reason == EscalationReason.COMPLEX_INQUIRY:
        return NotificationPriority.MEDIUM
    return NotificationPriority.LOW


def build_volunteer_alert(event: EscalationEvent, priority: NotificationPriority) -> str:
    """WhatsApp text sent to volunteers for a new notification"""
    return (
        f"{PRIORITY_LABELS[priority]}\n\n"
        f"Pasien: {event.patient_id}\n"
        f"Alasan: {event.reason.value}\n"
        f"Pesan: {event.message}\n"
        f"Keyakinan sistem: {event.confidence}%\n\n"
        f"Mohon segera tindak lanjuti melalui dashboard relawan.\n\n"
        f"💙 Tim PRIMA"
    )


class VolunteerNotificationSink(ABC):
    """Abstract interface for where escalations go"""

    @abstractmethod
    def create_notification(self, event: EscalationEvent) -> str:
        """Persist/dispatch the event and return a notification id. May raise."""
        pass


class StoreNotificationSink(VolunteerNotificationSink):
    """
    Writes notifications to the job store for the volunteer dashboard and
    optionally alerts volunteer WhatsApp numbers through a message channel.
    """

    def __init__(self, store: JobStore, channel=None, volunteer_numbers: Optional[List[str]] = None):
        self.store = store
        self.channel = channel
        self.volunteer_numbers = volunteer_numbers or []

    def create_notification(self, event: EscalationEvent) -> str:
        priority = determine_priority(event.reason, event.confidence)
        notification_id = str(uuid.uuid4())
        created_at = now_utc()

        self.store.hset(f"{NOTIFICATION_PREFIX}{notification_id}", {
            "id": notification_id,
            "patient_id": event.patient_id,
            "message": event.message,
            "reason": event.reason.value,
            "confidence": str(event.confidence),
            "intent": event.intent or "",
            "priority": priority.value,
            "patient_context": json.dumps(event.patient_context),
            "status": "PENDING",
            "created_at": created_at.isoformat(),
        })
        self.store.zadd(PENDING_KEY, {notification_id: to_epoch_millis(created_at)})
        logger.info(
            f"Created {priority.value} volunteer notification {notification_id} "
            f"for patient {event.patient_id} ({event.reason.value})"
        )

        self._alert_volunteers(event, priority)
        return notification_id

    def _alert_volunteers(self, event: EscalationEvent, priority: NotificationPriority):
        if not self.channel or not self.volunteer_numbers:
            return
        if priority not in (NotificationPriority.EMERGENCY, NotificationPriority.HIGH):
            return

        alert = build_volunteer_alert(event, priority)
        delivered = 0
        for number in self.volunteer_numbers:
            # each volunteer is attempted even when an earlier send fails
            try:
                result = self.channel.send(number, alert)
                if result.success:
                    delivered += 1
                else:
                    logger.warning(f"Volunteer alert to {number} failed: {result.error}")
            except Exception as e:
                logger.warning(f"Volunteer alert to {number} raised: {e}")
        logger.info(f"Alerted {delivered}/{len(self.volunteer_numbers)} volunteers for patient {event.patient_id}")

    def list_pending(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Newest pending notifications first"""
        ids = self.store.zrevrangebyscore(PENDING_KEY, "+inf", 0, start=0, num=limit)
        notifications = []
        for notification_id in ids:
            data = self.store.hgetall(f"{NOTIFICATION_PREFIX}{notification_id}")
            if data:
                notifications.append(data)
        return notifications


class RecordingNotificationSink(VolunteerNotificationSink):
    """Collects events in memory; used by tests and CLI dry runs"""

    def __init__(self):
        self.events: List[EscalationEvent] = []
        self.should_fail = False
        self.failure_error = None

    def create_notification(self, event: EscalationEvent) -> str:
        if self.should_fail:
            raise RuntimeError(self.failure_error or "Mock notification failure")
        self.events.append(event)
        return f"mock-notification-{len(self.events)}"

    def reset(self):
        self.events.clear()
        self.should_fail = False
        self.failure_error = None
