"""
Data models for the reminder followup queue
"""
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from utils.time_utils import now_utc, parse_iso_to_utc


class JobStatus(Enum):
    """Lifecycle state of a queued followup job"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReminderType(Enum):
    """Kind of reminder a followup chain belongs to"""
    MEDICATION = "MEDICATION"
    APPOINTMENT = "APPOINTMENT"
    GENERAL = "GENERAL"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "ReminderType":
        """Convert string to ReminderType, defaulting to MEDICATION"""
        if not value:
            return cls.MEDICATION
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.GENERAL


class ReminderPriority(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "ReminderPriority":
        if not value:
            return cls.MEDIUM
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.MEDIUM


class FollowupStage(Enum):
    """Position of a followup in its chain"""
    FOLLOWUP_15MIN = "FOLLOWUP_15MIN"
    FOLLOWUP_2H = "FOLLOWUP_2H"
    FOLLOWUP_24H = "FOLLOWUP_24H"

    @property
    def is_final(self) -> bool:
        return self is FollowupStage.FOLLOWUP_24H


class FollowupStatus(Enum):
    """Delivery state of a followup record (not the queue job)"""
    PENDING = "PENDING"
    SENT = "SENT"
    CANCELLED = "CANCELLED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


def job_id_for(followup_id: str) -> str:
    """Queue job ids are derived from the followup id so enqueue/dequeue are idempotent"""
    return f"followup_{followup_id}"


@dataclass
class FollowupJob:
    """
    A unit of queued work: send one followup message once it is due.

    The queue is the only component that changes status, retry_count,
    scheduled_at or error on a job.
    """
    followup_id: str
    scheduled_at: datetime
    id: str = ""
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=now_utc)
    retry_count: int = 0
    max_retries: int = 3
    error: Optional[str] = None
    generation: int = 0

    def __post_init__(self):
        if not self.id:
            self.id = job_id_for(self.followup_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "followup_id": self.followup_id,
            "scheduled_at": self.scheduled_at.isoformat(),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "error": self.error,
            "generation": self.generation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FollowupJob":
        """
        Create from dictionary

        Raises:
            KeyError, ValueError: if required fields are missing or malformed
        """
        return cls(
            id=data["id"],
            followup_id=data["followup_id"],
            scheduled_at=parse_iso_to_utc(data["scheduled_at"]),
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            created_at=parse_iso_to_utc(data["created_at"]),
            retry_count=int(data.get("retry_count", 0)),
            max_retries=int(data.get("max_retries", 3)),
            error=data.get("error") or None,
            generation=int(data.get("generation", 0)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "FollowupJob":
        return cls.from_dict(json.loads(raw))

    def can_retry(self) -> bool:
        """Check if another attempt is allowed after a failure"""
        return self.retry_count < self.max_retries


@dataclass
class QueueStats:
    """Point-in-time counts for the followup queue"""
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
        }


@dataclass
class FollowupRecord:
    """
    Everything needed to render and route one followup message.

    One record exists per logical followup; its queue job may be retried
    several times but the record id (followup_id) stays the same.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    patient_id: str = ""
    reminder_log_id: str = ""
    phone_number: str = ""
    patient_name: str = ""
    reminder_title: str = ""
    reminder_type: ReminderType = ReminderType.MEDICATION
    priority: ReminderPriority = ReminderPriority.MEDIUM
    stage: FollowupStage = FollowupStage.FOLLOWUP_15MIN
    scheduled_at: datetime = field(default_factory=now_utc)
    status: FollowupStatus = FollowupStatus.PENDING
    sent_at: Optional[datetime] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, str]:
        """Flatten to string values for a Redis hash"""
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "reminder_log_id": self.reminder_log_id,
            "phone_number": self.phone_number,
            "patient_name": self.patient_name,
            "reminder_title": self.reminder_title,
            "reminder_type": self.reminder_type.value,
            "priority": self.priority.value,
            "stage": self.stage.value,
            "scheduled_at": self.scheduled_at.isoformat(),
            "status": self.status.value,
            "sent_at": self.sent_at.isoformat() if self.sent_at else "",
            "message_id": self.message_id or "",
            "error": self.error or "",
            "metadata": json.dumps(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FollowupRecord":
        """Create from a Redis hash (empty strings are treated as None)"""
        metadata = data.get("metadata", {})
        if isinstance(metadata, str):
            metadata = json.loads(metadata) if metadata else {}

        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            reminder_log_id=data.get("reminder_log_id", ""),
            phone_number=data.get("phone_number", ""),
            patient_name=data.get("patient_name", ""),
            reminder_title=data.get("reminder_title", ""),
            reminder_type=ReminderType.from_string(data.get("reminder_type")),
            priority=ReminderPriority.from_string(data.get("priority")),
            stage=FollowupStage(data["stage"]),
            scheduled_at=parse_iso_to_utc(data["scheduled_at"]),
            status=FollowupStatus(data["status"]),
            sent_at=parse_iso_to_utc(data["sent_at"]) if data.get("sent_at") else None,
            message_id=data.get("message_id") or None,
            error=data.get("error") or None,
            metadata=metadata,
            created_at=parse_iso_to_utc(data["created_at"]),
            updated_at=parse_iso_to_utc(data["updated_at"]),
        )
