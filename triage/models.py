"""
Data models for inbound reply linking and escalation
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from utils.time_utils import now_utc, parse_iso_to_utc


class ResponseType(Enum):
    """How a patient's reply relates to the reminder it answers"""
    CONFIRMED = "confirmed"
    MISSED = "missed"
    LATER = "later"
    UNKNOWN = "unknown"

    @property
    def is_conclusive(self) -> bool:
        return self in (ResponseType.CONFIRMED, ResponseType.MISSED)


@dataclass(frozen=True)
class LinkedConfirmation:
    """A patient reply tied to one outbound reminder. Never modified after creation."""
    reminder_log_id: str
    patient_id: str
    response: str
    response_type: ResponseType
    confidence: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    linked_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "reminder_log_id": self.reminder_log_id,
            "patient_id": self.patient_id,
            "response": self.response,
            "response_type": self.response_type.value,
            "confidence": str(self.confidence),
            "linked_at": self.linked_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkedConfirmation":
        return cls(
            id=data["id"],
            reminder_log_id=data["reminder_log_id"],
            patient_id=data["patient_id"],
            response=data["response"],
            response_type=ResponseType(data["response_type"]),
            confidence=int(data["confidence"]),
            linked_at=parse_iso_to_utc(data["linked_at"]),
        )


@dataclass
class LinkResult:
    """Outcome of linking a reply to a reminder"""
    success: bool
    message: str
    linked_confirmation: Optional[LinkedConfirmation] = None
    requires_follow_up: bool = False
    resolved_reminder: bool = False


class EscalationReason(Enum):
    EMERGENCY_DETECTION = "emergency_detection"
    LOW_CONFIDENCE = "low_confidence"
    COMPLEX_INQUIRY = "complex_inquiry"


@dataclass
class MessageAnalysis:
    """Keyword/heuristic reading of an inbound message"""
    intent: str
    confidence: int
    is_emergency: bool
    is_complex: bool
    requires_human: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent,
            "confidence": self.confidence,
            "is_emergency": self.is_emergency,
            "is_complex": self.is_complex,
            "requires_human": self.requires_human,
        }


@dataclass
class EscalationEvent:
    """One reason to involve a human volunteer; handed straight to the sink"""
    patient_id: str
    message: str
    reason: EscalationReason
    confidence: int
    intent: Optional[str] = None
    patient_context: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=now_utc)
