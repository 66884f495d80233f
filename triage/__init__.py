"""
Triage module for inbound patient replies

- ConfirmationLinker: links a reply to the reminder it answers
- EscalationClassifier (triage.escalation): decides when a volunteer is paged
- InboundReplyProcessor (triage.inbound): runs both for every reply
"""

from .models import (
    EscalationEvent,
    EscalationReason,
    LinkedConfirmation,
    LinkResult,
    MessageAnalysis,
    ResponseType,
)

__all__ = [
    "EscalationEvent",
    "EscalationReason",
    "LinkedConfirmation",
    "LinkResult",
    "MessageAnalysis",
    "ResponseType",
]
