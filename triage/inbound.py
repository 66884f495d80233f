"""
Inbound reply handling: link, stop the followup chain, escalate, acknowledge
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from followup.business_logic import build_acknowledgment_message
from followup.channel_adapter import MessageChannelAdapter

from .escalation import EscalationClassifier
from .linker import ConfirmationLinker
from .models import EscalationEvent, LinkResult, MessageAnalysis, ResponseType

logger = logging.getLogger("inbound-replies")


@dataclass
class InboundResult:
    link: LinkResult
    analysis: MessageAnalysis
    escalations: List[EscalationEvent] = field(default_factory=list)
    cancelled_followups: List[str] = field(default_factory=list)
    acknowledged: bool = False


class InboundReplyProcessor:
    """
    Runs every inbound patient message through the confirmation linker and
    the escalation classifier. Unlinked messages are still classified.

    With a channel and the sender's number, the patient gets an
    acknowledgment. That send is best effort.
    """

    def __init__(
        self,
        linker: ConfirmationLinker,
        classifier: EscalationClassifier,
        scheduler=None,
        channel: Optional[MessageChannelAdapter] = None,
    ):
        self.linker = linker
        self.classifier = classifier
        self.scheduler = scheduler
        self.channel = channel

    def _acknowledge(self, patient_id: str, phone_number: Optional[str], escalated: bool, confirmed: bool) -> bool:
        if not self.channel or not phone_number:
            return False
        body = build_acknowledgment_message(escalated=escalated, confirmed=confirmed)
        try:
            result = self.channel.send(phone_number, body)
        except Exception as e:
            logger.warning(f"Acknowledgment to patient {patient_id} failed: {e}")
            return False
        if not result.success:
            logger.warning(f"Acknowledgment to patient {patient_id} rejected: {result.error}")
        return result.success

    def process_reply(
        self,
        patient_id: str,
        text: str,
        conversation_context: Optional[Dict[str, Any]] = None,
        phone_number: Optional[str] = None,
    ) -> InboundResult:
        link = self.linker.link_confirmation_to_reminder(patient_id, text, conversation_context)

        cancelled = []
        confirmation = link.linked_confirmation
        if link.success and confirmation and confirmation.response_type.is_conclusive and self.scheduler:
            cancelled = self.scheduler.cancel_followups_for_reminder(confirmation.reminder_log_id)
        confirmed = bool(confirmation) and confirmation.response_type == ResponseType.CONFIRMED

        analysis = self.classifier.classify(text)
        try:
            escalations = self.classifier.analyze_message(patient_id, text, analysis)
        except Exception:
            # the patient still hears back; the sink failure goes to the webhook handler
            self._acknowledge(patient_id, phone_number, escalated=True, confirmed=confirmed)
            raise

        acknowledged = self._acknowledge(patient_id, phone_number, escalated=bool(escalations), confirmed=confirmed)

        logger.info(
            f"Processed reply from patient {patient_id}: linked={link.success}, "
            f"cancelled={len(cancelled)}, escalations={len(escalations)}, acknowledged={acknowledged}"
        )
        return InboundResult(
            link=link,
            analysis=analysis,
            escalations=escalations,
            cancelled_followups=cancelled,
            acknowledged=acknowledged,
        )
