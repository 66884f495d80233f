"""
EscalationClassifier - decides when a patient message needs a human volunteer

Emergency keyword detection always runs first and does not depend on the
external intent classifier. Each escalation reason is emitted as its own
event so the notification sink can route and prioritise them separately.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from config import settings
from shared.notifications import VolunteerNotificationSink

from .intent_client import IntentClassifierClient
from .keywords import COMPLEX_INTENTS, COMPLEX_WORD_COUNT, EMERGENCY_KEYWORDS, MEDICAL_TERMS_PATTERN
from .models import EscalationEvent, EscalationReason, MessageAnalysis

logger = logging.getLogger("escalation")

NO_RESPONSE_MARKER = "[NO_RESPONSE]"
NO_RESPONSE_INTENT = "no_response"
UNKNOWN_INTENT = "unknown"


@dataclass(frozen=True)
class ConfidencePolicy:
    """Additive confidence adjustments for the keyword analysis"""
    baseline: int = 80
    emergency_penalty: int = 20
    complex_penalty: int = 15
    short_text_penalty: int = 10
    short_text_length: int = 10
    question_bonus: int = 5
    requires_human_below: int = 50

    def score(self, text: str, is_emergency: bool, is_complex: bool) -> int:
        confidence = self.baseline
        if is_emergency:
            confidence -= self.emergency_penalty
        if is_complex:
            confidence -= self.complex_penalty
        if len(text) < self.short_text_length:
            confidence -= self.short_text_penalty
        if "?" in text:
            confidence += self.question_bonus
        return max(0, min(100, confidence))


DEFAULT_POLICY = ConfidencePolicy()


def matched_emergency_keywords(text: str) -> List[str]:
    lowered = text.lower()
    return [keyword for keyword in EMERGENCY_KEYWORDS if keyword in lowered]


def detect_emergency_keywords(text: str) -> bool:
    """True if any medical red-flag term appears anywhere in the text"""
    return bool(matched_emergency_keywords(text))


def is_complex_inquiry(text: str, intent: Optional[str] = None) -> bool:
    """Complex-intent label OR long message OR medical vocabulary; any one is enough"""
    if intent and intent in COMPLEX_INTENTS:
        return True
    if len(text.split()) > COMPLEX_WORD_COUNT:
        return True
    return bool(MEDICAL_TERMS_PATTERN.search(text))


def analyze_message_content(
    text: str,
    intent: Optional[str] = None,
    policy: ConfidencePolicy = DEFAULT_POLICY,
) -> MessageAnalysis:
    """Keyword/heuristic analysis of one message; no I/O"""
    is_emergency = detect_emergency_keywords(text)
    is_complex = is_complex_inquiry(text, intent)
    confidence = policy.score(text, is_emergency, is_complex)

    return MessageAnalysis(
        intent=intent or UNKNOWN_INTENT,
        confidence=confidence,
        is_emergency=is_emergency,
        is_complex=is_complex,
        requires_human=is_emergency or is_complex or confidence < policy.requires_human_below,
    )


class EscalationClassifier:
    """
    Classifies inbound messages and hands escalation events to the
    volunteer notification sink.
    """

    def __init__(
        self,
        sink: VolunteerNotificationSink,
        intent_client: Optional[IntentClassifierClient] = None,
        policy: ConfidencePolicy = DEFAULT_POLICY,
        low_confidence_threshold: int = None,
    ):
        self.sink = sink
        self.intent_client = intent_client
        self.policy = policy
        self.low_confidence_threshold = (
            settings.ESCALATION_LOW_CONFIDENCE_THRESHOLD
            if low_confidence_threshold is None else low_confidence_threshold
        )

    def analyze_message_content(self, text: str, intent: Optional[str] = None) -> MessageAnalysis:
        return analyze_message_content(text, intent, self.policy)

    def classify(self, text: str) -> MessageAnalysis:
        """
        Full analysis of a message.

        Emergencies short-circuit before any external call. Otherwise the
        intent classifier, when configured, supplies the intent label.
        """
        if detect_emergency_keywords(text):
            logger.warning(f"Emergency keywords detected: {matched_emergency_keywords(text)}")
            return self.analyze_message_content(text)

        intent = None
        if self.intent_client is not None:
            result = self.intent_client.classify(text)
            if result is not None:
                intent = result.intent

        return self.analyze_message_content(text, intent)

    def _reasons_for(self, analysis: MessageAnalysis) -> List[EscalationReason]:
        reasons = []
        if analysis.is_emergency:
            reasons.append(EscalationReason.EMERGENCY_DETECTION)
        if analysis.confidence < self.low_confidence_threshold:
            reasons.append(EscalationReason.LOW_CONFIDENCE)
        if analysis.is_complex or analysis.requires_human:
            reasons.append(EscalationReason.COMPLEX_INQUIRY)
        return reasons

    def analyze_message(
        self,
        patient_id: str,
        text: str,
        analysis: Optional[MessageAnalysis] = None,
    ) -> List[EscalationEvent]:
        """
        Emit one escalation event per applicable reason

        Raises:
            Whatever the sink raises; a dropped escalation must not go unnoticed
        """
        analysis = analysis or self.classify(text)
        events = [
            EscalationEvent(
                patient_id=patient_id,
                message=text,
                reason=reason,
                confidence=analysis.confidence,
                intent=analysis.intent,
                patient_context=analysis.to_dict(),
            )
            for reason in self._reasons_for(analysis)
        ]

        for event in events:
            try:
                self.sink.create_notification(event)
            except Exception as e:
                logger.error(
                    f"Failed to create {event.reason.value} escalation for patient {patient_id}: {e}",
                    exc_info=True,
                )
                raise

        if events:
            logger.info(
                f"Escalated message from patient {patient_id}: "
                f"{', '.join(event.reason.value for event in events)}"
            )
        return events

    def analyze_no_response(self, patient_id: str, followup_id: Optional[str] = None) -> List[EscalationEvent]:
        """Escalate a patient who never answered the final followup"""
        analysis = MessageAnalysis(
            intent=NO_RESPONSE_INTENT,
            confidence=0,
            is_emergency=False,
            is_complex=False,
            requires_human=True,
        )
        event = EscalationEvent(
            patient_id=patient_id,
            message=NO_RESPONSE_MARKER,
            reason=EscalationReason.LOW_CONFIDENCE,
            confidence=0,
            intent=NO_RESPONSE_INTENT,
            patient_context={**analysis.to_dict(), "followup_id": followup_id},
        )
        try:
            self.sink.create_notification(event)
        except Exception as e:
            logger.error(f"Failed to escalate missing response for patient {patient_id}: {e}", exc_info=True)
            raise

        logger.info(f"Escalated missing response from patient {patient_id} (followup {followup_id})")
        return [event]
