"""
ConfirmationLinker - ties an inbound patient reply to the reminder it answers
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from config import settings
from shared.audit import AuditSink, log_access_safely
from shared.reminder_log import ConfirmationStatus, ReminderDelivery, ReminderLogRepository
from utils.time_utils import now_utc

from .keywords import AFFIRMATIVE_WORDS, DEFERRAL_WORDS, NEGATIVE_WORDS, NEGATORS, WORD_PATTERN
from .models import LinkedConfirmation, LinkResult, ResponseType

logger = logging.getLogger("confirmation-linker")

EXACT_MATCH_CONFIDENCE = 95
EXACT_DEFERRAL_CONFIDENCE = 85
CONTAINED_MATCH_CONFIDENCE = 80
CONTAINED_DEFERRAL_CONFIDENCE = 75
UNKNOWN_CONFIDENCE = 30

RESOLUTION_STATUS = {
    ResponseType.CONFIRMED: ConfirmationStatus.CONFIRMED,
    ResponseType.MISSED: ConfirmationStatus.MISSED,
}


def classify_reply(text: str) -> Tuple[ResponseType, int]:
    """
    Classify a reply with word rules. Any deferral keeps the reminder open;
    a non-negated affirmative alongside a negative is inconclusive;
    otherwise affirmative confirms and negative marks it missed.

    Returns:
        (response_type, confidence 0-100)
    """
    tokens = WORD_PATTERN.findall(text.lower())
    if not tokens:
        return ResponseType.UNKNOWN, UNKNOWN_CONFIDENCE

    single = len(tokens) == 1

    affirmative = any(
        token in AFFIRMATIVE_WORDS and (i == 0 or tokens[i - 1] not in NEGATORS)
        for i, token in enumerate(tokens)
    )
    negative = any(token in NEGATIVE_WORDS for token in tokens)

    if any(token in DEFERRAL_WORDS for token in tokens):
        return ResponseType.LATER, EXACT_DEFERRAL_CONFIDENCE if single else CONTAINED_DEFERRAL_CONFIDENCE

    # "ya, belum diminum": "ya" is often just a particle, so don't trust it
    if affirmative and negative:
        return ResponseType.UNKNOWN, UNKNOWN_CONFIDENCE

    if affirmative:
        return ResponseType.CONFIRMED, EXACT_MATCH_CONFIDENCE if single else CONTAINED_MATCH_CONFIDENCE

    if negative:
        return ResponseType.MISSED, EXACT_MATCH_CONFIDENCE if single else CONTAINED_MATCH_CONFIDENCE

    return ResponseType.UNKNOWN, UNKNOWN_CONFIDENCE


class ConfirmationLinker:
    """
    Links replies to the patient's most recent outstanding reminder.

    Every linked reply is stored. Only conclusive replies (confirmed or
    missed) resolve the reminder, and the first of those wins.
    """

    def __init__(
        self,
        reminder_log: ReminderLogRepository,
        audit_sink: Optional[AuditSink] = None,
        lookback_hours: int = None,
    ):
        self.reminder_log = reminder_log
        self.audit_sink = audit_sink
        self.lookback = timedelta(hours=lookback_hours or settings.CONFIRMATION_LOOKBACK_HOURS)

    def _find_reminder(
        self,
        patient_id: str,
        conversation_context: Optional[Dict[str, Any]],
        now: datetime,
    ) -> Optional[ReminderDelivery]:
        since = now - self.lookback
        context_reminder_id = (conversation_context or {}).get("reminder_log_id")

        if context_reminder_id:
            delivery = self.reminder_log.get(context_reminder_id)
            if (
                delivery is not None
                and delivery.patient_id == patient_id
                and delivery.is_pending
                and since <= delivery.sent_at <= now
            ):
                return delivery
            logger.info(
                f"Reminder {context_reminder_id} from conversation context is not linkable, "
                f"falling back to latest pending reminder"
            )

        return self.reminder_log.find_latest_pending(patient_id, since, now)

    def link_confirmation_to_reminder(
        self,
        patient_id: str,
        reply_text: str,
        conversation_context: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> LinkResult:
        """
        Link a patient's reply to their most recent pending reminder

        Args:
            patient_id: Patient who sent the reply
            reply_text: Raw reply text
            conversation_context: Optional hints, e.g. {"reminder_log_id": ...}

        Returns:
            LinkResult; success is False when there is nothing to link to
        """
        now = now or now_utc()
        text = (reply_text or "").strip()
        if not text:
            return LinkResult(success=False, message="Empty reply, nothing to link")

        delivery = self._find_reminder(patient_id, conversation_context, now)
        if delivery is None:
            logger.info(f"No pending reminder within {self.lookback} for patient {patient_id}")
            return LinkResult(
                success=False,
                message=f"No pending reminder found within the last "
                        f"{int(self.lookback.total_seconds() // 3600)} hours",
            )

        response_type, confidence = classify_reply(text)
        confirmation = LinkedConfirmation(
            reminder_log_id=delivery.id,
            patient_id=patient_id,
            response=text,
            response_type=response_type,
            confidence=confidence,
            linked_at=now,
        )
        self.reminder_log.save_confirmation(delivery.id, confirmation.id, confirmation.to_dict(), now)

        resolved = False
        if response_type.is_conclusive:
            resolved = self.reminder_log.resolve(delivery.id, confirmation.id, RESOLUTION_STATUS[response_type])

        log_access_safely(
            self.audit_sink,
            "link_confirmation",
            "reminder_log",
            resource_id=delivery.id,
            patient_id=patient_id,
            metadata={"response_type": response_type.value, "confidence": confidence},
        )

        logger.info(
            f"Linked reply from patient {patient_id} to reminder {delivery.id} "
            f"as {response_type.value} ({confidence}%)"
        )
        return LinkResult(
            success=True,
            message=f"Reply linked to reminder {delivery.id} as {response_type.value}",
            linked_confirmation=confirmation,
            requires_follow_up=response_type in (ResponseType.UNKNOWN, ResponseType.LATER),
            resolved_reminder=resolved,
        )
