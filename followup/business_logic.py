"""
Business logic for followup delivery - pure functions with no external dependencies

Message rendering, phone formatting and the send/skip/escalate decisions
live here, separated from the store and the WhatsApp gateway for easier
testing.
"""
import logging
import re
from enum import Enum
from typing import Optional

from scheduling.models import FollowupRecord, FollowupStage, FollowupStatus, ReminderType

logger = logging.getLogger("followup-business-logic")

SIGNATURE = "💙 Tim PRIMA"

HEADERS = {
    ReminderType.MEDICATION: "⏰ *Follow-up: Pengingat Obat*",
    ReminderType.APPOINTMENT: "⏰ *Follow-up: Janji Temu*",
    ReminderType.GENERAL: "⏰ *Follow-up: Pengingat*",
}

ELAPSED = {
    FollowupStage.FOLLOWUP_15MIN: "15 menit",
    FollowupStage.FOLLOWUP_2H: "2 jam",
    FollowupStage.FOLLOWUP_24H: "24 jam",
}

QUESTIONS = {
    FollowupStage.FOLLOWUP_15MIN: {
        ReminderType.MEDICATION: 'Apakah sudah diminum? Balas "SUDAH" atau "BELUM".',
        ReminderType.APPOINTMENT: 'Apakah sudah hadir? Balas "HADIR" atau "TERLAMBAT".',
        ReminderType.GENERAL: 'Apakah sudah dilakukan? Balas "SELESAI" atau "BELUM".',
    },
    FollowupStage.FOLLOWUP_2H: {
        ReminderType.MEDICATION: "Bagaimana kondisinya? Apakah sudah diminum?",
        ReminderType.APPOINTMENT: "Bagaimana kondisinya? Apakah sudah hadir?",
        ReminderType.GENERAL: "Bagaimana kondisinya? Apakah sudah dilakukan?",
    },
    FollowupStage.FOLLOWUP_24H: {
        ReminderType.MEDICATION: "Mohon konfirmasi apakah sudah sesuai jadwal.",
        ReminderType.APPOINTMENT: "Mohon konfirmasi kehadiran Anda.",
        ReminderType.GENERAL: "Mohon konfirmasi status kegiatan Anda.",
    },
}


class FollowupAction(Enum):
    """What the executor should do with a claimed job"""
    SEND = "send"
    DISCARD_STALE = "discard_stale"
    SKIP_RESOLVED = "skip_resolved"
    FAIL_MISSING = "fail_missing"


def build_followup_message(record: FollowupRecord) -> str:
    """
    Render the WhatsApp text for a followup

    Args:
        record: The followup being sent

    Returns:
        Message body in Indonesian, signed by the PRIMA team
    """
    title = record.reminder_title or "pengingat"
    name = record.patient_name or "Bapak/Ibu"
    return (
        f"{HEADERS[record.reminder_type]}\n\n"
        f"Halo {name}!\n\n"
        f"{ELAPSED[record.stage]} yang lalu kami mengirim pengingat untuk {title}.\n\n"
        f"{QUESTIONS[record.stage][record.reminder_type]}\n\n"
        f"{SIGNATURE}"
    )


def format_whatsapp_number(phone_number: str) -> str:
    """
    Normalise an Indonesian number to the gateway format (62...)

    Examples:
        "0812-3456-7890" -> "6281234567890"
        "+62 812 3456 7890" -> "6281234567890"
    """
    cleaned = re.sub(r"\D", "", phone_number or "")
    if not cleaned:
        raise ValueError(f"Invalid phone number: {phone_number!r}")
    if cleaned.startswith("08"):
        return "628" + cleaned[2:]
    if cleaned.startswith("8") and len(cleaned) >= 9:
        return "62" + cleaned
    if not cleaned.startswith("62"):
        return "62" + cleaned
    return cleaned


def decide_followup_action(
    record: Optional[FollowupRecord],
    job_generation: int,
    current_generation: int,
    reminder_resolved: bool,
) -> FollowupAction:
    """
    Decide whether a claimed job should still be sent

    A job from an older generation, or for a cancelled record, belongs to a
    chain that was stopped after the job was enqueued.
    """
    if record is None:
        return FollowupAction.FAIL_MISSING
    if job_generation != current_generation or record.status == FollowupStatus.CANCELLED:
        return FollowupAction.DISCARD_STALE
    if record.status in (FollowupStatus.SENT, FollowupStatus.SKIPPED):
        # already delivered by an earlier claim; completing again is harmless
        return FollowupAction.DISCARD_STALE
    if reminder_resolved:
        return FollowupAction.SKIP_RESOLVED
    return FollowupAction.SEND


def should_escalate_no_response(record: FollowupRecord, reminder_resolved: bool) -> bool:
    """The last followup went out and the patient still has not answered"""
    return record.stage.is_final and not reminder_resolved


ACK_ESCALATED = (
    "🚨 Terima kasih atas informasi Anda. Kami akan segera menghubungi relawan terdekat "
    "untuk membantu Anda.\n\n"
    "Mohon jaga kondisi kesehatan Anda. Jika ini adalah darurat medis, segera hubungi "
    "rumah sakit terdekat."
)

ACK_CONFIRMED = (
    "✅ Terima kasih atas konfirmasinya! Senang mendengar Anda sudah mengikuti rutinitas "
    "kesehatan dengan baik.\n\n"
    "Kami akan terus memantau dan mengingatkan Anda. Tetap jaga kesehatan!"
)

ACK_OTHER = (
    "📝 Terima kasih atas respons Anda. Kami akan terus memantau kondisi kesehatan Anda.\n\n"
    "Jika ada yang bisa kami bantu, jangan ragu untuk menghubungi kami."
)


def build_acknowledgment_message(escalated: bool, confirmed: bool) -> str:
    """
    Reply sent to the patient after an inbound message

    An escalation takes precedence so a patient in trouble is told help is coming.
    """
    if escalated:
        body = ACK_ESCALATED
    elif confirmed:
        body = ACK_CONFIRMED
    else:
        body = ACK_OTHER
    return f"{body}\n\n{SIGNATURE}"
