"""
Runtime settings for the reminder followup pipeline.

Values come from the process environment, optionally seeded from a .env
file at the repository root.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


# Job store backend: "redis" in production, "memory" for local development
JOB_STORE_BACKEND = os.getenv("JOB_STORE_BACKEND", "redis")

# Followup queue
FOLLOWUP_BATCH_SIZE = int(os.getenv("FOLLOWUP_BATCH_SIZE", "100"))
FOLLOWUP_JOB_RETENTION_SECONDS = int(os.getenv("FOLLOWUP_JOB_RETENTION_SECONDS", str(24 * 60 * 60)))
FOLLOWUP_MAX_RETRIES = int(os.getenv("FOLLOWUP_MAX_RETRIES", "3"))
FOLLOWUP_RETRY_BASE_MINUTES = int(os.getenv("FOLLOWUP_RETRY_BASE_MINUTES", "5"))
FOLLOWUP_CLAIM_TIMEOUT_SECONDS = int(os.getenv("FOLLOWUP_CLAIM_TIMEOUT_SECONDS", str(15 * 60)))
QUEUE_CHECK_INTERVAL_SECONDS = int(os.getenv("QUEUE_CHECK_INTERVAL_SECONDS", "60"))
RQ_QUEUE_NAME = os.getenv("RQ_QUEUE_NAME", "followup_messages")

# Confirmation linking
CONFIRMATION_LOOKBACK_HOURS = int(os.getenv("CONFIRMATION_LOOKBACK_HOURS", "24"))
REMINDER_LOG_RETENTION_SECONDS = int(os.getenv("REMINDER_LOG_RETENTION_SECONDS", str(7 * 24 * 60 * 60)))

# Escalation
ESCALATION_LOW_CONFIDENCE_THRESHOLD = int(os.getenv("ESCALATION_LOW_CONFIDENCE_THRESHOLD", "60"))
AI_INTENT_CLASSIFICATION_ENABLED = _env_bool("AI_INTENT_CLASSIFICATION_ENABLED")
AI_INTENT_CLASSIFIER_URL = os.getenv("AI_INTENT_CLASSIFIER_URL", "")
AI_INTENT_CLASSIFIER_API_KEY = os.getenv("AI_INTENT_CLASSIFIER_API_KEY", "")
AI_CONFIDENCE_THRESHOLD = int(os.getenv("AI_CONFIDENCE_THRESHOLD", "70"))
AI_INTENT_TIMEOUT_SECONDS = float(os.getenv("AI_INTENT_TIMEOUT_SECONDS", "5"))

# WhatsApp gateway (Fonnte-compatible HTTP API)
WHATSAPP_API_URL = os.getenv("WHATSAPP_API_URL", "https://api.fonnte.com/send")
WHATSAPP_API_TOKEN = os.getenv("WHATSAPP_API_TOKEN", "")
WHATSAPP_TIMEOUT_SECONDS = float(os.getenv("WHATSAPP_TIMEOUT_SECONDS", "10"))
VOLUNTEER_WHATSAPP_NUMBERS = _env_list("VOLUNTEER_WHATSAPP_NUMBERS")

# Patients are in Indonesia; message timestamps are rendered in WIB
PATIENT_TIMEZONE = os.getenv("PATIENT_TIMEZONE", "Asia/Jakarta")
