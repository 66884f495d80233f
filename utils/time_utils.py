"""
Time utilities for the PRIMA reminder followup system

Everything stored or scored in Redis is UTC. Patient-facing rendering
happens in the patient's local zone (WIB by default).
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

import pytz

logger = logging.getLogger("time-utils")

# Default timezone for the system (UTC)
SYSTEM_TIMEZONE = timezone.utc

DEFAULT_PATIENT_TIMEZONE = 'Asia/Jakarta'

# Indonesian zones patients live in
PATIENT_TIMEZONES = {
    'Asia/Jakarta': pytz.timezone('Asia/Jakarta'),      # WIB
    'Asia/Makassar': pytz.timezone('Asia/Makassar'),    # WITA
    'Asia/Jayapura': pytz.timezone('Asia/Jayapura'),    # WIT
    'UTC': pytz.timezone('UTC')
}

ZONE_LABELS = {
    'Asia/Jakarta': 'WIB',
    'Asia/Makassar': 'WITA',
    'Asia/Jayapura': 'WIT',
}


def now_utc() -> datetime:
    """
    Get current time in UTC

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(SYSTEM_TIMEZONE)


def to_epoch_millis(dt: datetime) -> int:
    """Epoch milliseconds for a datetime; naive values are taken as UTC"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=SYSTEM_TIMEZONE)
    return int(dt.timestamp() * 1000)


def from_epoch_millis(millis: float) -> datetime:
    """UTC datetime for an epoch-millisecond score"""
    return datetime.fromtimestamp(float(millis) / 1000, tz=SYSTEM_TIMEZONE)


def parse_iso_to_utc(iso_string: str) -> datetime:
    """
    Parse ISO datetime string to UTC datetime

    Args:
        iso_string: ISO format datetime string

    Returns:
        datetime object in UTC timezone

    Raises:
        ValueError: If the ISO string is invalid
    """
    try:
        # fromisoformat only accepts the trailing Z from Python 3.11 on
        if iso_string.endswith('Z'):
            iso_string = iso_string[:-1] + '+00:00'
        dt = datetime.fromisoformat(iso_string)

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=SYSTEM_TIMEZONE)
            logger.debug(f"Naive datetime {iso_string} assumed to be UTC")
        else:
            dt = dt.astimezone(SYSTEM_TIMEZONE)

        return dt
    except ValueError as e:
        logger.error(f"Failed to parse ISO datetime string '{iso_string}': {e}")
        raise


def to_utc(dt: datetime, assume_timezone: str = 'UTC') -> datetime:
    """
    Convert datetime to UTC

    Args:
        dt: Datetime to convert
        assume_timezone: Timezone to assume if datetime is naive

    Returns:
        datetime object in UTC timezone
    """
    if dt.tzinfo is None:
        if assume_timezone in PATIENT_TIMEZONES:
            dt = PATIENT_TIMEZONES[assume_timezone].localize(dt)
        else:
            dt = dt.replace(tzinfo=SYSTEM_TIMEZONE)
            logger.warning(f"Unknown timezone '{assume_timezone}', assuming UTC")

    return dt.astimezone(SYSTEM_TIMEZONE)


def to_patient_timezone(dt: datetime, patient_timezone: str = DEFAULT_PATIENT_TIMEZONE) -> datetime:
    """Convert a UTC datetime to the patient's local timezone"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=SYSTEM_TIMEZONE)

    if patient_timezone in PATIENT_TIMEZONES:
        return dt.astimezone(PATIENT_TIMEZONES[patient_timezone])

    logger.warning(f"Unknown patient timezone '{patient_timezone}', using UTC")
    return dt.astimezone(SYSTEM_TIMEZONE)


def format_for_patient(dt: datetime, patient_timezone: str = DEFAULT_PATIENT_TIMEZONE) -> str:
    """
    Format datetime for a WhatsApp message, e.g. "15/01/2025 08:30 WIB"
    """
    local_dt = to_patient_timezone(dt, patient_timezone)
    label = ZONE_LABELS.get(patient_timezone, local_dt.strftime('%Z'))
    return f"{local_dt.strftime('%d/%m/%Y %H:%M')} {label}"


def is_within_window(dt: datetime, window: timedelta, now: Optional[datetime] = None) -> bool:
    """True if dt lies in [now - window, now]"""
    now = now or now_utc()
    dt = to_utc(dt)
    return now - window <= dt <= now
