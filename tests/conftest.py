"""
Pytest configuration and fixtures for the PRIMA followup pipeline tests
"""
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import redis

from followup.channel_adapter import MockChannelAdapter
from followup.executor import FollowupExecutor
from scheduling.models import (
    FollowupRecord, FollowupStage, ReminderPriority, ReminderType
)
from scheduling.queue import FollowupQueue
from scheduling.scheduler import FollowupScheduler
from shared.audit import RecordingAuditSink
from shared.job_store import InMemoryJobStore
from shared.notifications import RecordingNotificationSink
from shared.reminder_log import ReminderLogRepository
from triage.escalation import EscalationClassifier
from triage.linker import ConfirmationLinker


@pytest.fixture
def mock_redis():
    """Mock Redis client for testing"""
    return Mock(spec=redis.Redis)


@pytest.fixture
def memory_store():
    """Fresh in-memory job store"""
    return InMemoryJobStore()


@pytest.fixture
def followup_queue(memory_store):
    """FollowupQueue with explicit settings so tests do not depend on the environment"""
    return FollowupQueue(
        memory_store,
        batch_size=100,
        job_ttl_seconds=24 * 60 * 60,
        max_retries=3,
        claim_timeout_seconds=15 * 60,
        retry_base_minutes=5,
    )


@pytest.fixture
def reminder_log(memory_store):
    return ReminderLogRepository(memory_store, retention_seconds=7 * 24 * 60 * 60)


@pytest.fixture
def followup_scheduler(memory_store, followup_queue, reminder_log):
    return FollowupScheduler(memory_store, queue=followup_queue, reminder_log=reminder_log)


@pytest.fixture
def mock_channel():
    return MockChannelAdapter()


@pytest.fixture
def notification_sink():
    return RecordingNotificationSink()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def escalation_classifier(notification_sink):
    return EscalationClassifier(notification_sink, intent_client=None, low_confidence_threshold=60)


@pytest.fixture
def followup_executor(followup_queue, followup_scheduler, mock_channel, escalation_classifier, audit_sink):
    return FollowupExecutor(
        queue=followup_queue,
        scheduler=followup_scheduler,
        channel=mock_channel,
        classifier=escalation_classifier,
        audit_sink=audit_sink,
    )


@pytest.fixture
def confirmation_linker(reminder_log, audit_sink):
    return ConfirmationLinker(reminder_log, audit_sink=audit_sink, lookback_hours=24)


@pytest.fixture
def sample_sent_at():
    """Reminder sent at 08:00 UTC on Jan 15, 2025 (15:00 WIB)"""
    return datetime(2025, 1, 15, 8, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_record(sample_sent_at):
    """Sample 15-minute medication followup"""
    return FollowupRecord(
        id="followup-123",
        patient_id="patient-456",
        reminder_log_id="reminder-789",
        phone_number="081234567890",
        patient_name="Ibu Sari",
        reminder_title="Amlodipine 5mg",
        reminder_type=ReminderType.MEDICATION,
        priority=ReminderPriority.MEDIUM,
        stage=FollowupStage.FOLLOWUP_15MIN,
        scheduled_at=sample_sent_at,
    )


@pytest.fixture
def redis_test_db():
    """
    Real Redis connection for integration tests.
    Uses database 15 to avoid conflicts with development data.
    """
    try:
        client = redis.Redis(host='localhost', port=6379, db=15, decode_responses=True)
        client.ping()
    except redis.ConnectionError:
        pytest.skip("Redis not available for integration tests")

    client.flushdb()
    yield client
    client.flushdb()
    client.close()
