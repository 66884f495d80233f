"""
Tests for scheduling data models
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from scheduling.models import (
    FollowupJob, FollowupRecord, FollowupStage, FollowupStatus, JobStatus,
    QueueStats, ReminderPriority, ReminderType, job_id_for,
)


class TestEnums:
    """Tests for model enums"""

    def test_reminder_type_from_string(self):
        assert ReminderType.from_string("appointment") == ReminderType.APPOINTMENT
        assert ReminderType.from_string(" MEDICATION ") == ReminderType.MEDICATION
        assert ReminderType.from_string(None) == ReminderType.MEDICATION
        assert ReminderType.from_string("") == ReminderType.MEDICATION
        assert ReminderType.from_string("lab_result") == ReminderType.GENERAL

    def test_priority_from_string(self):
        assert ReminderPriority.from_string("high") == ReminderPriority.HIGH
        assert ReminderPriority.from_string(None) == ReminderPriority.MEDIUM
        assert ReminderPriority.from_string("urgent") == ReminderPriority.MEDIUM

    def test_only_24h_stage_is_final(self):
        assert FollowupStage.FOLLOWUP_24H.is_final
        assert not FollowupStage.FOLLOWUP_15MIN.is_final
        assert not FollowupStage.FOLLOWUP_2H.is_final


class TestFollowupJob:
    """Tests for FollowupJob"""

    def test_id_derived_from_followup(self):
        job = FollowupJob(followup_id="abc", scheduled_at=datetime(2025, 1, 15, tzinfo=timezone.utc))
        assert job.id == "followup_abc" == job_id_for("abc")
        assert job.status == JobStatus.PENDING
        assert job.retry_count == 0

    def test_json_round_trip_preserves_fields(self):
        job = FollowupJob(
            followup_id="abc",
            scheduled_at=datetime(2025, 1, 15, 8, 15, tzinfo=timezone.utc),
            created_at=datetime(2025, 1, 15, 8, 0, tzinfo=timezone.utc),
            retry_count=2,
            error="gateway timeout",
            generation=1,
        )

        restored = FollowupJob.from_json(job.to_json())

        assert restored == job

    def test_from_dict_missing_field(self):
        with pytest.raises(KeyError):
            FollowupJob.from_dict({"id": "followup_x", "followup_id": "x"})

    def test_from_dict_bad_status(self):
        data = FollowupJob(followup_id="x", scheduled_at=datetime(2025, 1, 15, tzinfo=timezone.utc)).to_dict()
        data["status"] = "exploded"
        with pytest.raises(ValueError):
            FollowupJob.from_dict(data)

    def test_can_retry(self):
        job = FollowupJob(followup_id="x", scheduled_at=datetime(2025, 1, 15, tzinfo=timezone.utc))
        job.retry_count = 2
        assert job.can_retry()
        job.retry_count = 3
        assert not job.can_retry()


class TestFollowupRecord:
    """Tests for FollowupRecord hash serialization"""

    def test_to_dict_flattens_to_strings(self, sample_record):
        data = sample_record.to_dict()

        assert all(isinstance(v, str) for v in data.values())
        assert data["sent_at"] == ""
        assert data["message_id"] == ""
        assert data["stage"] == "FOLLOWUP_15MIN"
        assert json.loads(data["metadata"]) == {}

    def test_from_dict_round_trip(self, sample_record):
        sample_record.status = FollowupStatus.SENT
        sample_record.sent_at = sample_record.scheduled_at + timedelta(seconds=3)
        sample_record.message_id = "msg-1"
        sample_record.metadata = {"source": "cli"}

        restored = FollowupRecord.from_dict(sample_record.to_dict())

        assert restored == sample_record

    def test_from_dict_treats_empty_strings_as_none(self, sample_record):
        restored = FollowupRecord.from_dict(sample_record.to_dict())
        assert restored.sent_at is None
        assert restored.message_id is None
        assert restored.error is None

    def test_each_record_gets_unique_id(self):
        assert FollowupRecord().id != FollowupRecord().id


def test_queue_stats_to_dict():
    assert QueueStats(pending=2, failed=1).to_dict() == {
        "pending": 2, "processing": 0, "completed": 0, "failed": 1,
    }
