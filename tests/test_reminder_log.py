"""
Tests for ReminderLogRepository
"""
from datetime import timedelta

from freezegun import freeze_time

from shared.reminder_log import PATIENT_PREFIX, ConfirmationStatus, ReminderDelivery


def _delivery(reminder_id, sent_at):
    return ReminderDelivery(id=reminder_id, patient_id="patient-456", sent_at=sent_at,
                            reminder_title="Amlodipine 5mg")


class TestRecordDelivery:
    """Tests for ReminderLogRepository.record_delivery"""

    def test_indexes_delivery_for_patient(self, reminder_log, memory_store, sample_sent_at):
        with freeze_time(sample_sent_at):
            reminder_log.record_delivery(_delivery("reminder-1", sample_sent_at))

            assert memory_store.zrangebyscore(f"{PATIENT_PREFIX}patient-456", 0, "+inf") == ["reminder-1"]
            assert reminder_log.get("reminder-1").is_pending

    def test_patient_index_drops_entries_past_retention(self, reminder_log, memory_store, sample_sent_at):
        """A patient reminded daily keeps only a retention window of ids"""
        with freeze_time(sample_sent_at) as frozen:
            for day in range(10):
                reminder_log.record_delivery(_delivery(f"reminder-{day}", sample_sent_at + timedelta(days=day)))
                frozen.tick(timedelta(days=1))

            ids = memory_store.zrangebyscore(f"{PATIENT_PREFIX}patient-456", 0, "+inf")

        # the fixture keeps seven days
        assert ids == [f"reminder-{day}" for day in range(2, 10)]


class TestFindLatestPending:
    """Tests for ReminderLogRepository.find_latest_pending"""

    def test_skips_resolved_reminders(self, reminder_log, sample_sent_at):
        with freeze_time(sample_sent_at + timedelta(hours=1)):
            reminder_log.record_delivery(_delivery("reminder-old", sample_sent_at - timedelta(hours=2)))
            reminder_log.record_delivery(_delivery("reminder-new", sample_sent_at))
            reminder_log.resolve("reminder-new", "confirmation-1", ConfirmationStatus.CONFIRMED)

            found = reminder_log.find_latest_pending("patient-456", sample_sent_at - timedelta(hours=24))

        assert found.id == "reminder-old"
