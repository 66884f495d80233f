"""
Scheduling module for PRIMA reminder followups

Contains components for queueing and delivering followup messages:
- FollowupJob / FollowupRecord: queued work and what it renders
- FollowupQueue: due-ordered job queue with exponential-backoff retry
- FollowupScheduler: creates and cancels followup chains
- RQ Tasks and workers: drive the queue on an interval
"""

from .models import (
    FollowupJob,
    FollowupRecord,
    FollowupStage,
    FollowupStatus,
    JobStatus,
    QueueStats,
    ReminderPriority,
    ReminderType,
)
from .queue import FollowupQueue
from .scheduler import FollowupScheduler

__all__ = [
    "FollowupJob",
    "FollowupRecord",
    "FollowupStage",
    "FollowupStatus",
    "JobStatus",
    "QueueStats",
    "ReminderPriority",
    "ReminderType",
    "FollowupQueue",
    "FollowupScheduler",
]
