"""
Audit logging for access to patient data

Audit writes are fire-and-forget: a failing audit sink must never break a
reminder or reply flow, so callers go through log_access_safely().
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from utils.time_utils import now_utc

logger = logging.getLogger("audit")


class AuditSink(ABC):
    """Abstract interface for audit log destinations"""

    @abstractmethod
    def log_access(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass


class LoggingAuditSink(AuditSink):
    """Writes audit entries as structured lines on the "audit" logger"""

    def log_access(self, action, resource_type, resource_id=None, patient_id=None, metadata=None):
        entry = {
            "timestamp": now_utc().isoformat(),
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "patient_id": patient_id,
            "metadata": metadata or {},
        }
        logger.info(json.dumps(entry, default=str))


class RecordingAuditSink(AuditSink):
    """Keeps entries in memory; used by tests and the CLI dry runs"""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []
        self.should_fail = False

    def log_access(self, action, resource_type, resource_id=None, patient_id=None, metadata=None):
        if self.should_fail:
            raise RuntimeError("Mock audit sink failure")
        self.entries.append({
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "patient_id": patient_id,
            "metadata": metadata or {},
        })


def log_access_safely(
    sink: Optional[AuditSink],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Record an audit entry; failures are logged and dropped"""
    if sink is None:
        return
    try:
        sink.log_access(action, resource_type, resource_id, patient_id, metadata)
    except Exception as e:
        logger.error(f"Audit logging failed for {action} on {resource_type}/{resource_id}: {e}")
