"""Audit logging for device mutations.

Every create/modify/delete the engine sends to a device is written as one
JSON line to a dedicated audit log. Payloads are masked; payloads sent with
the silent flag are not recorded at all.
"""
import json
import logging
import os
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from .masking import mask_secrets

audit_logger = logging.getLogger("onboarding.audit")


def setup_audit_logging(log_dir: Optional[str] = None) -> None:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.onboarding/
    """
    if log_dir is None:
        log_dir = os.path.expanduser("~/.onboarding")

    Path(log_dir).mkdir(parents=True, exist_ok=True)

    audit_file = os.path.join(log_dir, "audit.log")

    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)
    audit_logger.propagate = False


@dataclass
class MutationRecord:
    """Record of one device mutation."""
    timestamp: str
    device_id: str
    task_id: Optional[str]
    method: str
    path: str
    success: bool
    payload: Optional[Any] = None
    error: Optional[str] = None

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), indent=None, default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "MutationRecord":
        """Parse from JSON string."""
        data = json.loads(json_str)
        return cls(**data)


class AuditTrail:
    """Write mutation records for one device and task."""

    def __init__(self, device_id: str, task_id: Optional[str] = None):
        self.device_id = device_id
        self.task_id = task_id

    def log_mutation(
        self,
        method: str,
        path: str,
        success: bool,
        payload: Optional[dict] = None,
        silent: bool = False,
        error: Optional[str] = None,
    ) -> MutationRecord:
        """Log one mutation.

        Args:
            method: create, create_or_modify, modify or delete
            path: Device resource path
            success: Whether the call succeeded
            payload: Request body, masked before writing
            silent: Suppress the payload entirely
            error: Error message if failed

        Returns:
            The MutationRecord that was logged
        """
        record = MutationRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            device_id=self.device_id,
            task_id=self.task_id,
            method=method,
            path=path,
            success=success,
            payload=None if silent else mask_secrets(payload),
            error=error,
        )
        audit_logger.info(record.to_json())
        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    device_id: Optional[str] = None,
    task_id: Optional[str] = None,
    limit: int = 100,
) -> list[MutationRecord]:
    """Read recent mutations from the audit log.

    Args:
        log_file: Path to audit log. Defaults to ~/.onboarding/audit.log
        device_id: Filter by device ID
        task_id: Filter by task ID
        limit: Maximum number of records to return

    Returns:
        List of MutationRecords, most recent first
    """
    if log_file is None:
        log_file = os.path.expanduser("~/.onboarding/audit.log")

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = MutationRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if device_id and record.device_id != device_id:
                continue
            if task_id and record.task_id != task_id:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
