"""Structured JSON audit trail for permission decisions and session events."""

import json
import os
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .config import Config

AUDIT_RETENTION_DAYS = int(os.getenv("AUDIT_RETENTION_DAYS", "30"))
AUDIT_ROTATION_BYTES = int(os.getenv("AUDIT_ROTATION_BYTES", str(10 * 1024 * 1024)))
MAX_CONTENT_LENGTH = 1000


class AuditEvent(str, Enum):
    """Audit event types."""

    PERMISSION_REQUESTED = "permission_requested"
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_DENIED = "permission_denied"
    PERMISSION_ABANDONED = "permission_abandoned"
    ENGINE_READY = "engine_ready"
    SESSION_LOGOUT = "session_logout"


class AuditLogger:
    """
    JSON Lines audit logger.

    Features:
    - One JSON object per line with ISO 8601 UTC timestamps
    - Truncation of long string values
    - Size-based rotation with timestamped backups
    - Retention cleanup based on AUDIT_RETENTION_DAYS
    """

    def __init__(self, log_path: Optional[str] = None):
        """
        Initialize the audit logger.

        Args:
            log_path: Audit file path (defaults to Config.AUDIT_LOG_PATH)
        """
        self.log_path = Path(log_path or Config.AUDIT_LOG_PATH)
        self.retention_days = AUDIT_RETENTION_DAYS
        self.rotation_bytes = AUDIT_ROTATION_BYTES
        self._last_cleanup: Optional[datetime] = None
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._cleanup_old_logs()

    def _rotate_if_needed(self) -> None:
        """Rotate the audit log if it exceeds the configured size."""
        if not self.log_path.exists():
            return
        if self.log_path.stat().st_size < self.rotation_bytes:
            return

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        rotated_path = self.log_path.with_name(f"{self.log_path.name}.{timestamp}")
        counter = 1
        while rotated_path.exists():
            rotated_path = self.log_path.with_name(
                f"{self.log_path.name}.{timestamp}.{counter}"
            )
            counter += 1
        self.log_path.replace(rotated_path)

    def _cleanup_old_logs(self) -> None:
        """Remove audit files older than the retention window."""
        if self.retention_days <= 0:
            return
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)
        for path in self.log_path.parent.glob(f"{self.log_path.name}.*"):
            if not path.is_file():
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
            if modified < cutoff:
                path.unlink()
        self._last_cleanup = datetime.now(timezone.utc)

    def _maybe_cleanup(self) -> None:
        if self.retention_days <= 0:
            return
        now = datetime.now(timezone.utc)
        if self._last_cleanup is None or now - self._last_cleanup >= timedelta(days=1):
            self._cleanup_old_logs()

    @staticmethod
    def _truncate_content(value: Any, max_length: int = MAX_CONTENT_LENGTH) -> Any:
        if isinstance(value, str) and len(value) > max_length:
            return value[:max_length] + f"... [truncated, {len(value)} total chars]"
        elif isinstance(value, dict):
            return {k: AuditLogger._truncate_content(v, max_length) for k, v in value.items()}
        elif isinstance(value, (list, tuple, set, frozenset)):
            return [AuditLogger._truncate_content(item, max_length) for item in value]
        return value

    def log(self, event: AuditEvent, request_id: Optional[str] = None, **kwargs):
        """
        Write one audit record.

        Args:
            event: Audit event type
            request_id: Permission request identifier for correlation
            **kwargs: Additional fields to include in the record
        """
        audit_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event.value,
            "request_id": request_id,
            **self._truncate_content(kwargs),
        }
        json_line = json.dumps(audit_record, ensure_ascii=False, default=str)

        self._maybe_cleanup()
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json_line + "\n")

    def log_request(self, kind: str, request_id: str, originator: str, **details):
        self.log(
            AuditEvent.PERMISSION_REQUESTED,
            request_id=request_id,
            kind=kind,
            originator=originator,
            **details,
        )

    def log_decision(
        self,
        kind: str,
        request_id: str,
        granted: bool,
        error: Optional[str] = None,
    ):
        """
        Log a Grant or Deny decision.

        Args:
            kind: Request kind (basket, certificate, protocol)
            request_id: Permission request identifier
            granted: True for Grant, False for Deny
            error: Relay error message, if the engine rejected the relay
        """
        event = AuditEvent.PERMISSION_GRANTED if granted else AuditEvent.PERMISSION_DENIED
        log_data = {"kind": kind}
        if error is not None:
            log_data["error"] = error
        self.log(event, request_id=request_id, **log_data)

    def log_abandoned(self, kind: str, request_id: str):
        self.log(AuditEvent.PERMISSION_ABANDONED, request_id=request_id, kind=kind)

    def log_engine_ready(self, network: str, storage_url: str, auth_method: str):
        self.log(
            AuditEvent.ENGINE_READY,
            network=network,
            storage_url=storage_url,
            auth_method=auth_method,
        )

    def log_logout(self, abandoned: int):
        self.log(AuditEvent.SESSION_LOGOUT, abandoned_requests=abandoned)
