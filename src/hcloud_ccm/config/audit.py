"""Audit logging for security-relevant operations.

Writes one JSON record per line for credential file reads and API calls.
Reload outcomes are not recorded here; they exist only as in-memory
counters. Disabled unless ``enable_audit_logging`` is called (the CLI
does so for ``--audit-log PATH``).
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path

AUDIT_MAX_SIZE_MB = 10
AUDIT_MAX_FILES = 5


class AuditEvent:
    """Audit event type constants."""

    # Credential events
    CREDENTIAL_READ = "credential.read"
    CREDENTIAL_READ_FAILED = "credential.read.failed"

    # API events
    API_SUCCESS = "api.success"
    API_ERROR = "api.error"
    API_RETRY = "api.retry"


# Global audit state
_audit_enabled = False
_audit_log_path: Path | None = None
# Watch threads and request threads append concurrently
_write_lock = threading.Lock()


def enable_audit_logging(log_path: Path) -> None:
    """Enable audit logging to ``log_path``."""
    global _audit_enabled, _audit_log_path

    _audit_enabled = True
    _audit_log_path = Path(log_path)

    audit_dir = _audit_log_path.parent
    if not audit_dir.exists():
        audit_dir.mkdir(parents=True, mode=0o700)


def disable_audit_logging() -> None:
    """Disable audit logging."""
    global _audit_enabled, _audit_log_path

    _audit_enabled = False
    _audit_log_path = None


def is_audit_enabled() -> bool:
    """Check if audit logging is enabled."""
    return _audit_enabled


def _rotate_logs(log_path: Path) -> None:
    """Rotate audit logs if they exceed size limit."""
    if not log_path.exists():
        return

    try:
        size_mb = log_path.stat().st_size / (1024 * 1024)
        if size_mb < AUDIT_MAX_SIZE_MB:
            return

        for i in range(AUDIT_MAX_FILES - 1, 0, -1):
            old_path = log_path.with_suffix(f".log.{i}")
            new_path = log_path.with_suffix(f".log.{i + 1}")
            if old_path.exists():
                if i + 1 >= AUDIT_MAX_FILES:
                    old_path.unlink()
                else:
                    old_path.rename(new_path)

        log_path.rename(log_path.with_suffix(".log.1"))

    except OSError:
        pass  # Best effort rotation


def log_audit_event(
    event_type: str,
    message: str,
    details: dict | None = None,
    success: bool = True,
) -> None:
    """Log an audit event.

    Args:
        event_type: Type of audit event (use AuditEvent constants).
        message: Human-readable description of the event.
        details: Optional additional structured data.
        success: Whether the operation was successful.
    """
    log_path = _audit_log_path
    if not _audit_enabled or log_path is None:
        return

    record = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event_type,
        "message": message,
        "success": success,
        "pid": os.getpid(),
        "thread": threading.current_thread().name,
    }

    if details:
        record["details"] = _sanitize_details(details)

    with _write_lock:
        _rotate_logs(log_path)
        try:
            with open(log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
            os.chmod(log_path, 0o600)
        except OSError:
            pass  # Best effort logging


def _sanitize_details(details: dict) -> dict:
    """Sanitize details dict to remove sensitive information."""
    sensitive_keys = {
        "token",
        "password",
        "secret",
        "authorization",
    }

    sanitized = {}
    for key, value in details.items():
        lower_key = key.lower()
        if any(s in lower_key for s in sensitive_keys):
            if isinstance(value, str) and len(value) > 8:
                sanitized[key] = f"{value[:4]}...{value[-4:]}"
            else:
                sanitized[key] = "***"
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_details(value)
        else:
            sanitized[key] = value

    return sanitized


def log_credential_access(
    credential_file: str,
    path: Path | None = None,
    success: bool = True,
    error: str | None = None,
) -> None:
    """Log a credential file read."""
    event = AuditEvent.CREDENTIAL_READ if success else AuditEvent.CREDENTIAL_READ_FAILED
    details = {"credential_file": credential_file}
    if path:
        details["path"] = str(path)
    if error:
        details["error"] = error

    log_audit_event(
        event_type=event,
        message=f"Credential read: {credential_file}",
        details=details,
        success=success,
    )


def log_api_request(
    endpoint: str,
    method: str = "GET",
    success: bool = True,
    status_code: int | None = None,
    error: str | None = None,
    retry_count: int = 0,
) -> None:
    """Log API request event.

    Args:
        endpoint: API endpoint (sanitized, no credentials).
        method: HTTP method.
        success: Whether request was successful.
        status_code: HTTP status code if available.
        error: Error message if request failed.
        retry_count: Number of retries performed.
    """
    if retry_count > 0 and success:
        event = AuditEvent.API_RETRY
    elif success:
        event = AuditEvent.API_SUCCESS
    else:
        event = AuditEvent.API_ERROR

    details: dict = {
        "endpoint": endpoint,
        "method": method,
    }
    if status_code:
        details["status_code"] = status_code
    if error:
        details["error"] = error
    if retry_count > 0:
        details["retry_count"] = retry_count

    log_audit_event(
        event_type=event,
        message=f"API {method} {endpoint}",
        details=details,
        success=success,
    )


def read_audit_log(
    limit: int = 100,
    event_filter: str | None = None,
) -> list[dict]:
    """Read recent audit log entries.

    Args:
        limit: Maximum number of entries to return.
        event_filter: Optional event type prefix to filter by.

    Returns:
        List of audit log entries (most recent first).
    """
    log_path = _audit_log_path
    if not _audit_enabled or log_path is None or not log_path.exists():
        return []

    entries = []
    try:
        with open(log_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_filter is None or entry.get("event", "").startswith(event_filter):
                    entries.append(entry)
    except OSError:
        return []

    return entries[-limit:][::-1]


__all__ = [
    "AuditEvent",
    "enable_audit_logging",
    "disable_audit_logging",
    "is_audit_enabled",
    "log_audit_event",
    "log_credential_access",
    "log_api_request",
    "read_audit_log",
]
