"""
Structured logging for scan, patch and history operations.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for scanner, patch engine and history operations."""

    def __init__(self, name: str = "livecms"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_scan(self, source: str, stats: Dict[str, Any], duration_ms: float = None):
        """Log a completed scan with its statistics."""
        details = {"source": source[:100]}
        details.update(stats)
        if duration_ms is not None:
            details["duration_ms"] = round(duration_ms, 2)

        self.log_operation("scan", "completed", details)

    def log_classification(self, tag: str, kind: str, rule: str, reason: str = None, content_id: str = None):
        """Log which classifier rule matched one element."""
        details = {"tag": tag, "kind": kind, "rule": rule}
        if reason:
            details["reason"] = reason
        if content_id:
            details["content_id"] = content_id

        self.logger.debug(f"Operation: classify, Status: {kind}, Details: {details}")

    def log_patch(self, file_path: str, content_id: str = None, status: str = "success", details: Dict[str, Any] = None):
        """Log a patch attempt against a source file."""
        log_details = {"file": file_path}
        if content_id:
            log_details["content_id"] = content_id
        if details:
            log_details.update(sanitize_payload(details))

        self.log_operation("patch", status, log_details)

    def log_backup(self, original_file: str, backup_file: str, status: str = "created"):
        """Log a backup copy being written or restored."""
        self.log_operation("backup", status, {"original": original_file, "backup": backup_file})

    def log_history_event(self, history_id: int, content_id: str, action: str, actor: str):
        """Log a history record append."""
        details = {
            "history_id": history_id,
            "content_id": content_id,
            "action": action,
            "actor": actor
        }
        self.log_operation("history.appended", "success", details)

    def log_rate_limited(self, actor: str, limit: int, window_sec: int):
        """Log a write rejected by the rate ceiling."""
        details = {"actor": actor, "limit": limit, "window_sec": window_sec}
        self.log_operation("rate_limit", "rejected", details)

    def log_lock_conflict(self, content_id: str, holder: str, requester: str):
        """Log contention on a content id lock."""
        details = {"content_id": content_id, "holder": holder, "requester": requester}
        self.log_operation("lock", "conflict", details)

    def log_bulk_summary(self, actor: str, total: int, successful: int, failed: int):
        """Log the outcome of a bulk transaction."""
        details = {"actor": actor, "total": total, "successful": successful, "failed": failed}
        status = "success" if failed == 0 else "partial"
        self.log_operation("bulk_update", status, details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def sanitize_payload(payload: Any, max_length: int = 100) -> Any:
    """Truncate long strings in payloads before they reach the log."""
    if isinstance(payload, dict):
        return {k: sanitize_payload(v, max_length) for k, v in payload.items()}
    elif isinstance(payload, str):
        return payload[:max_length] + "..." if len(payload) > max_length else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, max_length) for item in payload]
    else:
        return payload


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: List[str] = None):
    """General audit event logging, value-like fields are redacted."""
    if sensitive_fields is None:
        sensitive_fields = ['token', 'secret', 'password']

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        sanitized_payload = {}
        for k, v in payload.items():
            if k in sensitive_fields:
                sanitized_payload[k] = "[REDACTED]"
            else:
                sanitized_payload[k] = sanitize_payload(v)
        log_details["payload"] = sanitized_payload

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)
