"""
Structured logging for store, vector and hierarchy operations.
"""

import logging
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['content', 'text', 'description', 'vector']


class StructuredLogger:
    """Structured logger for persistence, vector overlay and hierarchy validation."""

    def __init__(self, name: str = "hta_forest"):
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

        if status in ("failed", "error", "timeout", "conflict"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_store_operation(self, operation: str, project_id: str, path_name: str = None, kind: str = None,
                            status: str = "success", details: Dict[str, Any] = None):
        """Log a document store operation."""
        log_details = {"project_id": project_id}
        if path_name is not None:
            log_details["path_name"] = path_name
        if kind is not None:
            log_details["kind"] = kind
        if details:
            log_details.update(details)

        self.log_operation(f"store.{operation}", status, log_details)

    def log_vector_operation(self, operation: str, record_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector operation."""
        log_details = {"record_id": record_id}
        if details:
            log_details.update(sanitize_payload(details))

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_hierarchy_validation(self, project_id: str, path_name: str, findings: List[Any]):
        """Log the outcome of an advisory hierarchy validation."""
        log_details = {
            "project_id": project_id,
            "path_name": path_name,
            "finding_count": len(findings),
        }
        if findings:
            log_details["findings"] = [str(finding)[:100] for finding in findings[:10]]
            self.log_operation("hierarchy.validate", "flagged", log_details)
        else:
            self.log_operation("hierarchy.validate", "valid", log_details)

    def log_recovery(self, stage: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a corruption detection or recovery step."""
        self.log_operation(f"recovery.{stage}", status, details or {})

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


def sanitize_payload(payload: Any, sensitive_fields: List[str] = None) -> Any:
    """Truncate long strings and redact free-text fields before logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if k in sensitive_fields:
                sanitized[k] = "[REDACTED]"
            else:
                sanitized[k] = sanitize_payload(v, sensitive_fields)
        return sanitized
    elif isinstance(payload, str):
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, sensitive_fields) for item in payload[:20]]
    else:
        return payload
