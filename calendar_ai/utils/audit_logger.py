import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loguru import logger
from pydantic import BaseModel, Field

from calendar_ai.core.config import settings


class AuditEntry(BaseModel):
    """Model for structured audit log entries"""
    timestamp: str
    action: str
    request_id: Optional[str] = None
    resource_type: str
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    status: str
    duration_ms: Optional[float] = None


class AuditLogger:
    def __init__(self):
        """Initialize the audit logger with rotation and retention policies"""
        # Remove default logger
        logger.remove()

        # Configure console logging for development
        if settings.ENVIRONMENT.lower() != "production":
            logger.add(
                sys.stderr,
                format="{time} | {level} | {name} | {message}",
                level=settings.LOG_LEVEL
            )

        # Configure file logging with rotation and retention
        if settings.AUDIT_LOG_PATH:
            logger.add(
                settings.AUDIT_LOG_PATH,
                rotation="100 MB",  # Rotate when the file reaches 100MB
                retention="90 days",  # Keep logs for 90 days
                compression="zip",  # Compress rotated logs
                serialize=True,  # JSON serialization for structured logging
                backtrace=True,
                diagnose=False,
                enqueue=True,  # Thread-safe logging
                level=settings.LOG_LEVEL
            )

    def log(
        self,
        action: str,
        resource_type: str,
        status: str,
        request_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None
    ) -> AuditEntry:
        """
        Create an immutable audit log entry

        Args:
            action: The action being performed (e.g., "ai_response_parsed", "conflicts_detected")
            resource_type: Type of resource being handled (e.g., "ai_response", "calendar_event")
            status: Outcome of the action (e.g., "success", "failure", "degraded")
            request_id: ID of the request the action belongs to
            resource_id: ID of the resource being handled
            details: Additional context about the action
            duration_ms: Time spent on the action, when measured

        Returns:
            The entry that was written
        """
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action,
            request_id=request_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            status=status,
            duration_ms=duration_ms
        )

        # Log the structured entry
        logger.info(entry.model_dump_json())

        # For failed actions, also log at error level in development
        if status == "failure" and settings.ENVIRONMENT.lower() != "production":
            logger.error(f"AUDIT: {entry.model_dump_json()}")

        return entry

# Create a singleton instance
audit_logger = AuditLogger()
