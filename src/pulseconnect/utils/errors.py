"""
Error handling framework for the PulseConnect client core.

This module provides:
- Hierarchical exception classes
- Error context preservation
- Structured error payloads for logging
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    NETWORK = "network"
    STORAGE = "storage"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    EXTERNAL_SERVICE = "external_service"
    CHANNEL = "channel"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class PulseError(Exception):
    """Base exception for all PulseConnect errors."""

    code: str = "PULSE_ERROR"
    default_message: str = "An error occurred in the PulseConnect client"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs
        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "is_retryable": self.is_retryable,
                "suggestions": self.get_suggestions(),
                "cause": str(self.cause) if self.cause else None,
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata
                }
            }
        }


class ConfigurationError(PulseError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Check PULSECONNECT_* environment variables",
        ]


class StorageError(PulseError):
    """Durable slot read or write failures."""
    code = "STORAGE_ERROR"
    default_message = "Local storage error"
    category = ErrorCategory.STORAGE


# Network Errors

class NetworkError(PulseError):
    """Network-related errors."""
    code = "NETWORK_ERROR"
    default_message = "Network error occurred"
    category = ErrorCategory.NETWORK
    is_retryable = True


class RemoteServiceError(NetworkError):
    """The preference service could not be reached or refused the request."""
    code = "REMOTE_SERVICE_ERROR"
    default_message = "Preference service request failed"
    category = ErrorCategory.EXTERNAL_SERVICE

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None, **kwargs):
        self.status = status
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        if self.status in (401, 403):
            return ["Sign in again; the session credential was rejected"]
        return ["Check your network connection", "Changes are kept locally until the next sync"]


class ChannelError(NetworkError):
    """Event channel transport errors."""
    code = "CHANNEL_ERROR"
    default_message = "Event channel error"
    category = ErrorCategory.CHANNEL


# Validation Errors

class ValidationError(PulseError):
    """Input validation errors."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        return [
            f"Check the value of field '{self.field}'",
            f"Ensure it meets the constraint: {self.constraint}"
        ]


__all__ = [
    'PulseError',
    'ErrorContext',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'StorageError',
    'NetworkError',
    'RemoteServiceError',
    'ChannelError',
    'ValidationError',
]
