"""
Error handling framework for portscout.

This module provides:
- Hierarchical exception classes
- Error context preservation
- Structured error payloads for the error channel
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from contextlib import contextmanager
import traceback


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    SYSTEM = "system"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    DISCOVERY = "discovery"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None


class PortScoutError(Exception):
    """Base exception for all portscout errors."""

    code: str = "PORTSCOUT_ERROR"
    default_message: str = "An error occurred in portscout"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause

        if not self.context.stack_trace and cause is not None:
            self.context.stack_trace = "".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "cause": repr(self.cause) if self.cause else None,
                "suggestions": self.get_suggestions(),
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata,
                }
            }
        }


class ConfigurationError(PortScoutError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Port ranges must be written low-high, e.g. 5173-5199",
        ]


class SourceUnavailableError(PortScoutError):
    """A single enumeration source could not be queried."""
    code = "SOURCE_UNAVAILABLE"
    default_message = "Enumeration source unavailable"
    category = ErrorCategory.DISCOVERY
    severity = ErrorSeverity.WARNING

    def __init__(self, source: str, message: Optional[str] = None, **kwargs):
        self.source = source
        super().__init__(message or f"Source '{source}' unavailable", **kwargs)


class EnumerationError(PortScoutError):
    """Every enumeration source failed in the same cycle."""
    code = "ENUMERATION_FAILED"
    default_message = "All listening-socket sources failed"
    category = ErrorCategory.DISCOVERY

    def __init__(self, failures: List[SourceUnavailableError], **kwargs):
        self.failures = failures
        detail = "; ".join(f"{f.source}: {f.message}" for f in failures)
        super().__init__(
            f"All listening-socket sources failed ({detail})" if detail else None,
            **kwargs
        )

    def get_suggestions(self) -> List[str]:
        return [
            "Run with elevated privileges to read other users' sockets",
            "Check that netstat is on PATH when it is enabled",
        ]


class ProbeError(PortScoutError):
    """A health probe did not complete."""
    code = "PROBE_FAILED"
    default_message = "Health probe failed"
    category = ErrorCategory.NETWORK
    severity = ErrorSeverity.INFO


class CycleError(PortScoutError):
    """An unexpected failure inside a reconciliation cycle."""
    code = "CYCLE_FAILED"
    default_message = "Scan cycle failed"
    category = ErrorCategory.INTERNAL


@contextmanager
def error_context(component: str, operation: str, **metadata):
    """
    Attach component/operation context to errors raised in the block.

    PortScoutError instances get their context filled in; anything else is
    wrapped in a CycleError with the original as cause.
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        metadata=metadata
    )

    try:
        yield context
    except PortScoutError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        e.context.metadata.update(metadata)
        raise
    except Exception as e:
        raise CycleError(
            message=f"{type(e).__name__}: {e}",
            context=context,
            cause=e
        ) from e


__all__ = [
    'PortScoutError',
    'ErrorContext',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'SourceUnavailableError',
    'EnumerationError',
    'ProbeError',
    'CycleError',
    'error_context',
]
