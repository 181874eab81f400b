"""Error Hierarchy - typed, categorized exceptions for startup and lifecycle failures.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - ConfigurationError is never retried: malformed input stays malformed
    - ConnectivityError keeps the underlying store error as __cause__
    - to_response() never embeds the underlying store error text

Design Decisions:
    - Single hierarchy with ImmunoError base: FastAPI global handler catches all (ADR: uniform error shape)
    - ErrorContext as dataclass: debug info travels with the error, logging decides what to emit
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    EXTERNAL_API = "external_api"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    operation: str | None = None
    document_path: str | None = None
    attempt: int | None = None
    debug_info: dict[str, Any] | None = None


class ImmunoError(Exception):
    """Base exception for all Immuno-Warriors API errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "operation": self.context.operation,
                    "document_path": self.context.document_path,
                },
            }
        }


class ConfigurationError(ImmunoError):
    """Required configuration is missing or malformed."""
    def __init__(
        self, missing_fields: list[str], scope: str = "configuration",
        context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Incomplete {scope}: missing {', '.join(missing_fields)}",
            "CONFIGURATION_ERROR", ErrorCategory.CONFIGURATION,
            ErrorSeverity.CRITICAL, context, 500,
        )
        self.missing_fields = list(missing_fields)


class ConnectivityError(ImmunoError):
    """Document store unreachable, or a read/write was rejected."""
    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        if cause is not None:
            ctx.debug_info = {**(ctx.debug_info or {}), "cause": str(cause)}
        super().__init__(
            message, "STORE_UNAVAILABLE", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, ctx, 500,
        )
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class RuntimeFault(ImmunoError):
    """Uncaught exception observed while the service was running."""
    def __init__(self, original: BaseException, context: ErrorContext | None = None):
        super().__init__(
            f"Uncaught exception: {original}",
            "RUNTIME_FAULT", ErrorCategory.INTERNAL,
            ErrorSeverity.CRITICAL, context, 500,
        )
        self.original = original
        self.__cause__ = original
