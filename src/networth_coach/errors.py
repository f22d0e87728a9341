"""Structured error taxonomy for the coaching pipeline.

Every error raised by the pipeline inherits from StructuredError and provides:
- a category and severity for classification
- a retryability flag
- a stable machine-readable code (recorded in traces)
- a consistent to_dict() for JSON serialization

Client-caused errors (ValidationError, RateLimitError) short-circuit the
pipeline before any external call. EnrichmentFailure and ToolExecutionError
are recovered locally. ProviderError, OutputValidationError and
LoopDeadlineExceeded surface to the caller as server errors.

Example:
    >>> try:
    ...     raise ProviderError("Anthropic API error", details={"provider": "anthropic"})
    ... except StructuredError as e:
    ...     error_json = e.to_dict()
    ...     print(error_json["category"], error_json["code"])
    provider PROVIDER_ERROR
"""
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ErrorCategory(Enum):
    """Error categories for classification."""
    VALIDATION = "validation"                # Schema or content-safety rejection
    RATE_LIMIT = "rate_limit"                # Per-user budget exhausted
    ENRICHMENT = "enrichment"                # Knowledge / research / context lookups
    TOOL_EXECUTION = "tool_execution"        # Calculator tool failures
    PROVIDER = "provider"                    # Model provider network/quota errors
    OUTPUT_VALIDATION = "output_validation"  # Empty or invalid model output
    TIMEOUT = "timeout"                      # Timeout/deadline errors
    CONFIGURATION = "configuration"          # Missing keys, unknown providers
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class StructuredError(Exception):
    """Base class for all structured errors.

    Attributes:
        message: Human-readable error message
        category: ErrorCategory classification
        severity: ErrorSeverity level
        retryable: Whether the operation can be retried
        details: Additional context (dict)
        code: Stable error code recorded in traces
        timestamp: When the error occurred
    """

    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.retryable = retryable
        self.details = details or {}
        if code is not None:
            self.code = code
        self.timestamp = datetime.now(timezone.utc)

    @property
    def is_client_error(self) -> bool:
        """True for errors caused by the caller (never retried by the server)."""
        return self.category in (ErrorCategory.VALIDATION, ErrorCategory.RATE_LIMIT)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to structured dictionary.

        Returns:
            {
                "error_type": "ErrorClassName",
                "code": "STABLE_CODE",
                "message": "Human-readable message",
                "category": "validation|rate_limit|provider|...",
                "severity": "info|warning|error|critical",
                "retryable": true|false,
                "details": {...},
                "timestamp": "2024-01-01T12:00:00.000000+00:00"
            }
        """
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


class ValidationError(StructuredError):
    """Input failed schema validation or the content-safety scan.

    Client-caused; never retried automatically.

    Example:
        >>> raise ValidationError(
        ...     "Query is too long (max 2000 characters)",
        ...     details={"field": "message"}
        ... )
    """

    code = "INVALID_INPUT"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.WARNING,
            retryable=False,
            details=details,
            code=code
        )


class RateLimitError(StructuredError):
    """Per-user request budget exhausted.

    Carries a retry-after hint; the server never retries on the caller's behalf.
    """

    code = "RATE_LIMITED"

    def __init__(self, identifier: str, limit: int, window_ms: int, retry_after_ms: int):
        """Initialize rate limit error.

        Args:
            identifier: The user that hit the limit
            limit: Maximum requests allowed per window
            window_ms: Window length in milliseconds
            retry_after_ms: Milliseconds until the window resets
        """
        retry_after = retry_after_ms / 1000
        message = (
            f"Rate limit exceeded for {identifier}: "
            f"{limit} requests per {window_ms / 1000:g}s. "
            f"Retry after {retry_after:.1f}s"
        )
        super().__init__(
            message=message,
            category=ErrorCategory.RATE_LIMIT,
            severity=ErrorSeverity.WARNING,
            retryable=True,
            details={
                "identifier": identifier,
                "limit": limit,
                "window_ms": window_ms,
                "retry_after_ms": retry_after_ms
            }
        )
        self.identifier = identifier
        self.limit = limit
        self.window_ms = window_ms
        self.retry_after_ms = retry_after_ms

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds to wait, rounded up (at least 1)."""
        return max(1, -(-self.retry_after_ms // 1000))


class EnrichmentFailure(StructuredError):
    """An optional lookup (knowledge, research, financial context) failed.

    Recovered locally: the request continues without the enrichment and a
    warning is recorded.
    """

    code = "ENRICHMENT_FAILED"

    def __init__(
        self,
        message: str,
        source: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        details["source"] = source
        super().__init__(
            message=message,
            category=ErrorCategory.ENRICHMENT,
            severity=ErrorSeverity.INFO,
            retryable=True,
            details=details
        )
        self.source = source


class ToolExecutionError(StructuredError):
    """A tool call named an unknown tool or carried unusable arguments.

    Stays inside the tool loop: the error payload is sent back to the model,
    which may retry with corrected arguments.
    """

    code = "TOOL_ERROR"

    def __init__(
        self,
        message: str,
        tool_name: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        details["tool"] = tool_name
        super().__init__(
            message=message,
            category=ErrorCategory.TOOL_EXECUTION,
            severity=ErrorSeverity.WARNING,
            retryable=True,
            details=details
        )
        self.tool_name = tool_name


class ProviderError(StructuredError):
    """Network, quota or API failure talking to a model provider."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        details: Optional[Dict[str, Any]] = None,
        category: ErrorCategory = ErrorCategory.PROVIDER,
        severity: ErrorSeverity = ErrorSeverity.ERROR
    ):
        super().__init__(
            message=message,
            category=category,
            severity=severity,
            retryable=retryable,
            details=details
        )


class OutputValidationError(StructuredError):
    """The model answered but the answer is unusable (e.g. empty).

    Kept distinct from ProviderError so operators can tell "the model didn't
    answer" from "we couldn't reach the model".
    """

    code = "OUTPUT_INVALID"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.OUTPUT_VALIDATION,
            severity=ErrorSeverity.ERROR,
            retryable=True,
            details=details
        )


class LoopDeadlineExceeded(StructuredError):
    """The caller-level deadline expired while the tool loop was running."""

    code = "DEADLINE_EXCEEDED"

    def __init__(self, deadline_seconds: float, iterations: int):
        super().__init__(
            message=f"Tool loop exceeded deadline of {deadline_seconds}s after {iterations} iteration(s)",
            category=ErrorCategory.TIMEOUT,
            severity=ErrorSeverity.WARNING,
            retryable=True,
            details={"deadline_seconds": deadline_seconds, "iterations": iterations}
        )


class ConfigurationError(StructuredError):
    """Required configuration is missing or invalid (API keys, providers)."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            retryable=False,
            details=details
        )
