"""Tests for the structured error taxonomy.

This test suite validates that:
1. All errors inherit from StructuredError
2. to_dict() has a predictable schema
3. Codes, categories and severities are correct
4. Retryability matches how each error is recovered
"""
from datetime import datetime

import pytest

from networth_coach.errors import (
    ConfigurationError,
    EnrichmentFailure,
    ErrorCategory,
    ErrorSeverity,
    LoopDeadlineExceeded,
    OutputValidationError,
    ProviderError,
    RateLimitError,
    StructuredError,
    ToolExecutionError,
    ValidationError,
)
from networth_coach.llm import LLMError, LLMTimeoutError
from networth_coach.tools.calculator import CalculationError


class TestStructuredErrorBase:

    def test_structured_error_creation(self):
        error = StructuredError(
            "Test error message",
            category=ErrorCategory.PROVIDER,
            severity=ErrorSeverity.ERROR,
            retryable=True,
            details={"key": "value"}
        )

        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.category == ErrorCategory.PROVIDER
        assert error.retryable is True
        assert error.details == {"key": "value"}
        assert error.code == "INTERNAL_ERROR"
        assert isinstance(error.timestamp, datetime)

    def test_to_dict_schema(self):
        data = ProviderError("upstream down", details={"provider": "openai"}).to_dict()
        assert set(data) == {
            "error_type", "code", "message", "category", "severity", "retryable", "details", "timestamp",
        }
        assert data["error_type"] == "ProviderError"
        assert data["category"] == "provider"
        assert data["details"] == {"provider": "openai"}
        datetime.fromisoformat(data["timestamp"])

    def test_code_override(self):
        error = ValidationError("blocked", code="BLOCKED_CONTENT")
        assert error.code == "BLOCKED_CONTENT"
        assert ValidationError("bad").code == "INVALID_INPUT"


@pytest.mark.parametrize("error, code, category, retryable", [
    (ValidationError("bad"), "INVALID_INPUT", ErrorCategory.VALIDATION, False),
    (RateLimitError("u1", 20, 60_000, 1_500), "RATE_LIMITED", ErrorCategory.RATE_LIMIT, True),
    (EnrichmentFailure("down", source="knowledge"), "ENRICHMENT_FAILED", ErrorCategory.ENRICHMENT, True),
    (ToolExecutionError("Unknown tool", tool_name="x"), "TOOL_ERROR", ErrorCategory.TOOL_EXECUTION, True),
    (ProviderError("down"), "PROVIDER_ERROR", ErrorCategory.PROVIDER, True),
    (LLMError("down"), "PROVIDER_ERROR", ErrorCategory.PROVIDER, True),
    (LLMTimeoutError("slow", timeout_seconds=60), "PROVIDER_TIMEOUT", ErrorCategory.TIMEOUT, True),
    (OutputValidationError("empty"), "OUTPUT_INVALID", ErrorCategory.OUTPUT_VALIDATION, True),
    (LoopDeadlineExceeded(90.0, 3), "DEADLINE_EXCEEDED", ErrorCategory.TIMEOUT, True),
    (ConfigurationError("no key"), "CONFIGURATION_ERROR", ErrorCategory.CONFIGURATION, False),
])
def test_taxonomy(error, code, category, retryable):
    assert isinstance(error, StructuredError)
    assert error.code == code
    assert error.category == category
    assert error.retryable is retryable


def test_client_errors():
    assert ValidationError("bad").is_client_error
    assert RateLimitError("u1", 1, 1_000, 10).is_client_error
    assert not ProviderError("down").is_client_error
    assert not OutputValidationError("empty").is_client_error


def test_details_carry_context():
    assert EnrichmentFailure("down", source="deep_research").details == {"source": "deep_research"}
    assert ToolExecutionError("bad", tool_name="debtPayoff", details={"a": 1}).details == {
        "a": 1, "tool": "debtPayoff",
    }
    assert LoopDeadlineExceeded(5.0, 2).details == {"deadline_seconds": 5.0, "iterations": 2}
    assert LLMTimeoutError("slow", timeout_seconds=30).severity == ErrorSeverity.WARNING


def test_rate_limit_message():
    error = RateLimitError("u1", limit=20, window_ms=60_000, retry_after_ms=12_300)
    assert "20 requests per 60s" in error.message
    assert error.retry_after_seconds == 13


def test_calculation_error_is_structured():
    assert isinstance(CalculationError("bad input"), StructuredError)
