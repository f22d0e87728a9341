"""Tests for input and output guardrails.

Validates that:
1. Schema failures are reported with the first violation's message
2. The content scan only runs on schema-valid input
3. Blocked intents are rejected with a stable reason
4. Advisory warnings and sanitization behave as documented
5. Output checks reject empty text, flag claims and append the disclaimer
"""
import pytest

from networth_coach.errors import ErrorCategory, ValidationError
from networth_coach.guardrails import (
    BLOCKED_CONTENT_REASON,
    FINANCIAL_DISCLAIMER,
    INVESTMENT_DISCLAIMER_REQUIRED,
    LONG_QUERY,
    MISLEADING_CLAIMS,
    OUTPUT_VERY_LONG,
    ContentSafetyScanner,
    InputGuardrail,
    OutputGuardrail,
    validate_input,
    validate_output,
)
from networth_coach.schemas import QueryRequest


class SpyScanner(ContentSafetyScanner):
    """Records every scanned text."""

    def __init__(self):
        super().__init__()
        self.scanned = []

    def scan(self, text):
        self.scanned.append(text)
        return super().scan(text)


class TestInputSchema:

    def test_valid_payload(self):
        result = validate_input({"message": "How do I build an emergency fund?", "userId": "u1"})
        assert result.valid is True
        assert result.error is None
        assert result.sanitized.user_id == "u1"
        assert result.sanitized.region == "US"

    def test_empty_message(self):
        result = validate_input({"message": "   "})
        assert result.valid is False
        assert result.error == "Query cannot be empty"
        assert result.code == "INVALID_INPUT"

    def test_message_too_long(self):
        result = validate_input({"message": "a" * 2001})
        assert result.valid is False
        assert result.error == "Query is too long (max 2000 characters)"

    def test_message_at_limit_is_accepted(self):
        assert validate_input({"message": "a" * 2000}).valid is True

    def test_missing_message(self):
        result = validate_input({"userId": "u1"})
        assert result.valid is False
        assert "message" in result.error

    def test_bad_region(self):
        result = validate_input({"message": "hi", "region": "MARS"})
        assert result.valid is False
        assert result.error.startswith("Invalid region")

    def test_non_object_payload(self):
        result = validate_input(["not", "an", "object"])
        assert result.valid is False
        assert result.code == "INVALID_INPUT"

    def test_deep_research_alias(self):
        result = validate_input({"message": "Index funds?", "deepResearch": True})
        assert result.sanitized.deep_research_requested is True

    def test_rejection_maps_to_validation_error(self):
        error = validate_input({"message": ""}).to_error()
        assert isinstance(error, ValidationError)
        assert error.code == "INVALID_INPUT"
        assert error.category == ErrorCategory.VALIDATION
        assert error.is_client_error is True


class TestContentSafety:

    def test_scan_not_invoked_after_schema_failure(self):
        spy = SpyScanner()
        result = InputGuardrail(scanner=spy).validate({"message": ""})
        assert result.valid is False
        assert spy.scanned == []

    def test_scan_invoked_for_valid_schema(self):
        spy = SpyScanner()
        InputGuardrail(scanner=spy).validate({"message": "Save for a car"})
        assert spy.scanned == ["Save for a car"]

    @pytest.mark.parametrize("message", [
        "How can I hack my bank's app?",
        "Best way to commit insider trading",
        "Explain money laundering through crypto",
        "Join my pump and dump group",
        "Where can I find guaranteed returns of 20%?",
        "Teach me a get rich quick trick",
        "Is this a Ponzi scheme?",
        "How do pyramid schemes recruit?",
        "Can I steal a credit card number?",
    ])
    def test_blocked_intents(self, message):
        result = validate_input({"message": message})
        assert result.valid is False
        assert result.error == BLOCKED_CONTENT_REASON
        assert result.code == "BLOCKED_CONTENT"
        assert result.to_error().code == "BLOCKED_CONTENT"

    def test_benign_words_not_blocked(self):
        # "shackles" contains "hack" but not at a word start
        assert validate_input({"message": "Break the shackles of debt"}).valid is True


class TestSanitizationAndWarnings:

    def test_message_is_trimmed(self):
        result = validate_input({"message": "  Help me save  ", "goalType": "car"})
        assert result.sanitized.message == "Help me save"
        assert result.sanitized.goal_type == "car"

    def test_sanitized_request_is_immutable(self):
        result = validate_input({"message": "Help me save"})
        with pytest.raises(Exception):
            result.sanitized.message = "changed"

    def test_investment_vocabulary_warns(self):
        result = validate_input({"message": "Should I invest in index funds?"})
        assert result.warnings == [INVESTMENT_DISCLAIMER_REQUIRED]
        assert result.requires_disclaimer is True

    def test_long_query_warns(self):
        result = validate_input({"message": "budget " * 150})
        assert LONG_QUERY in result.warnings

    def test_prebuilt_request_accepted(self):
        request = QueryRequest(message=" hi ")
        result = InputGuardrail().validate(request)
        assert result.sanitized.message == "hi"


class TestOutputGuardrail:

    @pytest.mark.parametrize("text", [None, "", "   \n"])
    def test_empty_output_invalid(self, text):
        result = validate_output(text)
        assert result.valid is False
        assert result.error

    def test_plain_output_unchanged(self):
        result = validate_output("Save $200 a month.")
        assert result.valid is True
        assert result.enhanced == "Save $200 a month."
        assert result.warnings == []

    def test_disclaimer_appended_when_required(self):
        result = validate_output("Index funds are a common choice.", requires_disclaimer=True)
        assert result.enhanced.startswith("Index funds are a common choice.")
        assert result.enhanced.endswith(FINANCIAL_DISCLAIMER)

    def test_existing_disclaimer_not_duplicated(self):
        text = "Index funds are common. This is not financial advice."
        result = validate_output(text, requires_disclaimer=True)
        assert result.enhanced == text

    @pytest.mark.parametrize("text", [
        "This fund is guaranteed to double.",
        "You can't lose with this plan.",
        "Bonds are 100% safe.",
        "Zero risk, high reward.",
    ])
    def test_misleading_claims_flagged_not_censored(self, text):
        result = OutputGuardrail().validate(text)
        assert result.valid is True
        assert result.enhanced == text
        assert MISLEADING_CLAIMS in result.warnings

    def test_very_long_output(self):
        result = validate_output("x" * 10001)
        assert OUTPUT_VERY_LONG in result.warnings
