"""Input and output guardrails.

Input side, in this order:
  1. schema validation (pydantic QueryRequest)
  2. content-safety scan, only for input that passed step 1
  3. sanitization (trim the message) and advisory warnings

Output side: reject empty answers, flag overconfident claims, append the
standard disclaimer when the question touched investing.
"""
import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Pattern, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .schemas import QueryRequest

BLOCKED_CONTENT_REASON = "Query contains potentially harmful or illegal content"

BLOCKED_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\b(?:hack|exploit|steal|fraud|scam|illegal)", re.IGNORECASE),
    re.compile(r"insider\s+trading|money\s+laundering", re.IGNORECASE),
    re.compile(r"market\s+manipulation|pump\s+(?:and|&|n)\s+dump", re.IGNORECASE),
    re.compile(r"guaranteed\s+returns?|get\s+rich\s+quick", re.IGNORECASE),
    re.compile(r"ponzi|pyramid\s+scheme", re.IGNORECASE),
)

DISCLAIMER_KEYWORDS = (
    "invest",
    "stock",
    "crypto",
    "trading",
    "portfolio",
    "securities",
    "options",
    "futures",
    "forex",
)

MISLEADING_OUTPUT_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"guaranteed\s+to", re.IGNORECASE),
    re.compile(r"can'?t\s+lose|cannot\s+lose|zero\s+risk", re.IGNORECASE),
    re.compile(r"100%\s+safe|completely\s+safe", re.IGNORECASE),
    re.compile(r"get\s+rich", re.IGNORECASE),
)

DISCLAIMER_LANGUAGE = re.compile(r"disclaimer|not\s+(?:be\s+considered\s+)?financial\s+advice", re.IGNORECASE)

FINANCIAL_DISCLAIMER = (
    "**Important Disclaimer**: This information is for educational purposes only "
    "and should not be considered as financial advice. Always consult with a "
    "qualified financial advisor before making significant financial decisions. "
    "Past performance does not guarantee future results."
)

LONG_QUERY_CHARS = 1000
LONG_OUTPUT_CHARS = 10_000

# Warning codes
INVESTMENT_DISCLAIMER_REQUIRED = "investment_disclaimer_required"
LONG_QUERY = "long_query_may_take_time"
MISLEADING_CLAIMS = "output_contains_potentially_misleading_claims"
OUTPUT_VERY_LONG = "output_very_long"

# Custom pydantic error types whose message is already user-facing
_USER_FACING_ERROR_TYPES = {"empty_query", "query_too_long"}


@dataclass(frozen=True)
class ScanResult:
    blocked: bool
    reason: Optional[str] = None
    pattern: Optional[str] = None


class ContentSafetyScanner:
    """Regex scan for requests the coach must refuse."""

    def __init__(self, patterns: Sequence[Pattern[str]] = BLOCKED_PATTERNS):
        self._patterns = tuple(patterns)

    def scan(self, text: str) -> ScanResult:
        for pattern in self._patterns:
            if pattern.search(text):
                return ScanResult(blocked=True, reason=BLOCKED_CONTENT_REASON, pattern=pattern.pattern)
        return ScanResult(blocked=False)


def requires_disclaimer(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in DISCLAIMER_KEYWORDS)


@dataclass(frozen=True)
class InputValidation:
    """Outcome of the input guardrail.

    `code` is INVALID_INPUT for schema failures and BLOCKED_CONTENT for the
    safety scan; it is None when the input is valid.
    """
    valid: bool
    sanitized: Optional[QueryRequest] = None
    error: Optional[str] = None
    code: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def requires_disclaimer(self) -> bool:
        return INVESTMENT_DISCLAIMER_REQUIRED in self.warnings

    def to_error(self) -> ValidationError:
        """The rejection as a client error; only meaningful when not valid."""
        return ValidationError(self.error or "Invalid request", code=self.code)


def first_error_message(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    if err["type"] in _USER_FACING_ERROR_TYPES:
        return err["msg"]
    loc = ".".join(str(p) for p in err["loc"])
    return f"Invalid {loc}: {err['msg']}" if loc else err["msg"]


class InputGuardrail:
    """Validates, screens and sanitizes an inbound payload.

    Example:
        >>> result = InputGuardrail().validate({"message": "  How do I save for a car?  "})
        >>> result.valid, result.sanitized.message
        (True, 'How do I save for a car?')
    """

    def __init__(self, scanner: Optional[ContentSafetyScanner] = None):
        self.scanner = scanner or ContentSafetyScanner()

    def validate(self, payload: Mapping[str, Any] | QueryRequest) -> InputValidation:
        if isinstance(payload, QueryRequest):
            request = payload
        else:
            try:
                request = QueryRequest.model_validate(payload)
            except PydanticValidationError as e:
                return InputValidation(valid=False, error=first_error_message(e), code="INVALID_INPUT")

        scan = self.scanner.scan(request.message)
        if scan.blocked:
            return InputValidation(valid=False, error=scan.reason, code="BLOCKED_CONTENT")

        sanitized = request.model_copy(update={"message": request.message.strip()})

        warnings: List[str] = []
        if requires_disclaimer(request.message):
            warnings.append(INVESTMENT_DISCLAIMER_REQUIRED)
        if len(request.message) > LONG_QUERY_CHARS:
            warnings.append(LONG_QUERY)

        return InputValidation(valid=True, sanitized=sanitized, warnings=warnings)


@dataclass(frozen=True)
class OutputValidation:
    valid: bool
    enhanced: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class OutputGuardrail:
    """Checks a final answer before it is returned.

    Misleading claims are flagged, not censored. Appending the disclaimer is
    the only change ever made to the text.
    """

    def validate(self, text: Optional[str], requires_disclaimer: bool = False) -> OutputValidation:
        if not text or not text.strip():
            return OutputValidation(valid=False, error="Agent produced empty response")

        warnings: List[str] = []
        if any(p.search(text) for p in MISLEADING_OUTPUT_PATTERNS):
            warnings.append(MISLEADING_CLAIMS)

        enhanced = text
        if requires_disclaimer and not DISCLAIMER_LANGUAGE.search(text):
            enhanced = f"{text}\n\n{FINANCIAL_DISCLAIMER}"

        if len(text) > LONG_OUTPUT_CHARS:
            warnings.append(OUTPUT_VERY_LONG)

        return OutputValidation(valid=True, enhanced=enhanced, warnings=warnings)


_input_guardrail = InputGuardrail()
_output_guardrail = OutputGuardrail()


def validate_input(payload: Mapping[str, Any] | QueryRequest) -> InputValidation:
    return _input_guardrail.validate(payload)


def validate_output(text: Optional[str], requires_disclaimer: bool = False) -> OutputValidation:
    return _output_guardrail.validate(text, requires_disclaimer)
