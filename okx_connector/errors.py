"""
OKX Connector - Error Handling and Mapping.

============================================================
PURPOSE
============================================================
Error taxonomy for the connector with:
- One exception hierarchy for every failure below the facade
- OKX error code mapping
- Retry eligibility classification
- Raw response body preserved for diagnosis

============================================================
ERROR HIERARCHY
============================================================
ConnectorError (base)
├── TransportError        network failure, timeout, not connected
├── SigningError          request body could not be read for signing
├── ExchangeError         non-zero code / sCode
│   └── RateLimitCondition
├── ProtocolShapeError    unexpected response cardinality or shape
├── ValidationError       unknown watch kind, bad configuration
│   └── ParseError        malformed numeric field
└── ChannelClosedError    send or close on a closed channel

============================================================
"""

from enum import Enum
from typing import Optional, Dict, Any, Tuple


# ============================================================
# ERROR TAXONOMY
# ============================================================

class ErrorCategory(Enum):
    """Standardized error categories."""

    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    SIGNING = "SIGNING"
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    INVALID_ORDER = "INVALID_ORDER"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_MARGIN = "INSUFFICIENT_MARGIN"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    EXCHANGE_ERROR = "EXCHANGE_ERROR"
    PROTOCOL = "PROTOCOL"
    VALIDATION = "VALIDATION"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


class RetryEligibility(Enum):
    """Whether error is eligible for retry."""

    RETRY = "RETRY"           # Safe to retry
    NO_RETRY = "NO_RETRY"     # Should not retry
    BACKOFF = "BACKOFF"       # Retry after a delay


# ============================================================
# EXCEPTIONS
# ============================================================

class ConnectorError(Exception):
    """Base class for all connector failures."""

    category = ErrorCategory.UNKNOWN
    retry_eligible = RetryEligibility.NO_RETRY

    def __init__(
        self,
        message: str,
        raw_body: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.message = message
        self.raw_body = raw_body
        self.operation = operation
        super().__init__(message)

    def is_retryable(self) -> bool:
        """Check if error is retryable."""
        return self.retry_eligible in (RetryEligibility.RETRY, RetryEligibility.BACKOFF)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": type(self).__name__,
            "category": self.category.value,
            "message": self.message,
            "retry_eligible": self.retry_eligible.value,
            "raw_body": self.raw_body,
            "operation": self.operation,
        }

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.message}"


class TransportError(ConnectorError):
    """Network or timeout failure talking to the exchange."""

    category = ErrorCategory.NETWORK
    retry_eligible = RetryEligibility.RETRY

    def __init__(self, message: str, timed_out: bool = False, operation: str = None):
        super().__init__(message, operation=operation)
        self.timed_out = timed_out
        if timed_out:
            self.category = ErrorCategory.TIMEOUT


class SigningError(ConnectorError):
    """Request could not be signed."""

    category = ErrorCategory.SIGNING


class ExchangeError(ConnectorError):
    """
    Exchange-level failure.

    Raised for a non-zero top-level `code` or a non-zero per-entry
    `sCode`. The raw body is kept verbatim.
    """

    def __init__(
        self,
        code: str,
        message: str,
        raw_body: Optional[str] = None,
        http_status: Optional[int] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message, raw_body=raw_body, operation=operation)
        self.code = code
        self.http_status = http_status
        self.category, self.retry_eligible = classify_okx_code(code, http_status)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["code"] = self.code
        data["http_status"] = self.http_status
        return data

    def __str__(self) -> str:
        return f"[{self.category.value}] OKX_{self.code}: {self.message}"


class RateLimitCondition(ExchangeError):
    """Request rejected as too frequent. Handled internally by backoff."""

    def __init__(self, code: str, message: str, raw_body: str = None, http_status: int = None):
        super().__init__(code, message, raw_body=raw_body, http_status=http_status)
        self.category = ErrorCategory.RATE_LIMIT
        self.retry_eligible = RetryEligibility.BACKOFF


class ProtocolShapeError(ConnectorError):
    """Response violates the expected shape, e.g. not exactly one order."""

    category = ErrorCategory.PROTOCOL


class ValidationError(ConnectorError):
    """Caller input or configuration rejected."""

    category = ErrorCategory.VALIDATION


class ParseError(ValidationError):
    """Malformed numeric field in exchange data."""

    def __init__(self, field_name: str, value: Any):
        super().__init__(f"Cannot parse {field_name}: {value!r}")
        self.field_name = field_name
        self.value = value


class ChannelClosedError(ConnectorError):
    """Send on, or close of, an already closed channel."""

    category = ErrorCategory.INTERNAL


# ============================================================
# OKX ERROR MAPPING
# ============================================================

# OKX error codes to unified category
OKX_ERROR_MAP: Dict[str, Tuple[ErrorCategory, RetryEligibility]] = {
    # Rate limiting
    "50011": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    "50013": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    # Authentication
    "50101": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50102": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50103": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50104": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50105": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50111": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50113": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),

    # Order validation
    "51000": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "51001": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "51006": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "51008": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "51020": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "51400": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),
    "51401": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),
    "51603": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    # Insufficient margin
    "51119": (ErrorCategory.INSUFFICIENT_MARGIN, RetryEligibility.NO_RETRY),
    "51131": (ErrorCategory.INSUFFICIENT_MARGIN, RetryEligibility.NO_RETRY),

    # Exchange internal
    "50000": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.NO_RETRY),
    "50001": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "50004": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
}


def classify_okx_code(
    code: str,
    http_status: int = None,
) -> Tuple[ErrorCategory, RetryEligibility]:
    """
    Map an OKX error code to category and retry eligibility.

    Args:
        code: OKX error code (string)
        http_status: HTTP status code

    Returns:
        (category, retry eligibility)
    """
    if code in OKX_ERROR_MAP:
        return OKX_ERROR_MAP[code]
    if http_status == 429:
        return ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF
    if http_status in (401, 403):
        return ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY
    if http_status and http_status >= 500:
        return ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY
    return ErrorCategory.EXCHANGE_ERROR, RetryEligibility.NO_RETRY


def is_rate_limit_message(text: Optional[str], marker: str) -> bool:
    """Check whether an exchange error text carries the rate-limit marker."""
    return bool(text) and bool(marker) and marker in text
