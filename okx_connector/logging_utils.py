"""
OKX Connector - Secure Logging Utilities.

============================================================
PURPOSE
============================================================
Structured logging for REST calls and order operations with:
- Credential masking (access key, signature, passphrase)
- Request bodies logged as a short hash, never verbatim
- One JSON document per entry

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log the API key, secret, passphrase or signature
2. Mask sensitive headers and parameters
3. Truncate response previews and error messages

============================================================
"""

import hashlib
import json
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


# ============================================================
# SENSITIVE DATA
# ============================================================

SENSITIVE_HEADERS = {
    "ok-access-key",
    "ok-access-sign",
    "ok-access-passphrase",
}

SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "secret",
    "api_secret",
    "passphrase",
    "sign",
    "signature",
}

PREVIEW_LIMIT = 200


def mask_value(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the first few chars.

    Args:
        value: Value to mask
        show_chars: Number of chars to keep

    Returns:
        Masked value
    """
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Copy of `headers` with OKX credential headers masked."""
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Any) -> Any:
    """
    Mask sensitive parameters, recursing into nested dicts and lists.

    The websocket login arguments are the main customer here.
    """
    if isinstance(params, list):
        return [mask_params(item) for item in params]
    if not isinstance(params, dict):
        return params

    masked = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value else value
        elif isinstance(value, (dict, list)):
            masked[key] = mask_params(value)
        else:
            masked[key] = value
    return masked


def mask_url(url: str) -> str:
    """Mask sensitive query parameters in a URL."""
    if not url:
        return url
    for param in SENSITIVE_PARAMS:
        pattern = re.compile(f"({param}=)([^&]+)", re.IGNORECASE)
        url = pattern.sub(lambda m: f"{m.group(1)}***", url)
    return url


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# LOG ENTRIES
# ============================================================

@dataclass
class _Entry:
    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class RequestLogEntry(_Entry):
    """Outgoing REST request."""

    timestamp: str
    exchange_id: str
    operation: str
    method: str
    endpoint: str
    request_id: str
    headers: Optional[Dict[str, str]] = None
    params: Optional[Dict[str, Any]] = None
    body_hash: Optional[str] = None


@dataclass
class ResponseLogEntry(_Entry):
    """REST response or transport failure."""

    timestamp: str
    exchange_id: str
    operation: str
    request_id: str
    status_code: Optional[int]
    latency_ms: float
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    response_preview: Optional[str] = None


@dataclass
class OrderLogEntry(_Entry):
    """Order submission or cancellation."""

    timestamp: str
    exchange_id: str
    operation: str
    symbol: str
    order_id: Optional[str] = None
    order_class: Optional[str] = None
    side: Optional[str] = None
    position_side: Optional[str] = None
    quantity: Optional[str] = None
    price: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    latency_ms: Optional[float] = None


# ============================================================
# CONNECTOR LOGGER
# ============================================================

class ConnectorLogger:
    """
    Secure logger for connector operations.

    Entries go to the `okx_connector.<exchange_id>` logger.
    """

    def __init__(self, exchange_id: str = "okx", logger_name: str = None):
        self._exchange_id = exchange_id
        self._logger = logging.getLogger(logger_name or f"okx_connector.{exchange_id}")
        self._request_counter = 0

    @property
    def name(self) -> str:
        return self._logger.name

    def _generate_request_id(self) -> str:
        self._request_counter += 1
        return f"{self._exchange_id}-{self._request_counter}"

    @staticmethod
    def hash_body(body: Optional[bytes]) -> Optional[str]:
        """Short SHA-256 of a request body."""
        if not body:
            return None
        if isinstance(body, str):
            body = body.encode()
        return hashlib.sha256(body).hexdigest()[:16]

    def log_request(
        self,
        operation: str,
        method: str,
        endpoint: str,
        headers: Dict[str, str] = None,
        params: Dict[str, Any] = None,
        body: bytes = None,
    ) -> str:
        """
        Log an outgoing request.

        Returns:
            Request ID for correlating the response
        """
        request_id = self._generate_request_id()
        entry = RequestLogEntry(
            timestamp=_now(),
            exchange_id=self._exchange_id,
            operation=operation,
            method=method,
            endpoint=mask_url(endpoint),
            request_id=request_id,
            headers=mask_headers(headers) if headers else None,
            params=mask_params(params) if params else None,
            body_hash=self.hash_body(body),
        )
        self._logger.debug(f"REQUEST: {entry.to_json()}")
        return request_id

    def log_response(
        self,
        operation: str,
        request_id: str,
        status_code: Optional[int],
        latency_ms: float,
        success: bool,
        error_code: str = None,
        error_message: str = None,
        response_body: str = None,
    ) -> None:
        """Log a response. Failures go out at WARNING."""
        entry = ResponseLogEntry(
            timestamp=_now(),
            exchange_id=self._exchange_id,
            operation=operation,
            request_id=request_id,
            status_code=status_code,
            latency_ms=round(latency_ms, 3),
            success=success,
            error_code=error_code,
            error_message=error_message[:PREVIEW_LIMIT] if error_message else None,
            response_preview=response_body[:PREVIEW_LIMIT] if response_body else None,
        )
        if success:
            self._logger.debug(f"RESPONSE: {entry.to_json()}")
        else:
            self._logger.warning(f"RESPONSE_ERROR: {entry.to_json()}")

    def log_order(
        self,
        operation: str,
        symbol: str,
        order_id: str = None,
        order_class: str = None,
        side: str = None,
        position_side: str = None,
        quantity: str = None,
        price: str = None,
        error_code: str = None,
        error_message: str = None,
        latency_ms: float = None,
    ) -> None:
        """Log an order operation at INFO, or WARNING when it failed."""
        entry = OrderLogEntry(
            timestamp=_now(),
            exchange_id=self._exchange_id,
            operation=operation,
            symbol=symbol,
            order_id=order_id,
            order_class=order_class,
            side=side,
            position_side=position_side,
            quantity=quantity,
            price=price,
            error_code=error_code,
            error_message=error_message[:PREVIEW_LIMIT] if error_message else None,
            latency_ms=round(latency_ms, 3) if latency_ms is not None else None,
        )
        if error_code:
            self._logger.warning(f"ORDER_ERROR: {entry.to_json()}")
        else:
            self._logger.info(f"ORDER: {entry.to_json()}")

    def info(self, message: str) -> None:
        self._logger.info(f"[{self._exchange_id}] {message}")

    def warning(self, message: str) -> None:
        self._logger.warning(f"[{self._exchange_id}] {message}")

    def error(self, message: str, exc_info: bool = False) -> None:
        self._logger.error(f"[{self._exchange_id}] {message}", exc_info=exc_info)

    def debug(self, message: str) -> None:
        self._logger.debug(f"[{self._exchange_id}] {message}")
