"""
OKX Connector - Wire Contract.

============================================================
PURPOSE
============================================================
Decoding of OKX V5 REST responses.

- Every response is `{code, msg, data: [...]}`; `code != "0"` is an
  exchange failure whatever the HTTP status
- Order responses carry one entry per suborder with `{sCode, sMsg}`
- Candle rows are string tuples
  `[ts_ms, open, high, low, close, volume, turnover, ...]`
- Numeric strings are parsed strictly; "" reads as zero

============================================================
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Union

from .errors import (
    ExchangeError,
    ParseError,
    ProtocolShapeError,
    RateLimitCondition,
    is_rate_limit_message,
)
from .types import Candle


logger = logging.getLogger(__name__)


SUCCESS_CODE = "0"
CANDLE_FIELDS = 7

ZERO = Decimal("0")


# ============================================================
# ENVELOPE
# ============================================================

def decode_envelope(
    body: Union[str, bytes],
    http_status: int = None,
    operation: str = None,
    rate_limit_marker: str = None,
) -> Dict[str, Any]:
    """
    Decode a REST response and check its top-level code.

    Args:
        body: Raw response body
        http_status: HTTP status, kept on raised errors
        operation: Operation name for diagnostics
        rate_limit_marker: If given and found in a failed body, raise
            RateLimitCondition instead of ExchangeError

    Returns:
        The decoded envelope

    Raises:
        ProtocolShapeError: Body is not a JSON object
        RateLimitCondition: Failure recognized as rate limiting
        ExchangeError: Non-zero code
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")

    try:
        envelope = json.loads(body)
    except ValueError as e:
        raise ProtocolShapeError(
            f"Response is not JSON: {e}", raw_body=body, operation=operation
        ) from e

    if not isinstance(envelope, dict):
        raise ProtocolShapeError(
            "Response is not a JSON object", raw_body=body, operation=operation
        )

    code = str(envelope.get("code", SUCCESS_CODE))
    if code != SUCCESS_CODE:
        msg = envelope.get("msg", "")
        if rate_limit_marker and is_rate_limit_message(body, rate_limit_marker):
            raise RateLimitCondition(code, msg, raw_body=body, http_status=http_status)
        raise ExchangeError(
            code, msg, raw_body=body, http_status=http_status, operation=operation
        )

    data = envelope.get("data")
    if data is None:
        envelope["data"] = []
    elif not isinstance(data, list):
        raise ProtocolShapeError(
            "Response data is not a list", raw_body=body, operation=operation
        )
    return envelope


def check_sub_codes(
    entries: Sequence[Dict[str, Any]],
    raw_body: str = None,
    operation: str = None,
) -> None:
    """
    Fail on the first entry whose `sCode` is not "0".

    Raises:
        ExchangeError: With the entry's sCode and sMsg
    """
    for entry in entries:
        if not isinstance(entry, dict):
            raise ProtocolShapeError(
                f"Malformed response entry: {entry!r}", raw_body=raw_body, operation=operation
            )
        s_code = str(entry.get("sCode", SUCCESS_CODE))
        if s_code != SUCCESS_CODE:
            raise ExchangeError(
                s_code,
                entry.get("sMsg", ""),
                raw_body=raw_body,
                operation=operation,
            )


def decode_order_envelope(
    body: Union[str, bytes],
    http_status: int = None,
    operation: str = None,
) -> Dict[str, Any]:
    """
    Decode an order submit/cancel response.

    Per-entry failures are reported with the entry's own sCode and sMsg,
    which are more specific than the top-level code.

    Raises:
        ProtocolShapeError: Body is not a JSON object
        ExchangeError: Non-zero code or sCode
    """
    try:
        envelope = decode_envelope(body, http_status, operation)
    except ExchangeError as e:
        check_sub_codes(_entries_of(e.raw_body), e.raw_body, operation)
        raise
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    check_sub_codes(envelope["data"], body, operation)
    return envelope


def _entries_of(raw_body: str) -> List[Dict[str, Any]]:
    try:
        data = json.loads(raw_body).get("data")
    except (ValueError, AttributeError):
        return []
    if not isinstance(data, list):
        return []
    return [entry for entry in data if isinstance(entry, dict)]


def single_entry(
    entries: Sequence[Dict[str, Any]],
    raw_body: str = None,
    operation: str = None,
) -> Dict[str, Any]:
    """Return the only entry, or raise ProtocolShapeError."""
    if len(entries) != 1:
        raise ProtocolShapeError(
            f"Expected exactly one order in response, got {len(entries)}",
            raw_body=raw_body,
            operation=operation,
        )
    return entries[0]


# ============================================================
# NUMERIC FIELDS
# ============================================================

def parse_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Parse a numeric string from the exchange.

    Empty strings and None read as zero.

    Raises:
        ParseError: Malformed or non-finite number
    """
    if value is None or value == "":
        return ZERO
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ParseError(field_name, value)
    if not result.is_finite():
        raise ParseError(field_name, value)
    return result


def parse_optional_decimal(value: Any, field_name: str = "value") -> Optional[Decimal]:
    """Like parse_decimal, but "" and None read as None."""
    if value is None or value == "":
        return None
    return parse_decimal(value, field_name)


def parse_int(value: Any, field_name: str = "value") -> int:
    """Parse an integer string (e.g. a millisecond timestamp)."""
    try:
        return int(str(value))
    except (TypeError, ValueError):
        raise ParseError(field_name, value)


def format_decimal(value: Decimal) -> str:
    """Plain decimal notation, never exponent form."""
    return format(Decimal(value), "f")


def truncate_amount(amount: Decimal) -> int:
    """Order size in whole contracts, truncated toward zero."""
    size = int(Decimal(amount))
    if Decimal(amount) != size:
        logger.warning(f"Order amount {amount} truncated to {size}")
    return size


# ============================================================
# CANDLES
# ============================================================

def parse_candle_row(row: Any) -> Candle:
    """
    Convert one candle row into a Candle.

    Rows may carry trailing fields (e.g. a confirm flag); only the first
    seven are used. The bar start is converted to seconds.

    Raises:
        ProtocolShapeError: Row is not a list of at least 7 fields
        ParseError: Malformed number
    """
    if not isinstance(row, (list, tuple)) or len(row) < CANDLE_FIELDS:
        raise ProtocolShapeError(f"Malformed candle row: {row!r}")

    ts_ms = parse_int(row[0], "ts")
    return Candle(
        start=ts_ms // 1000,
        open=parse_decimal(row[1], "open"),
        high=parse_decimal(row[2], "high"),
        low=parse_decimal(row[3], "low"),
        close=parse_decimal(row[4], "close"),
        volume=parse_decimal(row[5], "volume"),
        turnover=parse_decimal(row[6], "turnover"),
    )


def parse_candles(envelope: Dict[str, Any]) -> List[Candle]:
    """Candles of a decoded history page, in response order."""
    return [parse_candle_row(row) for row in envelope["data"]]
