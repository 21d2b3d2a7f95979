"""
OKX Connector - Request Signer.

============================================================
PURPOSE
============================================================
Authentication headers for the OKX V5 REST and websocket APIs.

OKX signature: BASE64(HMAC-SHA256(secret, timestamp + METHOD + path + payload))

- payload is "?" + query for read-only requests (nothing if the query
  is empty), or the exact body bytes for mutating requests
- timestamp is UTC ISO-8601 with millisecond precision and "Z" suffix,
  taken at sign time

============================================================
"""

import base64
import hashlib
import hmac
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Dict, Optional

from .errors import SigningError


logger = logging.getLogger(__name__)


HEADER_KEY = "OK-ACCESS-KEY"
HEADER_SIGN = "OK-ACCESS-SIGN"
HEADER_TIMESTAMP = "OK-ACCESS-TIMESTAMP"
HEADER_PASSPHRASE = "OK-ACCESS-PASSPHRASE"
CONTENT_TYPE = "application/json"

WS_LOGIN_METHOD = "GET"
WS_LOGIN_PATH = "/users/self/verify"


def iso_timestamp(now: datetime = None) -> str:
    """UTC timestamp in the format OKX expects, e.g. 2020-12-08T09:08:57.715Z."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def sign(secret: str, timestamp: str, method: str, path: str, payload: bytes = b"") -> str:
    """
    Compute an OKX signature.

    Args:
        secret: API secret
        timestamp: Timestamp string sent alongside the signature
        method: HTTP method (upper-cased before signing)
        path: Request path without query
        payload: "?query" for reads, raw body bytes for writes

    Returns:
        Base64 encoded signature
    """
    if isinstance(payload, str):
        payload = payload.encode()
    message = f"{timestamp}{method.upper()}{path}".encode() + payload
    digest = hmac.new(secret.encode(), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


@dataclass
class SignedRequest:
    """A request ready for transmission."""

    method: str
    path: str
    query: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[BinaryIO] = None
    """Unconsumed body stream, positioned at the start."""

    @property
    def target(self) -> str:
        """Path plus query, as sent on the wire."""
        return f"{self.path}?{self.query}" if self.query else self.path


class RequestSigner:
    """
    Signs REST requests and websocket logins.

    The clock is injectable so signatures can be reproduced in tests.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        passphrase: str,
        clock: Callable[[], str] = None,
    ):
        self._api_key = api_key
        self._api_secret = api_secret
        self._passphrase = passphrase
        self._clock = clock or iso_timestamp

    def sign_request(
        self,
        method: str,
        path: str,
        query: str = "",
        body: Optional[BinaryIO] = None,
    ) -> SignedRequest:
        """
        Sign a request.

        When a body stream is given it is read to the end and replaced
        by an identical fresh stream on the returned request.

        Raises:
            SigningError: If the body cannot be read
        """
        method = method.upper()
        restored = None

        if body is not None:
            try:
                data = body.read()
            except (OSError, ValueError) as e:
                raise SigningError(f"Cannot read request body: {e}", operation=path) from e
            if isinstance(data, str):
                data = data.encode()
            payload = data
            restored = io.BytesIO(data)
        elif query:
            payload = f"?{query}".encode()
        else:
            payload = b""

        timestamp = self._clock()
        signature = sign(self._api_secret, timestamp, method, path, payload)

        headers = {
            "Content-Type": CONTENT_TYPE,
            HEADER_KEY: self._api_key,
            HEADER_SIGN: signature,
            HEADER_TIMESTAMP: timestamp,
            HEADER_PASSPHRASE: self._passphrase,
        }

        return SignedRequest(
            method=method,
            path=path,
            query=query,
            headers=headers,
            body=restored,
        )

    def login_args(self) -> Dict[str, str]:
        """Arguments for the private websocket `login` operation."""
        # Websocket login uses epoch seconds instead of ISO time
        timestamp = str(int(datetime.now(timezone.utc).timestamp()))
        return {
            "apiKey": self._api_key,
            "passphrase": self._passphrase,
            "timestamp": timestamp,
            "sign": sign(self._api_secret, timestamp, WS_LOGIN_METHOD, WS_LOGIN_PATH),
        }
