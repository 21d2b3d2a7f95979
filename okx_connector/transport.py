"""
OKX Connector - REST Transport.

============================================================
PURPOSE
============================================================
Signed and public HTTP calls to the OKX V5 REST API over aiohttp.

- One `aiohttp.ClientSession` per transport
- Per-call timeout; a timed-out call is cancelled
- Optional HTTP proxy and demo-trading header
- No retries: retry policy belongs to the caller

The transport returns the raw status and body. Envelope decoding is
done by the caller (see `wire.decode_envelope`).

============================================================
"""

import asyncio
import io
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import urlencode

import aiohttp

from .config import ConnectorConfig
from .errors import ErrorCategory, TransportError
from .logging_utils import ConnectorLogger
from .metrics import ConnectorMetrics
from .signer import CONTENT_TYPE, RequestSigner


logger = logging.getLogger(__name__)


SIMULATED_HEADER = "x-simulated-trading"

Params = Dict[str, Any]
Body = Union[Dict[str, Any], list, None]


@dataclass
class RestResponse:
    """Raw REST response."""

    status: int
    body: str


def encode_query(params: Optional[Params]) -> str:
    """Query string with None values dropped, in insertion order."""
    if not params:
        return ""
    return urlencode({k: v for k, v in params.items() if v is not None})


def encode_body(body: Body) -> bytes:
    """Compact JSON body bytes."""
    if body is None:
        return b""
    return json.dumps(body, separators=(",", ":")).encode()


class RestTransport:
    """
    aiohttp transport for OKX REST calls.
    """

    def __init__(
        self,
        config: ConnectorConfig,
        signer: RequestSigner = None,
        metrics: ConnectorMetrics = None,
        log: ConnectorLogger = None,
    ):
        self._config = config
        self._base_url = config.rest_url.rstrip("/")
        self._signer = signer or RequestSigner(
            config.api_key, config.api_secret, config.passphrase
        )
        self._metrics = metrics or ConnectorMetrics("okx")
        self._logger = log or ConnectorLogger("okx")
        self._session: Optional[aiohttp.ClientSession] = None

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._logger.info(f"REST session opened: {self._base_url}")

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
            self._logger.info("REST session closed")

    # --------------------------------------------------------
    # REQUESTS
    # --------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        params: Params = None,
        body: Body = None,
        auth: bool = False,
        timeout: float = None,
        operation: str = None,
    ) -> RestResponse:
        """
        Perform one REST call.

        Args:
            method: HTTP method
            path: API path, e.g. /api/v5/trade/order
            params: Query parameters
            body: JSON body for mutating requests
            auth: Sign the request
            timeout: Per-call timeout in seconds
            operation: Name used in logs

        Returns:
            RestResponse with status and raw body

        Raises:
            TransportError: Not connected, network failure or timeout
            SigningError: Body could not be signed
        """
        operation = operation or path.rsplit("/", 1)[-1]
        if not self.is_connected:
            raise TransportError("Not connected", operation=operation)

        method = method.upper()
        query = encode_query(params)
        payload = encode_body(body)

        if auth:
            signed = self._signer.sign_request(
                method, path, query, io.BytesIO(payload) if body is not None else None
            )
            headers = dict(signed.headers)
            target = signed.target
            data = signed.body.read() if signed.body is not None else None
        else:
            headers = {"Content-Type": CONTENT_TYPE}
            target = f"{path}?{query}" if query else path
            data = payload if body is not None else None

        if self._config.simulated:
            headers[SIMULATED_HEADER] = "1"

        request_id = self._logger.log_request(
            operation=operation,
            method=method,
            endpoint=path,
            headers=headers,
            params=params,
            body=data,
        )

        start_time = time.time()
        try:
            coro = self._send(method, f"{self._base_url}{target}", headers, data)
            if timeout:
                status, text = await asyncio.wait_for(coro, timeout)
            else:
                status, text = await coro
        except asyncio.TimeoutError:
            self._record_failure(path, operation, request_id, start_time, "TIMEOUT",
                                 ErrorCategory.TIMEOUT)
            raise TransportError(
                f"{method} {path} timed out after {timeout}s",
                timed_out=True,
                operation=operation,
            )
        except aiohttp.ClientError as e:
            self._record_failure(path, operation, request_id, start_time, "NETWORK_ERROR",
                                 ErrorCategory.NETWORK)
            raise TransportError(f"{method} {path} failed: {e}", operation=operation) from e

        latency_ms = (time.time() - start_time) * 1000
        self._metrics.record_request(
            endpoint=path,
            latency_ms=latency_ms,
            success=200 <= status < 300,
            status_code=status,
            error_code=None if 200 <= status < 300 else f"HTTP_{status}",
        )
        self._logger.log_response(
            operation=operation,
            request_id=request_id,
            status_code=status,
            latency_ms=latency_ms,
            success=200 <= status < 300,
            response_body=text,
        )
        return RestResponse(status=status, body=text)

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Optional[bytes],
    ):
        async with self._session.request(
            method,
            url,
            headers=headers,
            data=data,
            proxy=self._config.proxy,
        ) as resp:
            return resp.status, await resp.text()

    def _record_failure(
        self,
        path: str,
        operation: str,
        request_id: str,
        start_time: float,
        error_code: str,
        category: ErrorCategory,
    ) -> None:
        latency_ms = (time.time() - start_time) * 1000
        self._metrics.record_request(
            endpoint=path,
            latency_ms=latency_ms,
            success=False,
            error_code=error_code,
            category=category,
        )
        self._logger.log_response(
            operation=operation,
            request_id=request_id,
            status_code=None,
            latency_ms=latency_ms,
            success=False,
            error_code=error_code,
        )
