"""
Shared fakes for the OKX connector tests.

FakeTransport serves scripted REST responses keyed by (method, path)
and records every call. FakeSocket records outbound websocket messages
and lets a test push inbound frames into the registered handler.
"""

import json
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import pytest

from okx_connector.config import ConnectorConfig
from okx_connector.transport import RestResponse
from okx_connector.types import PositionMode


# =============================================================================
# HELPERS
# =============================================================================

def okx_response(data: Any = None, code: str = "0", msg: str = "", status: int = 200) -> RestResponse:
    """Build a RestResponse with an OKX envelope."""
    body = {"code": code, "msg": msg, "data": data if data is not None else []}
    return RestResponse(status=status, body=json.dumps(body))


def candle_row(ts_ms: int, close: str = "100", confirm: Optional[str] = None) -> List[str]:
    """One candle row as OKX sends it."""
    row = [str(ts_ms), "99", "101", "98", close, "10", "1000"]
    if confirm is not None:
        row.append(confirm)
    return row


@dataclass
class Call:
    method: str
    path: str
    params: Optional[Dict[str, Any]] = None
    body: Any = None
    auth: bool = False
    timeout: Optional[float] = None
    operation: Optional[str] = None


# =============================================================================
# FAKE TRANSPORT
# =============================================================================

class FakeTransport:
    """Scripted stand-in for RestTransport."""

    def __init__(self):
        self.calls: List[Call] = []
        self.connected = False
        self._queued: Dict[tuple, List[Any]] = defaultdict(list)
        self._handlers: Dict[tuple, Callable[[Call], RestResponse]] = {}

    def add(self, method: str, path: str, response: Any) -> None:
        """Queue a response (or an exception to raise) for one call."""
        self._queued[(method, path)].append(response)

    def route(self, method: str, path: str, handler: Callable[[Call], RestResponse]) -> None:
        """Answer every call to (method, path) with handler(call)."""
        self._handlers[(method, path)] = handler

    def calls_to(self, path: str) -> List[Call]:
        return [call for call in self.calls if call.path == path]

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def request(
        self,
        method,
        path,
        params=None,
        body=None,
        auth=False,
        timeout=None,
        operation=None,
    ) -> RestResponse:
        call = Call(method, path, params, body, auth, timeout, operation)
        self.calls.append(call)

        key = (method, path)
        if self._queued.get(key):
            response = self._queued[key].pop(0)
        elif key in self._handlers:
            response = self._handlers[key](call)
        else:
            raise AssertionError(f"Unexpected request: {method} {path}")

        if isinstance(response, BaseException):
            raise response
        return response


# =============================================================================
# FAKE SOCKET
# =============================================================================

@dataclass
class FakeSocket:
    """Stand-in for OKXWebSocket."""

    is_connected: bool = True
    sent: List[Dict[str, Any]] = field(default_factory=list)
    fail_with: Optional[BaseException] = None
    connect_error: Optional[BaseException] = None
    handler: Optional[Callable] = None
    hooks: List[Callable] = field(default_factory=list)

    def set_handler(self, handler) -> None:
        self.handler = handler

    def add_connect_hook(self, hook) -> None:
        self.hooks.append(hook)

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.is_connected = True
        for hook in self.hooks:
            await hook()

    async def disconnect(self) -> None:
        self.is_connected = False

    async def send(self, message: Dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)

    async def push(self, frame: Dict[str, Any]) -> None:
        """Deliver an inbound frame to the handler."""
        await self.handler(frame)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def config():
    """Dual-mode configuration with credentials."""
    return ConnectorConfig(
        api_key="test-key",
        api_secret="test-secret",
        passphrase="test-pass",
        position_mode=PositionMode.DUAL,
    )


@pytest.fixture
def simple_config():
    """Simple (one-way) mode configuration."""
    return ConnectorConfig(
        api_key="test-key",
        api_secret="test-secret",
        passphrase="test-pass",
        position_mode=PositionMode.SIMPLE,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def public_socket():
    return FakeSocket()


@pytest.fixture
def private_socket():
    return FakeSocket()


@pytest.fixture
def price():
    return Decimal("50000.5")
