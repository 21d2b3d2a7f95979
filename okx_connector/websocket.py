"""
OKX Connector - WebSocket.

============================================================
PURPOSE
============================================================
Persistent websocket connections to OKX.

FEATURES:
- Connection lifecycle over aiohttp
- Automatic reconnection with exponential backoff
- Text "ping"/"pong" heartbeat and silence detection
- JSON message parsing and dispatch to a handler
- Connect hooks (login, subscription replay) run on every (re)connect

============================================================
USAGE
============================================================
```python
async def handle(frame: Dict[str, Any]) -> None:
    ...

ws = OKXWebSocket(OKX_WS_PUBLIC_URL, name="public", on_message=handle)
ws.add_connect_hook(registry.replay)
await ws.connect()
await ws.send({"op": "subscribe", "args": [...]})
```

============================================================
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from .errors import TransportError


logger = logging.getLogger(__name__)


MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]
ConnectHook = Callable[[], Awaitable[Any]]


# ============================================================
# CONNECTION STATE
# ============================================================

class ConnectionState(Enum):
    """WebSocket connection states."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    CLOSING = "CLOSING"


@dataclass
class WebSocketConfig:
    """WebSocket configuration."""

    # Connection
    url: str
    proxy: Optional[str] = None
    connect_timeout_ms: int = 10000
    reconnect: bool = True
    max_reconnect_attempts: int = 10
    reconnect_interval_ms: int = 1000
    max_reconnect_interval_ms: int = 30000

    # Heartbeat; OKX drops connections silent for 30s
    ping_interval_ms: int = 20000
    message_timeout_ms: int = 60000


# ============================================================
# WEBSOCKET BASE
# ============================================================

class WebSocketBase(ABC):
    """
    Abstract base class for websocket connections.

    Provides:
    - Connection lifecycle management
    - Automatic reconnection with exponential backoff
    - Heartbeat handling
    """

    def __init__(self, url: str, config: WebSocketConfig = None):
        self._url = url
        self._config = config or WebSocketConfig(url=url)

        self._state = ConnectionState.DISCONNECTED
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

        self._reconnect_count = 0
        self._last_connect_time = 0.0
        self._last_ping_time = 0.0
        self._last_pong_time = 0.0
        self._last_message_time = 0.0

        self._receive_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._ws is not None

    @property
    def url(self) -> str:
        return self._url

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """
        Establish the connection.

        Raises:
            TransportError: If the first connection attempt fails
        """
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return
        await self._open()

    async def _open(self) -> None:
        self._state = ConnectionState.CONNECTING
        try:
            if self._session is None:
                self._session = aiohttp.ClientSession()
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self._url, proxy=self._config.proxy),
                self._config.connect_timeout_ms / 1000,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._state = ConnectionState.DISCONNECTED
            logger.error(f"WebSocket connection failed: {self._url}: {e}")
            raise TransportError(f"WebSocket connection failed: {e}", operation="ws_connect") from e

        self._state = ConnectionState.CONNECTED
        self._reconnect_count = 0
        self._last_connect_time = time.time()
        self._last_message_time = time.time()
        logger.info(f"WebSocket connected: {self._url}")

        self._receive_task = asyncio.create_task(self._receive_loop())
        self._ping_task = asyncio.create_task(self._heartbeat_loop())

        await self._on_connect()

    async def disconnect(self) -> None:
        """Close the connection. Reconnection stops."""
        self._state = ConnectionState.CLOSING

        current = asyncio.current_task()
        for task in (self._receive_task, self._ping_task):
            if task and task is not current:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._receive_task = None
        self._ping_task = None

        if self._ws and not self._ws.closed:
            await self._ws.close()
        self._ws = None

        if self._session:
            await self._session.close()
            self._session = None

        self._state = ConnectionState.DISCONNECTED
        logger.info(f"WebSocket disconnected: {self._url}")

        await self._on_disconnect()

    async def _reconnect(self) -> None:
        """Reconnect with exponential backoff until it works or attempts run out."""
        while self._config.reconnect and self._state != ConnectionState.CLOSING:
            if self._reconnect_count >= self._config.max_reconnect_attempts:
                logger.error(f"Max reconnection attempts reached: {self._url}")
                self._state = ConnectionState.DISCONNECTED
                await self._on_max_reconnect()
                return

            self._state = ConnectionState.RECONNECTING
            self._reconnect_count += 1
            delay_ms = min(
                self._config.reconnect_interval_ms * (2 ** (self._reconnect_count - 1)),
                self._config.max_reconnect_interval_ms,
            )
            logger.info(f"Reconnecting in {delay_ms}ms (attempt {self._reconnect_count})")
            await asyncio.sleep(delay_ms / 1000)

            if self._state == ConnectionState.CLOSING:
                return
            if self._ws is not None and not self._ws.closed:
                await self._ws.close()
            try:
                await self._open()
                return
            except TransportError:
                continue

    # --------------------------------------------------------
    # MESSAGE HANDLING
    # --------------------------------------------------------

    async def _receive_loop(self) -> None:
        """Main receive loop."""
        ws = self._ws
        try:
            async for msg in ws:
                self._last_message_time = time.time()

                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
                    break
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                    logger.warning(f"WebSocket closed by peer: {msg.data}")
                    break

        except asyncio.CancelledError:
            raise

        except Exception as e:
            logger.error(f"Error in receive loop: {e}", exc_info=True)

        if self._state == ConnectionState.CONNECTED and ws is self._ws:
            self._state = ConnectionState.DISCONNECTED
            if self._ping_task:
                self._ping_task.cancel()
            if self._config.reconnect:
                await self._reconnect()

    async def _handle_message(self, data: str) -> None:
        """Handle a text message."""
        try:
            parsed = json.loads(data)
        except ValueError:
            await self._on_raw_message(data)
            return

        try:
            await self._on_message(parsed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error handling message: {e}", exc_info=True)

    # --------------------------------------------------------
    # HEARTBEAT
    # --------------------------------------------------------

    async def _heartbeat_loop(self) -> None:
        """Ping periodically; drop the connection if the peer went silent."""
        while self._state == ConnectionState.CONNECTED:
            await asyncio.sleep(self._config.ping_interval_ms / 1000)
            if not self.is_connected:
                break

            silent_for = time.time() - self._last_message_time
            if silent_for > self._config.message_timeout_ms / 1000:
                logger.warning(f"No message for {silent_for:.0f}s, dropping connection")
                # Receive loop ends and reconnects
                await self._ws.close()
                break

            try:
                await self.send_ping()
            except TransportError as e:
                logger.warning(f"Heartbeat failed: {e}")

    async def send_ping(self) -> None:
        if self._ws and not self._ws.closed:
            self._last_ping_time = time.time()
            await self._ws.ping()

    # --------------------------------------------------------
    # SENDING
    # --------------------------------------------------------

    async def send(self, message: Dict[str, Any]) -> None:
        """
        Send a JSON message.

        Raises:
            TransportError: Not connected or the write failed
        """
        if not self.is_connected:
            raise TransportError(f"WebSocket not connected: {self._url}", operation="ws_send")
        try:
            await self._ws.send_json(message)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(f"WebSocket send failed: {e}", operation="ws_send") from e

    async def send_raw(self, data: str) -> None:
        """Send a raw string message."""
        if not self.is_connected:
            raise TransportError(f"WebSocket not connected: {self._url}", operation="ws_send")
        try:
            await self._ws.send_str(data)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(f"WebSocket send failed: {e}", operation="ws_send") from e

    # --------------------------------------------------------
    # CALLBACKS (OVERRIDE)
    # --------------------------------------------------------

    @abstractmethod
    async def _on_message(self, data: Dict[str, Any]) -> None:
        """Handle a parsed message."""

    async def _on_raw_message(self, data: str) -> None:
        logger.debug(f"Raw message: {data[:100]}")

    async def _on_connect(self) -> None:
        pass

    async def _on_disconnect(self) -> None:
        pass

    async def _on_max_reconnect(self) -> None:
        pass


# ============================================================
# OKX WEBSOCKET
# ============================================================

class OKXWebSocket(WebSocketBase):
    """
    OKX V5 websocket.

    Public channels used: candle1m, books5, trades.
    Private channels used: orders (after login).
    """

    def __init__(
        self,
        url: str,
        name: str = "public",
        config: WebSocketConfig = None,
        on_message: MessageHandler = None,
    ):
        super().__init__(url, config or WebSocketConfig(url=url))
        self._name = name
        self._handler = on_message
        self._connect_hooks: List[ConnectHook] = []

    @property
    def name(self) -> str:
        return self._name

    def set_handler(self, handler: MessageHandler) -> None:
        self._handler = handler

    def add_connect_hook(self, hook: ConnectHook) -> None:
        """Run `hook` after every successful (re)connect, in registration order."""
        self._connect_hooks.append(hook)

    async def send_ping(self) -> None:
        self._last_ping_time = time.time()
        await self.send_raw("ping")

    async def _on_raw_message(self, data: str) -> None:
        if data == "pong":
            self._last_pong_time = time.time()
            return
        await super()._on_raw_message(data)

    async def _on_message(self, data: Dict[str, Any]) -> None:
        if self._handler is not None:
            await self._handler(data)

    async def _on_connect(self) -> None:
        for hook in self._connect_hooks:
            try:
                await hook()
            except TransportError as e:
                logger.error(f"{self._name} connect hook failed: {e}")

    async def _on_max_reconnect(self) -> None:
        logger.error(f"{self._name} websocket gave up reconnecting")
