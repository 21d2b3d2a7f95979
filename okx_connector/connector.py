"""
OKX Connector - Facade.

============================================================
PURPOSE
============================================================
One object in front of the connector components:

- submit / cancel / cancel-all orders
- historical candles
- live subscriptions and the outbound event channel
- instrument listing

============================================================
LIFECYCLE
============================================================
```python
async with OKXConnector(ConnectorConfig.from_env()) as okx:
    await okx.watch(SubscriptionRequest(WatchKind.CANDLE, "BTC-USDT-SWAP"))
    async for event in okx.events:
        ...
```

`start()` opens the REST session, the public socket and (with
credentials) the private socket. `stop()` closes them, then closes the
event channel and sets the shutdown signal. Watching or fetching after
`stop()` is a caller error.

============================================================
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from .channel import Channel
from .config import INSTRUMENT_TYPES, ConnectorConfig
from .decoder import FrameDecoder
from .errors import ChannelClosedError, ConnectorError, ParseError, ValidationError
from .history import HistoricalCandlePipeline, HistoryStream, TimePoint
from .logging_utils import ConnectorLogger
from .metrics import ConnectorMetrics
from .orders import OrderCache, OrderLifecycleManager
from .signer import RequestSigner
from .subscriptions import SubscriptionRegistry
from .transport import RestTransport
from .types import (
    ErrorInfo,
    ExchangeEvent,
    Order,
    SubscriptionRequest,
    SymbolInfo,
    TradeAction,
)
from .websocket import OKXWebSocket, WebSocketConfig
from .wire import decode_envelope, parse_decimal


logger = logging.getLogger(__name__)


EXCHANGE_ID = "okx"
PATH_INSTRUMENTS = "/api/v5/public/instruments"
RESOLUTIONS = "1m,5m,15m,30m,1h,4h,1d,1w"
ORDERS_CHANNEL = "orders"


class OKXConnector:
    """
    OKX exchange connector.

    All state (order caches, subscription log, channels) is owned by
    the instance and lives between construction and `stop()`.
    """

    def __init__(
        self,
        config: ConnectorConfig = None,
        transport=None,
        public_socket: OKXWebSocket = None,
        private_socket: OKXWebSocket = None,
    ):
        """
        Initialize the connector.

        Args:
            config: Configuration (from environment by default)
            transport: REST transport (RestTransport by default)
            public_socket: Public websocket (OKXWebSocket by default)
            private_socket: Private websocket (OKXWebSocket by default)
        """
        self._config = config or ConnectorConfig.from_env()
        self._config.validate()

        self._metrics = ConnectorMetrics(EXCHANGE_ID)
        self._logger = ConnectorLogger(EXCHANGE_ID)
        self._signer = RequestSigner(
            self._config.api_key, self._config.api_secret, self._config.passphrase
        )
        self._transport = transport or RestTransport(
            self._config, self._signer, self._metrics, self._logger
        )

        self._events = Channel(self._config.event_buffer_size, name="events")
        self._shutdown = asyncio.Event()

        self._orders = OrderLifecycleManager(
            self._transport, self._config, OrderCache(), self._metrics, self._logger
        )
        self._history = HistoricalCandlePipeline(self._transport, self._config, self._metrics)

        self._public = public_socket or OKXWebSocket(
            self._config.ws_public_url,
            name="public",
            config=WebSocketConfig(url=self._config.ws_public_url, proxy=self._config.proxy),
        )
        self._private = private_socket or OKXWebSocket(
            self._config.ws_private_url,
            name="private",
            config=WebSocketConfig(url=self._config.ws_private_url, proxy=self._config.proxy),
        )
        self._public_decoder = FrameDecoder(source=f"{EXCHANGE_ID}.public")
        self._private_decoder = FrameDecoder(source=f"{EXCHANGE_ID}.private")

        self._subscriptions = SubscriptionRegistry(self._public, self._config)

        self._public.set_handler(self._handle_public)
        self._public.add_connect_hook(self._subscriptions.replay)
        self._private.set_handler(self._handle_private)
        self._private.add_connect_hook(self._login)

        self._started = False
        self._stopped = False

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def exchange_id(self) -> str:
        return EXCHANGE_ID

    @property
    def config(self) -> ConnectorConfig:
        return self._config

    @property
    def events(self) -> Channel:
        """Outbound channel of ExchangeEvents."""
        return self._events

    @property
    def shutdown(self) -> asyncio.Event:
        """Set once `stop()` has completed."""
        return self._shutdown

    @property
    def metrics(self) -> ConnectorMetrics:
        return self._metrics

    @property
    def order_cache(self) -> OrderCache:
        return self._orders.cache

    @property
    def subscriptions(self) -> List[SubscriptionRequest]:
        return self._subscriptions.log

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopped

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """
        Open the REST session and the sockets.

        Raises:
            TransportError: A connection could not be established
        """
        self._check_running()
        if self._started:
            return

        await self._transport.connect()
        try:
            await self._public.connect()
            if self._config.has_credentials:
                await self._private.connect()
            else:
                self._logger.info("No credentials, private socket not started")
        except ConnectorError as e:
            self._logger.error(f"Start failed, closing connections: {e}")
            await self._public.disconnect()
            await self._private.disconnect()
            await self._transport.close()
            raise

        self._started = True
        self._logger.info(
            f"Started: instType={self._config.inst_type} tdMode={self._config.td_mode} "
            f"positionMode={self._config.position_mode.value}"
        )

    async def stop(self) -> None:
        """Close sockets and session, then the event channel."""
        if self._stopped:
            self._logger.warning("stop() called twice")
            return
        self._stopped = True

        await self._public.disconnect()
        await self._private.disconnect()
        await self._transport.close()

        self._events.close()
        self._shutdown.set()
        self._logger.info("Stopped")

    async def __aenter__(self) -> "OKXConnector":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def _check_running(self) -> None:
        if self._stopped:
            raise ChannelClosedError("Connector is stopped")

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def submit_order(self, action: TradeAction) -> Order:
        """Submit an order. See OrderLifecycleManager.submit_order."""
        self._check_running()
        return await self._orders.submit_order(action)

    async def cancel_order(self, order: Union[Order, str]) -> Optional[Order]:
        """Cancel a cached order. See OrderLifecycleManager.cancel_order."""
        self._check_running()
        return await self._orders.cancel_order(order)

    async def cancel_all_orders(self) -> List[str]:
        """Cancel all pending orders, immediate first, then conditional."""
        self._check_running()
        return await self._orders.cancel_all_orders()

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    def fetch_history(
        self,
        symbol: str,
        resolution: str,
        start: TimePoint,
        end: TimePoint,
    ) -> HistoryStream:
        """Start a historical candle fetch in the background."""
        self._check_running()
        return self._history.fetch_history(symbol, resolution, start, end)

    async def watch(self, request: SubscriptionRequest) -> SubscriptionRequest:
        """Subscribe to live data; events arrive on `events`."""
        self._check_running()
        return await self._subscriptions.watch(request)

    async def get_symbols(self) -> List[SymbolInfo]:
        """
        List instruments of the configured instrument type.

        Raises:
            ExchangeError: Non-zero code
            ParseError: Malformed tick size
        """
        self._check_running()
        response = await self._transport.request(
            "GET",
            PATH_INSTRUMENTS,
            params={"instType": self._config.inst_type},
            timeout=self._config.timeouts.listing_seconds,
            operation="instruments",
        )
        envelope = decode_envelope(response.body, response.status, operation="instruments")

        symbols = []
        for inst in envelope["data"]:
            tick_size = parse_decimal(inst.get("tickSz"), "tickSz")
            if tick_size <= 0:
                raise ParseError("tickSz", inst.get("tickSz"))
            symbols.append(SymbolInfo(
                exchange=EXCHANGE_ID,
                symbol=inst.get("instId", ""),
                resolutions=RESOLUTIONS,
                price_scale=int(1 / tick_size),
            ))
        return symbols

    def set_inst_type(self, inst_type: str) -> None:
        """Switch the instrument type used by listings and new watches."""
        inst_type = inst_type.upper()
        if inst_type not in INSTRUMENT_TYPES:
            raise ValidationError(f"Unknown instrument type: {inst_type}")
        self._config.inst_type = inst_type
        self._logger.info(f"Instrument type set to {inst_type}")

    # --------------------------------------------------------
    # SOCKET HANDLERS
    # --------------------------------------------------------

    async def _login(self) -> None:
        await self._private.send({"op": "login", "args": [self._signer.login_args()]})

    async def _handle_private(self, frame: Dict[str, Any]) -> None:
        if frame.get("event") == "login":
            if str(frame.get("code", "0")) == "0":
                self._logger.info("Private socket logged in")
                await self._private.send({
                    "op": "subscribe",
                    "args": [{"channel": ORDERS_CHANNEL, "instType": self._config.inst_type}],
                })
            else:
                await self._publish_login_failure(self._private_decoder, frame)
            return
        await self._dispatch(self._private_decoder, frame)

    async def _handle_public(self, frame: Dict[str, Any]) -> None:
        await self._dispatch(self._public_decoder, frame)

    async def _dispatch(self, decoder: FrameDecoder, frame: Dict[str, Any]) -> None:
        try:
            events = decoder.decode(frame)
        except ConnectorError as e:
            self._logger.warning(f"Undecodable frame: {e}")
            events = [ExchangeEvent.of(
                decoder.source, ErrorInfo(code=e.category.value, message=e.message)
            )]
        for event in events:
            await self._publish(event)

    async def _publish_login_failure(self, decoder: FrameDecoder, frame: Dict[str, Any]) -> None:
        self._logger.error(f"Private socket login failed: {frame.get('msg', '')}")
        await self._publish(ExchangeEvent.of(
            decoder.source,
            ErrorInfo(code=str(frame.get("code", "")), message=str(frame.get("msg", ""))),
        ))

    async def _publish(self, event: ExchangeEvent) -> None:
        # Blocks while the channel is full
        await self._events.put(event)
        self._metrics.record_event_published()
