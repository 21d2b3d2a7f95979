"""
OKX Connector - Types.

============================================================
PURPOSE
============================================================
All type definitions shared by the connector components.

- Trade requests coming in from the trading framework
- Orders cached after the exchange accepts them
- Market bars, book snapshots and trade prints
- The single event envelope carried on the outbound channel

============================================================
"""

from datetime import datetime, timezone
from typing import Optional, List, Union
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal


# ============================================================
# TRADE REQUEST TYPES
# ============================================================

class Direction(Enum):
    """
    Direction of the trade itself.

    LONG is the buying side, SHORT the selling side. Closing a short
    position is therefore a LONG trade.
    """

    LONG = "long"
    SHORT = "short"


class Intent(Enum):
    """What the trade is meant to do."""

    OPEN = "open"
    CLOSE = "close"
    STOP = "stop"


class OrderSide(Enum):
    """Exchange order side."""

    BUY = "buy"
    SELL = "sell"


class PositionSide(Enum):
    """Position-side tag, only sent in dual (hedge) mode."""

    LONG = "long"
    SHORT = "short"


class PositionMode(Enum):
    """Account position mode."""

    SIMPLE = "simple"
    """One-way mode, no position-side tag on the wire."""

    DUAL = "dual"
    """Hedge mode, position-side tag required."""


class OrderClass(Enum):
    """The two structurally different order kinds."""

    IMMEDIATE = "immediate"
    """Plain limit/market order."""

    CONDITIONAL = "conditional"
    """Algo (trigger) order, activates when the trigger price is hit."""


@dataclass(frozen=True)
class TradeAction:
    """Immutable request to place an order."""

    symbol: str
    """Instrument id, e.g. BTC-USDT-SWAP."""

    direction: Direction
    """Trade direction."""

    intent: Intent
    """Open, close or protective stop."""

    price: Decimal
    """Limit price, or trigger price for stops."""

    amount: Decimal
    """Order quantity in contracts."""

    @property
    def is_stop(self) -> bool:
        return self.intent == Intent.STOP


# ============================================================
# ORDERS
# ============================================================

ORDER_STATUS_OPEN = "open"
ORDER_STATUS_CANCELED = "canceled"


@dataclass
class Order:
    """
    Order accepted by the exchange.

    Identity is the exchange-assigned id, unique within its class only.
    """

    order_id: str
    symbol: str
    side: OrderSide
    price: Decimal
    amount: Decimal
    order_class: OrderClass = OrderClass.IMMEDIATE
    status: str = ORDER_STATUS_OPEN
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    remark: str = ""

    @property
    def is_conditional(self) -> bool:
        return self.order_class == OrderClass.CONDITIONAL


@dataclass
class SymbolInfo:
    """Tradable instrument description."""

    exchange: str
    symbol: str
    resolutions: str
    price_scale: int


# ============================================================
# MARKET DATA
# ============================================================

@dataclass(frozen=True)
class Candle:
    """OHLCV bar. `start` is the inclusive bar start, in seconds."""

    start: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    turnover: Decimal


@dataclass(frozen=True)
class DepthLevel:
    """One price level of the book."""

    price: Decimal
    size: Decimal


@dataclass(frozen=True)
class DepthSnapshot:
    """Top-of-book snapshot (5 levels per side)."""

    symbol: str
    asks: List[DepthLevel]
    bids: List[DepthLevel]
    timestamp: datetime


@dataclass(frozen=True)
class TradePrint:
    """Live trade print."""

    symbol: str
    trade_id: str
    price: Decimal
    size: Decimal
    side: OrderSide
    timestamp: datetime


@dataclass(frozen=True)
class OrderUpdate:
    """Order state pushed on the private socket."""

    symbol: str
    order_id: str
    side: OrderSide
    state: str
    price: Optional[Decimal]
    size: Decimal
    filled_size: Decimal
    average_price: Optional[Decimal]
    position_side: Optional[str]
    timestamp: datetime


@dataclass(frozen=True)
class ErrorInfo:
    """Error reported by the exchange on a socket."""

    code: str
    message: str


# ============================================================
# SUBSCRIPTIONS
# ============================================================

class WatchKind(Enum):
    """Closed set of live-data subscription kinds."""

    CANDLE = "candle"
    """1-minute live bars."""

    DEPTH = "depth"
    """Top-5 book snapshot."""

    TRADE = "trade"
    """Live prints."""


@dataclass(frozen=True)
class SubscriptionRequest:
    """
    One desired live subscription.

    `kind` is kept as given by the caller and validated by the
    subscription registry, so an unknown kind can be rejected there.
    """

    kind: Union[WatchKind, str]
    inst_id: str
    inst_type: str = ""


# ============================================================
# EVENT ENVELOPE
# ============================================================

class EventKind(Enum):
    """Payload kinds carried on the outbound channel."""

    CANDLE = "candle"
    DEPTH = "depth"
    TRADE = "trade"
    ORDER = "order"
    ERROR = "error"


EventPayload = Union[Candle, DepthSnapshot, TradePrint, OrderUpdate, ErrorInfo]

_PAYLOAD_KINDS = {
    Candle: EventKind.CANDLE,
    DepthSnapshot: EventKind.DEPTH,
    TradePrint: EventKind.TRADE,
    OrderUpdate: EventKind.ORDER,
    ErrorInfo: EventKind.ERROR,
}


@dataclass(frozen=True)
class ExchangeEvent:
    """
    Envelope for everything written to the outbound channel.

    The payload is one of a closed set of types; `kind` always agrees
    with the payload type.
    """

    kind: EventKind
    source: str
    timestamp: datetime
    payload: EventPayload

    def __post_init__(self):
        expected = _PAYLOAD_KINDS.get(type(self.payload))
        if expected is None:
            raise TypeError(f"Unsupported event payload: {type(self.payload).__name__}")
        if expected != self.kind:
            raise TypeError(
                f"Event kind {self.kind.value} does not match payload "
                f"{type(self.payload).__name__}"
            )

    @classmethod
    def of(cls, source: str, payload: EventPayload, timestamp: datetime = None) -> "ExchangeEvent":
        """Build an event, deriving `kind` from the payload type."""
        kind = _PAYLOAD_KINDS.get(type(payload))
        if kind is None:
            raise TypeError(f"Unsupported event payload: {type(payload).__name__}")
        return cls(
            kind=kind,
            source=source,
            timestamp=timestamp or datetime.now(timezone.utc),
            payload=payload,
        )
