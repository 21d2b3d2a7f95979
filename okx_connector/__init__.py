"""
OKX Connector Package.

============================================================
PURPOSE
============================================================
Bridges a trading framework to the OKX V5 REST and websocket APIs.

COMPONENTS:
- RequestSigner: HMAC-SHA256 request authentication
- OrderLifecycleManager: Submit, cache and cancel orders
- HistoricalCandlePipeline: Paginated historical candles
- SubscriptionRegistry: Live subscriptions with replay
- OKXConnector: Facade over all of the above

UTILITIES:
- ConnectorConfig: Configuration, loadable from .env
- ConnectorMetrics: Metrics collection
- ConnectorLogger: Secure logging

ERROR HANDLING:
- ConnectorError and subclasses
- ErrorCategory: Standardized error categories

============================================================
"""

# Types
from .types import (
    Direction,
    Intent,
    OrderSide,
    PositionSide,
    PositionMode,
    OrderClass,
    TradeAction,
    Order,
    SymbolInfo,
    Candle,
    DepthLevel,
    DepthSnapshot,
    TradePrint,
    OrderUpdate,
    ErrorInfo,
    WatchKind,
    SubscriptionRequest,
    EventKind,
    ExchangeEvent,
)

# Configuration
from .config import (
    ConnectorConfig,
    HistoryConfig,
    TimeoutConfig,
)

# Errors
from .errors import (
    ConnectorError,
    TransportError,
    SigningError,
    ExchangeError,
    RateLimitCondition,
    ProtocolShapeError,
    ValidationError,
    ParseError,
    ChannelClosedError,
    ErrorCategory,
    RetryEligibility,
    classify_okx_code,
)

# Components
from .channel import Channel
from .signer import RequestSigner, SignedRequest, sign
from .transport import RestTransport, RestResponse
from .websocket import OKXWebSocket, WebSocketBase, WebSocketConfig, ConnectionState
from .decoder import FrameDecoder
from .orders import OrderCache, OrderLifecycleManager, OrderRequest, route_action
from .history import HistoricalCandlePipeline, HistoryStream
from .subscriptions import SubscriptionRegistry
from .connector import OKXConnector

# Metrics
from .metrics import ConnectorMetrics, MetricType

# Logging
from .logging_utils import (
    ConnectorLogger,
    mask_headers,
    mask_params,
    mask_value,
)


__all__ = [
    # Types
    "Direction",
    "Intent",
    "OrderSide",
    "PositionSide",
    "PositionMode",
    "OrderClass",
    "TradeAction",
    "Order",
    "SymbolInfo",
    "Candle",
    "DepthLevel",
    "DepthSnapshot",
    "TradePrint",
    "OrderUpdate",
    "ErrorInfo",
    "WatchKind",
    "SubscriptionRequest",
    "EventKind",
    "ExchangeEvent",
    # Configuration
    "ConnectorConfig",
    "HistoryConfig",
    "TimeoutConfig",
    # Errors
    "ConnectorError",
    "TransportError",
    "SigningError",
    "ExchangeError",
    "RateLimitCondition",
    "ProtocolShapeError",
    "ValidationError",
    "ParseError",
    "ChannelClosedError",
    "ErrorCategory",
    "RetryEligibility",
    "classify_okx_code",
    # Components
    "Channel",
    "RequestSigner",
    "SignedRequest",
    "sign",
    "RestTransport",
    "RestResponse",
    "OKXWebSocket",
    "WebSocketBase",
    "WebSocketConfig",
    "ConnectionState",
    "FrameDecoder",
    "OrderCache",
    "OrderLifecycleManager",
    "OrderRequest",
    "route_action",
    "HistoricalCandlePipeline",
    "HistoryStream",
    "SubscriptionRegistry",
    "OKXConnector",
    # Metrics
    "ConnectorMetrics",
    "MetricType",
    # Logging
    "ConnectorLogger",
    "mask_headers",
    "mask_params",
    "mask_value",
]
