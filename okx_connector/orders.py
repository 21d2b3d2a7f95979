"""
OKX Connector - Order Lifecycle Manager.

============================================================
PURPOSE
============================================================
Classifies, submits, caches and cancels orders.

RESPONSIBILITIES:
- Route a TradeAction to a limit order or a conditional (stop) order
- Submit and cache the accepted order under its class
- Cancel through the path matching the cached class
- Cancel everything: immediate orders first, then conditional orders

SAFETY CONSTRAINTS:
- An order lives in exactly one cache
- A cache entry is evicted only after the exchange confirms the cancel
- A failed immediate cancel-all aborts before any conditional cancel

============================================================
ORDER LIFECYCLE
============================================================
SUBMITTED -> CACHED (open) -> CANCELED (evicted)

============================================================
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .config import ConnectorConfig
from .errors import ConnectorError, ProtocolShapeError, ValidationError
from .logging_utils import ConnectorLogger
from .metrics import ConnectorMetrics
from .types import (
    ORDER_STATUS_CANCELED,
    ORDER_STATUS_OPEN,
    Direction,
    Intent,
    Order,
    OrderClass,
    OrderSide,
    PositionMode,
    PositionSide,
    TradeAction,
)
from .wire import (
    decode_envelope,
    decode_order_envelope,
    format_decimal,
    single_entry,
    truncate_amount,
)


logger = logging.getLogger(__name__)


# ============================================================
# ENDPOINTS
# ============================================================

PATH_ORDER = "/api/v5/trade/order"
PATH_ORDER_ALGO = "/api/v5/trade/order-algo"
PATH_CANCEL_ORDER = "/api/v5/trade/cancel-order"
PATH_CANCEL_ALGOS = "/api/v5/trade/cancel-algos"
PATH_ORDERS_PENDING = "/api/v5/trade/orders-pending"
PATH_ALGO_PENDING = "/api/v5/trade/orders-algo-pending"
PATH_CANCEL_BATCH = "/api/v5/trade/cancel-batch-orders"

ORD_TYPE_LIMIT = "limit"
ORD_TYPE_CONDITIONAL = "conditional"
MARKET_PRICE = "-1"
STOP_REMARK = "stop"

# Exchange limits per batch request
BATCH_CANCEL_LIMIT = 20
ALGO_CANCEL_LIMIT = 10


# ============================================================
# ORDER CACHE
# ============================================================

class OrderCache:
    """
    Two disjoint order caches keyed by (class, order id).

    Exchange ids are unique within a class only, so the same id may
    be cached once per class. Both maps sit behind one re-entrant
    lock and every lookup reads them in a single critical section,
    so a cancel always sees one consistent view.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._orders: Dict[OrderClass, Dict[str, Order]] = {
            order_class: {} for order_class in OrderClass
        }

    def store(self, order: Order) -> None:
        """Cache an accepted order under its class."""
        with self._lock:
            self._orders[order.order_class][order.order_id] = order

    def lookup(self, order_id: str, order_class: OrderClass = None) -> Optional[Order]:
        """
        The cached order for an id.

        Without `order_class` the id must be cached under at most one
        class.

        Raises:
            ValidationError: The id is cached under both classes
        """
        with self._lock:
            if order_class is not None:
                return self._orders[order_class].get(order_id)
            matches = [
                cache[order_id] for cache in self._orders.values() if order_id in cache
            ]
        if len(matches) > 1:
            raise ValidationError(
                f"Order id {order_id} is cached as both immediate and conditional"
            )
        return matches[0] if matches else None

    def contains(self, order_id: str, order_class: OrderClass = None) -> bool:
        with self._lock:
            if order_class is None:
                return any(order_id in cache for cache in self._orders.values())
            return order_id in self._orders[order_class]

    def evict(self, order_id: str, order_class: OrderClass, expected: Order = None) -> bool:
        """
        Remove an order from one class.

        With `expected`, the entry is removed only if it is still that
        same object, so a stale cancel cannot drop a newer order.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            cache = self._orders[order_class]
            current = cache.get(order_id)
            if current is None:
                return False
            if expected is not None and current is not expected:
                return False
            del cache[order_id]
            return True

    def orders(self, order_class: OrderClass = None) -> List[Order]:
        """Snapshot of cached orders."""
        with self._lock:
            if order_class is not None:
                return list(self._orders[order_class].values())
            return [o for cache in self._orders.values() for o in cache.values()]

    def clear(self) -> None:
        with self._lock:
            for cache in self._orders.values():
                cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(cache) for cache in self._orders.values())

    def __contains__(self, order_id: str) -> bool:
        return self.contains(order_id)


# ============================================================
# ROUTING
# ============================================================

@dataclass
class OrderRequest:
    """Wire request built from a TradeAction."""

    order_class: OrderClass
    path: str
    side: OrderSide
    position_side: Optional[PositionSide]
    body: Dict[str, Any] = field(default_factory=dict)


def route_action(action: TradeAction, config: ConnectorConfig) -> OrderRequest:
    """
    Build the exchange request for a TradeAction.

    Immediate orders:
        side = buy for long trades, sell for short trades;
        posSide = long for (long, open) and (short, close), else short.

    Stop orders:
        a reduce-only conditional market order protecting the
        opposite-facing position: long => buy/short, short => sell/long.

    posSide is only sent in dual position mode.
    """
    is_long = action.direction == Direction.LONG
    size = str(truncate_amount(action.amount))

    if action.is_stop:
        order_class = OrderClass.CONDITIONAL
        path = PATH_ORDER_ALGO
        if is_long:
            side, position_side = OrderSide.BUY, PositionSide.SHORT
        else:
            side, position_side = OrderSide.SELL, PositionSide.LONG
        body = {
            "instId": action.symbol,
            "tdMode": config.td_mode,
            "side": side.value,
            "posSide": position_side.value,
            "ordType": ORD_TYPE_CONDITIONAL,
            "sz": size,
            "orderPx": MARKET_PRICE,
            "slOrdPx": MARKET_PRICE,
            "slTriggerPx": format_decimal(action.price),
            "reduceOnly": True,
        }
    else:
        order_class = OrderClass.IMMEDIATE
        path = PATH_ORDER
        is_open = action.intent == Intent.OPEN
        side = OrderSide.BUY if is_long else OrderSide.SELL
        if (is_long and is_open) or (not is_long and not is_open):
            position_side = PositionSide.LONG
        else:
            position_side = PositionSide.SHORT
        body = {
            "instId": action.symbol,
            "tdMode": config.td_mode,
            "side": side.value,
            "posSide": position_side.value,
            "ordType": ORD_TYPE_LIMIT,
            "px": format_decimal(action.price),
            "sz": size,
            "tag": config.order_tag,
        }

    if config.position_mode == PositionMode.SIMPLE:
        del body["posSide"]
        position_side = None

    return OrderRequest(
        order_class=order_class,
        path=path,
        side=side,
        position_side=position_side,
        body=body,
    )


# ============================================================
# ORDER LIFECYCLE MANAGER
# ============================================================

class OrderLifecycleManager:
    """
    Submits, caches and cancels orders.

    Each network call is bounded by the configured per-call timeout.
    Errors are raised to the caller; nothing is retried here.
    """

    def __init__(
        self,
        transport,
        config: ConnectorConfig,
        cache: OrderCache = None,
        metrics: ConnectorMetrics = None,
        log: ConnectorLogger = None,
    ):
        """
        Initialize the manager.

        Args:
            transport: Object with an async `request()` like RestTransport
            config: Connector configuration
            cache: Order cache (a new one by default)
            metrics: Metrics collector
            log: Structured logger
        """
        self._transport = transport
        self._config = config
        self._cache = cache or OrderCache()
        self._metrics = metrics or ConnectorMetrics("okx")
        self._logger = log or ConnectorLogger("okx")

    @property
    def cache(self) -> OrderCache:
        return self._cache

    # --------------------------------------------------------
    # SUBMIT
    # --------------------------------------------------------

    async def submit_order(self, action: TradeAction) -> Order:
        """
        Submit an order for a TradeAction and cache it.

        Returns:
            The accepted order

        Raises:
            TransportError: Network failure or timeout
            ExchangeError: Non-zero code or sCode
            ProtocolShapeError: Response does not report exactly one order
        """
        request = route_action(action, self._config)
        operation = f"submit_{request.order_class.value}"
        id_field = "algoId" if request.order_class == OrderClass.CONDITIONAL else "ordId"
        start_time = time.time()

        try:
            response = await self._transport.request(
                "POST",
                request.path,
                body=request.body,
                auth=True,
                timeout=self._config.timeouts.order_seconds,
                operation=operation,
            )
            envelope = decode_order_envelope(response.body, response.status, operation)
            entry = single_entry(envelope["data"], response.body, operation)
            order_id = entry.get(id_field)
            if not order_id:
                raise ProtocolShapeError(
                    f"Response has no {id_field}", raw_body=response.body, operation=operation
                )
        except ConnectorError as e:
            error_code = getattr(e, "code", None) or e.category.value
            self._metrics.record_order_rejected(f"OKX_{error_code}")
            self._logger.log_order(
                operation=operation,
                symbol=action.symbol,
                order_class=request.order_class.value,
                side=request.side.value,
                quantity=request.body["sz"],
                price=format_decimal(action.price),
                error_code=str(error_code),
                error_message=e.message,
                latency_ms=(time.time() - start_time) * 1000,
            )
            raise

        order = Order(
            order_id=str(order_id),
            symbol=action.symbol,
            side=request.side,
            price=action.price,
            amount=action.amount,
            order_class=request.order_class,
            status=ORDER_STATUS_OPEN,
            remark=STOP_REMARK if request.order_class == OrderClass.CONDITIONAL else "",
        )
        self._cache.store(order)

        self._metrics.record_order_submitted()
        self._logger.log_order(
            operation=operation,
            symbol=order.symbol,
            order_id=order.order_id,
            order_class=order.order_class.value,
            side=order.side.value,
            position_side=request.position_side.value if request.position_side else None,
            quantity=request.body["sz"],
            price=format_decimal(order.price),
            latency_ms=(time.time() - start_time) * 1000,
        )
        return order

    # --------------------------------------------------------
    # CANCEL
    # --------------------------------------------------------

    async def cancel_order(self, order: Union[Order, str]) -> Optional[Order]:
        """
        Cancel a cached order.

        An Order is looked up under its own class. A bare id is looked
        up in both classes and must match only one. The cancel path
        follows the cached class, and the entry is evicted only once
        the exchange confirms.

        Args:
            order: Order or order id

        Returns:
            The canceled order, or None if it is not cached

        Raises:
            ValidationError: A bare id is cached under both classes
            TransportError: Network failure or timeout (entry kept)
            ExchangeError: Cancel rejected (entry kept)
        """
        if isinstance(order, Order):
            order_id = order.order_id
            cached = self._cache.lookup(order_id, order.order_class)
        else:
            order_id = str(order)
            cached = self._cache.lookup(order_id)
        if cached is None:
            self._logger.warning(f"Cancel of unknown order {order_id} skipped")
            return None

        if cached.order_class == OrderClass.CONDITIONAL:
            path = PATH_CANCEL_ALGOS
            body = [{"algoId": cached.order_id, "instId": cached.symbol}]
        else:
            path = PATH_CANCEL_ORDER
            body = {"instId": cached.symbol, "ordId": cached.order_id}

        operation = f"cancel_{cached.order_class.value}"
        start_time = time.time()
        try:
            response = await self._transport.request(
                "POST",
                path,
                body=body,
                auth=True,
                timeout=self._config.timeouts.order_seconds,
                operation=operation,
            )
            decode_order_envelope(response.body, response.status, operation)
        except ConnectorError as e:
            self._logger.log_order(
                operation=operation,
                symbol=cached.symbol,
                order_id=cached.order_id,
                order_class=cached.order_class.value,
                error_code=str(getattr(e, "code", None) or e.category.value),
                error_message=e.message,
                latency_ms=(time.time() - start_time) * 1000,
            )
            raise

        if not self._cache.evict(cached.order_id, cached.order_class, expected=cached):
            logger.debug(f"Order {cached.order_id} already replaced in cache")
        cached.status = ORDER_STATUS_CANCELED

        self._metrics.record_order_canceled()
        self._logger.log_order(
            operation=operation,
            symbol=cached.symbol,
            order_id=cached.order_id,
            order_class=cached.order_class.value,
            latency_ms=(time.time() - start_time) * 1000,
        )
        return cached

    async def cancel_all_orders(self) -> List[str]:
        """
        Cancel every pending order of the configured instrument type.

        Immediate orders are listed and batch-canceled first; conditional
        orders are only touched if that fully succeeded.

        Returns:
            Ids the exchange confirmed as canceled (immediate first)
        """
        canceled = await self._cancel_all_class(
            OrderClass.IMMEDIATE,
            listing_path=PATH_ORDERS_PENDING,
            listing_params={"instType": self._config.inst_type},
            cancel_path=PATH_CANCEL_BATCH,
            id_field="ordId",
            batch_limit=BATCH_CANCEL_LIMIT,
        )
        canceled += await self._cancel_all_class(
            OrderClass.CONDITIONAL,
            listing_path=PATH_ALGO_PENDING,
            listing_params={"ordType": ORD_TYPE_CONDITIONAL, "instType": self._config.inst_type},
            cancel_path=PATH_CANCEL_ALGOS,
            id_field="algoId",
            batch_limit=ALGO_CANCEL_LIMIT,
        )
        self._logger.info(f"Canceled {len(canceled)} pending orders")
        return canceled

    async def _cancel_all_class(
        self,
        order_class: OrderClass,
        listing_path: str,
        listing_params: Dict[str, str],
        cancel_path: str,
        id_field: str,
        batch_limit: int,
    ) -> List[str]:
        timeout = self._config.timeouts.listing_seconds
        operation = f"cancel_all_{order_class.value}"

        response = await self._transport.request(
            "GET",
            listing_path,
            params=listing_params,
            auth=True,
            timeout=timeout,
            operation=f"list_{order_class.value}",
        )
        pending = decode_envelope(response.body, response.status, operation)["data"]
        if not pending:
            return []

        targets = [
            {id_field: entry.get(id_field), "instId": entry.get("instId")}
            for entry in pending
            if isinstance(entry, dict) and entry.get(id_field)
        ]

        confirmed: List[str] = []
        try:
            for i in range(0, len(targets), batch_limit):
                response = await self._transport.request(
                    "POST",
                    cancel_path,
                    body=targets[i:i + batch_limit],
                    auth=True,
                    timeout=timeout,
                    operation=operation,
                )
                envelope = decode_order_envelope(response.body, response.status, operation)
                confirmed.extend(
                    str(entry[id_field]) for entry in envelope["data"] if entry.get(id_field)
                )
        finally:
            # Batches confirmed before a failure stay canceled
            self._evict_confirmed(order_class, confirmed)
            self._metrics.record_order_canceled(len(confirmed))
        return confirmed

    def _evict_confirmed(self, order_class: OrderClass, order_ids: List[str]) -> None:
        for order_id in order_ids:
            cached = self._cache.lookup(order_id, order_class)
            if cached is not None and self._cache.evict(order_id, order_class, expected=cached):
                cached.status = ORDER_STATUS_CANCELED
