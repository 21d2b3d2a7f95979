"""
Tests for order routing, the order cache and the order lifecycle manager.

============================================================
PURPOSE
============================================================
Verify that:
- Trade actions route to the right side, position side and path
- Accepted orders are cached under exactly one class
- Cancels follow the cached class and evict only on confirmation
- Cancel-all stops before conditional orders when immediate fails

============================================================
"""

from decimal import Decimal

import pytest

from conftest import okx_response
from okx_connector.errors import (
    ExchangeError,
    ProtocolShapeError,
    TransportError,
    ValidationError,
)
from okx_connector.orders import (
    PATH_ALGO_PENDING,
    PATH_CANCEL_ALGOS,
    PATH_CANCEL_BATCH,
    PATH_CANCEL_ORDER,
    PATH_ORDER,
    PATH_ORDER_ALGO,
    PATH_ORDERS_PENDING,
    OrderCache,
    OrderLifecycleManager,
    route_action,
)
from okx_connector.types import (
    Direction,
    Intent,
    Order,
    OrderClass,
    OrderSide,
    PositionSide,
    TradeAction,
)


SYMBOL = "BTC-USDT-SWAP"


def action(direction=Direction.LONG, intent=Intent.OPEN, price="50000", amount="2"):
    return TradeAction(
        symbol=SYMBOL,
        direction=direction,
        intent=intent,
        price=Decimal(price),
        amount=Decimal(amount),
    )


def make_order(order_id, order_class=OrderClass.IMMEDIATE):
    return Order(
        order_id=order_id,
        symbol=SYMBOL,
        side=OrderSide.BUY,
        price=Decimal("100"),
        amount=Decimal("1"),
        order_class=order_class,
    )


@pytest.fixture
def manager(transport, config):
    return OrderLifecycleManager(transport, config)


# =============================================================================
# ROUTING
# =============================================================================

class TestRouting:
    """Tests for route_action."""

    @pytest.mark.parametrize("direction,intent,side,position_side", [
        (Direction.LONG, Intent.OPEN, OrderSide.BUY, PositionSide.LONG),
        (Direction.LONG, Intent.CLOSE, OrderSide.BUY, PositionSide.SHORT),
        (Direction.SHORT, Intent.OPEN, OrderSide.SELL, PositionSide.SHORT),
        (Direction.SHORT, Intent.CLOSE, OrderSide.SELL, PositionSide.LONG),
    ])
    def test_immediate_sides_dual_mode(self, config, direction, intent, side, position_side):
        """Test side and position side of immediate orders."""
        request = route_action(action(direction, intent), config)

        assert request.order_class == OrderClass.IMMEDIATE
        assert request.path == PATH_ORDER
        assert request.side == side
        assert request.position_side == position_side
        assert request.body["side"] == side.value
        assert request.body["posSide"] == position_side.value

    def test_immediate_body(self, config):
        """Test limit order body fields."""
        body = route_action(action(price="50000.5", amount="3"), config).body

        assert body["instId"] == SYMBOL
        assert body["tdMode"] == "isolated"
        assert body["ordType"] == "limit"
        assert body["px"] == "50000.5"
        assert body["sz"] == "3"
        assert body["tag"] == config.order_tag

    def test_simple_mode_omits_position_side(self, simple_config):
        """Test posSide is never sent in simple mode."""
        request = route_action(action(Direction.SHORT, Intent.CLOSE), simple_config)

        assert "posSide" not in request.body
        assert request.position_side is None
        assert request.side == OrderSide.SELL

    def test_amount_truncated(self, config):
        """Test fractional amounts are truncated to whole contracts."""
        assert route_action(action(amount="3.7"), config).body["sz"] == "3"

    @pytest.mark.parametrize("direction,side,position_side", [
        (Direction.LONG, OrderSide.BUY, PositionSide.SHORT),
        (Direction.SHORT, OrderSide.SELL, PositionSide.LONG),
    ])
    def test_stop_routing(self, config, direction, side, position_side):
        """Test stops protect the opposite-facing position."""
        request = route_action(action(direction, Intent.STOP, price="48000"), config)

        assert request.order_class == OrderClass.CONDITIONAL
        assert request.path == PATH_ORDER_ALGO
        assert request.side == side
        assert request.body["posSide"] == position_side.value

    def test_stop_body(self, config):
        """Test conditional order executes at market when triggered."""
        body = route_action(action(Direction.LONG, Intent.STOP, price="48000.5"), config).body

        assert body["ordType"] == "conditional"
        assert body["orderPx"] == "-1"
        assert body["slOrdPx"] == "-1"
        assert body["slTriggerPx"] == "48000.5"
        assert body["reduceOnly"] is True

    def test_stop_simple_mode(self, simple_config):
        """Test stop in simple mode omits posSide."""
        request = route_action(action(Direction.SHORT, Intent.STOP), simple_config)
        assert "posSide" not in request.body
        assert request.side == OrderSide.SELL


# =============================================================================
# ORDER CACHE
# =============================================================================

class TestOrderCache:
    """Tests for the two-class order cache."""

    def test_store_and_lookup(self):
        cache = OrderCache()
        order = make_order("1")
        cache.store(order)

        assert cache.lookup("1") is order
        assert cache.contains("1", OrderClass.IMMEDIATE)
        assert not cache.contains("1", OrderClass.CONDITIONAL)
        assert "1" in cache
        assert len(cache) == 1

    def test_same_id_in_both_classes(self):
        """Test ids are unique per class, so both orders stay cached."""
        cache = OrderCache()
        immediate = make_order("7", OrderClass.IMMEDIATE)
        conditional = make_order("7", OrderClass.CONDITIONAL)
        cache.store(immediate)
        cache.store(conditional)

        assert cache.lookup("7", OrderClass.IMMEDIATE) is immediate
        assert cache.lookup("7", OrderClass.CONDITIONAL) is conditional
        assert len(cache) == 2

    def test_ambiguous_id_lookup(self):
        """Test a bare id cached under both classes is rejected."""
        cache = OrderCache()
        cache.store(make_order("7", OrderClass.IMMEDIATE))
        cache.store(make_order("7", OrderClass.CONDITIONAL))

        with pytest.raises(ValidationError):
            cache.lookup("7")

    def test_evict(self):
        cache = OrderCache()
        cache.store(make_order("1"))

        assert cache.evict("1", OrderClass.IMMEDIATE) is True
        assert cache.lookup("1") is None
        assert cache.evict("1", OrderClass.IMMEDIATE) is False

    def test_evict_scoped_to_class(self):
        """Test evicting one class leaves the same id in the other."""
        cache = OrderCache()
        cache.store(make_order("42", OrderClass.IMMEDIATE))
        cache.store(make_order("42", OrderClass.CONDITIONAL))

        assert cache.evict("42", OrderClass.IMMEDIATE) is True
        assert cache.contains("42", OrderClass.CONDITIONAL)
        assert cache.evict("42", OrderClass.IMMEDIATE) is False

    def test_evict_expected_stale(self):
        """Test a stale cancel cannot drop a newer order with the same id."""
        cache = OrderCache()
        old = make_order("9")
        cache.store(old)
        new = make_order("9")
        cache.store(new)

        assert cache.evict("9", OrderClass.IMMEDIATE, expected=old) is False
        assert cache.lookup("9") is new

    def test_orders_by_class(self):
        cache = OrderCache()
        cache.store(make_order("1"))
        cache.store(make_order("2", OrderClass.CONDITIONAL))

        assert [o.order_id for o in cache.orders(OrderClass.IMMEDIATE)] == ["1"]
        assert [o.order_id for o in cache.orders(OrderClass.CONDITIONAL)] == ["2"]
        assert len(cache.orders()) == 2

        cache.clear()
        assert len(cache) == 0


# =============================================================================
# SUBMIT
# =============================================================================

class TestSubmitOrder:
    """Tests for OrderLifecycleManager.submit_order."""

    @pytest.mark.asyncio
    async def test_submit_immediate(self, manager, transport):
        """Test accepted limit order is cached as immediate."""
        transport.add("POST", PATH_ORDER, okx_response([{"ordId": "312", "sCode": "0"}]))

        order = await manager.submit_order(action())

        assert order.order_id == "312"
        assert order.order_class == OrderClass.IMMEDIATE
        assert order.side == OrderSide.BUY
        assert order.remark == ""
        assert manager.cache.contains("312", OrderClass.IMMEDIATE)

        call = transport.calls[0]
        assert call.auth is True
        assert call.timeout == 2.0
        assert call.body["side"] == "buy"

    @pytest.mark.asyncio
    async def test_submit_stop(self, manager, transport):
        """Test accepted stop is cached as conditional under its algo id."""
        transport.add("POST", PATH_ORDER_ALGO, okx_response([{"algoId": "A1", "sCode": "0"}]))

        order = await manager.submit_order(action(intent=Intent.STOP))

        assert order.order_id == "A1"
        assert order.is_conditional
        assert order.remark == "stop"
        assert manager.cache.contains("A1", OrderClass.CONDITIONAL)
        assert not manager.cache.contains("A1", OrderClass.IMMEDIATE)

    @pytest.mark.asyncio
    async def test_zero_results(self, manager, transport):
        """Test empty result list is a protocol error and nothing is cached."""
        transport.add("POST", PATH_ORDER, okx_response([]))

        with pytest.raises(ProtocolShapeError):
            await manager.submit_order(action())
        assert len(manager.cache) == 0

    @pytest.mark.asyncio
    async def test_two_results(self, manager, transport):
        """Test more than one result is a protocol error."""
        transport.add("POST", PATH_ORDER, okx_response([
            {"ordId": "1", "sCode": "0"},
            {"ordId": "2", "sCode": "0"},
        ]))

        with pytest.raises(ProtocolShapeError):
            await manager.submit_order(action())
        assert len(manager.cache) == 0

    @pytest.mark.asyncio
    async def test_rejected(self, manager, transport):
        """Test exchange rejection raises and records the rejection."""
        transport.add("POST", PATH_ORDER, okx_response(
            [{"ordId": "", "sCode": "51008", "sMsg": "Insufficient balance"}],
            code="1",
            msg="Operation failed.",
        ))

        with pytest.raises(ExchangeError) as exc_info:
            await manager.submit_order(action())

        assert exc_info.value.code == "51008"
        assert len(manager.cache) == 0

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, manager, transport):
        """Test timeouts reach the caller unchanged."""
        transport.add("POST", PATH_ORDER, TransportError("timed out", timed_out=True))

        with pytest.raises(TransportError) as exc_info:
            await manager.submit_order(action())
        assert exc_info.value.timed_out


# =============================================================================
# CANCEL
# =============================================================================

class TestCancelOrder:
    """Tests for OrderLifecycleManager.cancel_order."""

    @pytest.mark.asyncio
    async def test_cancel_immediate(self, manager, transport):
        """Test immediate cancel uses the order path only."""
        order = make_order("11")
        manager.cache.store(order)
        transport.add("POST", PATH_CANCEL_ORDER, okx_response([{"ordId": "11", "sCode": "0"}]))

        result = await manager.cancel_order("11")

        assert result is order
        assert result.status == "canceled"
        assert "11" not in manager.cache
        assert transport.calls[0].body == {"instId": SYMBOL, "ordId": "11"}
        assert transport.calls_to(PATH_CANCEL_ALGOS) == []

    @pytest.mark.asyncio
    async def test_cancel_conditional(self, manager, transport):
        """Test conditional cancel uses the algo path only."""
        manager.cache.store(make_order("A1", OrderClass.CONDITIONAL))
        transport.add("POST", PATH_CANCEL_ALGOS, okx_response([{"algoId": "A1", "sCode": "0"}]))

        await manager.cancel_order(make_order("A1", OrderClass.CONDITIONAL))

        assert transport.calls_to(PATH_CANCEL_ORDER) == []
        assert transport.calls[0].body == [{"algoId": "A1", "instId": SYMBOL}]
        assert not manager.cache.contains("A1")

    @pytest.mark.asyncio
    async def test_cancel_bare_id_follows_cached_class(self, manager, transport):
        """Test a bare id is canceled through the class it is cached under."""
        manager.cache.store(make_order("5", OrderClass.CONDITIONAL))
        transport.add("POST", PATH_CANCEL_ALGOS, okx_response([{"algoId": "5", "sCode": "0"}]))

        await manager.cancel_order("5")

        assert [call.path for call in transport.calls] == [PATH_CANCEL_ALGOS]

    @pytest.mark.asyncio
    async def test_cancel_order_uses_its_class(self, manager, transport):
        """Test an order shares its id with a stop but only it is canceled."""
        immediate = make_order("5", OrderClass.IMMEDIATE)
        manager.cache.store(immediate)
        manager.cache.store(make_order("5", OrderClass.CONDITIONAL))
        transport.add("POST", PATH_CANCEL_ORDER, okx_response([{"ordId": "5", "sCode": "0"}]))

        assert await manager.cancel_order(immediate) is immediate

        assert [call.path for call in transport.calls] == [PATH_CANCEL_ORDER]
        assert not manager.cache.contains("5", OrderClass.IMMEDIATE)
        assert manager.cache.contains("5", OrderClass.CONDITIONAL)

    @pytest.mark.asyncio
    async def test_cancel_ambiguous_id(self, manager, transport):
        """Test a bare id cached under both classes is refused without a call."""
        manager.cache.store(make_order("5", OrderClass.IMMEDIATE))
        manager.cache.store(make_order("5", OrderClass.CONDITIONAL))

        with pytest.raises(ValidationError):
            await manager.cancel_order("5")
        assert transport.calls == []
        assert len(manager.cache) == 2

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, manager, transport):
        """Test unknown id is skipped without a network call."""
        assert await manager.cancel_order("nope") is None
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_cancel_rejected_keeps_entry(self, manager, transport):
        """Test a rejected cancel leaves the order cached."""
        manager.cache.store(make_order("11"))
        transport.add("POST", PATH_CANCEL_ORDER, okx_response(
            [{"ordId": "11", "sCode": "51400", "sMsg": "Order does not exist"}],
        ))

        with pytest.raises(ExchangeError):
            await manager.cancel_order("11")
        assert "11" in manager.cache

    @pytest.mark.asyncio
    async def test_cancel_timeout_keeps_entry(self, manager, transport):
        """Test a transport failure leaves the order cached."""
        manager.cache.store(make_order("11"))
        transport.add("POST", PATH_CANCEL_ORDER, TransportError("timed out", timed_out=True))

        with pytest.raises(TransportError):
            await manager.cancel_order("11")
        assert manager.cache.lookup("11").status == "open"


# =============================================================================
# CANCEL ALL
# =============================================================================

class TestCancelAllOrders:
    """Tests for OrderLifecycleManager.cancel_all_orders."""

    @pytest.mark.asyncio
    async def test_cancel_all(self, manager, transport, config):
        """Test immediate orders are canceled first, then conditional."""
        manager.cache.store(make_order("1"))
        manager.cache.store(make_order("A1", OrderClass.CONDITIONAL))

        transport.add("GET", PATH_ORDERS_PENDING, okx_response([
            {"ordId": "1", "instId": SYMBOL},
            {"ordId": "2", "instId": SYMBOL},
        ]))
        transport.add("POST", PATH_CANCEL_BATCH, okx_response([
            {"ordId": "1", "sCode": "0"},
            {"ordId": "2", "sCode": "0"},
        ]))
        transport.add("GET", PATH_ALGO_PENDING, okx_response([{"algoId": "A1", "instId": SYMBOL}]))
        transport.add("POST", PATH_CANCEL_ALGOS, okx_response([{"algoId": "A1", "sCode": "0"}]))

        canceled = await manager.cancel_all_orders()

        assert canceled == ["1", "2", "A1"]
        assert len(manager.cache) == 0
        assert [call.path for call in transport.calls] == [
            PATH_ORDERS_PENDING,
            PATH_CANCEL_BATCH,
            PATH_ALGO_PENDING,
            PATH_CANCEL_ALGOS,
        ]
        assert transport.calls[0].params == {"instType": config.inst_type}
        assert transport.calls[2].params == {"ordType": "conditional", "instType": config.inst_type}
        assert transport.calls[1].body == [
            {"ordId": "1", "instId": SYMBOL},
            {"ordId": "2", "instId": SYMBOL},
        ]

    @pytest.mark.asyncio
    async def test_immediate_listing_failure_skips_conditional(self, manager, transport):
        """Test a failed immediate listing never touches conditional orders."""
        manager.cache.store(make_order("A1", OrderClass.CONDITIONAL))
        transport.add("GET", PATH_ORDERS_PENDING, okx_response(code="50001", msg="Service unavailable"))

        with pytest.raises(ExchangeError):
            await manager.cancel_all_orders()

        assert transport.calls_to(PATH_ALGO_PENDING) == []
        assert transport.calls_to(PATH_CANCEL_ALGOS) == []
        assert "A1" in manager.cache

    @pytest.mark.asyncio
    async def test_immediate_batch_failure_skips_conditional(self, manager, transport):
        """Test a failed batch cancel never touches conditional orders."""
        transport.add("GET", PATH_ORDERS_PENDING, okx_response([{"ordId": "1", "instId": SYMBOL}]))
        transport.add("POST", PATH_CANCEL_BATCH, TransportError("reset by peer"))

        with pytest.raises(TransportError):
            await manager.cancel_all_orders()

        assert transport.calls_to(PATH_ALGO_PENDING) == []

    @pytest.mark.asyncio
    async def test_confirmed_immediate_id_keeps_conditional(self, manager, transport):
        """Test a confirmed immediate cancel never evicts a stop with the same id."""
        manager.cache.store(make_order("42", OrderClass.IMMEDIATE))
        manager.cache.store(make_order("42", OrderClass.CONDITIONAL))
        transport.add("GET", PATH_ORDERS_PENDING, okx_response([{"ordId": "42", "instId": SYMBOL}]))
        transport.add("POST", PATH_CANCEL_BATCH, okx_response([{"ordId": "42", "sCode": "0"}]))
        transport.add("GET", PATH_ALGO_PENDING, okx_response(code="50001", msg="Service unavailable"))

        with pytest.raises(ExchangeError):
            await manager.cancel_all_orders()

        assert not manager.cache.contains("42", OrderClass.IMMEDIATE)
        assert manager.cache.contains("42", OrderClass.CONDITIONAL)
        assert manager.cache.lookup("42", OrderClass.CONDITIONAL).status == "open"

    @pytest.mark.asyncio
    async def test_empty_listing_skips_batch(self, manager, transport):
        """Test nothing pending means no cancel request."""
        transport.add("GET", PATH_ORDERS_PENDING, okx_response([]))
        transport.add("GET", PATH_ALGO_PENDING, okx_response([]))

        assert await manager.cancel_all_orders() == []
        assert transport.calls_to(PATH_CANCEL_BATCH) == []
        assert transport.calls_to(PATH_CANCEL_ALGOS) == []

    @pytest.mark.asyncio
    async def test_batches_chunked(self, manager, transport):
        """Test more than 20 pending orders are canceled in several batches."""
        pending = [{"ordId": str(i), "instId": SYMBOL} for i in range(25)]
        transport.add("GET", PATH_ORDERS_PENDING, okx_response(pending))
        transport.add("POST", PATH_CANCEL_BATCH, okx_response(
            [{"ordId": str(i), "sCode": "0"} for i in range(20)]
        ))
        transport.add("POST", PATH_CANCEL_BATCH, okx_response(
            [{"ordId": str(i), "sCode": "0"} for i in range(20, 25)]
        ))
        transport.add("GET", PATH_ALGO_PENDING, okx_response([]))

        canceled = await manager.cancel_all_orders()

        batches = transport.calls_to(PATH_CANCEL_BATCH)
        assert [len(call.body) for call in batches] == [20, 5]
        assert len(canceled) == 25

    @pytest.mark.asyncio
    async def test_confirmed_batch_evicted_before_failure(self, manager, transport):
        """Test orders of a confirmed batch are evicted even if a later batch fails."""
        for i in range(21):
            manager.cache.store(make_order(str(i)))
        transport.add("GET", PATH_ORDERS_PENDING, okx_response(
            [{"ordId": str(i), "instId": SYMBOL} for i in range(21)]
        ))
        transport.add("POST", PATH_CANCEL_BATCH, okx_response(
            [{"ordId": str(i), "sCode": "0"} for i in range(20)]
        ))
        transport.add("POST", PATH_CANCEL_BATCH, TransportError("timed out", timed_out=True))

        with pytest.raises(TransportError):
            await manager.cancel_all_orders()

        assert len(manager.cache) == 1
        assert "20" in manager.cache
