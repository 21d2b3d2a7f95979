"""
OKX Connector - Frame Decoder.

============================================================
PURPOSE
============================================================
Turns websocket push frames into ExchangeEvents.

- candle1m  -> Candle, emitted once the bar is closed
- books5    -> DepthSnapshot
- trades    -> TradePrint
- orders    -> OrderUpdate
- {"event": "error"} -> ErrorInfo

A live bar counts as closed when the exchange flags it confirmed, or
when a newer bar for the same instrument arrives.

============================================================
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import ProtocolShapeError
from .types import (
    Candle,
    DepthLevel,
    DepthSnapshot,
    ErrorInfo,
    ExchangeEvent,
    OrderSide,
    OrderUpdate,
    TradePrint,
)
from .wire import parse_candle_row, parse_decimal, parse_int, parse_optional_decimal


logger = logging.getLogger(__name__)


DEPTH_LEVELS = 5
CONFIRM_INDEX = 8


def ms_to_datetime(value: Any, field_name: str = "ts") -> datetime:
    return datetime.fromtimestamp(parse_int(value, field_name) / 1000, tz=timezone.utc)


def _side(value: Any) -> OrderSide:
    try:
        return OrderSide(value)
    except ValueError:
        raise ProtocolShapeError(f"Unknown side: {value!r}")


def _levels(rows: Any) -> List[DepthLevel]:
    if not isinstance(rows, list):
        raise ProtocolShapeError(f"Malformed book side: {rows!r}")
    levels = []
    for row in rows[:DEPTH_LEVELS]:
        if not isinstance(row, list) or len(row) < 2:
            raise ProtocolShapeError(f"Malformed book level: {row!r}")
        levels.append(DepthLevel(
            price=parse_decimal(row[0], "px"),
            size=parse_decimal(row[1], "sz"),
        ))
    return levels


class FrameDecoder:
    """
    Stateful decoder for one socket.

    Holds the open bar per instrument until it closes.
    """

    def __init__(self, source: str = "okx"):
        self._source = source
        self._open_bars: Dict[str, Candle] = {}
        self._last_closed: Dict[str, int] = {}

    @property
    def source(self) -> str:
        return self._source

    def decode(self, frame: Dict[str, Any]) -> List[ExchangeEvent]:
        """
        Decode one frame.

        Returns:
            Events in delivery order (often empty)

        Raises:
            ProtocolShapeError: Unexpected frame layout
            ParseError: Malformed numeric field
        """
        event = frame.get("event")
        if event == "error":
            return [self._event(ErrorInfo(
                code=str(frame.get("code", "")),
                message=str(frame.get("msg", "")),
            ))]
        if event:
            logger.debug(f"{self._source} event: {event} {frame.get('arg', '')}")
            return []

        arg = frame.get("arg") or {}
        channel = arg.get("channel", "")
        data = frame.get("data")
        if not channel or data is None:
            logger.debug(f"{self._source} frame ignored: {str(frame)[:100]}")
            return []
        if not isinstance(data, list):
            raise ProtocolShapeError(f"Push data is not a list: {channel}")

        inst_id = arg.get("instId", "")
        if channel.startswith("candle"):
            return self._decode_candles(inst_id, data)
        if channel.startswith("books"):
            return [self._decode_depth(inst_id, entry) for entry in data]
        if channel == "trades":
            return [self._decode_trade(entry) for entry in data]
        if channel == "orders":
            return [self._decode_order(entry) for entry in data]

        logger.debug(f"{self._source} unknown channel: {channel}")
        return []

    # --------------------------------------------------------
    # CHANNELS
    # --------------------------------------------------------

    def _decode_candles(self, inst_id: str, rows: List[Any]) -> List[ExchangeEvent]:
        events = []
        for row in rows:
            candle = parse_candle_row(row)
            confirmed = len(row) > CONFIRM_INDEX and row[CONFIRM_INDEX] == "1"

            pending = self._open_bars.get(inst_id)
            if pending is not None and candle.start > pending.start:
                self._close_bar(inst_id, pending, events)
                del self._open_bars[inst_id]

            if confirmed:
                self._open_bars.pop(inst_id, None)
                self._close_bar(inst_id, candle, events)
            elif candle.start > self._last_closed.get(inst_id, -1):
                self._open_bars[inst_id] = candle
        return events

    def _close_bar(self, inst_id: str, candle: Candle, events: List[ExchangeEvent]) -> None:
        if candle.start <= self._last_closed.get(inst_id, -1):
            return
        self._last_closed[inst_id] = candle.start
        events.append(self._event(
            candle, datetime.fromtimestamp(candle.start, tz=timezone.utc)
        ))

    def _decode_depth(self, inst_id: str, entry: Dict[str, Any]) -> ExchangeEvent:
        timestamp = ms_to_datetime(entry.get("ts"))
        snapshot = DepthSnapshot(
            symbol=entry.get("instId") or inst_id,
            asks=_levels(entry.get("asks", [])),
            bids=_levels(entry.get("bids", [])),
            timestamp=timestamp,
        )
        return self._event(snapshot, timestamp)

    def _decode_trade(self, entry: Dict[str, Any]) -> ExchangeEvent:
        timestamp = ms_to_datetime(entry.get("ts"))
        trade = TradePrint(
            symbol=entry.get("instId", ""),
            trade_id=str(entry.get("tradeId", "")),
            price=parse_decimal(entry.get("px"), "px"),
            size=parse_decimal(entry.get("sz"), "sz"),
            side=_side(entry.get("side")),
            timestamp=timestamp,
        )
        return self._event(trade, timestamp)

    def _decode_order(self, entry: Dict[str, Any]) -> ExchangeEvent:
        timestamp = ms_to_datetime(entry.get("uTime") or entry.get("cTime"), "uTime")
        update = OrderUpdate(
            symbol=entry.get("instId", ""),
            order_id=str(entry.get("ordId", "")),
            side=_side(entry.get("side")),
            state=entry.get("state", ""),
            price=parse_optional_decimal(entry.get("px"), "px"),
            size=parse_decimal(entry.get("sz"), "sz"),
            filled_size=parse_decimal(entry.get("accFillSz"), "accFillSz"),
            average_price=parse_optional_decimal(entry.get("avgPx"), "avgPx"),
            position_side=entry.get("posSide") or None,
            timestamp=timestamp,
        )
        return self._event(update, timestamp)

    def _event(self, payload, timestamp: Optional[datetime] = None) -> ExchangeEvent:
        return ExchangeEvent.of(self._source, payload, timestamp)
