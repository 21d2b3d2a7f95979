"""
OKX Connector - Historical Candle Pipeline.

============================================================
PURPOSE
============================================================
Paginated retrieval of past candles.

- One background task per fetch, results on a bounded candle channel
- Errors on a separate channel, so "ended" and "failed" differ
- Fixed-width page windows starting at a millisecond cursor
- Pages sorted and de-duplicated across page boundaries
- Rate-limit rejections retried after a fixed backoff, never surfaced

============================================================
USAGE
============================================================
```python
stream = pipeline.fetch_history("BTC-USDT-SWAP", "1m", start, end)
async for candle in stream.candles:
    ...
error = await stream.error()
```

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Set, Union

from .channel import Channel
from .config import ConnectorConfig
from .errors import ChannelClosedError, RateLimitCondition
from .metrics import ConnectorMetrics
from .types import Candle
from .wire import decode_envelope, parse_candles


logger = logging.getLogger(__name__)


PATH_HISTORY_CANDLES = "/api/v5/market/history-candles"

TimePoint = Union[datetime, int]


def to_millis(value: TimePoint) -> int:
    """Datetimes are truncated to whole seconds; ints are taken as ms."""
    if isinstance(value, datetime):
        return int(value.timestamp()) * 1000
    return int(value)


@dataclass
class HistoryStream:
    """
    Result of one historical fetch.

    `candles` yields bars in strictly increasing start order. `errors`
    carries at most one exception. Both close when the fetch ends.
    """

    candles: Channel
    errors: Channel
    task: Optional[asyncio.Task] = None

    async def error(self) -> Optional[BaseException]:
        """The error the fetch ended with, or None. Waits for the end."""
        try:
            return await self.errors.get()
        except ChannelClosedError:
            return None

    async def collect(self) -> List[Candle]:
        """
        Drain all candles.

        Raises:
            The fetch error, if the fetch failed
        """
        result = [candle async for candle in self.candles]
        error = await self.error()
        if error is not None:
            raise error
        return result


class HistoricalCandlePipeline:
    """
    Fetches historical candles page by page.
    """

    def __init__(
        self,
        transport,
        config: ConnectorConfig,
        metrics: ConnectorMetrics = None,
        sleep: Callable[[float], Awaitable[None]] = None,
    ):
        self._transport = transport
        self._config = config
        self._metrics = metrics or ConnectorMetrics("okx")
        self._sleep = sleep or asyncio.sleep
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_fetches(self) -> int:
        return len(self._tasks)

    def fetch_history(
        self,
        symbol: str,
        resolution: str,
        start: TimePoint,
        end: TimePoint,
    ) -> HistoryStream:
        """
        Start a background fetch of candles in [start, end).

        Must be called from a running event loop. Returns immediately.

        Args:
            symbol: Instrument id
            resolution: Bar size, e.g. "1m", "1H"
            start: Range start (datetime, or epoch ms)
            end: Range end (datetime, or epoch ms)
        """
        candles = Channel(self._config.history.buffer_size, name=f"history:{symbol}")
        errors = Channel(1, name=f"history-errors:{symbol}")

        task = asyncio.create_task(
            self._run(symbol, resolution, to_millis(start), to_millis(end), candles, errors)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return HistoryStream(candles=candles, errors=errors, task=task)

    async def _run(
        self,
        symbol: str,
        resolution: str,
        start_ms: int,
        end_ms: int,
        candles: Channel,
        errors: Channel,
    ) -> None:
        try:
            count = await self._paginate(symbol, resolution, start_ms, end_ms, candles)
            logger.info(f"History {symbol} {resolution}: {count} candles")
        except Exception as e:
            logger.warning(f"History {symbol} {resolution} failed: {e}")
            await errors.put(e)
        finally:
            candles.close()
            errors.close()

    async def _paginate(
        self,
        symbol: str,
        resolution: str,
        start_ms: int,
        end_ms: int,
        candles: Channel,
    ) -> int:
        window_ms = self._config.history.window_ms
        cursor = start_ms
        prev = 0
        last_emitted = 0
        count = 0

        while True:
            window_end = cursor + window_ms
            page = await self._fetch_page(symbol, resolution, cursor, window_end)
            page.sort(key=lambda c: c.start)

            for candle in page:
                start = candle.start * 1000
                if start <= max(prev, last_emitted) or start >= end_ms:
                    continue
                await candles.put(candle)
                last_emitted = start
                cursor = start
                count += 1

            if not page:
                cursor = window_end

            # Stop at the end, or when the cursor did not move forward
            if cursor >= end_ms or cursor <= prev:
                break
            prev = cursor

        return count

    async def _fetch_page(
        self,
        symbol: str,
        resolution: str,
        cursor: int,
        window_end: int,
    ) -> List[Candle]:
        params = {
            "instId": symbol,
            "bar": resolution,
            "before": str(cursor),
            "after": str(window_end),
        }
        history = self._config.history

        while True:
            response = await self._transport.request(
                "GET",
                PATH_HISTORY_CANDLES,
                params=params,
                timeout=self._config.timeouts.history_page_seconds,
                operation="history_candles",
            )
            try:
                envelope = decode_envelope(
                    response.body,
                    response.status,
                    operation="history_candles",
                    rate_limit_marker=history.rate_limit_marker,
                )
            except RateLimitCondition:
                self._metrics.record_rate_limit()
                logger.debug(
                    f"History {symbol} rate limited, retrying in "
                    f"{history.rate_limit_backoff_seconds}s"
                )
                await self._sleep(history.rate_limit_backoff_seconds)
                continue
            return parse_candles(envelope)

    async def wait_closed(self) -> None:
        """Wait for all running fetches to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
