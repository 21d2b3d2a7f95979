"""
OKX Connector - Subscription Registry.

Keeps the ordered log of live-data subscriptions and sends them over
the public socket. The log is replayed verbatim after every reconnect.
"""

import logging
from typing import Any, Dict, List, Union

from .config import ConnectorConfig
from .errors import ValidationError
from .types import SubscriptionRequest, WatchKind


logger = logging.getLogger(__name__)


# Watch kind -> OKX channel name
CHANNELS = {
    WatchKind.CANDLE: "candle1m",
    WatchKind.DEPTH: "books5",
    WatchKind.TRADE: "trades",
}


def resolve_kind(kind: Union[WatchKind, str]) -> WatchKind:
    """
    Map a watch kind to the closed set.

    Raises:
        ValidationError: Unknown kind
    """
    if isinstance(kind, WatchKind):
        return kind
    try:
        return WatchKind(str(kind).lower())
    except ValueError:
        raise ValidationError(f"Unknown watch kind: {kind!r}", operation="watch")


def subscribe_message(request: SubscriptionRequest) -> Dict[str, Any]:
    """The `subscribe` operation for one request."""
    return {
        "op": "subscribe",
        "args": [
            {
                "channel": CHANNELS[request.kind],
                "instType": request.inst_type,
                "instId": request.inst_id,
            }
        ],
    }


class SubscriptionRegistry:
    """
    Append-only log of desired subscriptions.

    The socket is any object with `is_connected` and an async `send()`,
    such as OKXWebSocket.
    """

    def __init__(self, socket, config: ConnectorConfig):
        self._socket = socket
        self._config = config
        self._log: List[SubscriptionRequest] = []

    @property
    def log(self) -> List[SubscriptionRequest]:
        """Snapshot of the replay log, oldest first."""
        return list(self._log)

    def __len__(self) -> int:
        return len(self._log)

    async def watch(self, request: SubscriptionRequest) -> SubscriptionRequest:
        """
        Record a subscription and send it.

        The request is recorded before it is sent, so a failed send is
        still replayed on the next reconnect. While the socket is down the
        request is only recorded.

        Returns:
            The recorded request, with kind and instrument type resolved

        Raises:
            ValidationError: Unknown kind or empty instrument id
            TransportError: The subscribe write failed
        """
        kind = resolve_kind(request.kind)
        if not request.inst_id:
            raise ValidationError("Instrument id is required", operation="watch")

        recorded = SubscriptionRequest(
            kind=kind,
            inst_id=request.inst_id,
            inst_type=request.inst_type or self._config.inst_type,
        )
        self._log.append(recorded)
        logger.info(f"Watch {kind.value} {recorded.inst_id} ({recorded.inst_type})")

        if not self._socket.is_connected:
            logger.debug(f"Public socket down, {kind.value} {recorded.inst_id} sent on connect")
            return recorded

        await self._socket.send(subscribe_message(recorded))
        return recorded

    async def replay(self) -> int:
        """
        Reissue every recorded subscription in original order.

        Returns:
            Number of subscriptions sent
        """
        requests = list(self._log)
        for request in requests:
            await self._socket.send(subscribe_message(request))
        if requests:
            logger.info(f"Replayed {len(requests)} subscriptions")
        return len(requests)
