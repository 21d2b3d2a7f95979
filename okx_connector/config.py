"""
OKX Connector - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the connector.

- Credentials and endpoints
- Trade mode, instrument type and position mode
- Per-call timeouts
- Historical pagination and rate-limit backoff
- Channel capacities

============================================================
USAGE
============================================================
```python
# From environment (.env is loaded automatically)
config = ConnectorConfig.from_env()

# Explicit
config = ConnectorConfig(
    api_key="...",
    api_secret="...",
    passphrase="...",
    position_mode=PositionMode.DUAL,
)
```

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .errors import ValidationError
from .types import PositionMode


# ============================================================
# ENDPOINTS
# ============================================================

OKX_REST_URL = "https://www.okx.com"
OKX_WS_PUBLIC_URL = "wss://wsaws.okx.com:8443/ws/v5/public"
OKX_WS_PRIVATE_URL = "wss://wsaws.okx.com:8443/ws/v5/private"

# Instrument types
INST_SPOT = "SPOT"
INST_MARGIN = "MARGIN"
INST_SWAP = "SWAP"
INST_FUTURES = "FUTURES"
INST_OPTION = "OPTION"

INSTRUMENT_TYPES = (INST_SPOT, INST_MARGIN, INST_SWAP, INST_FUTURES, INST_OPTION)

# Trade modes
TD_MODE_ISOLATED = "isolated"
TD_MODE_CROSS = "cross"
TD_MODE_CASH = "cash"


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Per-call timeouts. A call exceeding its timeout is cancelled.
    """

    order_seconds: float = 2.0
    """Submit and single cancel."""

    listing_seconds: float = 3.0
    """Pending-order listings and batch cancels."""

    history_page_seconds: float = 3.0
    """One historical candle page."""

    connect_seconds: float = 10.0
    """Websocket handshake."""


# ============================================================
# HISTORY CONFIGURATION
# ============================================================

@dataclass
class HistoryConfig:
    """
    Historical candle pagination.

    The page window is `window_bars * bar_interval_ms` wide regardless
    of the requested resolution.
    """

    window_bars: int = 100
    """Bars per page window."""

    bar_interval_ms: int = 60_000
    """Width of one bar in the page window computation."""

    rate_limit_backoff_seconds: float = 1.0
    """Fixed sleep before retrying a rate-limited page."""

    rate_limit_marker: str = "Requests too frequent."
    """Substring identifying a rate-limit rejection."""

    buffer_size: int = 10240
    """Capacity of the candle channel."""

    @property
    def window_ms(self) -> int:
        return self.window_bars * self.bar_interval_ms


# ============================================================
# CONNECTOR CONFIGURATION
# ============================================================

@dataclass
class ConnectorConfig:
    """
    Complete connector configuration.
    """

    # Credentials
    api_key: str = ""
    api_secret: str = ""
    passphrase: str = ""

    # Endpoints
    rest_url: str = OKX_REST_URL
    ws_public_url: str = OKX_WS_PUBLIC_URL
    ws_private_url: str = OKX_WS_PRIVATE_URL
    proxy: Optional[str] = None
    simulated: bool = False
    """Send the demo-trading header."""

    # Trading
    inst_type: str = INST_SWAP
    td_mode: str = TD_MODE_ISOLATED
    position_mode: PositionMode = PositionMode.SIMPLE
    order_tag: str = "okxconn"

    # Channels
    event_buffer_size: int = 1024

    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret and self.passphrase)

    def validate(self, require_credentials: bool = False) -> None:
        """
        Check the configuration.

        Raises:
            ValidationError: On the first invalid field
        """
        if require_credentials and not self.has_credentials:
            raise ValidationError("api_key, api_secret and passphrase are required")
        if self.inst_type not in INSTRUMENT_TYPES:
            raise ValidationError(f"Unknown instrument type: {self.inst_type}")
        if self.history.window_bars <= 0 or self.history.bar_interval_ms <= 0:
            raise ValidationError("History window must be positive")
        if self.history.buffer_size <= 0 or self.event_buffer_size <= 0:
            raise ValidationError("Channel capacities must be positive")
        if not 1 <= len(self.order_tag) <= 8 or not self.order_tag.isalnum():
            raise ValidationError("order_tag must be 1-8 alphanumeric characters")

    @classmethod
    def from_env(cls, prefix: str = "OKX") -> "ConnectorConfig":
        """
        Create config from environment variables.

        A `.env` file in the working directory is loaded first.

        Args:
            prefix: Environment variable prefix

        Returns:
            ConnectorConfig
        """
        load_dotenv()
        prefix = prefix.upper()

        def env(name: str, default: str = "") -> str:
            return os.environ.get(f"{prefix}_{name}", default)

        position_mode = PositionMode.SIMPLE
        if env("SIMPLE_MODE").strip().lower() == "false":
            position_mode = PositionMode.DUAL

        return cls(
            api_key=env("API_KEY"),
            api_secret=env("API_SECRET"),
            passphrase=env("PASSPHRASE"),
            rest_url=env("REST_URL", OKX_REST_URL),
            proxy=env("PROXY") or None,
            simulated=env("SIMULATED").strip().lower() in ("1", "true", "yes"),
            inst_type=env("INST_TYPE", INST_SWAP) or INST_SWAP,
            td_mode=env("TD_MODE", TD_MODE_ISOLATED) or TD_MODE_ISOLATED,
            position_mode=position_mode,
        )
