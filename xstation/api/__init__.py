"""
XTB xStation 5 API Integration Module.

This module provides an async client for the XTB remote trading API (xAPI).

Key Components:
- XApiClient: Session management, request/reply commands and streams
- ConnectionManager: One named connection per control channel or stream
- EventCorrelator: Routes replies to callers by custom tag
- FrameParser: Splits received text into JSON messages

Usage:
    from xstation.api import XApiClient, Period

    client = XApiClient(username="12345678", password="secret", demo=True)
    await client.login()

    candles = await client.get_chart_last_request(Period.H1, start, "EURUSD")

    ticks = await client.stream_tick_prices("EURUSD")
    async for tick in ticks:
        ...
    await ticks.close()

    await client.logout()

Important Notes:
- Every command except login fails with XApiNotLoggedInError before login
- A custom tag has at most one call in flight; a second one is refused
- Connections are never retried or reconnected
"""

from xstation.api.client import (
    XApiClient,
    Session,
    SessionState,
    Subscription,
)
from xstation.api.connection import (
    ConnectionManager,
    ConnectionState,
    XApiConnection,
)
from xstation.api.events import (
    EventCorrelator,
    EventStream,
)
from xstation.api.exceptions import (
    XApiError,
    XApiNotLoggedInError,
    XApiLoginError,
    XApiOperationError,
    XApiRequestInProgressError,
    XApiConnectionError,
    XApiTransportError,
    XApiProtocolError,
    XApiConsistencyError,
)
from xstation.api.framing import FrameParser
from xstation.api.models import (
    Period,
    Command,
    TradeType,
    QuoteId,
    StreamTradeStatus,
    StreamTradesState,
    TradeTransInfo,
)
from xstation.api.transport import (
    Transport,
    WebSocketTransport,
    TlsSocketTransport,
    create_transport,
)

__all__ = [
    # Client
    "XApiClient",
    "Session",
    "SessionState",
    "Subscription",
    # Connections
    "ConnectionManager",
    "ConnectionState",
    "XApiConnection",
    "EventCorrelator",
    "EventStream",
    "FrameParser",
    "Transport",
    "WebSocketTransport",
    "TlsSocketTransport",
    "create_transport",
    # Errors
    "XApiError",
    "XApiNotLoggedInError",
    "XApiLoginError",
    "XApiOperationError",
    "XApiRequestInProgressError",
    "XApiConnectionError",
    "XApiTransportError",
    "XApiProtocolError",
    "XApiConsistencyError",
    # Models
    "Period",
    "Command",
    "TradeType",
    "QuoteId",
    "StreamTradeStatus",
    "StreamTradesState",
    "TradeTransInfo",
]
