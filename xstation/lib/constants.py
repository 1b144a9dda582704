"""
xAPI constants.

This module defines the fixed values of the XTB xStation 5 remote API:
- Endpoints (WebSocket URLs, TLS host and ports) for demo and live accounts
- Wire protocol constants (frame terminator, close codes)
- Custom tags used to correlate replies with requests
- Broker command names for subscribe/unsubscribe messages

API Reference: http://developers.xstore.pro/documentation/
"""

from typing import Optional


# =============================================================================
# Endpoints
# =============================================================================

# Secure WebSocket endpoints
XAPI_WS_DEMO_URL = "wss://ws.xtb.com/demo"
XAPI_WS_DEMO_STREAM_URL = "wss://ws.xtb.com/demoStream"
XAPI_WS_LIVE_URL = "wss://ws.xtb.com/real"
XAPI_WS_LIVE_STREAM_URL = "wss://ws.xtb.com/realStream"

# Raw TLS socket endpoints
XAPI_HOST = "xapi.xtb.com"
XAPI_LIVE_PORT = 5112
XAPI_LIVE_STREAM_PORT = 5113
XAPI_DEMO_PORT = 5124
XAPI_DEMO_STREAM_PORT = 5125

TRANSPORT_WEBSOCKET = "websocket"
TRANSPORT_SOCKET = "socket"
TRANSPORTS = (TRANSPORT_WEBSOCKET, TRANSPORT_SOCKET)

# Connection settings
DEFAULT_CONNECT_TIMEOUT_SECONDS = 30.0
DEFAULT_HEARTBEAT_SECONDS = 30.0
SOCKET_READ_SIZE = 4096


# =============================================================================
# Wire Protocol
# =============================================================================

FRAME_TERMINATOR = "\n\n"
NORMAL_CLOSURE = 1000

# Name of the shared request/reply connection
OPERATION_CONNECTION = "operation"

ERROR_PREFIX = "ERROR_"


# =============================================================================
# Custom Tags
# =============================================================================

# Session
LOGIN = "login"
LOGOUT = "logout"

# Request/reply operations (tag matches the command name)
ALL_SYMBOLS = "getAllSymbols"
CALENDAR = "getCalendar"
CHART_LAST_REQUEST = "getChartLastRequest"
CHART_RANGE_REQUEST = "getChartRangeRequest"
COMMISSION_DEF = "getCommissionDef"
CURRENT_USER_DATA = "getCurrentUserData"
IBS_HISTORY = "getIbsHistory"
MARGIN_LEVEL = "getMarginLevel"
MARGIN_TRADE = "getMarginTrade"
NEWS = "getNews"
PROFIT_CALCULATION = "getProfitCalculation"
SERVER_TIME = "getServerTime"
STEP_RULES = "getStepRules"
SYMBOL = "getSymbol"
TICK_PRICES = "getTickPrices"
TRADE_RECORDS = "getTradeRecords"
TRADES = "getTrades"
TRADES_HISTORY = "getTradesHistory"
TRADING_HOURS = "getTradingHours"
VERSION = "getVersion"
PING = "ping"
TRADE_TRANSACTION = "tradeTransaction"
TRADE_TRANSACTION_STATUS = "tradeTransactionStatus"

# Streaming subscriptions
STREAM_BALANCE = "streamBalance"
STREAM_CANDLES = "streamCandles"
STREAM_KEEP_ALIVE = "streamKeepAlive"
STREAM_NEWS = "streamNews"
STREAM_PROFITS = "streamProfits"
STREAM_TICK_PRICES = "streamTickPrices"
STREAM_TRADES = "streamTrades"
STREAM_TRADE_STATUS = "streamTradeStatus"
STREAM_PING = "streamPing"


# =============================================================================
# Streaming Commands
# =============================================================================

# tag -> (subscribe command, stop command)
STREAM_COMMANDS: dict[str, tuple[str, Optional[str]]] = {
    STREAM_BALANCE: ("getBalance", "stopBalance"),
    STREAM_CANDLES: ("getCandles", "stopCandles"),
    STREAM_KEEP_ALIVE: ("keepAlive", "stopKeepAlive"),
    STREAM_NEWS: ("getNews", "stopNews"),
    STREAM_PROFITS: ("getProfits", "stopProfits"),
    STREAM_TICK_PRICES: ("getTickPrices", "stopTickPrices"),
    STREAM_TRADES: ("getTrades", "stopTrades"),
    STREAM_TRADE_STATUS: ("getTradeStatus", "stopTradeStatus"),
    # The broker has no stop command for stream pings; the socket is just closed
    STREAM_PING: ("ping", None),
}


def symbol_tag(tag: str, symbol: str) -> str:
    """Build a per-symbol stream tag (e.g. "streamTickPrices_EURUSD")."""
    return f"{tag}_{symbol}"
