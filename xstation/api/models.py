"""
xAPI enums, request records and response transforms.

Responses are returned as the broker's JSON objects (plain dicts). A few of
them are adjusted before they reach the caller:
- Chart candles are rescaled from integer points to prices and tagged with
  their symbol
- getMarginLevel also exposes its snake_case fields in camelCase
- tradeTransactionStatus surfaces a single ``price``

API Reference: http://developers.xstore.pro/documentation/
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional

from xstation.api.exceptions import XApiConsistencyError

logger = logging.getLogger(__name__)


class Period(IntEnum):
    """Chart periods in minutes."""
    M1 = 1
    M5 = 5
    M15 = 15
    M30 = 30
    H1 = 60
    H4 = 240
    D1 = 1440
    W1 = 10080
    MN1 = 43200


class Command(IntEnum):
    """Trade operation codes."""
    BUY = 0
    SELL = 1
    BUY_LIMIT = 2
    SELL_LIMIT = 3
    BUY_STOP = 4
    SELL_STOP = 5
    BALANCE = 6
    CREDIT = 7


class TradeType(IntEnum):
    """Trade transaction types."""
    OPEN = 0
    PENDING = 1
    CLOSE = 2
    MODIFY = 3
    DELETE = 4


class QuoteId(IntEnum):
    """Quote source of a tick."""
    FIXED = 1
    FLOAT = 2
    DEPTH = 3
    CROSS = 4


class StreamTradeStatus(IntEnum):
    """Request status reported by streamTradeStatus."""
    ERROR = 0
    PENDING = 1
    ACCEPTED = 3
    REJECTED = 4


class StreamTradesState(str, Enum):
    """Trade record state reported by streamTrades."""
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class TradeTransInfo:
    """Arguments of a tradeTransaction request.

    Attributes:
        cmd: Operation code
        symbol: Trade symbol
        volume: Trade volume in lots
        type: Trade transaction type
        price: Trade price
        sl: Stop loss
        tp: Take profit
        order: 0 or position number for closing/modifications
        offset: Trailing offset
        expiration: Pending order expiration time (epoch ms)
        custom_comment: Value the customer may provide to retrieve it later
    """
    cmd: Command
    symbol: str
    volume: float
    type: TradeType = TradeType.OPEN
    price: float = 0.0
    sl: float = 0.0
    tp: float = 0.0
    order: int = 0
    offset: int = 0
    expiration: int = 0
    custom_comment: str = ""

    def to_api(self) -> dict[str, Any]:
        """Convert to the broker's tradeTransInfo object."""
        return {
            "cmd": int(self.cmd),
            "customComment": self.custom_comment,
            "expiration": self.expiration,
            "offset": self.offset,
            "order": self.order,
            "price": self.price,
            "sl": self.sl,
            "symbol": self.symbol,
            "tp": self.tp,
            "type": int(self.type),
            "volume": self.volume,
        }


# =============================================================================
# Response Transforms
# =============================================================================

PRICE_FIELDS = ("open", "close", "high", "low")


def process_chart_response(chart_info: dict[str, Any], symbol: str) -> list[dict[str, Any]]:
    """Convert a chart reply into candles with real prices.

    The broker sends OHLC values as integers in units of ``10 ** -digits``.
    Every other candle field is passed through unchanged.

    Args:
        chart_info: ``returnData`` of getChartLastRequest/getChartRangeRequest
        symbol: Symbol the chart was requested for

    Returns:
        One dict per rateInfo, with ``symbol`` added

    Example:
        >>> process_chart_response(
        ...     {"digits": 2, "rateInfos": [{"open": 12345, "close": 12350,
        ...                                  "high": 12360, "low": 12340}]},
        ...     "EURUSD")
        [{'open': 123.45, 'close': 123.5, 'high': 123.6, 'low': 123.4, 'symbol': 'EURUSD'}]
    """
    divisor = 10 ** chart_info.get("digits", 0)

    candles = []
    for rate_info in chart_info.get("rateInfos", []):
        candle = dict(rate_info)
        for field_name in PRICE_FIELDS:
            if field_name in candle:
                candle[field_name] = candle[field_name] / divisor
        candle["symbol"] = symbol
        candles.append(candle)

    return candles


def normalize_margin_level(result: dict[str, Any]) -> dict[str, Any]:
    """Expose margin_free/margin_level as marginFree/marginLevel as well."""
    result["marginFree"] = result.get("margin_free")
    result["marginLevel"] = result.get("margin_level")
    return result


def resolve_transaction_price(response: dict[str, Any]) -> dict[str, Any]:
    """Add ``price`` to a tradeTransactionStatus reply.

    Args:
        response: ``returnData`` of tradeTransactionStatus

    Returns:
        The same dict with ``price`` set to the ask price

    Raises:
        XApiConsistencyError: If ask and bid differ
    """
    ask: Optional[float] = response.get("ask")
    bid: Optional[float] = response.get("bid")
    if ask != bid:
        raise XApiConsistencyError(
            f"Error retrieving transaction price: Ask was {ask}, Bid was {bid}",
            response=response,
        )

    response["price"] = ask
    return response
