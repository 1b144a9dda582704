"""
XTB xStation 5 API Client.

This module provides the async client for the XTB remote trading API (xAPI):
- Session management (login/logout and the broker-issued stream session id)
- Request/reply commands over a shared control connection
- Streaming subscriptions, each over its own dedicated connection
- Response transforms for chart, margin and transaction-status replies

Replies are correlated with requests through the ``customTag`` field. A tag
has at most one call or subscription outstanding at a time.

API Reference: http://developers.xstore.pro/documentation/
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import aiohttp

from xstation.api.connection import ConnectionManager, XApiConnection
from xstation.api.events import EventCorrelator, EventStream
from xstation.api.exceptions import (
    XApiConnectionError,
    XApiError,
    XApiLoginError,
    XApiNotLoggedInError,
    XApiRequestInProgressError,
)
from xstation.api.models import (
    Period,
    TradeTransInfo,
    normalize_margin_level,
    process_chart_response,
    resolve_transaction_price,
)
from xstation.api.transport import Transport, TransportFactory, create_transport
from xstation.lib import constants as C
from xstation.lib.config import XApiConfig
from xstation.lib.time_utils import TimestampLike, to_xapi_timestamp

logger = logging.getLogger(__name__)

# Handle returned by stream operations; close() stops the stream
Subscription = EventStream


class SessionState(Enum):
    """Login state of a client."""
    LOGGED_OUT = "logged_out"
    LOGGING_IN = "logging_in"
    LOGGED_IN = "logged_in"


@dataclass
class Session:
    """Credentials and login state of one client.

    Attributes:
        username: Account login
        password: Account password
        stream_session_id: Id issued by the broker at login, sent with every
            stream subscription
        state: Current login state
    """
    username: str
    password: str
    stream_session_id: Optional[str] = None
    state: SessionState = SessionState.LOGGED_OUT


class XApiClient:
    """Async client for the XTB xAPI.

    Example:
        client = XApiClient(username="12345678", password="secret", demo=True)
        await client.login()

        symbols = await client.get_all_symbols()

        async for tick in await client.stream_tick_prices("EURUSD"):
            print(tick["bid"], tick["ask"])

        await client.logout()

    Or as a context manager:
        async with XApiClient(config=load_config()) as client:
            print(await client.get_server_time())
    """

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        demo: Optional[bool] = None,
        config: Optional[XApiConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """Initialize the client.

        Args:
            username: Account login (overrides config)
            password: Account password (overrides config)
            demo: Use demo servers (overrides config)
            config: Configuration object (uses env vars if not provided)
            transport_factory: Builds transports for endpoint addresses
                (default: selected by ``config.transport``)
        """
        self.config = config or XApiConfig.from_env()

        if username:
            self.config.username = username
        if password:
            self.config.password = password
        if demo is not None:
            self.config.demo = demo

        self._session = Session(username=self.config.username, password=self.config.password)
        self._http_session: Optional[aiohttp.ClientSession] = None

        self._correlator = EventCorrelator()
        self._connections = ConnectionManager(
            self._correlator,
            transport_factory or self._create_transport,
            on_closed=self._handle_connection_closed,
        )
        self._subscriptions: dict[str, Subscription] = {}
        self._teardown_task: Optional[asyncio.Task] = None

    @property
    def is_logged_in(self) -> bool:
        """Check if the session is logged in."""
        return self._session.state == SessionState.LOGGED_IN

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def stream_session_id(self) -> Optional[str]:
        """Get the stream session id issued at login."""
        return self._session.stream_session_id

    @property
    def correlator(self) -> EventCorrelator:
        """Event hub; use ``correlator.on("ERROR_<tag>", handler)`` to observe failures."""
        return self._correlator

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    def _create_transport(self, address: str) -> Transport:
        """Build a transport sharing one aiohttp session across WebSockets."""
        if self.config.transport == C.TRANSPORT_WEBSOCKET:
            if self._http_session is None or self._http_session.closed:
                timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.config.connect_timeout)
                self._http_session = aiohttp.ClientSession(timeout=timeout)
        return create_transport(address, self.config, session=self._http_session)

    async def close(self) -> None:
        """Close every connection and the HTTP session without logging out."""
        if self._teardown_task is not None:
            task, self._teardown_task = self._teardown_task, None
            await task
        await self._connections.close_all()
        if self._http_session and not self._http_session.closed:
            await self._http_session.close()
            self._http_session = None

    def _ensure_logged_in(self) -> None:
        if not self.is_logged_in:
            raise XApiNotLoggedInError("Not logged in")

    def _handle_connection_closed(self, connection: XApiConnection, error: Optional[XApiError]) -> None:
        """End the session when the broker drops the control connection.

        Streams belong to the session, so their subscriptions end and their
        connections are closed in the background.
        """
        if connection.name != C.OPERATION_CONNECTION:
            self._subscriptions.pop(connection.name, None)
            return

        if self._session.state != SessionState.LOGGED_IN:
            return

        logger.warning("Control connection lost, session ended")
        self._session.state = SessionState.LOGGED_OUT
        self._session.stream_session_id = None

        for tag in list(self._subscriptions):
            self._correlator.unsubscribe(tag)
        self._subscriptions.clear()

        if len(self._connections):
            self._teardown_task = asyncio.get_running_loop().create_task(self._connections.close_all())

    # =========================================================================
    # Session
    # =========================================================================

    async def login(self) -> str:
        """Log in on the control connection.

        Opens the control connection, sends the login command and waits for
        either the success or the error reply, whichever arrives first.

        Returns:
            Stream session id issued by the broker

        Raises:
            ValueError: If credentials are not configured
            XApiRequestInProgressError: If another login is still in flight
            XApiLoginError: If the broker refuses the login
            XApiConnectionError: If the connection cannot be opened or drops
        """
        if not self._session.username or not self._session.password:
            raise ValueError("Username and password must be configured")

        if self.is_logged_in:
            logger.info("Already logged in")
            return self._session.stream_session_id

        if self._session.state == SessionState.LOGGING_IN:
            raise XApiRequestInProgressError("Login is already in progress")

        self._session.state = SessionState.LOGGING_IN
        error_event = C.ERROR_PREFIX + C.LOGIN

        try:
            control = await self._connections.connect(C.OPERATION_CONNECTION, self.config.endpoint)

            arguments = {
                "userId": self._session.username,
                "password": self._session.password,
            }
            if self.config.app_name:
                arguments["appName"] = self.config.app_name

            success = self._correlator.once(C.LOGIN)
            failure = self._correlator.once(error_event)
            try:
                await control.send({"command": "login", "arguments": arguments, "customTag": C.LOGIN})
                await asyncio.wait({success, failure}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                self._correlator.discard(C.LOGIN, success)
                self._correlator.discard(error_event, failure)

            stream_session_id = self._settle_login(success, failure)

        except Exception:
            self._session.state = SessionState.LOGGED_OUT
            await self._connections.close(C.OPERATION_CONNECTION)
            raise

        self._session.stream_session_id = stream_session_id
        self._session.state = SessionState.LOGGED_IN
        logger.info(f"Logged in as {self._session.username} ({'demo' if self.config.demo else 'live'})")
        return stream_session_id

    @staticmethod
    def _settle_login(success: asyncio.Future, failure: asyncio.Future) -> str:
        """Turn the outcome of the login race into a session id or an error."""
        if failure.done() and not failure.cancelled() and failure.exception() is None:
            response = failure.result()
            if success.done() and not success.cancelled():
                # Same broker error, already reported through the error event
                success.exception()
            logger.error(f"Login failed: {response.get('errorDescr')} ({response.get('errorCode')})")
            raise XApiLoginError(
                response.get("errorCode"),
                response.get("errorDescr", "Unknown error"),
                response=response,
            )
        return success.result()

    async def logout(self) -> None:
        """Log out and close every connection.

        The logout command is sent without waiting for its reply.
        """
        self._ensure_logged_in()

        control = self._connections.get(C.OPERATION_CONNECTION)
        if control is not None and control.is_connected:
            await control.send({"command": "logout", "customTag": C.LOGOUT})

        self._session.state = SessionState.LOGGED_OUT

        for tag in list(self._subscriptions):
            self._correlator.unsubscribe(tag)
        self._subscriptions.clear()
        self._correlator.fail_pending(XApiNotLoggedInError("Logged out"))

        await self._connections.close_all()
        self._session.stream_session_id = None
        logger.info("Logged out")

    async def __aenter__(self) -> "XApiClient":
        """Async context manager entry."""
        await self.login()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self.is_logged_in:
            await self.logout()
        await self.close()

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def call_operation(self, tag: str, command: str, args: Optional[dict[str, Any]] = None) -> Any:
        """Send a request on the control connection and await its reply.

        Args:
            tag: Custom tag correlating the reply
            command: Broker command name
            args: Command arguments (omitted from the message when empty)

        Returns:
            ``returnData`` of the reply

        Raises:
            XApiNotLoggedInError: If not logged in
            XApiRequestInProgressError: If a call with ``tag`` is still in flight
            XApiConnectionError: If the control connection is missing or drops
            XApiOperationError: If the broker reports an error for ``tag``
        """
        self._ensure_logged_in()

        if self._correlator.has_pending(tag):
            raise XApiRequestInProgressError(f"Call with customTag {tag} is already in progress")

        control = self._connections.get(C.OPERATION_CONNECTION)
        if control is None:
            raise XApiConnectionError("Could not find control connection")

        payload: dict[str, Any] = {"command": command, "customTag": tag}
        if args:
            payload["arguments"] = args

        reply = self._correlator.once(tag)
        try:
            await control.send(payload)
        except Exception:
            self._correlator.discard(tag, reply)
            raise

        return await reply

    async def stream_operation(
        self,
        tag: str,
        command: str,
        args: Optional[dict[str, Any]] = None,
        stop_command: Optional[str] = None,
        stop_args: Optional[dict[str, Any]] = None,
    ) -> Subscription:
        """Subscribe to a stream on a dedicated connection named ``tag``.

        Subscribing again to an active tag returns the existing handle.

        Args:
            tag: Stream tag, also the connection name
            command: Broker subscribe command
            args: Subscription parameters, merged into the message
            stop_command: Broker command sent when the handle is closed
            stop_args: Extra fields for the stop message

        Returns:
            Subscription yielding one item per streamed record

        Raises:
            XApiNotLoggedInError: If not logged in
            XApiConnectionError: If the stream connection cannot be opened
        """
        self._ensure_logged_in()

        existing = self._subscriptions.get(tag)
        if existing is not None and existing.active and tag in self._connections:
            logger.info(f"Already streaming {tag}")
            return existing

        if existing is not None or tag in self._connections:
            # Failed or ended handle: drop it together with its socket
            logger.info(f"Replacing finished stream {tag}")
            self._subscriptions.pop(tag, None)
            self._correlator.unsubscribe(tag)
            await self._connections.close(tag)

        async def stop() -> bool:
            if self._subscriptions.get(tag) is not subscription:
                return False
            return await self._stop_streaming(tag, stop_command, stop_args)

        subscription = self._correlator.subscribe(tag, on_close=stop)
        self._subscriptions[tag] = subscription

        try:
            connection = await self._connections.connect(tag, self.config.stream_endpoint, stream_tag=tag)

            payload: dict[str, Any] = {
                "command": command,
                "customTag": tag,
                "streamSessionId": self._session.stream_session_id,
            }
            if args:
                payload.update(args)
            await connection.send(payload)
        except Exception:
            self._subscriptions.pop(tag, None)
            self._correlator.unsubscribe(tag)
            await self._connections.close(tag)
            raise

        logger.info(f"Streaming {tag}")
        return subscription

    async def stop_streaming(
        self,
        tag: str,
        stop_command: Optional[str],
        args: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Stop a stream and close its connection.

        Returns:
            False (and nothing is sent) if ``tag`` has no connection
        """
        self._ensure_logged_in()
        return await self._stop_streaming(tag, stop_command, args)

    async def _stop_streaming(
        self,
        tag: str,
        stop_command: Optional[str],
        args: Optional[dict[str, Any]] = None,
    ) -> bool:
        self._subscriptions.pop(tag, None)
        return await self._connections.stop_streaming(
            tag,
            stop_command,
            extra_args=args,
            stream_session_id=self._session.stream_session_id or "",
        )

    # =========================================================================
    # Request/Reply Commands
    # =========================================================================

    async def get_all_symbols(self) -> list[dict]:
        """Get every symbol available to the user."""
        return await self.call_operation(C.ALL_SYMBOLS, "getAllSymbols")

    async def get_calendar(self) -> list[dict]:
        """Get the calendar of market events."""
        return await self.call_operation(C.CALENDAR, "getCalendar")

    async def get_chart_last_request(
        self,
        period: Period,
        start: TimestampLike,
        symbol: str,
    ) -> list[dict]:
        """Get candles from ``start`` until now.

        Args:
            period: Candle period
            start: Start of the chart block
            symbol: Symbol

        Returns:
            Candles with prices rescaled and ``symbol`` set
        """
        chart_info = await self.call_operation(C.CHART_LAST_REQUEST, "getChartLastRequest", {
            "info": {
                "period": int(period),
                "start": to_xapi_timestamp(start),
                "symbol": symbol,
            },
        })
        return process_chart_response(chart_info, symbol)

    async def get_chart_range_request(
        self,
        start: TimestampLike,
        end: TimestampLike,
        period: Period,
        symbol: str,
        ticks: int = 0,
    ) -> list[dict]:
        """Get candles for a time range.

        Args:
            start: Start of the chart block
            end: End of the chart block
            period: Candle period
            symbol: Symbol
            ticks: Number of candles to return from ``start`` (negative counts
                back); 0 uses ``end`` instead

        Returns:
            Candles with prices rescaled and ``symbol`` set
        """
        chart_info = await self.call_operation(C.CHART_RANGE_REQUEST, "getChartRangeRequest", {
            "info": {
                "end": to_xapi_timestamp(end),
                "period": int(period),
                "start": to_xapi_timestamp(start),
                "symbol": symbol,
                "ticks": ticks,
            },
        })
        return process_chart_response(chart_info, symbol)

    async def get_commission_def(self, symbol: str, volume: float) -> dict:
        """Get the commission and rate of exchange for a trade."""
        return await self.call_operation(C.COMMISSION_DEF, "getCommissionDef", {
            "symbol": symbol,
            "volume": volume,
        })

    async def get_current_user_data(self) -> dict:
        return await self.call_operation(C.CURRENT_USER_DATA, "getCurrentUserData")

    async def get_ibs_history(self, start: TimestampLike, end: TimestampLike) -> list[dict]:
        """Get IB data for a time range."""
        return await self.call_operation(C.IBS_HISTORY, "getIbsHistory", {
            "end": to_xapi_timestamp(end),
            "start": to_xapi_timestamp(start),
        })

    async def get_margin_level(self) -> dict:
        """Get account indicators.

        streamBalance is the preferred way of retrieving account indicators.

        Returns:
            Account indicators, including ``marginFree`` and ``marginLevel``
        """
        result = await self.call_operation(C.MARGIN_LEVEL, "getMarginLevel")
        return normalize_margin_level(result)

    async def get_margin_trade(self, symbol: str, volume: float) -> dict:
        """Get the expected margin for an instrument and volume."""
        return await self.call_operation(C.MARGIN_TRADE, "getMarginTrade", {
            "symbol": symbol,
            "volume": volume,
        })

    async def get_news(self, start: TimestampLike, end: TimestampLike) -> list[dict]:
        """Get news published within a time range (end 0 means now)."""
        return await self.call_operation(C.NEWS, "getNews", {
            "end": to_xapi_timestamp(end),
            "start": to_xapi_timestamp(start),
        })

    async def get_profit_calculation(
        self,
        cmd: int,
        symbol: str,
        volume: float,
        open_price: float,
        close_price: float,
    ) -> dict:
        """Calculate the profit of a trade.

        Args:
            cmd: Operation code (see models.Command)
            symbol: Symbol
            volume: Volume in lots
            open_price: Theoretical open price
            close_price: Theoretical close price

        Returns:
            ``{"profit": ...}``
        """
        return await self.call_operation(C.PROFIT_CALCULATION, "getProfitCalculation", {
            "closePrice": close_price,
            "cmd": int(cmd),
            "openPrice": open_price,
            "symbol": symbol,
            "volume": volume,
        })

    async def get_server_time(self) -> dict:
        return await self.call_operation(C.SERVER_TIME, "getServerTime")

    async def get_step_rules(self) -> list[dict]:
        """Get volume step rules."""
        return await self.call_operation(C.STEP_RULES, "getStepRules")

    async def get_symbol(self, symbol: str) -> dict:
        """Get information about one symbol."""
        return await self.call_operation(C.SYMBOL, "getSymbol", {"symbol": symbol})

    async def get_tick_prices(
        self,
        level: int,
        symbols: list[str],
        timestamp: TimestampLike,
    ) -> dict:
        """Get tick prices that changed since ``timestamp``.

        Args:
            level: Price level (-1 all, 0 base, >0 that level)
            symbols: Symbols to query
            timestamp: Only ticks newer than this are returned

        Returns:
            ``{"quotations": [...]}``
        """
        return await self.call_operation(C.TICK_PRICES, "getTickPrices", {
            "level": level,
            "symbols": symbols,
            "timestamp": to_xapi_timestamp(timestamp),
        })

    async def get_trade_records(self, orders: list[int]) -> list[dict]:
        """Get trades by order number."""
        return await self.call_operation(C.TRADE_RECORDS, "getTradeRecords", {"orders": orders})

    async def get_trades(self, opened_only: bool) -> list[dict]:
        """Get the user's trades."""
        return await self.call_operation(C.TRADES, "getTrades", {"openedOnly": opened_only})

    async def get_trades_history(self, start: TimestampLike, end: TimestampLike) -> list[dict]:
        """Get trades closed within a time range (end 0 means now)."""
        return await self.call_operation(C.TRADES_HISTORY, "getTradesHistory", {
            "end": to_xapi_timestamp(end),
            "start": to_xapi_timestamp(start),
        })

    async def get_trading_hours(self, symbols: list[str]) -> list[dict]:
        """Get quotes and trading hours of symbols."""
        return await self.call_operation(C.TRADING_HOURS, "getTradingHours", {"symbols": symbols})

    async def get_version(self) -> dict:
        return await self.call_operation(C.VERSION, "getVersion")

    async def ping(self) -> None:
        """Keep the session alive.

        Applications that send no other commands should ping at least once
        every 10 minutes.
        """
        await self.call_operation(C.PING, "ping")

    async def trade_transaction(self, info: TradeTransInfo) -> dict:
        """Submit a trade transaction.

        Args:
            info: Transaction details

        Returns:
            ``{"order": ...}``, the order number to track with
            trade_transaction_status or stream_trade_status
        """
        result = await self.call_operation(C.TRADE_TRANSACTION, "tradeTransaction", {
            "tradeTransInfo": info.to_api(),
        })
        logger.info(f"Trade transaction cmd={int(info.cmd)} {info.volume} {info.symbol}: order {result.get('order')}")
        return result

    async def trade_transaction_status(self, order: int) -> dict:
        """Get the status of a submitted transaction.

        streamTradeStatus is the preferred way of retrieving transaction status.

        Returns:
            Transaction status with ``price`` set from ``ask``

        Raises:
            XApiConsistencyError: If ask and bid differ
        """
        response = await self.call_operation(
            C.TRADE_TRANSACTION_STATUS,
            "tradeTransactionStatus",
            {"order": order},
        )
        return resolve_transaction_price(response)

    # =========================================================================
    # Streaming Commands
    # =========================================================================

    async def _stream(
        self,
        tag: str,
        args: Optional[dict[str, Any]] = None,
        stream_tag: Optional[str] = None,
        stop_args: Optional[dict[str, Any]] = None,
    ) -> Subscription:
        subscribe_command, stop_command = C.STREAM_COMMANDS[tag]
        return await self.stream_operation(
            stream_tag or tag,
            subscribe_command,
            args,
            stop_command=stop_command,
            stop_args=stop_args,
        )

    async def _stop(self, tag: str, stream_tag: Optional[str] = None, args: Optional[dict[str, Any]] = None) -> bool:
        _, stop_command = C.STREAM_COMMANDS[tag]
        return await self.stop_streaming(stream_tag or tag, stop_command, args)

    async def stream_balance(self) -> Subscription:
        """Stream account indicators as soon as they change."""
        return await self._stream(C.STREAM_BALANCE)

    async def stream_candles(self, symbol: str) -> Subscription:
        """Stream 1-minute candles for a symbol; one arrives every minute."""
        return await self._stream(
            C.STREAM_CANDLES,
            {"symbol": symbol},
            stream_tag=C.symbol_tag(C.STREAM_CANDLES, symbol),
            stop_args={"symbol": symbol},
        )

    async def stream_keep_alive(self) -> Subscription:
        """Stream keep-alive messages, sent by the broker every 3 seconds."""
        return await self._stream(C.STREAM_KEEP_ALIVE)

    async def stream_news(self) -> Subscription:
        return await self._stream(C.STREAM_NEWS)

    async def stream_ping(self) -> Subscription:
        """Ping on a stream connection to keep it alive."""
        return await self._stream(C.STREAM_PING)

    async def stream_profits(self) -> Subscription:
        return await self._stream(C.STREAM_PROFITS)

    async def stream_tick_prices(
        self,
        symbol: str,
        min_arrival_time: int = 0,
        max_level: Optional[int] = None,
    ) -> Subscription:
        """Stream quotations for a symbol.

        Only one subscription is created per symbol. When several records are
        available their arrival order is not guaranteed.

        Args:
            symbol: Symbol
            min_arrival_time: Minimal interval in milliseconds between updates
            max_level: Maximum price level (None for all levels)
        """
        args: dict[str, Any] = {"minArrivalTime": min_arrival_time, "symbol": symbol}
        if max_level is not None:
            args["maxLevel"] = max_level
        return await self._stream(
            C.STREAM_TICK_PRICES,
            args,
            stream_tag=C.symbol_tag(C.STREAM_TICK_PRICES, symbol),
            stop_args={"symbol": symbol},
        )

    async def stream_trade_status(self) -> Subscription:
        """Stream the status of submitted trade requests."""
        return await self._stream(C.STREAM_TRADE_STATUS)

    async def stream_trades(self) -> Subscription:
        """Stream changes of the user's trades."""
        return await self._stream(C.STREAM_TRADES)

    async def stop_stream_balance(self) -> bool:
        return await self._stop(C.STREAM_BALANCE)

    async def stop_stream_candles(self, symbol: str) -> bool:
        return await self._stop(C.STREAM_CANDLES, C.symbol_tag(C.STREAM_CANDLES, symbol), {"symbol": symbol})

    async def stop_stream_keep_alive(self) -> bool:
        return await self._stop(C.STREAM_KEEP_ALIVE)

    async def stop_stream_news(self) -> bool:
        return await self._stop(C.STREAM_NEWS)

    async def stop_stream_ping(self) -> bool:
        return await self._stop(C.STREAM_PING)

    async def stop_stream_profits(self) -> bool:
        return await self._stop(C.STREAM_PROFITS)

    async def stop_stream_tick_prices(self, symbol: str) -> bool:
        return await self._stop(
            C.STREAM_TICK_PRICES,
            C.symbol_tag(C.STREAM_TICK_PRICES, symbol),
            {"symbol": symbol},
        )

    async def stop_stream_trade_status(self) -> bool:
        return await self._stop(C.STREAM_TRADE_STATUS)

    async def stop_stream_trades(self) -> bool:
        return await self._stop(C.STREAM_TRADES)
