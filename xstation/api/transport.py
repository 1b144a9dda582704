"""
Socket transports for xAPI connections.

The broker is reachable either through secure WebSockets
(wss://ws.xtb.com/...) or through raw TLS sockets (xapi.xtb.com:5112-5125).
Both carry the same "\\n\\n"-terminated JSON frames, so they share one
interface: open, send text, receive text chunks, close.

receive() returns None once the peer has closed; ``close_code`` then tells a
normal closure (1000) from an abnormal one.
"""

import asyncio
import codecs
import logging
import ssl
from abc import ABC, abstractmethod
from typing import Callable, Optional

import aiohttp

from xstation.api.exceptions import XApiConnectionError, XApiProtocolError, XApiTransportError
from xstation.lib.config import XApiConfig
from xstation.lib.constants import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    NORMAL_CLOSURE,
    SOCKET_READ_SIZE,
    TRANSPORT_SOCKET,
)

logger = logging.getLogger(__name__)

# Builds a transport for an endpoint address
TransportFactory = Callable[[str], "Transport"]


class Transport(ABC):
    """Bidirectional text channel to one broker endpoint."""

    def __init__(self, address: str):
        self.address = address
        self.close_code: Optional[int] = None

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the channel can be written to."""

    @abstractmethod
    async def open(self) -> None:
        """Establish the connection."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """Write one outbound message."""

    @abstractmethod
    async def receive(self) -> Optional[str]:
        """Read the next chunk of text, or None once the peer has closed."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection with a normal closure."""


class WebSocketTransport(Transport):
    """Secure WebSocket transport built on aiohttp."""

    def __init__(
        self,
        url: str,
        session: Optional[aiohttp.ClientSession] = None,
        heartbeat: Optional[float] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ):
        """Initialize WebSocket transport.

        Args:
            url: WebSocket URL
            session: Optional aiohttp session to use (not closed by this transport)
            heartbeat: Ping interval in seconds, None to disable
            connect_timeout: Seconds allowed for the TCP/TLS connect
        """
        super().__init__(url)
        self._session = session
        self._owns_session = session is None
        self._heartbeat = heartbeat
        self._connect_timeout = connect_timeout
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def open(self) -> None:
        if self.is_open:
            return

        try:
            if self._session is None:
                timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._connect_timeout)
                self._session = aiohttp.ClientSession(timeout=timeout)

            self._ws = await self._session.ws_connect(
                self.address,
                heartbeat=self._heartbeat or None,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Connection to {self.address} failed: {e}")
            await self._close_session()
            raise XApiConnectionError(f"Connection failed: {e}")

        logger.info(f"Connected to {self.address}")

    async def send(self, text: str) -> None:
        if not self.is_open:
            raise XApiConnectionError("WebSocket not connected")
        await self._ws.send_str(text)

    async def receive(self) -> Optional[str]:
        if self._ws is None:
            return None

        msg = await self._ws.receive()

        if msg.type == aiohttp.WSMsgType.TEXT:
            return msg.data
        if msg.type == aiohttp.WSMsgType.BINARY:
            try:
                return msg.data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise XApiProtocolError(f"Undecodable message from {self.address}: {e}")
        if msg.type == aiohttp.WSMsgType.CLOSE:
            self.close_code = msg.data
            return None
        if msg.type in (aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
            self.close_code = self._ws.close_code
            return None
        if msg.type == aiohttp.WSMsgType.ERROR:
            self.close_code = self._ws.close_code
            raise XApiTransportError(f"WebSocket error: {msg.data}", close_code=self.close_code)

        # PING/PONG are answered by aiohttp itself
        return ""

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close(code=NORMAL_CLOSURE)
            self.close_code = NORMAL_CLOSURE
        self._ws = None
        await self._close_session()

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None


class TlsSocketTransport(Transport):
    """Raw TLS socket transport built on asyncio streams."""

    def __init__(
        self,
        address: str,
        ssl_context: Optional[ssl.SSLContext] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ):
        """Initialize TLS socket transport.

        Args:
            address: "host:port"
            ssl_context: TLS context (default: system trust store)
            connect_timeout: Seconds allowed for the TCP/TLS connect
        """
        super().__init__(address)
        host, _, port = address.rpartition(":")
        if not host or not port.isdigit():
            raise ValueError(f"Expected 'host:port', got {address!r}")
        self._host = host
        self._port = int(port)
        self._ssl_context = ssl_context
        self._connect_timeout = connect_timeout
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        # A read may end in the middle of a multi-byte character
        self._decoder = codecs.getincrementaldecoder("utf-8")()

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(self) -> None:
        if self.is_open:
            return

        context = self._ssl_context or ssl.create_default_context()
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port, ssl=context),
                timeout=self._connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Connection to {self.address} failed: {e}")
            raise XApiConnectionError(f"Connection failed: {e}")

        self._decoder.reset()
        logger.info(f"Connected to {self.address}")

    async def send(self, text: str) -> None:
        if not self.is_open:
            raise XApiConnectionError("Socket not connected")
        self._writer.write(text.encode("utf-8"))
        await self._writer.drain()

    async def receive(self) -> Optional[str]:
        if self._reader is None:
            return None

        try:
            data = await self._reader.read(SOCKET_READ_SIZE)
        except OSError as e:
            raise XApiTransportError(f"Socket read failed: {e}")

        if not data:
            self.close_code = NORMAL_CLOSURE
            return None
        try:
            return self._decoder.decode(data)
        except UnicodeDecodeError as e:
            raise XApiProtocolError(f"Undecodable message from {self.address}: {e}")

    async def close(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None
        self.close_code = NORMAL_CLOSURE
        if writer is None:
            return

        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, ssl.SSLError) as e:
            logger.debug(f"Error while closing {self.address}: {e}")


def create_transport(
    address: str,
    config: XApiConfig,
    session: Optional[aiohttp.ClientSession] = None,
) -> Transport:
    """Build the transport selected by ``config.transport`` for an address.

    Args:
        address: WebSocket URL, or "host:port" for raw sockets
        config: Client configuration
        session: Optional shared aiohttp session for WebSocket transports

    Returns:
        Unopened Transport
    """
    if config.transport == TRANSPORT_SOCKET:
        return TlsSocketTransport(address, connect_timeout=config.connect_timeout)
    return WebSocketTransport(
        address,
        session=session,
        heartbeat=config.heartbeat,
        connect_timeout=config.connect_timeout,
    )
