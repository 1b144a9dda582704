"""
xAPI Connection Management.

A client holds one shared request/reply connection (named "operation") and one
dedicated connection per streaming subscription (named after the stream tag).
Each connection runs a receive task that feeds its FrameParser and publishes
every complete frame on the client's EventCorrelator, strictly in arrival
order.

A close code other than 1000 is fatal: the error is logged and raised in
whoever is waiting on that connection. Nothing is retried or reconnected.
"""

import asyncio
import json
import logging
from enum import Enum, auto
from typing import Any, Callable, Optional

from xstation.api.events import EventCorrelator
from xstation.api.exceptions import XApiConnectionError, XApiError, XApiTransportError
from xstation.api.framing import FrameParser
from xstation.api.transport import Transport, TransportFactory
from xstation.lib.constants import NORMAL_CLOSURE, OPERATION_CONNECTION
from xstation.lib.logging_utils import redact_payload

logger = logging.getLogger(__name__)

CLOSE_CODES_URL = "https://www.iana.org/assignments/websocket/websocket.xml#close-code-number"


class ConnectionState(Enum):
    """Connection state."""
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    CLOSED = auto()


# Called once a connection has gone away; error is None for a normal closure
ClosedCallback = Callable[["XApiConnection", Optional[XApiError]], None]


class XApiConnection:
    """One named socket to the broker.

    Handles:
    - Opening the transport and starting the receive task
    - JSON encoding of outbound messages
    - Frame reassembly and dispatch of inbound messages
    - Close detection and classification
    """

    def __init__(
        self,
        name: str,
        transport: Transport,
        correlator: EventCorrelator,
        on_closed: Optional[ClosedCallback] = None,
        stream_tag: Optional[str] = None,
    ):
        """Initialize connection.

        Args:
            name: Connection name ("operation" or a stream tag)
            transport: Unopened transport
            correlator: Event hub receiving parsed frames
            on_closed: Callback run after the peer closes the connection
            stream_tag: Tag for streaming records without a customTag
        """
        self.name = name
        self._transport = transport
        self._correlator = correlator
        self._on_closed = on_closed
        self._stream_tag = stream_tag
        self._parser = FrameParser()
        self._state = ConnectionState.DISCONNECTED
        self._receive_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        """Get connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if connected."""
        return self._state == ConnectionState.CONNECTED

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def buffered(self) -> str:
        """Partial frame currently held back."""
        return self._parser.remainder

    async def open(self) -> None:
        """Open the transport and start receiving."""
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return

        self._state = ConnectionState.CONNECTING
        try:
            await self._transport.open()
        except Exception:
            self._state = ConnectionState.DISCONNECTED
            raise

        self._state = ConnectionState.CONNECTED
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def send(self, payload: dict[str, Any]) -> None:
        """Send one message.

        Args:
            payload: JSON-serializable message

        Raises:
            XApiConnectionError: If the connection is not open
        """
        if not self.is_connected:
            raise XApiConnectionError(f"Connection {self.name} not connected")

        logger.debug(f"-> {self.name}: {redact_payload(payload)}")
        await self._transport.send(json.dumps(payload))

    async def close(self) -> None:
        """Close the connection and discard buffered data."""
        self._state = ConnectionState.CLOSED

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._transport.close()
        self._parser.reset()
        logger.info(f"Connection {self.name} closed")

    async def _receive_loop(self) -> None:
        """Background task to receive and dispatch frames."""
        error: Optional[XApiError] = None

        try:
            while True:
                chunk = await self._transport.receive()
                if chunk is None:
                    break
                for frame in self._parser.feed(chunk):
                    self._correlator.dispatch(frame, default_tag=self._stream_tag)
        except XApiError as e:
            error = e
        except Exception as e:
            error = XApiTransportError(
                f"Receive on {self.name} failed: {type(e).__name__}: {e}",
                close_code=self._transport.close_code,
            )

        await self._handle_peer_close(error)

    async def _handle_peer_close(self, error: Optional[XApiError]) -> None:
        """Classify a close not initiated by close()."""
        if self._state == ConnectionState.CLOSED:
            return

        self._state = ConnectionState.DISCONNECTED
        self._receive_task = None
        self._parser.reset()

        code = self._transport.close_code
        if error is None and code != NORMAL_CLOSURE:
            error = XApiTransportError(
                f"The server unexpectedly closed the connection. Error code {code}. "
                f"More info can be found in {CLOSE_CODES_URL}",
                close_code=code,
            )

        if error is not None:
            logger.error(f"Connection {self.name} failed: {error}")
        else:
            logger.info(f"Connection {self.name} disconnected")

        await self._transport.close()

        if self._on_closed is not None:
            self._on_closed(self, error)


class ConnectionManager:
    """Owns the name -> connection map of one client.

    Example:
        manager = ConnectionManager(correlator, transport_factory)
        control = await manager.connect("operation", "wss://ws.xtb.com/demo")
        await control.send({"command": "ping", "customTag": "ping"})
    """

    def __init__(
        self,
        correlator: EventCorrelator,
        transport_factory: TransportFactory,
        on_closed: Optional[ClosedCallback] = None,
    ):
        """Initialize connection manager.

        Args:
            correlator: Event hub shared by every connection
            transport_factory: Builds a transport for an endpoint address
            on_closed: Extra callback run when a connection goes away
        """
        self._correlator = correlator
        self._transport_factory = transport_factory
        self._on_closed = on_closed
        self._connections: dict[str, XApiConnection] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    @property
    def names(self) -> list[str]:
        """Names of the registered connections."""
        return list(self._connections)

    def get(self, name: str) -> Optional[XApiConnection]:
        return self._connections.get(name)

    async def connect(
        self,
        name: str,
        endpoint: str,
        stream_tag: Optional[str] = None,
    ) -> XApiConnection:
        """Return the connection registered under ``name``, opening it if needed.

        Args:
            name: Connection name
            endpoint: Address handed to the transport factory
            stream_tag: Tag for untagged streaming records on this connection

        Returns:
            Open (or opening) connection

        Raises:
            XApiConnectionError: If the transport cannot be opened
        """
        existing = self._connections.get(name)
        if existing is not None:
            logger.info(f"Connection {name} already exists. Doing nothing")
            return existing

        connection = XApiConnection(
            name,
            self._transport_factory(endpoint),
            self._correlator,
            on_closed=self._handle_closed,
            stream_tag=stream_tag,
        )
        # Registered before opening so that interleaved callers share it
        self._connections[name] = connection

        try:
            await connection.open()
        except Exception:
            self._connections.pop(name, None)
            raise

        return connection

    async def close(self, name: str) -> bool:
        """Close and forget one connection.

        Returns:
            True if a connection was registered under ``name``
        """
        connection = self._connections.pop(name, None)
        if connection is None:
            return False
        await connection.close()
        return True

    async def close_all(self) -> None:
        """Close and forget every connection."""
        for name in list(self._connections):
            await self.close(name)

    async def stop_streaming(
        self,
        tag: str,
        stop_command: Optional[str],
        extra_args: Optional[dict[str, Any]] = None,
        stream_session_id: str = "",
    ) -> bool:
        """Unsubscribe a stream and close its connection.

        Args:
            tag: Stream tag (also the connection name)
            stop_command: Broker command ending the stream, None to only close
            extra_args: Extra fields for the stop message (e.g. symbol)
            stream_session_id: Session id issued at login

        Returns:
            False if no connection was registered for ``tag``, True otherwise
        """
        connection = self._connections.get(tag)
        if connection is None:
            return False

        self._correlator.unsubscribe(tag)

        try:
            if stop_command is not None and connection.is_connected:
                payload = {"command": stop_command, "streamSessionId": stream_session_id}
                if extra_args:
                    payload.update(extra_args)
                await connection.send(payload)
        finally:
            await self.close(tag)

        logger.info(f"Stopped streaming {tag}")
        return True

    def _handle_closed(self, connection: XApiConnection, error: Optional[XApiError]) -> None:
        """Forget a connection closed by the peer and propagate failures."""
        if self._connections.get(connection.name) is connection:
            del self._connections[connection.name]

        if connection.name == OPERATION_CONNECTION:
            # No reply can arrive any more
            self._correlator.fail_pending(
                error or XApiConnectionError("Control connection closed by the server")
            )
        else:
            if error is not None:
                self._correlator.fail(connection.name, error)
            self._correlator.unsubscribe(connection.name)

        if self._on_closed is not None:
            self._on_closed(connection, error)
