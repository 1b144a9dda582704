"""
Pytest fixtures for xAPI client tests.

This module provides:
- An in-memory transport that records outbound messages and replays
  scripted broker frames
- A transport factory handing out such transports to a client
- Configuration and client fixtures
- Helpers for stepping the event loop
"""

import asyncio
import json
from typing import Any, Optional

import pytest

from xstation.api.client import XApiClient
from xstation.api.exceptions import XApiConnectionError
from xstation.api.transport import Transport
from xstation.lib.config import XApiConfig


class FakeTransport(Transport):
    """Transport that never touches the network.

    ``feed`` queues text as if it arrived from the broker; ``disconnect``
    simulates the peer closing with a given close code.
    """

    def __init__(self, address: str = "wss://example.invalid/demo", open_error: Optional[Exception] = None):
        super().__init__(address)
        self.sent: list[str] = []
        self.opened = False
        self.closed = False
        self._open_error = open_error
        self._incoming: asyncio.Queue = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    @property
    def messages(self) -> list[dict[str, Any]]:
        """Outbound messages, decoded."""
        return [json.loads(text) for text in self.sent]

    async def open(self) -> None:
        if self._open_error is not None:
            raise self._open_error
        self.opened = True

    async def send(self, text: str) -> None:
        if not self.is_open:
            raise XApiConnectionError("Fake transport not connected")
        self.sent.append(text)

    async def receive(self) -> Optional[str]:
        item = await self._incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
        if self.close_code is None:
            self.close_code = 1000

    def feed(self, text: str) -> None:
        self._incoming.put_nowait(text)

    def reply(self, frame: dict[str, Any]) -> None:
        """Queue one complete broker frame."""
        self.feed(json.dumps(frame) + "\n\n")

    def disconnect(self, code: int = 1000) -> None:
        self.close_code = code
        self._incoming.put_nowait(None)

    def fail(self, error: Exception) -> None:
        self._incoming.put_nowait(error)


class FakeTransportFactory:
    """Transport factory recording every transport it creates."""

    def __init__(self):
        self.created: list[FakeTransport] = []
        self.open_error: Optional[Exception] = None

    def __call__(self, address: str) -> FakeTransport:
        transport = FakeTransport(address, open_error=self.open_error)
        self.created.append(transport)
        return transport

    @property
    def total_sent(self) -> int:
        return sum(len(t.sent) for t in self.created)


async def _wait_until(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("Condition not met")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def config():
    """Create a demo WebSocket configuration."""
    return XApiConfig(username="12345678", password="secret", demo=True)


@pytest.fixture
def fake_transport():
    """Create a standalone fake transport."""
    return FakeTransport()


@pytest.fixture
def transport_factory():
    """Create a factory of fake transports."""
    return FakeTransportFactory()


@pytest.fixture
def client(config, transport_factory):
    """Create a client wired to fake transports."""
    return XApiClient(config=config, transport_factory=transport_factory)


@pytest.fixture
def wait_until():
    """Step the event loop until a predicate holds."""
    return _wait_until


@pytest.fixture
def login(transport_factory, wait_until):
    """Log a client in by answering its login command.

    Usage:
        await login(client)
    """
    async def _login(client: XApiClient, stream_session_id: str = "session-1") -> FakeTransport:
        task = asyncio.create_task(client.login())
        await wait_until(lambda: transport_factory.created and transport_factory.created[0].sent)
        control = transport_factory.created[0]
        control.reply({"status": True, "customTag": "login", "streamSessionId": stream_session_id})
        await task
        return control

    return _login
