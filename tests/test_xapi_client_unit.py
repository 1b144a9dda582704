"""
Unit tests for XApiClient.

Tests cover:
- Construction and configuration overrides
- Rejection of every operation before login
- Context manager behavior
"""

import os
from unittest.mock import AsyncMock, patch

import pytest

from xstation.api.client import SessionState, XApiClient
from xstation.api.exceptions import XApiNotLoggedInError
from xstation.api.models import Command, Period, TradeTransInfo
from xstation.lib.config import XApiConfig


# =============================================================================
# Construction Tests
# =============================================================================

class TestXApiClientInit:
    """Tests for XApiClient initialization."""

    def test_init_with_config(self, config):
        """Test init keeps the given config."""
        client = XApiClient(config=config)

        assert client.config is config
        assert client.state == SessionState.LOGGED_OUT
        assert not client.is_logged_in
        assert client.stream_session_id is None

    def test_init_overrides_credentials(self, config):
        """Test explicit arguments override config values."""
        client = XApiClient(username="999", password="other", demo=False, config=config)

        assert client.config.username == "999"
        assert client.config.password == "other"
        assert client.config.demo is False
        assert client.config.endpoint == "wss://ws.xtb.com/real"
        assert client.config.stream_endpoint == "wss://ws.xtb.com/realStream"

    def test_init_from_env(self):
        """Test config is read from the environment when not given."""
        env = {"XTB_USERNAME": "555", "XTB_PASSWORD": "pw", "XTB_DEMO": "true"}
        with patch.dict(os.environ, env, clear=False):
            client = XApiClient()

        assert client.config.username == "555"
        assert client.config.password == "pw"
        assert client.config.endpoint == "wss://ws.xtb.com/demo"

    def test_demo_stream_endpoint(self, config):
        """Test the demo stream endpoint."""
        client = XApiClient(config=config)

        assert client.config.stream_endpoint == "wss://ws.xtb.com/demoStream"


# =============================================================================
# Pre-Login Tests
# =============================================================================

PRE_LOGIN_OPERATIONS = [
    ("logout", ()),
    ("call_operation", ("ping", "ping")),
    ("stream_operation", ("streamBalance", "getBalance")),
    ("stop_streaming", ("streamBalance", "stopBalance")),
    ("get_all_symbols", ()),
    ("get_calendar", ()),
    ("get_chart_last_request", (Period.H1, 0, "EURUSD")),
    ("get_chart_range_request", (0, 1, Period.H1, "EURUSD")),
    ("get_commission_def", ("EURUSD", 1.0)),
    ("get_current_user_data", ()),
    ("get_ibs_history", (0, 1)),
    ("get_margin_level", ()),
    ("get_margin_trade", ("EURUSD", 1.0)),
    ("get_news", (0, 1)),
    ("get_profit_calculation", (Command.BUY, "EURUSD", 1.0, 1.1, 1.2)),
    ("get_server_time", ()),
    ("get_step_rules", ()),
    ("get_symbol", ("EURUSD",)),
    ("get_tick_prices", (0, ["EURUSD"], 0)),
    ("get_trade_records", ([1],)),
    ("get_trades", (True,)),
    ("get_trades_history", (0, 1)),
    ("get_trading_hours", (["EURUSD"],)),
    ("get_version", ()),
    ("ping", ()),
    ("trade_transaction", (TradeTransInfo(Command.BUY, "EURUSD", 0.1),)),
    ("trade_transaction_status", (1,)),
    ("stream_balance", ()),
    ("stream_candles", ("EURUSD",)),
    ("stream_keep_alive", ()),
    ("stream_news", ()),
    ("stream_ping", ()),
    ("stream_profits", ()),
    ("stream_tick_prices", ("EURUSD",)),
    ("stream_trade_status", ()),
    ("stream_trades", ()),
    ("stop_stream_balance", ()),
    ("stop_stream_candles", ("EURUSD",)),
    ("stop_stream_keep_alive", ()),
    ("stop_stream_news", ()),
    ("stop_stream_ping", ()),
    ("stop_stream_profits", ()),
    ("stop_stream_tick_prices", ("EURUSD",)),
    ("stop_stream_trade_status", ()),
    ("stop_stream_trades", ()),
]


class TestNotLoggedIn:
    """Tests for operations attempted before login."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,args", PRE_LOGIN_OPERATIONS)
    async def test_operation_rejected_without_io(self, client, transport_factory, method, args):
        """Test the operation fails fast and opens no connection."""
        with pytest.raises(XApiNotLoggedInError, match="Not logged in"):
            await getattr(client, method)(*args)

        assert transport_factory.created == []

    @pytest.mark.asyncio
    async def test_login_requires_credentials(self, transport_factory):
        """Test login without credentials raises before connecting."""
        client = XApiClient(config=XApiConfig(), transport_factory=transport_factory)

        with pytest.raises(ValueError, match="Username and password"):
            await client.login()

        assert transport_factory.created == []


# =============================================================================
# Context Manager Tests
# =============================================================================

class TestXApiClientContextManager:
    """Tests for async with support."""

    @pytest.mark.asyncio
    async def test_context_manager_logs_in_and_out(self, client):
        """Test entering logs in and leaving logs out and closes."""
        with patch.object(client, "login", AsyncMock()) as login, \
             patch.object(client, "logout", AsyncMock()) as logout, \
             patch.object(client, "close", AsyncMock()) as close, \
             patch.object(XApiClient, "is_logged_in", True):
            async with client as entered:
                assert entered is client

        login.assert_awaited_once()
        logout.assert_awaited_once()
        close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_manager_skips_logout_when_logged_out(self, client):
        """Test leaving without a session only closes."""
        with patch.object(client, "login", AsyncMock()), \
             patch.object(client, "logout", AsyncMock()) as logout, \
             patch.object(client, "close", AsyncMock()) as close:
            async with client:
                pass

        logout.assert_not_awaited()
        close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_without_connections(self, client):
        """Test close is safe on a fresh client."""
        await client.close()

        assert len(client.connections) == 0
