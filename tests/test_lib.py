"""
Tests for xstation/lib/ modules.

Tests cover:
- constants.py: Endpoints, stream commands, per-symbol tags
- time_utils.py: Conversion to and from xAPI milliseconds
- config.py: Configuration loading, validation, serialization
- logging_utils.py: Log formatting, setup, payload redaction

Run with: pytest tests/test_lib.py -v
"""

import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml


# =============================================================================
# Constants Tests
# =============================================================================

class TestConstants:
    """Tests for xAPI constants."""

    def test_endpoints(self):
        """Test demo and live endpoints."""
        from xstation.lib.constants import (
            XAPI_DEMO_PORT,
            XAPI_DEMO_STREAM_PORT,
            XAPI_LIVE_PORT,
            XAPI_LIVE_STREAM_PORT,
            XAPI_WS_DEMO_STREAM_URL,
            XAPI_WS_DEMO_URL,
            XAPI_WS_LIVE_STREAM_URL,
            XAPI_WS_LIVE_URL,
        )

        assert XAPI_WS_DEMO_URL == "wss://ws.xtb.com/demo"
        assert XAPI_WS_DEMO_STREAM_URL == "wss://ws.xtb.com/demoStream"
        assert XAPI_WS_LIVE_URL == "wss://ws.xtb.com/real"
        assert XAPI_WS_LIVE_STREAM_URL == "wss://ws.xtb.com/realStream"
        assert (XAPI_LIVE_PORT, XAPI_LIVE_STREAM_PORT) == (5112, 5113)
        assert (XAPI_DEMO_PORT, XAPI_DEMO_STREAM_PORT) == (5124, 5125)

    def test_stream_commands(self):
        """Test every stream has a subscribe command."""
        from xstation.lib.constants import STREAM_COMMANDS, STREAM_PING, STREAM_TICK_PRICES

        assert STREAM_COMMANDS[STREAM_TICK_PRICES] == ("getTickPrices", "stopTickPrices")
        assert STREAM_COMMANDS[STREAM_PING] == ("ping", None)
        assert all(subscribe for subscribe, _ in STREAM_COMMANDS.values())

    def test_symbol_tag(self):
        """Test per-symbol stream tags."""
        from xstation.lib.constants import STREAM_CANDLES, symbol_tag

        assert symbol_tag(STREAM_CANDLES, "EURUSD") == "streamCandles_EURUSD"


# =============================================================================
# Time Utils Tests
# =============================================================================

class TestTimeConversion:
    """Tests for xAPI timestamp conversion."""

    def test_aware_datetime(self):
        """Test an aware datetime converts to epoch milliseconds."""
        from xstation.lib.time_utils import to_xapi_timestamp

        dt = datetime(2024, 1, 2, 0, 0, 0, 500000, tzinfo=timezone.utc)
        assert to_xapi_timestamp(dt) == 1704153600500

    def test_naive_datetime_is_utc(self):
        """Test a naive datetime is treated as UTC."""
        from xstation.lib.time_utils import to_xapi_timestamp

        assert to_xapi_timestamp(datetime(2024, 1, 2)) == 1704153600000

    def test_other_timezone(self):
        """Test a non-UTC datetime is converted to UTC."""
        from xstation.lib.time_utils import to_xapi_timestamp

        dt = datetime(2024, 1, 2, 1, 0, tzinfo=timezone(timedelta(hours=1)))
        assert to_xapi_timestamp(dt) == 1704153600000

    def test_numbers_pass_through(self):
        """Test epoch values are returned as int."""
        from xstation.lib.time_utils import to_xapi_timestamp

        assert to_xapi_timestamp(1704153600000) == 1704153600000
        assert to_xapi_timestamp(1704153600000.0) == 1704153600000
        assert to_xapi_timestamp(0) == 0

    def test_from_xapi_timestamp(self):
        """Test milliseconds convert to an aware UTC datetime."""
        from xstation.lib.time_utils import from_xapi_timestamp

        dt = from_xapi_timestamp(1704153600000)
        assert dt == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert dt.tzinfo is not None

    def test_utc_now(self):
        """Test utc_now is timezone aware."""
        from xstation.lib.time_utils import utc_now

        assert utc_now().utcoffset() == timedelta(0)


# =============================================================================
# Config Tests
# =============================================================================

class TestConfigDefaults:
    """Tests for default configuration values."""

    def test_default_config(self):
        """Test defaults target the demo WebSocket servers."""
        from xstation.lib.config import XApiConfig

        config = XApiConfig()

        assert config.demo is True
        assert config.transport == "websocket"
        assert config.endpoint == "wss://ws.xtb.com/demo"
        assert config.stream_endpoint == "wss://ws.xtb.com/demoStream"
        assert config.app_name is None

    def test_socket_endpoints(self):
        """Test socket transport endpoints are host:port."""
        from xstation.lib.config import XApiConfig

        config = XApiConfig(transport="socket", demo=False)

        assert config.endpoint == "xapi.xtb.com:5112"
        assert config.stream_endpoint == "xapi.xtb.com:5113"


class TestConfigLoading:
    """Tests for configuration loading."""

    def test_load_config_no_file(self):
        """Test loading config with no file (defaults only)."""
        from xstation.lib.config import load_config

        config = load_config(override_env=False)
        assert config.username == ""
        assert config.connect_timeout == 30.0

    def test_load_config_from_yaml(self):
        """Test loading config from YAML file."""
        from xstation.lib.config import load_config

        yaml_content = """
xapi:
  username: "1234"
  demo: false
  transport: socket
  connect-timeout: 5.0
"""
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write(yaml_content)
            temp_path = f.name

        try:
            config = load_config(temp_path, override_env=False)

            assert config.username == "1234"
            assert config.demo is False
            assert config.transport == "socket"
            assert config.connect_timeout == 5.0
        finally:
            os.unlink(temp_path)

    def test_load_config_top_level_yaml(self):
        """Test fields may also be given at top level."""
        from xstation.lib.config import load_config

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write("app_name: bot\nunknown_key: 1\n")
            temp_path = f.name

        try:
            config = load_config(temp_path, override_env=False)
            assert config.app_name == "bot"
        finally:
            os.unlink(temp_path)

    def test_load_config_file_not_found(self):
        """Test loading nonexistent config file."""
        from xstation.lib.config import load_config

        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/path.yaml")

    def test_load_config_env_override(self):
        """Test environment variable overrides."""
        from xstation.lib.config import load_config

        with patch.dict(os.environ, {
            "XTB_USERNAME": "777",
            "XTB_PASSWORD": "pw",
            "XTB_DEMO": "false",
            "XTB_TRANSPORT": "SOCKET",
            "XTB_APP_NAME": "bot",
        }):
            config = load_config()

            assert config.username == "777"
            assert config.password == "pw"
            assert config.demo is False
            assert config.transport == "socket"
            assert config.app_name == "bot"

    def test_from_env(self):
        """Test XApiConfig.from_env."""
        from xstation.lib.config import XApiConfig

        with patch.dict(os.environ, {"XTB_USERNAME": "888", "XTB_DEMO": "1"}):
            config = XApiConfig.from_env()

        assert config.username == "888"
        assert config.demo is True


class TestConfigValidation:
    """Tests for configuration validation."""

    def test_validate_valid_config(self):
        """Test validating a complete demo config."""
        from xstation.lib.config import XApiConfig, validate_config

        config = XApiConfig(username="1", password="p")

        assert validate_config(config) == []

    def test_validate_unknown_transport(self):
        """Test validation catches an unknown transport."""
        from xstation.lib.config import ConfigValidationError, XApiConfig, validate_config

        config = XApiConfig(transport="carrier-pigeon")

        with pytest.raises(ConfigValidationError, match="transport"):
            validate_config(config)

    def test_validate_timeout(self):
        """Test validation catches a non-positive connect timeout."""
        from xstation.lib.config import ConfigValidationError, XApiConfig, validate_config

        config = XApiConfig(connect_timeout=0)

        with pytest.raises(ConfigValidationError, match="connect_timeout"):
            validate_config(config)

    def test_validate_warnings(self):
        """Test missing credentials and live mode produce warnings."""
        from xstation.lib.config import XApiConfig, validate_config

        warnings = validate_config(XApiConfig(demo=False))

        assert any("username/password" in w for w in warnings)
        assert any("LIVE" in w for w in warnings)


class TestConfigSerialization:
    """Tests for config serialization."""

    def test_config_to_dict(self):
        """Test converting config to dictionary masks the password."""
        from xstation.lib.config import XApiConfig, config_to_dict

        data = config_to_dict(XApiConfig(username="1", password="secret"))

        assert data["username"] == "1"
        assert data["password"] == "***"

    def test_config_to_dict_without_password(self):
        """Test an empty password serializes as None."""
        from xstation.lib.config import XApiConfig, config_to_dict

        assert config_to_dict(XApiConfig())["password"] is None

    def test_save_config(self):
        """Test saving config to YAML file."""
        from xstation.lib.config import XApiConfig, save_config

        config = XApiConfig(username="1", demo=False)

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            temp_path = f.name

        try:
            save_config(config, temp_path)

            with open(temp_path) as f:
                data = yaml.safe_load(f)

            assert data["username"] == "1"
            assert data["demo"] is False
        finally:
            os.unlink(temp_path)


# =============================================================================
# Logging Tests
# =============================================================================

@pytest.fixture
def restore_root_logger():
    """Restore root logger handlers and level after a test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLoggingSetup:
    """Tests for logging setup."""

    def test_setup_logging_default(self, restore_root_logger):
        """Test default logging setup."""
        from xstation.lib.logging_utils import setup_logging

        logger = setup_logging()
        assert logger is not None
        assert logger.level == logging.INFO

    def test_setup_logging_debug(self, restore_root_logger):
        """Test debug level logging setup."""
        from xstation.lib.logging_utils import setup_logging

        logger = setup_logging(level="DEBUG")
        assert logger.level == logging.DEBUG

    def test_setup_logging_with_file(self, restore_root_logger):
        """Test logging setup with file output."""
        from xstation.lib.logging_utils import setup_logging

        with tempfile.TemporaryDirectory() as temp_dir:
            logger = setup_logging(level="INFO", log_dir=temp_dir, use_colors=False)

            logger.info("Test message")

            log_files = list(Path(temp_dir).glob("xapi_*.log"))
            assert len(log_files) == 1

            for handler in logger.handlers:
                handler.flush()
            assert "Test message" in log_files[0].read_text()

    def test_get_logger(self):
        """Test getting named logger."""
        from xstation.lib.logging_utils import get_logger

        logger = get_logger("xstation.test")
        assert logger.name == "xstation.test"

    def test_log_level_enum(self):
        """Test LogLevel maps to logging levels."""
        from xstation.lib.logging_utils import LogLevel

        assert LogLevel.WARNING.value == logging.WARNING


class TestXApiFormatter:
    """Tests for XApiFormatter."""

    def _record(self, msg="Test message"):
        return logging.LogRecord(
            name="xstation.api.client",
            level=logging.INFO,
            pathname="client.py",
            lineno=1,
            msg=msg,
            args=(),
            exc_info=None
        )

    def test_formatter_basic(self):
        """Test basic message formatting."""
        from xstation.lib.logging_utils import XApiFormatter

        formatter = XApiFormatter(use_colors=False)

        formatted = formatter.format(self._record())
        assert "Test message" in formatted
        assert "[INFO" in formatted
        assert "xstation.api.client" in formatted

    def test_formatter_with_extras(self):
        """Test formatting with extra fields."""
        from xstation.lib.logging_utils import XApiFormatter

        formatter = XApiFormatter(use_colors=False, include_extras=True)
        record = self._record("Call failed")
        record.tag = "getSymbol"
        record.error_code = "BE115"

        formatted = formatter.format(record)
        assert "tag=getSymbol" in formatted
        assert "error_code=BE115" in formatted

    def test_formatter_without_extras(self):
        """Test extra fields can be left out."""
        from xstation.lib.logging_utils import XApiFormatter

        formatter = XApiFormatter(use_colors=False, include_extras=False)
        record = self._record()
        record.tag = "getSymbol"

        assert "tag=" not in formatter.format(record)


class TestRedactPayload:
    """Tests for redact_payload."""

    def test_password_masked(self):
        """Test nested passwords are masked without modifying the input."""
        from xstation.lib.logging_utils import redact_payload

        payload = {"command": "login", "arguments": {"userId": "1", "password": "secret"}}

        redacted = redact_payload(payload)

        assert redacted == {"command": "login", "arguments": {"userId": "1", "password": "***"}}
        assert payload["arguments"]["password"] == "secret"

    def test_lists_and_scalars(self):
        """Test lists are walked and scalars returned as-is."""
        from xstation.lib.logging_utils import redact_payload

        assert redact_payload([{"password": "x"}, 1]) == [{"password": "***"}, 1]
        assert redact_payload("text") == "text"
