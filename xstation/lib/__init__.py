"""
Shared utilities library for the xAPI client.

This module provides common utilities used across the package:
- constants: Endpoints, wire protocol values, custom tags and stream commands
- time_utils: Conversion between datetimes and xAPI epoch milliseconds
- config: Configuration loading from YAML and environment variables
- logging_utils: Logging setup with rotation, formatting and redaction
"""

from xstation.lib.constants import (
    XAPI_WS_DEMO_URL,
    XAPI_WS_DEMO_STREAM_URL,
    XAPI_WS_LIVE_URL,
    XAPI_WS_LIVE_STREAM_URL,
    XAPI_HOST,
    TRANSPORT_WEBSOCKET,
    TRANSPORT_SOCKET,
    STREAM_COMMANDS,
    symbol_tag,
)

from xstation.lib.time_utils import (
    utc_now,
    to_xapi_timestamp,
    from_xapi_timestamp,
)

from xstation.lib.config import (
    XApiConfig,
    ConfigValidationError,
    load_config,
    validate_config,
    config_to_dict,
    save_config,
)

from xstation.lib.logging_utils import (
    LogLevel,
    XApiFormatter,
    setup_logging,
    get_logger,
    redact_payload,
)

__all__ = [
    # Constants
    "XAPI_WS_DEMO_URL",
    "XAPI_WS_DEMO_STREAM_URL",
    "XAPI_WS_LIVE_URL",
    "XAPI_WS_LIVE_STREAM_URL",
    "XAPI_HOST",
    "TRANSPORT_WEBSOCKET",
    "TRANSPORT_SOCKET",
    "STREAM_COMMANDS",
    "symbol_tag",
    # Time utilities
    "utc_now",
    "to_xapi_timestamp",
    "from_xapi_timestamp",
    # Config
    "XApiConfig",
    "ConfigValidationError",
    "load_config",
    "validate_config",
    "config_to_dict",
    "save_config",
    # Logging
    "LogLevel",
    "XApiFormatter",
    "setup_logging",
    "get_logger",
    "redact_payload",
]
