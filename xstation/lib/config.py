"""
Client configuration management.

This module provides a centralized way to load, validate, and access
configuration for the xAPI client. It supports:
- YAML file loading
- Environment variable overrides
- Type validation via dataclasses
- Default values from constants

Configuration Hierarchy (highest to lowest priority):
1. Environment variables (XTB_*)
2. User-provided config file
3. Default values from constants.py

Example usage:
    # Load config with environment overrides
    config = load_config("config/xapi.yaml")

    client = XApiClient(config=config)
    print(config.endpoint)
"""

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from xstation.lib.constants import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_HEARTBEAT_SECONDS,
    TRANSPORT_SOCKET,
    TRANSPORT_WEBSOCKET,
    TRANSPORTS,
    XAPI_DEMO_PORT,
    XAPI_DEMO_STREAM_PORT,
    XAPI_HOST,
    XAPI_LIVE_PORT,
    XAPI_LIVE_STREAM_PORT,
    XAPI_WS_DEMO_STREAM_URL,
    XAPI_WS_DEMO_URL,
    XAPI_WS_LIVE_STREAM_URL,
    XAPI_WS_LIVE_URL,
)


# =============================================================================
# Configuration Dataclass
# =============================================================================

@dataclass
class XApiConfig:
    """Configuration for the xAPI client.

    Attributes:
        username: Account login (numeric user id as a string)
        password: Account password
        demo: Connect to demo servers instead of live
        transport: "websocket" (wss endpoints) or "socket" (raw TLS)
        app_name: Optional application name sent with the login command
        ws_demo_url: Demo request/reply WebSocket URL
        ws_demo_stream_url: Demo streaming WebSocket URL
        ws_live_url: Live request/reply WebSocket URL
        ws_live_stream_url: Live streaming WebSocket URL
        host: TLS socket host
        live_port: Live request/reply TLS port
        live_stream_port: Live streaming TLS port
        demo_port: Demo request/reply TLS port
        demo_stream_port: Demo streaming TLS port
        connect_timeout: Seconds allowed for opening a connection
        heartbeat: WebSocket ping interval in seconds (0 disables)
    """
    username: str = ""
    password: str = ""
    demo: bool = True
    transport: str = TRANSPORT_WEBSOCKET
    app_name: Optional[str] = None
    ws_demo_url: str = XAPI_WS_DEMO_URL
    ws_demo_stream_url: str = XAPI_WS_DEMO_STREAM_URL
    ws_live_url: str = XAPI_WS_LIVE_URL
    ws_live_stream_url: str = XAPI_WS_LIVE_STREAM_URL
    host: str = XAPI_HOST
    live_port: int = XAPI_LIVE_PORT
    live_stream_port: int = XAPI_LIVE_STREAM_PORT
    demo_port: int = XAPI_DEMO_PORT
    demo_stream_port: int = XAPI_DEMO_STREAM_PORT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS
    heartbeat: float = DEFAULT_HEARTBEAT_SECONDS

    @classmethod
    def from_env(cls) -> "XApiConfig":
        """Create config from environment variables.

        Environment variables:
            XTB_USERNAME: Login user id
            XTB_PASSWORD: Login password
            XTB_DEMO: "false"/"0"/"no" selects live servers
            XTB_TRANSPORT: "websocket" or "socket"
            XTB_APP_NAME: Optional application name
        """
        return _apply_env_overrides(cls())

    @property
    def endpoint(self) -> str:
        """Address of the request/reply connection."""
        if self.transport == TRANSPORT_SOCKET:
            port = self.demo_port if self.demo else self.live_port
            return f"{self.host}:{port}"
        return self.ws_demo_url if self.demo else self.ws_live_url

    @property
    def stream_endpoint(self) -> str:
        """Address used for every streaming connection."""
        if self.transport == TRANSPORT_SOCKET:
            port = self.demo_stream_port if self.demo else self.live_stream_port
            return f"{self.host}:{port}"
        return self.ws_demo_stream_url if self.demo else self.ws_live_stream_url


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(
    config_path: Optional[str] = None,
    override_env: bool = True
) -> XApiConfig:
    """
    Load configuration from YAML file with optional environment overrides.

    The YAML file may hold the fields at top level or under an ``xapi`` key.

    Args:
        config_path: Path to YAML config file (optional)
        override_env: If True, apply environment variable overrides

    Returns:
        XApiConfig instance

    Example:
        config = load_config("config/xapi.yaml")
        print(config.endpoint)  # wss://ws.xtb.com/demo
    """
    config = XApiConfig()

    if config_path:
        config = _load_from_yaml(config_path, config)

    if override_env:
        config = _apply_env_overrides(config)

    return config


def _load_from_yaml(config_path: str, base_config: XApiConfig) -> XApiConfig:
    """Load configuration from YAML file."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        yaml_data = yaml.safe_load(f)

    if yaml_data is None:
        return base_config

    return _update_dataclass(base_config, yaml_data.get("xapi", yaml_data))


def _update_dataclass(instance: Any, data: dict) -> Any:
    """Update dataclass fields from dictionary."""
    if not data:
        return instance

    field_names = set(instance.__dataclass_fields__)

    for key, value in data.items():
        # Accept dashed keys (e.g. 'connect-timeout' -> 'connect_timeout')
        normalized_key = key.replace(".", "_").replace("-", "_")

        if normalized_key in field_names:
            setattr(instance, normalized_key, value)

    return instance


def _apply_env_overrides(config: XApiConfig) -> XApiConfig:
    """Apply environment variable overrides to config."""

    if env_val := os.getenv("XTB_USERNAME"):
        config.username = env_val

    if env_val := os.getenv("XTB_PASSWORD"):
        config.password = env_val

    if env_val := os.getenv("XTB_DEMO"):
        config.demo = env_val.lower() in ("true", "1", "yes")

    if env_val := os.getenv("XTB_TRANSPORT"):
        config.transport = env_val.lower()

    if env_val := os.getenv("XTB_APP_NAME"):
        config.app_name = env_val

    return config


# =============================================================================
# Configuration Validation
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def validate_config(config: XApiConfig) -> list[str]:
    """
    Validate configuration values.

    Args:
        config: XApiConfig to validate

    Returns:
        List of validation warnings (empty if valid)

    Raises:
        ConfigValidationError: If critical validation fails
    """
    warnings = []
    errors = []

    if config.transport not in TRANSPORTS:
        errors.append(
            f"transport ({config.transport!r}) must be one of {', '.join(TRANSPORTS)}"
        )

    if config.connect_timeout <= 0:
        errors.append(f"connect_timeout ({config.connect_timeout}) must be positive")

    if config.heartbeat < 0:
        errors.append(f"heartbeat ({config.heartbeat}) cannot be negative")

    if not config.username or not config.password:
        warnings.append("username/password not set - login() will fail until provided (XTB_USERNAME, XTB_PASSWORD)")

    if not config.demo:
        warnings.append("demo is False - orders will be sent to a LIVE account")

    if errors:
        raise ConfigValidationError("Configuration validation failed:\n" +
                                   "\n".join(f"  - {e}" for e in errors))

    return warnings


# =============================================================================
# Configuration Export
# =============================================================================

def config_to_dict(config: XApiConfig) -> dict:
    """
    Convert XApiConfig to dictionary for serialization.

    Args:
        config: Configuration to convert

    Returns:
        Dictionary representation (YAML-safe)
    """
    result = asdict(config)

    # Remove sensitive data
    result["password"] = "***" if result.get("password") else None

    return result


def save_config(config: XApiConfig, path: str) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration to save
        path: Output file path
    """
    data = config_to_dict(config)

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
